"""
Gene Set Utilities for LRConsensus
Validation, size filtering and summaries of gene set annotations.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .models import AnnotationTable

logger = logging.getLogger("LRConsensus.Annotations")


def validate_gene_sets(gene_sets: Mapping[str, Iterable[str]]) -> Tuple[Dict[str, List[str]], List[str]]:
    """
    Clean gene sets: strip names and genes, drop duplicates, empty names and empty sets.

    Args:
        gene_sets: Dictionary of gene set name -> gene list

    Returns:
        Tuple of (valid_gene_sets, warnings)
    """
    valid_sets: Dict[str, List[str]] = {}
    warnings = []

    for name, genes in gene_sets.items():
        name = str(name).strip()
        if not name:
            warnings.append("Gene set with empty name. Excluded.")
            continue

        genes = [str(g).strip() for g in genes if g is not None and str(g).strip()]
        unique_genes = list(dict.fromkeys(genes))

        if len(unique_genes) != len(genes):
            warnings.append(f"'{name}': Removed {len(genes) - len(unique_genes)} duplicate genes")

        if not unique_genes:
            warnings.append(f"'{name}': No genes. Excluded.")
            continue

        if name in valid_sets:
            warnings.append(f"'{name}': Duplicate gene set name. Merging genes.")
            unique_genes = list(dict.fromkeys(valid_sets[name] + unique_genes))

        valid_sets[name] = unique_genes

    logger.info(
        f"Validated gene sets: {len(valid_sets)}/{len(gene_sets)} kept, "
        f"{len(warnings)} warnings"
    )

    return valid_sets, warnings


def filter_gene_sets_by_size(gene_sets: Mapping[str, List[str]],
                             min_size: int = 5,
                             max_size: Optional[int] = 500) -> Tuple[Dict[str, List[str]], List[str]]:
    """
    Keep gene sets with min_size <= size <= max_size.

    Returns:
        Tuple of (kept_gene_sets, warnings)
    """
    kept = {}
    warnings = []

    for name, genes in gene_sets.items():
        if len(genes) < min_size:
            warnings.append(f"'{name}': Too few genes ({len(genes)} < {min_size}). Excluded.")
            continue
        if max_size is not None and len(genes) > max_size:
            warnings.append(f"'{name}': Too many genes ({len(genes)} > {max_size}). Excluded.")
            continue
        kept[name] = list(genes)

    if warnings:
        logger.info(f"Size filter kept {len(kept)}/{len(gene_sets)} gene sets")
    return kept, warnings


def annotation_from_gene_sets(gene_sets: Mapping[str, Iterable[str]],
                              min_size: int = 1,
                              max_size: Optional[int] = None) -> Tuple[AnnotationTable, List[str]]:
    """
    Validate and size-filter gene sets, then build the gene -> sets annotation.

    Returns:
        Tuple of (annotation, warnings)
    """
    valid, warnings = validate_gene_sets(gene_sets)
    kept, size_warnings = filter_gene_sets_by_size(valid, min_size=min_size, max_size=max_size)
    return AnnotationTable.from_gene_sets(kept), warnings + size_warnings


def annotation_stats(annotation: AnnotationTable) -> Dict[str, Any]:
    """
    Summary of an annotation table, logged with every enrichment run.

    Returns:
        Dictionary with total_sets, gene_set_pairs, unique_genes,
        multi_set_genes and avg/min/max set size
    """
    sizes = [len(genes) for genes in annotation.gene_sets().values()]
    multi = sum(1 for gene in annotation.genes if len(annotation.sets_for(gene)) > 1)
    return {
        "total_sets": len(sizes),
        "gene_set_pairs": sum(sizes),
        "unique_genes": len(annotation),
        "multi_set_genes": multi,
        "avg_size": sum(sizes) / len(sizes) if sizes else 0,
        "min_size": min(sizes, default=0),
        "max_size": max(sizes, default=0),
    }


def merge_gene_sets(sources: Iterable[Mapping[str, Iterable[str]]]) -> Dict[str, List[str]]:
    """
    Union of several gene set collections (e.g. pathway and GO sources).

    A set name found in more than one source gets the genes of all of them,
    first-seen order kept.
    """
    merged: Dict[str, Dict[str, None]] = {}
    for source in sources:
        for name, genes in source.items():
            merged.setdefault(name, {}).update(dict.fromkeys(genes))
    return {name: list(genes) for name, genes in merged.items()}
