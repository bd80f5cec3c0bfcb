"""
Over-Representation Analysis (ORA) for LRConsensus

Hypergeometric test of each group's hit genes against annotated gene sets,
with Benjamini-Hochberg (or any statsmodels multipletests) correction.
"""

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, asdict, replace
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.stats import hypergeom
from statsmodels.stats.multitest import multipletests

from .aggregation import AggregateResult
from .errors import DegenerateHypergeometricParameters, EmptyUniverseError
from .models import DEFAULT_SEPARATOR, AnnotationTable, Entity
from .repro import StageReport

logger = logging.getLogger("LRConsensus.ORA")

# Accepted shorthands for multipletests method names
FDR_ALIASES = {
    'fdr': 'fdr_bh',
    'bh': 'fdr_bh',
    'benjamini-hochberg': 'fdr_bh',
    'by': 'fdr_by',
}


@dataclass(frozen=True)
class EnrichmentUniverse:
    """Background genes with known gene set membership, and per-set population counts"""

    annotation: AnnotationTable
    genes: FrozenSet[str]
    set_sizes: Mapping[str, int]

    @property
    def size(self) -> int:
        return len(self.genes)


@dataclass(frozen=True)
class EnrichmentRow:
    """Result of one (group, gene set) test"""

    group: str
    gene_set: str

    # Hypergeometric parameters
    hits_in_set: int  # q
    set_size: int  # m
    group_hits: int  # k
    universe_size: int  # m + n

    p_value: float
    p_adjusted: Optional[float] = None

    hit_genes: Tuple[str, ...] = ()

    @property
    def overlap_ratio(self) -> str:
        return f"{self.hits_in_set}/{self.set_size}"

    @property
    def odds_ratio(self) -> float:
        """Observed over expected fraction of hits in the set"""
        return (self.hits_in_set / self.group_hits) / (self.set_size / self.universe_size)

    def is_significant(self, alpha: float = 0.05) -> bool:
        value = self.p_adjusted if self.p_adjusted is not None else self.p_value
        return value < alpha

    def to_dict(self) -> Dict:
        d = asdict(self)
        d['hit_genes'] = list(self.hit_genes)
        d['overlap_ratio'] = self.overlap_ratio
        return d


@dataclass(frozen=True)
class EnrichmentResult:
    rows: Tuple[EnrichmentRow, ...]
    fdr_method: Optional[str] = None
    per_group: bool = False
    reports: Tuple[StageReport, ...] = ()

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)

    @property
    def is_adjusted(self) -> bool:
        return self.fdr_method is not None

    def significant(self, alpha: float = 0.05) -> List[EnrichmentRow]:
        return [row for row in self.rows if row.is_significant(alpha)]

    def to_dataframe(self) -> pd.DataFrame:
        columns = [
            'group', 'gene_set', 'hits_in_set', 'set_size', 'group_hits',
            'universe_size', 'p_value', 'p_adjusted', 'hit_genes', 'overlap_ratio',
        ]
        return pd.DataFrame([row.to_dict() for row in self.rows], columns=columns)


def hypergeometric_test(
    hit_in_pathway: int,
    pathway_size: int,
    hit_size: int,
    background_size: int
) -> float:
    """
    Perform hypergeometric test for enrichment.

    P(X >= q), X ~ Hypergeometric(M=background_size, n=pathway_size, N=hit_size)

    Args:
        hit_in_pathway: q, hits annotated with the set
        pathway_size: m, set members in the background
        hit_size: k, annotated hits in the group
        background_size: m + n

    Returns:
        P-value

    Raises:
        DegenerateHypergeometricParameters: m = 0 or k = 0
    """
    if pathway_size <= 0 or hit_size <= 0:
        raise DegenerateHypergeometricParameters(pathway_size, hit_size)
    if not 0 <= hit_in_pathway <= min(hit_size, pathway_size):
        raise ValueError(
            f"hit_in_pathway={hit_in_pathway} outside [0, min({hit_size}, {pathway_size})]"
        )
    if pathway_size > background_size or hit_size > background_size:
        raise ValueError(
            f"pathway_size={pathway_size} and hit_size={hit_size} "
            f"must not exceed background_size={background_size}"
        )

    # P(X >= q) = 1 - P(X <= q-1)
    p_value = hypergeom.sf(hit_in_pathway - 1, background_size, pathway_size, hit_size)

    return float(min(max(p_value, 0.0), 1.0))


def fdr_correction(p_values: Sequence[float], method: str = 'fdr_bh') -> List[float]:
    """
    Apply multiple testing correction to p-values.

    Args:
        p_values: List of p-values
        method: Any statsmodels multipletests method ('fdr_bh', 'bonferroni', ...)
            or an alias from FDR_ALIASES

    Returns:
        List of adjusted p-values, aligned with the input
    """
    if len(p_values) == 0:
        return []
    method = FDR_ALIASES.get(method.lower(), method)
    _, adjusted, _, _ = multipletests(np.asarray(p_values, dtype=float), method=method)
    return [float(p) for p in adjusted]


def build_universe(annotation: AnnotationTable, background: Optional[Iterable[str]] = None) -> EnrichmentUniverse:
    """
    Compute the background population once for all tests.

    Args:
        annotation: Gene -> gene sets relation
        background: Optional gene list restricting the universe (e.g. all
            genes of the L-R resource); genes without annotation are ignored

    Raises:
        EmptyUniverseError: no annotated gene in the background
    """
    if background is not None:
        annotation = annotation.restrict(background)
    genes = frozenset(annotation.genes)
    if not genes:
        raise EmptyUniverseError("No annotated genes in the enrichment background")

    set_sizes: Counter = Counter()
    for gene in genes:
        set_sizes.update(annotation.sets_for(gene))

    logger.info(f"Universe: {len(genes)} annotated genes, {len(set_sizes)} gene sets")
    return EnrichmentUniverse(annotation, genes, MappingProxyType(dict(set_sizes)))


def _test_group(
    group: str,
    hits: Sequence[str],
    universe: EnrichmentUniverse,
    annotation: AnnotationTable,
    min_overlap: int,
) -> Tuple[List[EnrichmentRow], Counter]:
    skipped: Counter = Counter()
    annotated = [
        g for g in dict.fromkeys(hits)
        if g in universe.genes and annotation.sets_for(g)
    ]
    k = len(annotated)
    if k == 0:
        logger.warning(f"Group '{group}': no annotated hits, skipped")
        skipped["no_annotated_hits"] += 1
        return [], skipped

    members: Dict[str, List[str]] = {}
    for gene in annotated:
        for gene_set in annotation.sets_for(gene):
            members.setdefault(gene_set, []).append(gene)

    rows = []
    for gene_set in sorted(members):
        set_hits = members[gene_set]
        q = len(set_hits)
        if q < min_overlap:
            skipped["below_min_overlap"] += 1
            continue
        m = universe.set_sizes.get(gene_set, 0)
        if 0 < m < q:
            # Hit annotation disagrees with the annotation the universe was built from
            logger.warning(f"Group '{group}', set '{gene_set}': {q} hits but only {m} members in the universe")
            skipped["set_size_mismatch"] += 1
            continue
        try:
            p_value = hypergeometric_test(q, m, k, universe.size)
        except DegenerateHypergeometricParameters as e:
            logger.warning(f"Group '{group}', set '{gene_set}': {e}")
            skipped["degenerate"] += 1
            continue
        rows.append(EnrichmentRow(
            group=group,
            gene_set=gene_set,
            hits_in_set=q,
            set_size=m,
            group_hits=k,
            universe_size=universe.size,
            p_value=p_value,
            hit_genes=tuple(sorted(set_hits)),
        ))
    return rows, skipped


def enrichment_test(
    universe: Optional[EnrichmentUniverse],
    hits_by_group: Mapping[str, Sequence[str]],
    annotation: Optional[AnnotationTable] = None,
    min_overlap: int = 1,
    max_workers: Optional[int] = None,
) -> EnrichmentResult:
    """
    Run ORA for every group against every gene set hit by it.

    For each group, k counts distinct hits that have any annotation in the
    universe; unannotated hits are left out of both q and k. Only gene sets
    with at least ``min_overlap`` hits are tested. Pairs that cannot be tested
    (m = 0, or more hits in the set than the universe holds when a separate
    ``annotation`` is given) are skipped and counted in the report.

    Args:
        universe: Precomputed universe (built from ``annotation`` if None)
        hits_by_group: Group name -> hit genes
        annotation: Gene -> sets used for hit membership; defaults to the
            universe's own annotation
        min_overlap: Minimum q for a pair to be tested
        max_workers: Test groups in a thread pool of this size

    Returns:
        EnrichmentResult with raw p-values, sorted by p-value; call
        adjust_pvalues() for corrected values
    """
    if universe is None:
        if annotation is None:
            raise ValueError("Either a universe or an annotation is required")
        universe = build_universe(annotation)
    annotation = universe.annotation if annotation is None else annotation.restrict(universe.genes)

    groups = list(hits_by_group.items())
    logger.info(
        f"Running ORA: {len(groups)} groups, {len(universe.set_sizes)} gene sets, "
        f"universe={universe.size}"
    )

    def run(item):
        group, hits = item
        return _test_group(str(group), list(hits), universe, annotation, min_overlap)

    if max_workers and max_workers > 1 and len(groups) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            outcomes = list(executor.map(run, groups))
    else:
        outcomes = [run(item) for item in groups]

    rows: List[EnrichmentRow] = []
    skipped: Counter = Counter()
    for group_rows, group_skipped in outcomes:
        rows.extend(group_rows)
        skipped.update(group_skipped)

    rows.sort(key=lambda r: (r.p_value, r.group, r.gene_set))
    report = StageReport(
        stage="enrichment_test",
        input_rows=len(groups),
        output_rows=len(rows),
        dropped_rows=sum(skipped.values()),
        reasons=dict(skipped),
        details={"universe_size": universe.size, "min_overlap": min_overlap},
    )
    logger.info(f"ORA tested {len(rows)} (group, gene set) pairs")
    return EnrichmentResult(tuple(rows), None, False, (report,))


def adjust_pvalues(results: EnrichmentResult, method: str = "fdr_bh", per_group: bool = False) -> EnrichmentResult:
    """
    Multiple-testing correction of an EnrichmentResult.

    Corrects jointly over the whole table, or within each group when
    ``per_group`` is set. The adjusted values do not depend on row order.
    Rows come back sorted by adjusted p-value, then p-value, group, gene set.
    """
    rows = list(results.rows)
    adjusted: List[Optional[float]] = [None] * len(rows)

    if per_group:
        partitions: Dict[str, List[int]] = {}
        for i, row in enumerate(rows):
            partitions.setdefault(row.group, []).append(i)
        index_sets = list(partitions.values())
    else:
        index_sets = [list(range(len(rows)))]

    for indices in index_sets:
        values = fdr_correction([rows[i].p_value for i in indices], method=method)
        for i, value in zip(indices, values):
            adjusted[i] = value

    out = [replace(row, p_adjusted=value) for row, value in zip(rows, adjusted)]
    out.sort(key=lambda r: (r.p_adjusted, r.p_value, r.group, r.gene_set))

    method_name = FDR_ALIASES.get(method.lower(), method)
    report = StageReport(
        stage="adjust_pvalues",
        input_rows=len(rows),
        output_rows=len(out),
        details={"method": method_name, "per_group": per_group},
    )
    return EnrichmentResult(tuple(out), method_name, per_group, results.reports + (report,))


def hits_from_aggregate(
    result: AggregateResult,
    group_by: str = "source",
    entity: str = "ligand",
    top_n: Optional[int] = None,
    max_score: Optional[float] = None,
    separator: str = DEFAULT_SEPARATOR,
) -> Dict[str, List[str]]:
    """
    Hit genes per group from a consensus ranking.

    Rows are walked in consensus order; complexes contribute every subunit.

    Args:
        result: AggregateResult
        group_by: Join-key field partitioning the hits (e.g. 'source')
        entity: 'ligand', 'receptor' or 'both'
        top_n: Keep only the first top_n interactions of each group
        max_score: Keep interactions with consensus score <= max_score
    """
    fields = ("ligand", "receptor") if entity == "both" else (entity,)
    for name in fields + (group_by,):
        if name not in result.join_key:
            raise ValueError(f"'{name}' is not part of the join key {result.join_key}")

    hits: Dict[str, Dict[str, None]] = {}
    taken: Counter = Counter()
    for row in result.rows:
        if max_score is not None and row.consensus > max_score:
            continue
        group = result.value(row, group_by)
        if top_n is not None and taken[group] >= top_n:
            continue
        taken[group] += 1
        genes = hits.setdefault(group, {})
        for name in fields:
            for gene in Entity.parse(result.value(row, name), separator).subunits:
                genes.setdefault(gene, None)
    return {group: list(genes) for group, genes in hits.items()}
