"""
LRConsensus: statistical core for ligand-receptor interaction analysis

This package provides:
- Complex expansion and recombination (decomplexify / recomplexify)
- Ortholog conversion of L-R resources
- Consensus rank aggregation across scoring methods
- Hypergeometric ORA with FDR correction
- Per-stage row accounting and reproducibility metadata
"""

from .errors import (
    LRConsensusError,
    UnmappedSymbol,
    MalformedComplexEncoding,
    DegenerateHypergeometricParameters,
    MissingColumnsError,
    EmptyUniverseError,
    EmptyJoinResult,
)
from .models import (
    Entity,
    Interaction,
    ResourceRow,
    ResourceTable,
    SymbolDictionary,
    AnnotationTable,
)
from .complexes import decomplexify, recomplexify, AggregationPolicy
from .orthologs import convert_orthologs, OrthologMappingReport, SUPPORTED_SPECIES
from .aggregation import (
    aggregate_ranks,
    AggregateResult,
    AggregationRule,
    MissingPolicy,
    RankedScoreList,
    ScoredInteraction,
    DEFAULT_JOIN_KEY,
)
from .ora import (
    build_universe,
    enrichment_test,
    adjust_pvalues,
    hits_from_aggregate,
    EnrichmentUniverse,
    EnrichmentResult,
)
from .annotations import annotation_from_gene_sets, annotation_stats, merge_gene_sets
from .repro import StageReport, ReproducibilityLogger, PipelineMetadata
from .config import PipelineConfig
from .pipeline import LRPipeline, PipelineOutcome

__version__ = "0.3.0"
__all__ = [
    "LRConsensusError",
    "UnmappedSymbol",
    "MalformedComplexEncoding",
    "DegenerateHypergeometricParameters",
    "MissingColumnsError",
    "EmptyUniverseError",
    "EmptyJoinResult",
    "Entity",
    "Interaction",
    "ResourceRow",
    "ResourceTable",
    "SymbolDictionary",
    "AnnotationTable",
    "decomplexify",
    "recomplexify",
    "AggregationPolicy",
    "convert_orthologs",
    "OrthologMappingReport",
    "SUPPORTED_SPECIES",
    "aggregate_ranks",
    "AggregateResult",
    "AggregationRule",
    "MissingPolicy",
    "RankedScoreList",
    "ScoredInteraction",
    "DEFAULT_JOIN_KEY",
    "build_universe",
    "enrichment_test",
    "adjust_pvalues",
    "hits_from_aggregate",
    "EnrichmentUniverse",
    "EnrichmentResult",
    "annotation_from_gene_sets",
    "annotation_stats",
    "merge_gene_sets",
    "StageReport",
    "ReproducibilityLogger",
    "PipelineMetadata",
    "PipelineConfig",
    "LRPipeline",
    "PipelineOutcome",
]
