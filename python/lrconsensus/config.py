"""
Configuration for the LRConsensus pipeline.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Sequence, Tuple

from .aggregation import DEFAULT_JOIN_KEY, AggregationRule, MissingPolicy
from .complexes import AggregationPolicy
from .models import DEFAULT_SEPARATOR


@dataclass
class ComplexConfig:
    """Complex parsing and subunit score recombination."""

    separator: str = DEFAULT_SEPARATOR
    policy: AggregationPolicy = AggregationPolicy.MIN
    score_key: str = "score"  # Column written by atomic scorers
    require_all_subunits: bool = False

    def __post_init__(self):
        self.policy = AggregationPolicy(self.policy)


@dataclass
class OrthologConfig:
    """Cross-species conversion."""

    source_species: Optional[str] = None
    target_species: Optional[str] = None
    max_targets: Optional[int] = None  # Symbols with more targets count as unmapped


@dataclass
class AggregationConfig:
    """Consensus ranking."""

    join_key: Tuple[str, ...] = DEFAULT_JOIN_KEY
    rule: AggregationRule = AggregationRule.RRA
    missing: MissingPolicy = MissingPolicy.WORST
    normalize: bool = True

    def __post_init__(self):
        self.join_key = tuple(self.join_key)
        self.rule = AggregationRule(self.rule)
        self.missing = MissingPolicy(self.missing)


@dataclass
class EnrichmentConfig:
    """Hit selection and over-representation testing."""

    group_by: str = "source"
    entity: str = "ligand"  # 'ligand', 'receptor' or 'both'
    top_n: Optional[int] = None
    max_score: Optional[float] = 0.05
    min_overlap: int = 1
    fdr_method: str = "fdr_bh"
    per_group: bool = False  # Joint correction over the whole table by default
    max_workers: Optional[int] = None
    background: Optional[Sequence[str]] = None
    # Size filter for gene sets given as name -> genes collections
    min_set_size: int = 1
    max_set_size: Optional[int] = None

    def __post_init__(self):
        if self.entity not in ("ligand", "receptor", "both"):
            raise ValueError(f"entity must be 'ligand', 'receptor' or 'both', got '{self.entity}'")
        if self.min_overlap < 1:
            raise ValueError("min_overlap must be >= 1")


@dataclass
class PipelineConfig:
    complexes: ComplexConfig = field(default_factory=ComplexConfig)
    orthologs: OrthologConfig = field(default_factory=OrthologConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        """Plain values for metadata logging"""
        return {
            "complexes": {
                "separator": self.complexes.separator,
                "policy": self.complexes.policy.value,
                "score_key": self.complexes.score_key,
                "require_all_subunits": self.complexes.require_all_subunits,
            },
            "orthologs": {
                "source_species": self.orthologs.source_species,
                "target_species": self.orthologs.target_species,
                "max_targets": self.orthologs.max_targets,
            },
            "aggregation": {
                "join_key": list(self.aggregation.join_key),
                "rule": self.aggregation.rule.value,
                "missing": self.aggregation.missing.value,
                "normalize": self.aggregation.normalize,
            },
            "enrichment": {
                "group_by": self.enrichment.group_by,
                "entity": self.enrichment.entity,
                "top_n": self.enrichment.top_n,
                "max_score": self.enrichment.max_score,
                "min_overlap": self.enrichment.min_overlap,
                "fdr_method": self.enrichment.fdr_method,
                "per_group": self.enrichment.per_group,
                "max_workers": self.enrichment.max_workers,
                "min_set_size": self.enrichment.min_set_size,
                "max_set_size": self.enrichment.max_set_size,
            },
        }
