"""
LRConsensus Pipeline

Main orchestrator that ties together all pipeline components.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from .annotations import annotation_from_gene_sets, annotation_stats, merge_gene_sets
from .aggregation import AggregateResult, RankedScoreList, aggregate_ranks
from .complexes import decomplexify, recomplexify
from .config import PipelineConfig
from .models import AnnotationTable, ResourceTable, SymbolDictionary, coerce_resource
from .ora import EnrichmentResult, adjust_pvalues, build_universe, enrichment_test, hits_from_aggregate
from .orthologs import convert_orthologs
from .repro import PipelineMetadata, ReproducibilityLogger, StageReport, summarize_reports

logger = logging.getLogger("LRConsensus.Pipeline")

# A scoring method: receives the atomic resource, returns its scores
Scorer = Callable[[ResourceTable], RankedScoreList]

# A subunit-level scoring method: returns the atomic rows with a score column,
# collapsed to complexes with the configured policy before aggregation
AtomicScorer = Callable[[ResourceTable], ResourceTable]

GeneSets = Mapping[str, Sequence[str]]


@dataclass
class PipelineOutcome:
    """Every intermediate table of a run, plus its metadata"""

    resource: ResourceTable  # Complex-level, converted if a dictionary was given
    atomic: ResourceTable
    aggregate: AggregateResult
    enrichment: Optional[EnrichmentResult]
    metadata: PipelineMetadata
    warnings: List[str] = field(default_factory=list)
    collapse_reports: List[StageReport] = field(default_factory=list)

    @property
    def reports(self) -> List[StageReport]:
        reports = list(self.atomic.reports) + self.collapse_reports + list(self.aggregate.reports)
        if self.enrichment is not None:
            reports += list(self.enrichment.reports)
        return reports

    @property
    def dropped_by_stage(self) -> Dict[str, int]:
        return summarize_reports(self.reports)


class LRPipeline:
    """
    Complete L-R consensus pipeline.

    Orchestrates:
    1. Complex expansion
    2. Ortholog conversion (optional)
    3. Scoring (external scorers and/or precomputed score lists)
    4. Rank aggregation
    5. Over-representation analysis (optional)
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        self.repro_logger = ReproducibilityLogger()

    def run(
        self,
        resource: Any,
        scorers: Sequence[Scorer] = (),
        score_lists: Sequence[RankedScoreList] = (),
        atomic_scorers: Optional[Mapping[str, AtomicScorer]] = None,
        dictionary: Optional[SymbolDictionary] = None,
        annotation: Optional[Union[AnnotationTable, GeneSets, Sequence[GeneSets]]] = None,
    ) -> PipelineOutcome:
        """
        Run the pipeline on an in-memory resource.

        Args:
            resource: ResourceTable, DataFrame or record dicts
            scorers: Callables scoring the atomic resource
            score_lists: Precomputed score lists
            atomic_scorers: Method name -> callable scoring atomic rows; its
                scores are recombined per complex before aggregation
            dictionary: Ortholog dictionary; conversion is skipped if None
            annotation: AnnotationTable, gene set name -> genes, or a list of
                such collections to merge; enrichment is skipped if None

        Returns:
            PipelineOutcome
        """
        cfg = self.config
        separator = cfg.complexes.separator
        warnings: List[str] = []
        self.repro_logger = ReproducibilityLogger()
        for stage, params in cfg.to_dict().items():
            self.repro_logger.set_parameters(stage, **params)

        # Step 1: Complex expansion
        logger.info("Step 1/5: Expanding complexes")
        table = coerce_resource(resource, separator)
        self.repro_logger.set_input_hash("resource", (str(i) for i in table.interactions))
        atomic = decomplexify(table, separator)

        # Step 2: Ortholog conversion
        if dictionary is not None:
            logger.info("Step 2/5: Converting orthologs")
            self.repro_logger.set_input_hash("dictionary", (f"{s}->{t}" for s, t in dictionary.pairs()))
            table = convert_orthologs(
                atomic,
                dictionary,
                max_targets=cfg.orthologs.max_targets,
                source_species=cfg.orthologs.source_species,
                target_species=cfg.orthologs.target_species,
                separator=separator,
            )
            mapping = table.reports[-1].details["mapping"]
            if mapping["unmapped_count"]:
                warnings.append(
                    f"{mapping['unmapped_count']} symbols had no ortholog; "
                    f"{mapping['dropped_rows']} rows dropped"
                )
            atomic = decomplexify(table, separator)
        else:
            logger.info("Step 2/5: No ortholog dictionary, skipping conversion")
            table = ResourceTable(table.rows, atomic.reports)

        # Step 3: Scoring
        atomic_scorers = dict(atomic_scorers or {})
        logger.info(f"Step 3/5: Scoring with {len(scorers) + len(atomic_scorers)} methods")
        lists = list(score_lists) + [scorer(atomic) for scorer in scorers]
        collapse_reports: List[StageReport] = []
        for method, atomic_scorer in atomic_scorers.items():
            collapsed = self._collapse(method, atomic_scorer(atomic), table)
            collapse_reports.append(collapsed.reports[-1])
            lists.append(RankedScoreList.from_resource(
                method,
                collapsed,
                score_key=cfg.complexes.score_key,
                join_key=cfg.aggregation.join_key,
                separator=separator,
            ))
        if not lists:
            raise ValueError("No scorers or score lists given")

        # Step 4: Rank aggregation
        logger.info("Step 4/5: Aggregating ranks")
        agg_cfg = cfg.aggregation
        aggregate = aggregate_ranks(
            lists,
            join_key=agg_cfg.join_key,
            rule=agg_cfg.rule,
            missing=agg_cfg.missing,
            normalize=agg_cfg.normalize,
        )
        if not len(aggregate):
            warnings.append("Rank aggregation returned no interactions")

        # Step 5: Enrichment
        enrichment = None
        if annotation is not None:
            logger.info("Step 5/5: Over-representation analysis")
            enrichment = self._run_enrichment(aggregate, annotation, atomic, warnings)
        else:
            logger.info("Step 5/5: No annotation, skipping enrichment")

        outcome = PipelineOutcome(
            table, atomic, aggregate, enrichment, self.repro_logger.get_metadata(), warnings, collapse_reports
        )
        self.repro_logger.add_stage_reports(outcome.reports)
        self.repro_logger.set_output_summary(
            interactions=len(table),
            atomic_interactions=len(atomic),
            aggregated=len(aggregate),
            enrichment_tests=len(enrichment) if enrichment is not None else 0,
            significant_sets=len(enrichment.significant()) if enrichment is not None else 0,
            dropped_by_stage=outcome.dropped_by_stage,
        )
        for w in warnings:
            self.repro_logger.add_warning(w)
        return outcome

    def _collapse(self, method: str, scored: ResourceTable, resource: ResourceTable) -> ResourceTable:
        """Recombine one method's subunit scores into complex-level scores"""
        cx = self.config.complexes
        # Rows of different cell groups never share a complex score
        group_keys = tuple(k for k in self.config.aggregation.join_key if k not in ("ligand", "receptor"))
        collapsed = recomplexify(
            scored,
            policy=cx.policy,
            score_key=cx.score_key,
            group_keys=group_keys,
            require_all_subunits=cx.require_all_subunits,
            resource=resource,
            separator=cx.separator,
        )
        logger.info(f"{method}: {len(scored)} subunit scores -> {len(collapsed)} complex scores ({cx.policy.value})")
        return collapsed

    def _run_enrichment(
        self,
        aggregate: AggregateResult,
        annotation: Any,
        atomic: ResourceTable,
        warnings: List[str],
    ) -> EnrichmentResult:
        enr = self.config.enrichment
        annotation = self._coerce_annotation(annotation, warnings)
        stats = annotation_stats(annotation)
        logger.info(
            f"Annotation: {stats['unique_genes']} genes in {stats['total_sets']} sets "
            f"({stats['multi_set_genes']} genes in several sets)"
        )
        self.repro_logger.set_parameters("annotation", **stats)
        self.repro_logger.set_input_hash(
            "annotation", (f"{g}:{s}" for g in annotation.genes for s in annotation.sets_for(g))
        )
        # Resource genes are the default background
        background = enr.background if enr.background is not None else atomic.symbols()
        universe = build_universe(annotation, background)

        hits = hits_from_aggregate(
            aggregate,
            group_by=enr.group_by,
            entity=enr.entity,
            top_n=enr.top_n,
            max_score=enr.max_score,
            separator=self.config.complexes.separator,
        )
        if not hits:
            warnings.append("No interactions passed the hit filter")

        raw = enrichment_test(
            universe,
            hits,
            min_overlap=enr.min_overlap,
            max_workers=enr.max_workers,
        )
        return adjust_pvalues(raw, method=enr.fdr_method, per_group=enr.per_group)

    def _coerce_annotation(self, annotation: Any, warnings: List[str]) -> AnnotationTable:
        """Gene set collections are merged, validated and size-filtered"""
        if isinstance(annotation, AnnotationTable):
            return annotation
        sources = [annotation] if isinstance(annotation, Mapping) else list(annotation)
        enr = self.config.enrichment
        table, set_warnings = annotation_from_gene_sets(
            merge_gene_sets(sources),
            min_size=enr.min_set_size,
            max_size=enr.max_set_size,
        )
        if set_warnings:
            logger.warning(f"{len(set_warnings)} gene set issues, first: {set_warnings[0]}")
            warnings.append(f"{len(set_warnings)} gene set issues while building the annotation")
        return table
