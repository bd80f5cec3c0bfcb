"""
Complex expansion and recombination

decomplexify() explodes every interaction into the Cartesian product of its
ligand and receptor subunits, tagging each atomic row with the complex-level
parent. recomplexify() groups scored atomic rows back by that tag.
"""

import logging
import math
from collections import Counter
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.stats import gmean

from .models import (
    DEFAULT_SEPARATOR,
    Entity,
    Interaction,
    ResourceRow,
    ResourceTable,
    coerce_resource,
)
from .repro import StageReport

logger = logging.getLogger("LRConsensus.Complexes")


class AggregationPolicy(Enum):
    """How subunit-level scores are combined into one complex-level score."""

    MIN = "min"
    MAX = "max"
    MEAN = "mean"
    MEDIAN = "median"
    GMEAN = "gmean"  # Geometric mean; all scores must be positive


_POLICY_FUNCTIONS: Dict[AggregationPolicy, Callable[[np.ndarray], float]] = {
    AggregationPolicy.MIN: np.min,
    AggregationPolicy.MAX: np.max,
    AggregationPolicy.MEAN: np.mean,
    AggregationPolicy.MEDIAN: np.median,
    AggregationPolicy.GMEAN: gmean,
}


def decomplexify(resource: Any, separator: str = DEFAULT_SEPARATOR) -> ResourceTable:
    """
    Expand complexes into atomic ligand/receptor pairs.

    Each input row yields len(ligand subunits) x len(receptor subunits) rows,
    ligand subunits varying slowest. Every output row carries the complex-level
    interaction as ``parent`` and the input row position as ``parent_index``;
    single-gene interactions pass through as a one-row product tagged with
    themselves. Rows that are already atomic and tagged keep their tag.

    Args:
        resource: ResourceTable, DataFrame or iterable of record dicts
        separator: Complex separator used when parsing strings

    Returns:
        New ResourceTable of atomic rows
    """
    table = coerce_resource(resource, separator)

    rows: List[ResourceRow] = []
    for index, row in enumerate(table.rows):
        if row.parent is not None and not row.interaction.is_complex:
            rows.append(row)
            continue
        parent = row.interaction
        for ligand in row.ligand.subunits:
            for receptor in row.receptor.subunits:
                rows.append(ResourceRow(
                    Interaction(Entity((ligand,)), Entity((receptor,))),
                    row.metadata,
                    parent,
                    index,
                ))

    n_complex = sum(1 for row in table.rows if row.interaction.is_complex)
    report = StageReport(
        stage="decomplexify",
        input_rows=len(table),
        output_rows=len(rows),
        details={"complex_rows": n_complex},
    )
    logger.info(
        f"Decomplexified {len(table)} interactions ({n_complex} with complexes) "
        f"into {len(rows)} atomic pairs"
    )
    return table.derive(rows, report)


def recomplexify(
    scored_atomic_rows: Any,
    policy: Union[str, AggregationPolicy] = AggregationPolicy.MIN,
    score_key: str = "score",
    group_keys: Sequence[str] = (),
    require_all_subunits: bool = False,
    resource: Optional[ResourceTable] = None,
    separator: str = DEFAULT_SEPARATOR,
) -> ResourceTable:
    """
    Collapse scored atomic rows back to one row per complex-level interaction.

    Rows are grouped by their parent tag plus the metadata values named in
    ``group_keys`` (e.g. source/target cell groups), and the scores in
    ``score_key`` are combined with ``policy``. Output order follows the first
    appearance of each group. Atomic rows without a usable score are discarded
    first; a parent left with no rows is dropped, not raised.

    Args:
        scored_atomic_rows: Output of decomplexify() with a score column added
        policy: AggregationPolicy or its string value
        score_key: Metadata column holding the subunit-level score
        group_keys: Extra metadata columns that partition a parent
        require_all_subunits: Drop a group unless every subunit pair of the
            parent complex is present
        resource: Optional complex-level table; parents in it that have no
            scored rows are counted as dropped
        separator: Complex separator used when parsing strings

    Returns:
        New ResourceTable of complex-level rows with the combined score and
        an ``n_subunit_pairs`` column
    """
    policy = AggregationPolicy(policy)
    combine = _POLICY_FUNCTIONS[policy]
    table = coerce_resource(scored_atomic_rows, separator)

    groups: Dict[Tuple[Interaction, Tuple[Any, ...]], List[Tuple[ResourceRow, float]]] = {}
    reasons: Counter = Counter()

    for row in table.rows:
        parent = row.parent if row.parent is not None else row.interaction
        score = _as_score(row.get(score_key))
        if score is None:
            reasons["missing_score"] += 1
            continue
        if policy is AggregationPolicy.GMEAN and score <= 0:
            reasons["non_positive_score"] += 1
            continue
        key = (parent, tuple(row.get(k) for k in group_keys))
        groups.setdefault(key, []).append((row, score))

    out_rows: List[ResourceRow] = []
    for (parent, _), members in groups.items():
        if require_all_subunits:
            expected = len(parent.ligand.subunits) * len(parent.receptor.subunits)
            present = {row.interaction for row, _ in members}
            if len(present) < expected:
                reasons["incomplete_complex"] += 1
                logger.debug(f"Dropping {parent}: {len(present)}/{expected} subunit pairs scored")
                continue
        scores = np.array([s for _, s in members], dtype=float)
        first = members[0][0]
        metadata = dict(first.metadata)
        metadata[score_key] = float(combine(scores))
        metadata["n_subunit_pairs"] = len(members)
        out_rows.append(ResourceRow(parent, metadata))

    if resource is not None:
        scored_parents = {parent for parent, _ in groups}
        unscored = sum(1 for row in resource.rows if row.interaction not in scored_parents)
        if unscored:
            reasons["no_surviving_subunits"] += unscored

    dropped_groups = reasons.get("incomplete_complex", 0) + reasons.get("no_surviving_subunits", 0)
    report = StageReport(
        stage="recomplexify",
        input_rows=len(table),
        output_rows=len(out_rows),
        dropped_rows=dropped_groups + reasons.get("missing_score", 0) + reasons.get("non_positive_score", 0),
        reasons=dict(reasons),
        details={"policy": policy.value, "score_key": score_key},
    )
    if report.dropped_rows:
        logger.warning(report.summary())
    else:
        logger.info(report.summary())
    return table.derive(out_rows, report)


def _as_score(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(score):
        return None
    return score
