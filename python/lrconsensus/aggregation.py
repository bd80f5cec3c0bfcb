"""
Consensus ranking across L-R scoring methods

Each method's scores are turned into within-method percentile ranks
(rank / n, best close to 0, worst = 1), outer-joined on a join key and
combined into one consensus score per interaction. Lower is stronger.

Rules:
- rra: robust rank aggregation. For the sorted ranks r(1) <= ... <= r(N) the
  j-th order statistic of N uniform ranks is Beta(j, N - j + 1); rho is the
  smallest of those CDFs, Bonferroni-corrected by N and clipped at 1.
- gmean: geometric mean of normalized ranks
- mean: arithmetic mean of normalized ranks
"""

import logging
import math
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy.stats import beta, gmean, rankdata

from .errors import EmptyJoinResult, MissingColumnsError
from .models import DEFAULT_SEPARATOR, Entity
from .repro import StageReport

logger = logging.getLogger("LRConsensus.Aggregation")

DEFAULT_JOIN_KEY: Tuple[str, ...] = ("source", "target", "ligand", "receptor")


class AggregationRule(Enum):
    """How normalized per-method ranks become one consensus score."""

    RRA = "rra"
    GMEAN = "gmean"
    MEAN = "mean"


class MissingPolicy(Enum):
    """What happens to an interaction missing from some methods."""

    WORST = "worst"  # Method's worst observed rank
    DROP = "drop"  # Inner join


@dataclass(frozen=True)
class ScoredInteraction:
    key: Tuple[str, ...]
    score: float


@dataclass(frozen=True)
class RankedScoreList:
    """
    Scores of one method.

    ``ascending=True`` means lower scores are stronger evidence (ranks,
    p-values); set it to False for magnitudes where higher is stronger.
    """

    method: str
    entries: Tuple[ScoredInteraction, ...]
    join_key: Tuple[str, ...] = DEFAULT_JOIN_KEY
    ascending: bool = True

    def __post_init__(self):
        object.__setattr__(self, "entries", tuple(self.entries))
        object.__setattr__(self, "join_key", tuple(self.join_key))
        for entry in self.entries:
            if len(entry.key) != len(self.join_key):
                raise ValueError(
                    f"{self.method}: key {entry.key} does not match join key {self.join_key}"
                )

    def __len__(self) -> int:
        return len(self.entries)

    @classmethod
    def from_records(
        cls,
        method: str,
        records: Iterable[Mapping[str, Any]],
        score_key: str = "score",
        join_key: Sequence[str] = DEFAULT_JOIN_KEY,
        ascending: bool = True,
        separator: str = DEFAULT_SEPARATOR,
    ) -> "RankedScoreList":
        """
        Build from record dicts (or ResourceRows' metadata merged with their
        ligand/receptor). Entity values are written with ``separator``.
        """
        join_key = tuple(join_key)
        entries = []
        for record in records:
            missing = [k for k in join_key + (score_key,) if k not in record]
            if missing:
                raise MissingColumnsError(missing, f"{method} scores")
            key = tuple(_key_value(record[k], separator) for k in join_key)
            entries.append(ScoredInteraction(key, _to_float(record[score_key])))
        return cls(method, tuple(entries), join_key, ascending)

    @classmethod
    def from_dataframe(
        cls,
        method: str,
        df: pd.DataFrame,
        score_col: str = "score",
        join_key: Sequence[str] = DEFAULT_JOIN_KEY,
        ascending: bool = True,
    ) -> "RankedScoreList":
        missing = set(join_key) | {score_col}
        missing -= set(df.columns)
        if missing:
            raise MissingColumnsError(missing, f"{method} scores")
        return cls.from_records(
            method, df.to_dict(orient="records"), score_col, join_key, ascending
        )

    @classmethod
    def from_resource(
        cls,
        method: str,
        resource,
        score_key: str = "score",
        join_key: Sequence[str] = DEFAULT_JOIN_KEY,
        ascending: bool = True,
        separator: str = DEFAULT_SEPARATOR,
    ) -> "RankedScoreList":
        """Build from a scored ResourceTable; ligand/receptor come from each row's interaction"""
        records = []
        for row in resource.rows:
            record = dict(row.metadata)
            record["ligand"] = row.ligand
            record["receptor"] = row.receptor
            records.append(record)
        return cls.from_records(method, records, score_key, join_key, ascending, separator)


@dataclass(frozen=True)
class AggregateRow:
    key: Tuple[str, ...]
    consensus: float
    ranks: Dict[str, float] = field(default_factory=dict)
    scores: Dict[str, Optional[float]] = field(default_factory=dict)


@dataclass(frozen=True)
class AggregateResult:
    """One row per unique interaction, sorted by consensus score"""

    join_key: Tuple[str, ...]
    rule: AggregationRule
    methods: Tuple[str, ...]
    rows: Tuple[AggregateRow, ...]
    reports: Tuple[StageReport, ...] = ()

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)

    def keys(self) -> List[Tuple[str, ...]]:
        return [row.key for row in self.rows]

    def value(self, row: AggregateRow, name: str) -> str:
        """Value of join-key field ``name`` on ``row``"""
        return row.key[self.join_key.index(name)]

    def to_dataframe(self) -> pd.DataFrame:
        records = []
        for row in self.rows:
            record = dict(zip(self.join_key, row.key))
            record[f"{self.rule.value}_score"] = row.consensus
            for method in self.methods:
                record[f"{method}_rank"] = row.ranks.get(method)
                record[f"{method}_score"] = row.scores.get(method)
            records.append(record)
        columns = list(self.join_key) + [f"{self.rule.value}_score"] + [
            f"{m}_{kind}" for m in self.methods for kind in ("rank", "score")
        ]
        return pd.DataFrame(records, columns=columns)


def percentile_ranks(scores: np.ndarray, ascending: bool = True) -> np.ndarray:
    """
    Within-method percentile ranks, average ties, rank / n.

    The strongest score gets 1/n (close to 0 for long lists), the weakest 1.
    The scale deliberately departs from a strict 0 = best: a zero rank would
    pin the geometric mean and the RRA Beta CDF to 0 regardless of the other
    methods. Ranks therefore lie in (0, 1], the same range accepted with
    aggregate_ranks(normalize=False).
    """
    scores = np.asarray(scores, dtype=float)
    if scores.size == 0:
        return scores
    ordered = scores if ascending else -scores
    return rankdata(ordered, method="average") / scores.size


def robust_rank_aggregate(rank_matrix: np.ndarray) -> np.ndarray:
    """
    RRA rho scores for an (interactions x methods) matrix of ranks in (0, 1].

    Returns:
        Array of Bonferroni-corrected rho values, one per interaction
    """
    rank_matrix = np.asarray(rank_matrix, dtype=float)
    if rank_matrix.ndim != 2 or rank_matrix.shape[0] == 0:
        return np.empty(0)
    n_methods = rank_matrix.shape[1]
    sorted_ranks = np.sort(rank_matrix, axis=1)
    order = np.arange(1, n_methods + 1)
    betas = beta.cdf(sorted_ranks, order, n_methods - order + 1)
    rho = betas.min(axis=1)
    return np.minimum(rho * n_methods, 1.0)


def _combine(rank_matrix: np.ndarray, rule: AggregationRule) -> np.ndarray:
    if rule is AggregationRule.RRA:
        return robust_rank_aggregate(rank_matrix)
    if rule is AggregationRule.GMEAN:
        return gmean(rank_matrix, axis=1)
    return rank_matrix.mean(axis=1)


def aggregate_ranks(
    score_lists: Sequence[RankedScoreList],
    join_key: Sequence[str] = DEFAULT_JOIN_KEY,
    rule: Union[str, AggregationRule] = AggregationRule.RRA,
    missing: Union[str, MissingPolicy] = MissingPolicy.WORST,
    normalize: bool = True,
) -> AggregateResult:
    """
    Combine several methods' scores into one consensus ranking.

    Lists are projected onto ``join_key`` (which must be a subset of each
    list's own key); duplicate keys inside one method keep their best score.
    Sorting is ascending by consensus score, ties broken by the join key.

    Args:
        score_lists: One RankedScoreList per method
        join_key: Fields identifying an interaction
        rule: AggregationRule or its string value
        missing: MissingPolicy or its string value
        normalize: If False, scores are used as already-normalized ranks in
            (0, 1] (lower is stronger)

    Returns:
        AggregateResult; an empty result triggers an EmptyJoinResult warning

    Raises:
        ValueError: no lists, duplicate method names, or out-of-range ranks
            with normalize=False
        MissingColumnsError: a list lacks a join-key field
    """
    if not score_lists:
        raise ValueError("At least one score list is required")
    rule = AggregationRule(rule)
    missing = MissingPolicy(missing)
    join_key = tuple(join_key)
    if not join_key:
        raise ValueError("Join key must name at least one field")

    methods = tuple(sl.method for sl in score_lists)
    if len(set(methods)) != len(methods):
        raise ValueError(f"Duplicate method names: {methods}")

    reasons: Dict[str, int] = {}
    per_method: Dict[str, Dict[Tuple[str, ...], Tuple[float, float]]] = {}
    all_keys: Dict[Tuple[str, ...], None] = {}
    input_rows = 0

    for sl in score_lists:
        absent = set(join_key) - set(sl.join_key)
        if absent:
            raise MissingColumnsError(absent, f"{sl.method} join key")
        positions = [sl.join_key.index(k) for k in join_key]
        input_rows += len(sl)

        best: Dict[Tuple[str, ...], float] = {}
        for entry in sl.entries:
            if math.isnan(entry.score):
                reasons["nan_score"] = reasons.get("nan_score", 0) + 1
                continue
            key = tuple(entry.key[p] for p in positions)
            if key in best:
                reasons["duplicate_key"] = reasons.get("duplicate_key", 0) + 1
                current = best[key]
                better = entry.score < current if sl.ascending else entry.score > current
                if not better:
                    continue
            best[key] = entry.score

        keys = list(best)
        raw = np.array([best[k] for k in keys], dtype=float)
        if normalize:
            norm = percentile_ranks(raw, sl.ascending)
        else:
            if raw.size and (raw.min() <= 0 or raw.max() > 1):
                raise ValueError(
                    f"{sl.method}: normalize=False requires ranks in (0, 1], "
                    f"got [{raw.min()}, {raw.max()}]"
                )
            norm = raw
        per_method[sl.method] = {k: (r, n) for k, r, n in zip(keys, raw, norm)}
        for k in keys:
            all_keys.setdefault(k, None)
        logger.debug(f"{sl.method}: {len(keys)} unique interactions")

    worst = {
        m: (max(n for _, n in values.values()) if values else 1.0)
        for m, values in per_method.items()
    }

    kept_keys: List[Tuple[str, ...]] = []
    matrix_rows: List[List[float]] = []
    for key in all_keys:
        present = [key in per_method[m] for m in methods]
        if missing is MissingPolicy.DROP and not all(present):
            reasons["missing_in_method"] = reasons.get("missing_in_method", 0) + 1
            continue
        kept_keys.append(key)
        matrix_rows.append([
            per_method[m][key][1] if key in per_method[m] else worst[m]
            for m in methods
        ])

    matrix = np.array(matrix_rows, dtype=float).reshape(len(kept_keys), len(methods))
    consensus = _combine(matrix, rule) if kept_keys else np.empty(0)

    rows = []
    for i, key in enumerate(kept_keys):
        rows.append(AggregateRow(
            key=key,
            consensus=float(consensus[i]),
            ranks={m: float(matrix[i, j]) for j, m in enumerate(methods)},
            scores={
                m: (float(per_method[m][key][0]) if key in per_method[m] else None)
                for m in methods
            },
        ))
    rows.sort(key=lambda r: (r.consensus, r.key))

    report = StageReport(
        stage="aggregate_ranks",
        input_rows=input_rows,
        output_rows=len(rows),
        dropped_rows=reasons.get("nan_score", 0) + reasons.get("missing_in_method", 0),
        reasons=reasons,
        details={"rule": rule.value, "methods": list(methods), "missing": missing.value},
    )

    if not rows:
        message = (
            f"Rank aggregation over {len(methods)} methods produced no rows; "
            f"check that join keys {join_key} are formatted the same in every list"
        )
        logger.warning(message)
        warnings.warn(message, EmptyJoinResult, stacklevel=2)
    else:
        logger.info(
            f"Aggregated {len(methods)} methods into {len(rows)} interactions ({rule.value})"
        )

    return AggregateResult(join_key, rule, methods, tuple(rows), (report,))


def _key_value(value: Any, separator: str) -> str:
    if isinstance(value, Entity):
        return value.label(separator)
    return str(value)


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float("nan")
