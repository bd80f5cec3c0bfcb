"""
Data model for ligand-receptor resources

Entities are kept as subunit tuples internally. The "A_B" string form used by
L-R resources is only parsed (Entity.parse) and produced (Entity.label) at the
boundary, e.g. when building a ResourceTable from records or a DataFrame.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from .errors import MalformedComplexEncoding, MissingColumnsError, UnmappedSymbol
from .repro import StageReport

logger = logging.getLogger("LRConsensus.Models")

DEFAULT_SEPARATOR = "_"

# Extra columns written by to_dataframe for rows that carry a parent tag
LIGAND_COMPLEX_COLUMN = "ligand_complex"
RECEPTOR_COMPLEX_COLUMN = "receptor_complex"


@dataclass(frozen=True)
class Entity:
    """A gene symbol or an ordered complex of subunit symbols"""

    subunits: Tuple[str, ...]

    def __post_init__(self):
        subunits = tuple(self.subunits)
        if not subunits or any(not isinstance(s, str) or not s.strip() for s in subunits):
            raise MalformedComplexEncoding(self.subunits)
        object.__setattr__(self, "subunits", tuple(s.strip() for s in subunits))

    @classmethod
    def parse(cls, value: Any, separator: str = DEFAULT_SEPARATOR) -> "Entity":
        """
        Build an Entity from a string, a sequence of symbols or an Entity.

        Raises:
            MalformedComplexEncoding: empty input or an empty subunit
                (leading, trailing or doubled separator)
        """
        if isinstance(value, Entity):
            return value
        if isinstance(value, (tuple, list)):
            return cls(tuple(value))
        if value is None or (isinstance(value, float) and pd.isna(value)):
            raise MalformedComplexEncoding(value, separator)

        text = str(value).strip()
        if not text:
            raise MalformedComplexEncoding(value, separator)
        parts = text.split(separator)
        if any(not part.strip() for part in parts):
            raise MalformedComplexEncoding(value, separator)
        return cls(tuple(parts))

    @property
    def is_complex(self) -> bool:
        return len(self.subunits) > 1

    def label(self, separator: str = DEFAULT_SEPARATOR) -> str:
        return separator.join(self.subunits)

    def __str__(self) -> str:
        return self.label()


@dataclass(frozen=True)
class Interaction:
    """Directed ligand -> receptor pair"""

    ligand: Entity
    receptor: Entity

    @classmethod
    def of(cls, ligand: Any, receptor: Any, separator: str = DEFAULT_SEPARATOR) -> "Interaction":
        return cls(Entity.parse(ligand, separator), Entity.parse(receptor, separator))

    @property
    def is_complex(self) -> bool:
        return self.ligand.is_complex or self.receptor.is_complex

    def sort_key(self) -> Tuple[str, str]:
        return (self.ligand.label(), self.receptor.label())

    def __str__(self) -> str:
        return f"{self.ligand.label()}^{self.receptor.label()}"


@dataclass(frozen=True)
class ResourceRow:
    """
    One interaction plus its side columns.

    ``parent`` is set on rows produced by decomplexification and points at the
    complex-level interaction the row was expanded from.
    """

    interaction: Interaction
    metadata: Mapping[str, Any] = field(default_factory=dict)
    parent: Optional[Interaction] = None
    parent_index: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def ligand(self) -> Entity:
        return self.interaction.ligand

    @property
    def receptor(self) -> Entity:
        return self.interaction.receptor

    def get(self, key: str, default: Any = None) -> Any:
        return self.metadata.get(key, default)

    def replace(self, **changes) -> "ResourceRow":
        values = {
            "interaction": self.interaction,
            "metadata": self.metadata,
            "parent": self.parent,
            "parent_index": self.parent_index,
        }
        values.update(changes)
        return ResourceRow(**values)


@dataclass(frozen=True)
class ResourceTable:
    """Ordered, immutable collection of ResourceRows with the reports of the stages that built it"""

    rows: Tuple[ResourceRow, ...] = ()
    reports: Tuple[StageReport, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "rows", tuple(self.rows))
        object.__setattr__(self, "reports", tuple(self.reports))

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[ResourceRow]:
        return iter(self.rows)

    def __getitem__(self, index: int) -> ResourceRow:
        return self.rows[index]

    @property
    def interactions(self) -> List[Interaction]:
        return [row.interaction for row in self.rows]

    @property
    def has_complexes(self) -> bool:
        return any(row.interaction.is_complex for row in self.rows)

    @property
    def is_decomplexified(self) -> bool:
        return bool(self.rows) and all(row.parent is not None for row in self.rows)

    def symbols(self) -> List[str]:
        """Distinct symbols over all subunits, in first-seen order"""
        seen = {}
        for row in self.rows:
            for symbol in row.ligand.subunits + row.receptor.subunits:
                seen.setdefault(symbol, None)
        return list(seen)

    def derive(self, rows: Iterable[ResourceRow], report: Optional[StageReport] = None) -> "ResourceTable":
        """New table with ``rows``, keeping this table's reports plus ``report``"""
        reports = self.reports + ((report,) if report is not None else ())
        return ResourceTable(tuple(rows), reports)

    def assign(self, column: str, values: Union[Sequence[Any], Mapping[Any, Any], Callable[[ResourceRow], Any]]) -> "ResourceTable":
        """
        New table with a metadata column set on every row.

        ``values`` is a sequence aligned with the rows, a callable applied to
        each row, or a mapping looked up by interaction, by ligand label or by
        receptor label (first hit wins).
        """
        if callable(values):
            column_values = [values(row) for row in self.rows]
        elif isinstance(values, Mapping):
            column_values = [_lookup_row_value(values, row) for row in self.rows]
        else:
            column_values = list(values)
            if len(column_values) != len(self.rows):
                raise ValueError(
                    f"Column '{column}' has {len(column_values)} values for {len(self.rows)} rows"
                )
        rows = [
            row.replace(metadata={**row.metadata, column: value})
            for row, value in zip(self.rows, column_values)
        ]
        return ResourceTable(tuple(rows), self.reports)

    @classmethod
    def from_records(
        cls,
        records: Iterable[Mapping[str, Any]],
        ligand_key: str = "ligand",
        receptor_key: str = "receptor",
        separator: str = DEFAULT_SEPARATOR,
    ) -> "ResourceTable":
        """
        Parse records (dicts) into a ResourceTable.

        Rows whose ligand or receptor cannot be parsed are skipped and counted
        in a "parse" StageReport. Other keys become row metadata, except the
        parent columns written by to_dataframe, which restore the parent tag.
        """
        records = list(records)
        if records:
            missing = {ligand_key, receptor_key} - set().union(*(r.keys() for r in records))
            if missing:
                raise MissingColumnsError(missing, "resource records")

        rows = []
        reasons: Counter = Counter()
        reserved = {ligand_key, receptor_key, LIGAND_COMPLEX_COLUMN, RECEPTOR_COMPLEX_COLUMN}
        for record in records:
            try:
                interaction = Interaction.of(record.get(ligand_key), record.get(receptor_key), separator)
                parent = None
                if _present(record.get(LIGAND_COMPLEX_COLUMN)) and _present(record.get(RECEPTOR_COMPLEX_COLUMN)):
                    parent = Interaction.of(
                        record[LIGAND_COMPLEX_COLUMN], record[RECEPTOR_COMPLEX_COLUMN], separator
                    )
            except MalformedComplexEncoding as e:
                logger.debug(f"Skipping row: {e}")
                reasons["malformed_complex"] += 1
                continue
            metadata = {k: v for k, v in record.items() if k not in reserved}
            rows.append(ResourceRow(interaction, metadata, parent, None))

        report = StageReport(
            stage="parse",
            input_rows=len(records),
            output_rows=len(rows),
            dropped_rows=len(records) - len(rows),
            reasons=dict(reasons),
        )
        if report.dropped_rows:
            logger.warning(
                f"Skipped {report.dropped_rows}/{len(records)} rows with malformed complex encoding"
            )
        return cls(tuple(rows), (report,))

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        ligand_col: str = "ligand",
        receptor_col: str = "receptor",
        separator: str = DEFAULT_SEPARATOR,
    ) -> "ResourceTable":
        """Build a table from a DataFrame with ligand/receptor columns"""
        missing = {ligand_col, receptor_col} - set(df.columns)
        if missing:
            raise MissingColumnsError(missing, "resource DataFrame")
        return cls.from_records(
            df.to_dict(orient="records"),
            ligand_key=ligand_col,
            receptor_key=receptor_col,
            separator=separator,
        )

    def to_records(self, separator: str = DEFAULT_SEPARATOR) -> List[Dict[str, Any]]:
        records = []
        for row in self.rows:
            record = {
                "ligand": row.ligand.label(separator),
                "receptor": row.receptor.label(separator),
            }
            if row.parent is not None:
                record[LIGAND_COMPLEX_COLUMN] = row.parent.ligand.label(separator)
                record[RECEPTOR_COMPLEX_COLUMN] = row.parent.receptor.label(separator)
            record.update(row.metadata)
            records.append(record)
        return records

    def to_dataframe(self, separator: str = DEFAULT_SEPARATOR) -> pd.DataFrame:
        return pd.DataFrame(self.to_records(separator))


def coerce_resource(resource: Any, separator: str = DEFAULT_SEPARATOR) -> ResourceTable:
    """Accept a ResourceTable, a DataFrame or an iterable of record dicts"""
    if isinstance(resource, ResourceTable):
        return resource
    if isinstance(resource, pd.DataFrame):
        return ResourceTable.from_dataframe(resource, separator=separator)
    return ResourceTable.from_records(resource, separator=separator)


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, float) and pd.isna(value):
        return False
    return str(value).strip() != ""


def _lookup_row_value(values: Mapping[Any, Any], row: ResourceRow) -> Any:
    for key in (row.interaction, row.ligand.label(), row.receptor.label()):
        if key in values:
            return values[key]
    return None


class SymbolDictionary:
    """
    Immutable source symbol -> target symbols relation.

    A source symbol may map to several targets; targets keep first-seen order
    and duplicates are collapsed.
    """

    def __init__(
        self,
        mapping: Mapping[str, Union[str, Iterable[str]]],
        source_species: Optional[str] = None,
        target_species: Optional[str] = None,
    ):
        relation: Dict[str, Tuple[str, ...]] = {}
        for source, targets in mapping.items():
            if isinstance(targets, str):
                targets = [targets]
            cleaned = [str(t).strip() for t in targets if t is not None and str(t).strip()]
            relation[str(source).strip()] = tuple(dict.fromkeys(cleaned))
        self._relation = MappingProxyType(relation)
        self.source_species = source_species
        self.target_species = target_species

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[str, str]], **kwargs) -> "SymbolDictionary":
        mapping: Dict[str, List[str]] = {}
        for source, target in pairs:
            mapping.setdefault(source, []).append(target)
        return cls(mapping, **kwargs)

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        source_col: str = "source",
        target_col: str = "target",
        **kwargs,
    ) -> "SymbolDictionary":
        missing = {source_col, target_col} - set(df.columns)
        if missing:
            raise MissingColumnsError(missing, "ortholog DataFrame")
        pairs = df[[source_col, target_col]].dropna().astype(str).itertuples(index=False, name=None)
        return cls.from_pairs(pairs, **kwargs)

    def lookup(self, symbol: str) -> Tuple[str, ...]:
        """Targets for ``symbol``, empty tuple when unmapped"""
        return self._relation.get(symbol, ())

    def lookup_strict(self, symbol: str) -> Tuple[str, ...]:
        targets = self._relation.get(symbol, ())
        if not targets:
            raise UnmappedSymbol(symbol)
        return targets

    def pairs(self) -> List[Tuple[str, str]]:
        return [(s, t) for s, targets in self._relation.items() for t in targets]

    @property
    def ambiguous_symbols(self) -> List[str]:
        return [s for s, targets in self._relation.items() if len(targets) > 1]

    def __contains__(self, symbol: str) -> bool:
        return bool(self._relation.get(symbol))

    def __len__(self) -> int:
        return len(self._relation)

    def __repr__(self) -> str:
        return (
            f"SymbolDictionary({len(self)} symbols, "
            f"{self.source_species or '?'} -> {self.target_species or '?'})"
        )


class AnnotationTable:
    """Immutable gene -> gene set labels relation"""

    def __init__(self, mapping: Mapping[str, Union[str, Iterable[str]]]):
        relation: Dict[str, Tuple[str, ...]] = {}
        for gene, labels in mapping.items():
            if isinstance(labels, str):
                labels = [labels]
            cleaned = [str(l).strip() for l in labels if l is not None and str(l).strip()]
            if cleaned:
                relation[str(gene).strip()] = tuple(dict.fromkeys(cleaned))
        self._relation = MappingProxyType(relation)

    @classmethod
    def from_gene_sets(cls, gene_sets: Mapping[str, Iterable[str]]) -> "AnnotationTable":
        """Build from a gene set name -> genes mapping (GMT layout)"""
        mapping: Dict[str, List[str]] = {}
        for name, genes in gene_sets.items():
            for gene in genes:
                mapping.setdefault(gene, []).append(name)
        return cls(mapping)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame, gene_col: str = "genesymbol", set_col: str = "geneset") -> "AnnotationTable":
        missing = {gene_col, set_col} - set(df.columns)
        if missing:
            raise MissingColumnsError(missing, "annotation DataFrame")
        mapping: Dict[str, List[str]] = {}
        for gene, label in df[[gene_col, set_col]].dropna().astype(str).itertuples(index=False, name=None):
            mapping.setdefault(gene, []).append(label)
        return cls(mapping)

    def sets_for(self, gene: str) -> Tuple[str, ...]:
        return self._relation.get(gene, ())

    @property
    def genes(self) -> List[str]:
        return list(self._relation)

    def gene_sets(self) -> Dict[str, List[str]]:
        """Gene set name -> genes"""
        sets: Dict[str, List[str]] = {}
        for gene, labels in self._relation.items():
            for label in labels:
                sets.setdefault(label, []).append(gene)
        return sets

    def restrict(self, genes: Iterable[str]) -> "AnnotationTable":
        keep = set(genes)
        return AnnotationTable({g: s for g, s in self._relation.items() if g in keep})

    def __contains__(self, gene: str) -> bool:
        return gene in self._relation

    def __len__(self) -> int:
        return len(self._relation)

    def __repr__(self) -> str:
        return f"AnnotationTable({len(self)} genes)"
