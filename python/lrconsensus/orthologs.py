"""
Cross-species conversion of L-R resources

Rewrites every gene symbol of a resource through a SymbolDictionary:
- Unmapped symbols drop the row (counted, never fatal)
- One-to-one symbols are substituted
- One-to-many symbols expand the row into every combination

Complex structure is preserved: a converted complex keeps the subunit order of
the source complex and the same separator convention.
"""

import itertools
import logging
from collections import Counter
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import UnmappedSymbol
from .models import (
    DEFAULT_SEPARATOR,
    Entity,
    Interaction,
    ResourceRow,
    ResourceTable,
    SymbolDictionary,
    coerce_resource,
)
from .repro import StageReport

logger = logging.getLogger("LRConsensus.Orthologs")


# Supported species configuration
SUPPORTED_SPECIES = {
    'human': {
        'scientific_name': 'Homo sapiens',
        'taxon_id': 9606,
        'common_aliases': ['human', 'hsa', 'homo sapiens', 'h.sapiens', '9606'],
    },
    'mouse': {
        'scientific_name': 'Mus musculus',
        'taxon_id': 10090,
        'common_aliases': ['mouse', 'mmu', 'mus musculus', 'm.musculus', '10090'],
    },
    'rat': {
        'scientific_name': 'Rattus norvegicus',
        'taxon_id': 10116,
        'common_aliases': ['rat', 'rno', 'rattus norvegicus', 'r.norvegicus', '10116'],
    },
}


@dataclass(frozen=True)
class SpeciesInfo:
    """Normalized species"""
    species_key: str  # 'human', 'mouse', 'rat'
    scientific_name: str
    taxon_id: int


def validate_species(species_input) -> SpeciesInfo:
    """
    Validate and normalize a species name, alias or taxon id.

    Raises:
        ValueError: If species is not supported
    """
    species_lower = str(species_input).lower().strip()

    for species_key, config in SUPPORTED_SPECIES.items():
        if species_lower in config['common_aliases']:
            return SpeciesInfo(
                species_key=species_key,
                scientific_name=config['scientific_name'],
                taxon_id=config['taxon_id'],
            )

    raise ValueError(
        f"Unsupported species: '{species_input}'. "
        f"Supported: {list(SUPPORTED_SPECIES.keys())}"
    )


@dataclass
class OrthologMappingReport:
    """Report on ortholog conversion results"""
    input_rows: int  # As given, atomic rows when decomplexified
    output_rows: int
    dropped_rows: int
    duplicate_rows: int
    input_interactions: int  # Complex-level rows after regrouping
    dropped_interactions: int
    input_symbols: int
    mapped_symbols: int
    unmapped_count: int
    ambiguous_count: int
    unmapped_ids: List[str] = field(default_factory=list)
    ambiguous_ids: List[str] = field(default_factory=list)
    source_species: Optional[str] = None
    target_species: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


def convert_orthologs(
    resource: Any,
    dictionary: SymbolDictionary,
    max_targets: Optional[int] = None,
    source_species: Optional[str] = None,
    target_species: Optional[str] = None,
    separator: str = DEFAULT_SEPARATOR,
) -> ResourceTable:
    """
    Convert all symbols of a resource into the target species.

    Atomic rows produced by decomplexify() are first regrouped by their parent
    tag, so the output is complex-level and interchangeable with an
    unconverted resource. Ambiguous symbols expand into the Cartesian product
    of their targets (dictionary order, ligand side varying slowest); no
    target is ever picked over another. A complex survives only when all of
    its subunits map. A converted row identical to an earlier one, in both
    interaction and side columns, is kept once.

    Drops are counted in input rows: an interaction lost to an unmapped
    symbol counts every atomic row it was expanded into. Duplicates count
    in converted rows and are part of ``dropped_rows`` too.

    Args:
        resource: ResourceTable, DataFrame or iterable of record dicts
        dictionary: Source -> target symbol relation
        max_targets: Treat symbols with more targets than this as unmapped
        source_species: Optional species of the input symbols
        target_species: Optional species of the output symbols
        separator: Complex separator used when parsing strings

    Returns:
        New ResourceTable whose last report holds the OrthologMappingReport
        under details["mapping"]

    Raises:
        ValueError: unsupported species or identical source/target species
    """
    source_species = source_species or dictionary.source_species
    target_species = target_species or dictionary.target_species
    source_key = validate_species(source_species).species_key if source_species else None
    target_key = validate_species(target_species).species_key if target_species else None
    if source_key and target_key and source_key == target_key:
        raise ValueError(f"Source and target species are both '{source_key}'")

    table = coerce_resource(resource, separator)
    complex_rows = _regroup_by_parent(table)

    symbol_targets: Dict[str, Tuple[str, ...]] = {}
    unmapped: Dict[str, None] = {}
    ambiguous: Dict[str, None] = {}

    def targets_for(symbol: str) -> Tuple[str, ...]:
        if symbol not in symbol_targets:
            try:
                targets = dictionary.lookup_strict(symbol)
                if max_targets is not None and len(targets) > max_targets:
                    logger.debug(f"'{symbol}' has {len(targets)} targets (> {max_targets})")
                    raise UnmappedSymbol(symbol)
            except UnmappedSymbol:
                targets = ()
                unmapped.setdefault(symbol, None)
            if len(targets) > 1:
                ambiguous.setdefault(symbol, None)
            symbol_targets[symbol] = targets
        return symbol_targets[symbol]

    out_rows: List[ResourceRow] = []
    seen: set = set()
    reasons: Counter = Counter()
    dropped_interactions = 0

    for row, n_input in complex_rows:
        ligands = _convert_entity(row.ligand, targets_for)
        receptors = _convert_entity(row.receptor, targets_for)
        if not ligands or not receptors:
            # Every input row of the interaction is lost, atomic or not
            reasons["unmapped_symbol"] += n_input
            dropped_interactions += 1
            continue
        for ligand, receptor in itertools.product(ligands, receptors):
            interaction = Interaction(ligand, receptor)
            key = (interaction, _metadata_key(row.metadata))
            if key in seen:
                reasons["duplicate"] += 1
                continue
            seen.add(key)
            out_rows.append(ResourceRow(interaction, row.metadata))

    dropped_rows = reasons["unmapped_symbol"] + reasons["duplicate"]
    mapping_report = OrthologMappingReport(
        input_rows=len(table),
        output_rows=len(out_rows),
        dropped_rows=dropped_rows,
        duplicate_rows=reasons["duplicate"],
        input_interactions=len(complex_rows),
        dropped_interactions=dropped_interactions,
        input_symbols=len(symbol_targets),
        mapped_symbols=len(symbol_targets) - len(unmapped),
        unmapped_count=len(unmapped),
        ambiguous_count=len(ambiguous),
        unmapped_ids=list(unmapped)[:10],
        ambiguous_ids=list(ambiguous)[:10],
        source_species=source_key,
        target_species=target_key,
    )
    report = StageReport(
        stage="convert_orthologs",
        input_rows=len(table),
        output_rows=len(out_rows),
        dropped_rows=dropped_rows,
        reasons=dict(reasons),
        details={"mapping": mapping_report.to_dict()},
    )

    if mapping_report.unmapped_count:
        logger.warning(
            f"{mapping_report.unmapped_count} symbols without ortholog; "
            f"dropped {dropped_interactions}/{len(complex_rows)} interactions "
            f"({reasons['unmapped_symbol']} input rows). "
            f"First few: {', '.join(mapping_report.unmapped_ids[:5])}"
        )
    if reasons["duplicate"]:
        logger.warning(f"{reasons['duplicate']} converted rows duplicated an earlier row and were dropped")
    logger.info(
        f"Converted {len(complex_rows)} interactions into {len(out_rows)} "
        f"({mapping_report.ambiguous_count} ambiguous symbols expanded)"
    )
    return table.derive(out_rows, report)


def _convert_entity(entity: Entity, targets_for) -> List[Entity]:
    """All target-species versions of an entity; empty if any subunit is unmapped"""
    options = [targets_for(symbol) for symbol in entity.subunits]
    if any(not targets for targets in options):
        return []
    return [Entity(combo) for combo in itertools.product(*options)]


def _metadata_key(metadata) -> Tuple[Tuple[str, str], ...]:
    return tuple(sorted((str(k), repr(v)) for k, v in metadata.items()))


def _regroup_by_parent(table: ResourceTable) -> List[Tuple[ResourceRow, int]]:
    """Complex-level rows, each with the number of input rows it stands for"""
    rows: Dict[Any, List] = {}
    for position, row in enumerate(table.rows):
        if row.parent is None:
            rows[("row", position)] = [row, 1]
            continue
        key = (row.parent, row.parent_index)
        if key in rows:
            rows[key][1] += 1
            continue
        rows[key] = [ResourceRow(row.parent, row.metadata), 1]
    return [(row, count) for row, count in rows.values()]
