"""
Unit tests for ortholog conversion.
"""

import pytest

from lrconsensus.complexes import decomplexify
from lrconsensus.models import ResourceTable, SymbolDictionary
from lrconsensus.orthologs import convert_orthologs, validate_species


def _pairs(table):
    return [(r.ligand.label(), r.receptor.label()) for r in table]


def _resource(*pairs):
    return ResourceTable.from_records([{"ligand": l, "receptor": r} for l, r in pairs])


DICTIONARY = SymbolDictionary({
    "TP53": ["Trp53"],
    "EGFR": ["Egfr1", "Egfr2"],
    "TGFB1": ["Tgfb1"],
    "TGFBR1": ["Tgfbr1"],
    "TGFBR2": ["Tgfbr2"],
    "ITGB1": ["Itgb1a", "Itgb1b"],
    "ITGA1": ["Itga1"],
})


class TestConvertOrthologs:
    """Test symbol substitution and ambiguity expansion"""

    def test_one_to_one(self):
        """Unique mappings are substituted directly"""
        converted = convert_orthologs(_resource(("TGFB1", "TGFBR1")), DICTIONARY)

        assert _pairs(converted) == [("Tgfb1", "Tgfbr1")]

    def test_ambiguity_expands(self):
        """(EGFR, TP53) becomes (Egfr1, Trp53) and (Egfr2, Trp53)"""
        converted = convert_orthologs(_resource(("EGFR", "TP53")), DICTIONARY)

        assert _pairs(converted) == [("Egfr1", "Trp53"), ("Egfr2", "Trp53")]
        mapping = converted.reports[-1].details["mapping"]
        assert mapping["ambiguous_ids"] == ["EGFR"]

    def test_unmapped_rows_dropped(self):
        """Rows with FOO are gone and the drop count equals their number"""
        resource = _resource(("FOO", "TP53"), ("TGFB1", "FOO"), ("TGFB1", "TGFBR2"))

        converted = convert_orthologs(resource, DICTIONARY)

        assert _pairs(converted) == [("Tgfb1", "Tgfbr2")]
        report = converted.reports[-1]
        assert report.dropped_rows == 2
        assert report.details["mapping"]["unmapped_ids"] == ["FOO"]

    def test_complex_structure_preserved(self):
        """Decomplexified input comes back as converted complexes in source order"""
        atomic = decomplexify(_resource(("TGFB1", "TGFBR1_TGFBR2")))

        converted = convert_orthologs(atomic, DICTIONARY)

        assert _pairs(converted) == [("Tgfb1", "Tgfbr1_Tgfbr2")]
        assert converted[0].parent is None

    def test_ambiguous_subunit_in_complex(self):
        """An ambiguous subunit yields one converted complex per target"""
        converted = convert_orthologs(_resource(("TGFB1", "ITGA1_ITGB1")), DICTIONARY)

        assert _pairs(converted) == [
            ("Tgfb1", "Itga1_Itgb1a"),
            ("Tgfb1", "Itga1_Itgb1b"),
        ]

    def test_complex_with_unmapped_subunit(self):
        """A complex is dropped when any subunit has no ortholog"""
        converted = convert_orthologs(_resource(("TGFB1", "TGFBR1_FOO")), DICTIONARY)

        assert len(converted) == 0

    def test_max_targets(self):
        """Symbols above the one-to-many threshold count as unmapped"""
        converted = convert_orthologs(_resource(("EGFR", "TP53")), DICTIONARY, max_targets=1)

        assert len(converted) == 0
        assert converted.reports[-1].details["mapping"]["unmapped_ids"] == ["EGFR"]

    def test_duplicates_collapsed(self):
        """Two source rows converting to the same pair are kept once"""
        dictionary = SymbolDictionary({"A": ["x"], "B": ["x"], "C": ["y"]})

        converted = convert_orthologs(_resource(("A", "C"), ("B", "C")), dictionary)

        assert _pairs(converted) == [("x", "y")]
        assert converted.reports[-1].reasons["duplicate"] == 1
        assert converted.reports[-1].dropped_rows == 1

    def test_rows_differing_in_side_columns_kept(self):
        """Same converted pair from rows of different cell groups is not merged"""
        resource = ResourceTable.from_records([
            {"ligand": "A", "receptor": "C", "source": "T"},
            {"ligand": "A", "receptor": "C", "source": "M"},
        ])
        dictionary = SymbolDictionary({"A": ["a"], "C": ["c"]})

        converted = convert_orthologs(resource, dictionary)

        assert [r.get("source") for r in converted] == ["T", "M"]
        assert "duplicate" not in converted.reports[-1].reasons

    def test_drop_count_in_atomic_rows(self):
        """Every atomic row of an interaction with an unmapped symbol is counted"""
        atomic = decomplexify(_resource(("FOO", "TGFBR1_TGFBR2"), ("TGFB1", "TGFBR1")))

        converted = convert_orthologs(atomic, DICTIONARY)

        report = converted.reports[-1]
        assert _pairs(converted) == [("Tgfb1", "Tgfbr1")]
        assert report.input_rows == 3
        assert report.dropped_rows == 2
        mapping = report.details["mapping"]
        assert mapping["input_interactions"] == 2
        assert mapping["dropped_interactions"] == 1

    def test_deterministic(self):
        """Same inputs give the same output"""
        resource = _resource(("EGFR", "ITGA1_ITGB1"), ("TP53", "EGFR"))

        first = convert_orthologs(resource, DICTIONARY)
        second = convert_orthologs(resource, DICTIONARY)

        assert _pairs(first) == _pairs(second)

    def test_same_species_rejected(self):
        with pytest.raises(ValueError):
            convert_orthologs(_resource(("TP53", "EGFR")), DICTIONARY,
                              source_species="human", target_species="hsa")


class TestSpecies:
    """Test species validation"""

    def test_aliases(self):
        assert validate_species("mmu").species_key == "mouse"
        assert validate_species("Homo sapiens").taxon_id == 9606

    def test_invalid_species(self):
        with pytest.raises(ValueError):
            validate_species("zebrafish")
