"""
Unit tests for the resource data model.

Run with: pytest python/lrconsensus/tests/
"""

import pandas as pd
import pytest

from lrconsensus.errors import MalformedComplexEncoding, MissingColumnsError, UnmappedSymbol
from lrconsensus.models import (
    AnnotationTable,
    Entity,
    Interaction,
    ResourceTable,
    SymbolDictionary,
)


class TestEntity:
    """Test complex encoding at the boundary"""

    def test_parse_single_gene(self):
        """A plain symbol is a one-subunit entity"""
        entity = Entity.parse("TGFB1")

        assert entity.subunits == ("TGFB1",)
        assert not entity.is_complex

    def test_parse_complex(self):
        """Separator splits a complex and label() restores it"""
        entity = Entity.parse("TGFBR1_TGFBR2")

        assert entity.subunits == ("TGFBR1", "TGFBR2")
        assert entity.is_complex
        assert entity.label() == "TGFBR1_TGFBR2"
        assert entity.label("+") == "TGFBR1+TGFBR2"

    def test_complex_identity_is_ordered(self):
        """Same subunits in another order are a different complex"""
        assert Entity.parse("A_B") == Entity(("A", "B"))
        assert Entity.parse("A_B") != Entity.parse("B_A")

    @pytest.mark.parametrize("value", ["", "   ", "A__B", "_A", "B_", None])
    def test_malformed(self, value):
        """Empty subunits are rejected"""
        with pytest.raises(MalformedComplexEncoding):
            Entity.parse(value)


class TestResourceTable:
    """Test building tables from records and DataFrames"""

    def test_from_records_keeps_metadata(self):
        """Side columns become row metadata"""
        table = ResourceTable.from_records([
            {"ligand": "TGFB1", "receptor": "TGFBR1_TGFBR2", "pathway": "TGFb"},
        ])

        assert len(table) == 1
        assert table[0].receptor.subunits == ("TGFBR1", "TGFBR2")
        assert table[0].get("pathway") == "TGFb"

    def test_malformed_rows_are_counted(self):
        """Unparseable rows are skipped and reported"""
        table = ResourceTable.from_records([
            {"ligand": "A", "receptor": "B"},
            {"ligand": "A__C", "receptor": "B"},
            {"ligand": "", "receptor": "B"},
        ])

        assert len(table) == 1
        report = table.reports[-1]
        assert report.stage == "parse"
        assert report.dropped_rows == 2
        assert report.reasons == {"malformed_complex": 2}

    def test_missing_columns_are_fatal(self):
        """A DataFrame without a receptor column is a structural error"""
        df = pd.DataFrame({"ligand": ["A"], "target": ["B"]})

        with pytest.raises(MissingColumnsError):
            ResourceTable.from_dataframe(df)

    def test_dataframe_round_trip(self):
        """to_dataframe writes complexes back with the separator"""
        df = pd.DataFrame({"ligand": ["A_B", "C"], "receptor": ["D", "E"], "db": ["x", "y"]})
        table = ResourceTable.from_dataframe(df)

        out = table.to_dataframe()

        assert list(out["ligand"]) == ["A_B", "C"]
        assert list(out["db"]) == ["x", "y"]

    def test_assign_returns_new_table(self):
        """assign() does not modify the original table"""
        table = ResourceTable.from_records([{"ligand": "A", "receptor": "B"}])

        scored = table.assign("score", [0.5])

        assert scored[0].get("score") == 0.5
        assert table[0].get("score") is None

    def test_assign_length_mismatch(self):
        table = ResourceTable.from_records([{"ligand": "A", "receptor": "B"}])

        with pytest.raises(ValueError):
            table.assign("score", [0.1, 0.2])


class TestSymbolDictionary:
    """Test the ortholog relation"""

    def test_one_to_many(self):
        """Targets keep order and duplicates collapse"""
        dictionary = SymbolDictionary({"EGFR": ["Egfr1", "Egfr2", "Egfr1"], "TP53": "Trp53"})

        assert dictionary.lookup("EGFR") == ("Egfr1", "Egfr2")
        assert dictionary.lookup("TP53") == ("Trp53",)
        assert dictionary.ambiguous_symbols == ["EGFR"]

    def test_lookup_strict(self):
        """Unmapped symbols raise UnmappedSymbol"""
        dictionary = SymbolDictionary({"TP53": ["Trp53"]})

        assert dictionary.lookup("FOO") == ()
        with pytest.raises(UnmappedSymbol):
            dictionary.lookup_strict("FOO")

    def test_from_dataframe(self):
        df = pd.DataFrame({"source": ["A", "A", "B"], "target": ["a1", "a2", "b"]})

        dictionary = SymbolDictionary.from_dataframe(df, source_species="human", target_species="mouse")

        assert dictionary.lookup("A") == ("a1", "a2")
        assert len(dictionary) == 2
        assert dictionary.target_species == "mouse"


class TestAnnotationTable:
    """Test gene -> gene set relation"""

    def test_from_gene_sets(self):
        annotation = AnnotationTable.from_gene_sets({"S1": ["A", "B"], "S2": ["B"]})

        assert annotation.sets_for("B") == ("S1", "S2")
        assert annotation.gene_sets() == {"S1": ["A", "B"], "S2": ["B"]}

    def test_restrict(self):
        annotation = AnnotationTable({"A": ["S1"], "B": ["S1"]})

        assert annotation.restrict(["A", "Z"]).genes == ["A"]
