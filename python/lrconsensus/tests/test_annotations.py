"""
Unit tests for gene set annotation utilities.
"""

from lrconsensus.annotations import (
    annotation_from_gene_sets,
    annotation_stats,
    filter_gene_sets_by_size,
    merge_gene_sets,
    validate_gene_sets,
)
from lrconsensus.models import AnnotationTable


class TestValidation:
    """Test gene set cleaning"""

    def test_duplicate_genes_removed(self):
        """Duplicates are removed with a warning"""
        valid, warnings = validate_gene_sets({"SET1": ["A", "B", "A", " C "]})

        assert valid == {"SET1": ["A", "B", "C"]}
        assert any("duplicate" in w.lower() for w in warnings)

    def test_empty_sets_excluded(self):
        valid, warnings = validate_gene_sets({"SET1": ["", "  "], "": ["A"], "SET2": ["B"]})

        assert valid == {"SET2": ["B"]}
        assert len(warnings) == 2


class TestSizeFilter:
    """Test min/max size filtering"""

    def test_bounds(self):
        gene_sets = {"small": ["A"], "ok": ["A", "B", "C"], "big": list("ABCDEFG")}

        kept, warnings = filter_gene_sets_by_size(gene_sets, min_size=2, max_size=5)

        assert list(kept) == ["ok"]
        assert len(warnings) == 2

    def test_no_upper_bound(self):
        kept, _ = filter_gene_sets_by_size({"big": list("ABCDEFG")}, min_size=1, max_size=None)

        assert "big" in kept


class TestAnnotationFromGeneSets:

    def test_builds_relation(self):
        annotation, warnings = annotation_from_gene_sets(
            {"S1": ["A", "B"], "S2": ["B", "B"], "S3": ["C"]}, min_size=1
        )

        assert annotation.sets_for("B") == ("S1", "S2")
        assert "C" in annotation
        assert warnings


class TestStatsAndMerge:

    def test_stats(self):
        annotation = AnnotationTable.from_gene_sets({"S1": ["A", "B"], "S2": ["B", "C", "D"]})

        stats = annotation_stats(annotation)

        assert stats["total_sets"] == 2
        assert stats["gene_set_pairs"] == 5
        assert stats["unique_genes"] == 4
        assert stats["multi_set_genes"] == 1
        assert stats["avg_size"] == 2.5
        assert (stats["min_size"], stats["max_size"]) == (2, 3)

    def test_stats_empty(self):
        assert annotation_stats(AnnotationTable({}))["total_sets"] == 0

    def test_merge(self):
        merged = merge_gene_sets([{"S1": ["A", "B"]}, {"S1": ["B", "C"], "S2": ["D"]}])

        assert merged == {"S1": ["A", "B", "C"], "S2": ["D"]}
