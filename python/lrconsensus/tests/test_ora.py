"""
Unit tests for over-representation analysis.
"""

import pytest
from scipy.stats import hypergeom

from lrconsensus.aggregation import RankedScoreList, ScoredInteraction, aggregate_ranks
from lrconsensus.errors import DegenerateHypergeometricParameters, EmptyUniverseError
from lrconsensus.models import AnnotationTable
from lrconsensus.ora import (
    adjust_pvalues,
    build_universe,
    enrichment_test,
    fdr_correction,
    hits_from_aggregate,
    hypergeometric_test,
)


def _annotation():
    gene_sets = {
        'Immune_Response': ['IL6', 'TNF', 'IL1B', 'CCL2', 'CXCL8'],
        'Cell_Cycle': ['CDK4', 'CCND1', 'RB1', 'TP53', 'MYC'],
        'TGFb': ['TGFB1', 'TGFBR1', 'TGFBR2', 'IL6'],
    }
    background = {'Background': [f'GENE{i}' for i in range(20)]}
    return AnnotationTable.from_gene_sets({**gene_sets, **background})


class TestHypergeometric:
    """Test the upper-tail hypergeometric p-value"""

    def test_matches_scipy(self):
        p = hypergeometric_test(hit_in_pathway=3, pathway_size=10, hit_size=5, background_size=100)

        assert p == pytest.approx(hypergeom.sf(2, 100, 10, 5))

    def test_monotonic_in_q(self):
        """All hits in the set is at least as significant as one hit"""
        p_all = hypergeometric_test(5, 10, 5, 100)
        p_one = hypergeometric_test(1, 10, 5, 100)

        assert p_all <= p_one
        assert p_all == pytest.approx(hypergeom.pmf(5, 100, 10, 5))

    def test_zero_successes_is_one(self):
        assert hypergeometric_test(0, 10, 5, 100) == pytest.approx(1.0)

    @pytest.mark.parametrize("m,k", [(0, 5), (10, 0)])
    def test_degenerate(self, m, k):
        with pytest.raises(DegenerateHypergeometricParameters):
            hypergeometric_test(0, m, k, 100)

    def test_impossible_overlap(self):
        with pytest.raises(ValueError):
            hypergeometric_test(6, 10, 5, 100)


class TestFDR:
    """Test Benjamini-Hochberg correction"""

    def test_monotonic_after_sorting(self):
        """Adjusted values do not decrease along ascending raw p-values"""
        raw = [0.001, 0.04, 0.03, 0.2, 0.01, 0.5]
        adjusted = fdr_correction(raw)

        ordered = [a for _, a in sorted(zip(raw, adjusted))]
        assert ordered == sorted(ordered)
        assert all(a >= p for p, a in zip(raw, adjusted))

    def test_identical_pvalues(self):
        """Identical raw p-values share one adjusted value"""
        adjusted = fdr_correction([0.02] * 5)

        assert len(set(adjusted)) == 1

    def test_aliases(self):
        raw = [0.01, 0.02, 0.03]

        assert fdr_correction(raw, method='fdr') == fdr_correction(raw, method='fdr_bh')
        assert fdr_correction(raw, method='BH') == fdr_correction(raw, method='fdr_bh')

    def test_empty(self):
        assert fdr_correction([]) == []


class TestUniverse:
    """Test background construction"""

    def test_counts(self):
        universe = build_universe(_annotation())

        assert universe.size == 20 + 13
        assert universe.set_sizes['TGFb'] == 4
        assert universe.set_sizes['Immune_Response'] == 5

    def test_background_restricts(self):
        universe = build_universe(_annotation(), background=['IL6', 'TNF', 'TGFB1', 'NOT_ANNOTATED'])

        assert universe.size == 3
        assert dict(universe.set_sizes) == {'Immune_Response': 2, 'TGFb': 2}

    def test_empty_universe(self):
        with pytest.raises(EmptyUniverseError):
            build_universe(_annotation(), background=['NOT_ANNOTATED'])


class TestEnrichmentTest:
    """Test per-group ORA"""

    def test_parameters(self):
        """k counts only annotated hits; q, m and N come from the universe"""
        universe = build_universe(_annotation())
        hits = {'Macrophage': ['IL6', 'TNF', 'IL1B', 'UNKNOWN_GENE']}

        result = enrichment_test(universe, hits)
        rows = {r.gene_set: r for r in result}

        immune = rows['Immune_Response']
        assert immune.hits_in_set == 3
        assert immune.group_hits == 3
        assert immune.set_size == 5
        assert immune.universe_size == 33
        assert immune.p_value == pytest.approx(hypergeom.sf(2, 33, 5, 3))
        assert rows['TGFb'].hits_in_set == 1
        assert 'Cell_Cycle' not in rows
        assert result.fdr_method is None

    def test_groups_are_independent(self):
        universe = build_universe(_annotation())
        hits = {'T': ['IL6', 'TNF'], 'B': ['CDK4', 'RB1', 'TP53']}

        result = enrichment_test(universe, hits)

        assert {(r.group, r.gene_set) for r in result} == {
            ('T', 'Immune_Response'), ('T', 'TGFb'), ('B', 'Cell_Cycle'),
        }

    def test_group_without_annotated_hits(self):
        """A group whose hits are all unannotated is skipped and counted"""
        universe = build_universe(_annotation())

        result = enrichment_test(universe, {'X': ['NOPE1', 'NOPE2']})

        assert len(result) == 0
        assert result.reports[-1].reasons['no_annotated_hits'] == 1

    def test_min_overlap(self):
        universe = build_universe(_annotation())

        result = enrichment_test(universe, {'T': ['IL6', 'TNF']}, min_overlap=2)

        assert [r.gene_set for r in result] == ['Immune_Response']

    def test_threaded_matches_serial(self):
        universe = build_universe(_annotation())
        hits = {'T': ['IL6', 'TNF'], 'B': ['CDK4', 'RB1'], 'M': ['TGFB1', 'IL1B']}

        serial = enrichment_test(universe, hits)
        threaded = enrichment_test(universe, hits, max_workers=3)

        assert serial.rows == threaded.rows

    def test_annotation_only(self):
        """Universe is built from the annotation when not given"""
        result = enrichment_test(None, {'T': ['IL6']}, annotation=_annotation())

        assert len(result) == 2

    def test_degenerate_pair_skipped(self):
        """A set unknown to the universe has m = 0 and is skipped"""
        universe = build_universe(_annotation())
        annotation = AnnotationTable({'IL6': ['Immune_Response', 'Unseen_Set']})

        result = enrichment_test(universe, {'T': ['IL6']}, annotation=annotation)

        assert [r.gene_set for r in result] == ['Immune_Response']
        assert result.reports[-1].reasons['degenerate'] == 1

    def test_annotation_disagreeing_with_universe(self):
        """More hits in a set than the universe counts for it skips the pair"""
        universe = build_universe(AnnotationTable({'IL6': ['S'], 'TNF': ['X'], 'G1': ['X']}))
        annotation = AnnotationTable({'IL6': ['S'], 'TNF': ['S']})

        result = enrichment_test(universe, {'T': ['IL6', 'TNF']}, annotation=annotation)

        assert len(result) == 0
        assert result.reports[-1].reasons['set_size_mismatch'] == 1
        assert result.reports[-1].dropped_rows == 1


class TestAdjustPvalues:
    """Test joint and per-group correction"""

    def _result(self):
        universe = build_universe(_annotation())
        hits = {'T': ['IL6', 'TNF', 'IL1B'], 'B': ['CDK4', 'RB1', 'TGFB1']}
        return enrichment_test(universe, hits)

    def test_joint_correction(self):
        raw = self._result()

        adjusted = adjust_pvalues(raw, method='fdr')

        expected = dict(zip(
            [(r.group, r.gene_set) for r in raw],
            fdr_correction([r.p_value for r in raw]),
        ))
        assert all(r.p_adjusted == pytest.approx(expected[(r.group, r.gene_set)]) for r in adjusted)
        assert adjusted.fdr_method == 'fdr_bh'
        values = [r.p_adjusted for r in adjusted]
        assert values == sorted(values)

    def test_per_group_correction(self):
        raw = self._result()

        adjusted = adjust_pvalues(raw, per_group=True)

        for group in ('T', 'B'):
            group_rows = [r for r in raw if r.group == group]
            expected = fdr_correction([r.p_value for r in group_rows])
            got = {r.gene_set: r.p_adjusted for r in adjusted if r.group == group}
            for row, value in zip(group_rows, expected):
                assert got[row.gene_set] == pytest.approx(value)
        assert adjusted.per_group

    def test_order_independent(self):
        raw = self._result()
        shuffled = type(raw)(tuple(reversed(raw.rows)))

        assert adjust_pvalues(raw).rows == adjust_pvalues(shuffled).rows

    def test_dataframe(self):
        df = adjust_pvalues(self._result()).to_dataframe()

        assert {'group', 'gene_set', 'p_value', 'p_adjusted', 'overlap_ratio'} <= set(df.columns)


class TestHitsFromAggregate:
    """Test turning a consensus ranking into hit lists"""

    def _aggregate(self):
        entries = (
            ScoredInteraction(('T', 'B', 'IL6', 'IL6R'), 0.01),
            ScoredInteraction(('T', 'B', 'TGFB1', 'TGFBR1_TGFBR2'), 0.02),
            ScoredInteraction(('M', 'T', 'TNF', 'TNFRSF1A'), 0.03),
            ScoredInteraction(('T', 'M', 'CCL2', 'CCR2'), 0.9),
        )
        return aggregate_ranks([RankedScoreList('m', entries)], rule='mean', normalize=False)

    def test_ligands_by_source(self):
        hits = hits_from_aggregate(self._aggregate(), max_score=0.8)

        assert hits == {'T': ['IL6', 'TGFB1'], 'M': ['TNF']}

    def test_receptor_complexes_split(self):
        hits = hits_from_aggregate(self._aggregate(), group_by='target', entity='receptor', top_n=2)

        assert hits['B'] == ['IL6R', 'TGFBR1', 'TGFBR2']

    def test_top_n(self):
        hits = hits_from_aggregate(self._aggregate(), top_n=1)

        assert hits['T'] == ['IL6']

    def test_unknown_field(self):
        with pytest.raises(ValueError):
            hits_from_aggregate(self._aggregate(), group_by='celltype')
