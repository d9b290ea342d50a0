"""Tests for reefmcda.ranking — scoring algorithms and sequential selection."""

import numpy as np
import pytest

from reefmcda.decision import CriteriaMatrix
from reefmcda.errors import ConfigError, DataError
from reefmcda.ranking import (
    SEED_COLUMN,
    SHADE_COLUMN,
    SelectionState,
    as_algorithm,
    empty_rankings,
    next_pick,
    order_ranking,
    rank_sites,
    score,
    select_sites,
    topsis,
    vikor,
)
from reefmcda.types import MCDAAlgorithm


# ─── Helpers ──────────────────────────────────────────────────────────

ALL_ALGORITHMS = list(MCDAAlgorithm)


def _criteria(values, weights, site_index=None):
    values = np.asarray(values, dtype=np.float64)
    if site_index is None:
        site_index = np.arange(values.shape[0])
    return CriteriaMatrix(
        site_index=np.asarray(site_index, dtype=np.int64),
        values=values,
        weights=np.asarray(weights, dtype=np.float64),
        names=tuple(f"c{i}" for i in range(values.shape[1])),
    )


# ═══════════════════════════════════════════════════════════════════════
# ALGORITHMS
# ═══════════════════════════════════════════════════════════════════════

class TestAlgorithmCodes:
    def test_codes(self):
        assert MCDAAlgorithm.ORDER_RANKING == 1
        assert MCDAAlgorithm.VIKOR == 2
        assert MCDAAlgorithm.TOPSIS == 3

    def test_as_algorithm_from_int(self):
        assert as_algorithm(3) is MCDAAlgorithm.TOPSIS

    @pytest.mark.parametrize("bad", [0, 4, "x", None])
    def test_unknown_code_raises(self, bad):
        with pytest.raises(ConfigError):
            as_algorithm(bad)

    def test_composition_dependence(self):
        assert not MCDAAlgorithm.ORDER_RANKING.composition_dependent
        assert MCDAAlgorithm.TOPSIS.composition_dependent
        assert MCDAAlgorithm.VIKOR.composition_dependent


class TestScoring:
    def test_order_ranking_weighted_sum(self):
        m = np.array([[1.0, 0.0], [0.0, 1.0]])
        np.testing.assert_allclose(order_ranking(m, np.array([0.2, 0.8])), [0.2, 0.8])

    def test_topsis_ideal_row_scores_one(self):
        m = np.array([[1.0, 1.0], [0.0, 0.0]])
        np.testing.assert_allclose(topsis(m, np.array([1.0, 1.0])), [1.0, 0.0])

    def test_vikor_ideal_row_scores_one(self):
        m = np.array([[1.0, 1.0], [0.0, 0.0], [0.5, 0.5]])
        s = vikor(m, np.array([1.0, 1.0]))
        assert s[0] == pytest.approx(1.0)
        assert s[1] == pytest.approx(0.0)
        assert 0.0 < s[2] < 1.0

    def test_identical_rows_score_equal(self):
        m = np.ones((3, 2))
        for alg in ALL_ALGORITHMS:
            s = score(m, [1.0, 1.0], alg)
            assert np.all(s == s[0])

    @pytest.mark.parametrize("alg", ALL_ALGORITHMS)
    def test_dominant_row_scores_highest(self, alg):
        m = np.array([[1.0, 1.0], [0.5, 0.2], [0.1, 0.9]])
        s = score(m, [1.0, 1.0], alg)
        assert np.argmax(s) == 0

    @pytest.mark.parametrize("alg", ALL_ALGORITHMS)
    def test_negative_weight_is_cost(self, alg):
        m = np.array([[1.0, 1.0], [1.0, 0.0]])
        s = score(m, [1.0, -1.0], alg)
        assert s[1] > s[0]

    def test_weight_scale_invariant(self):
        m = np.array([[0.3, 0.9], [0.6, 0.1], [0.2, 0.5]])
        for alg in ALL_ALGORITHMS:
            np.testing.assert_allclose(score(m, [1.0, 2.0], alg),
                                       score(m, [10.0, 20.0], alg))

    def test_shape_mismatch_raises(self):
        with pytest.raises(DataError):
            score(np.ones((2, 3)), [1.0, 1.0], MCDAAlgorithm.ORDER_RANKING)

    def test_empty_matrix(self):
        s = score(np.zeros((0, 2)), [1.0, 1.0], MCDAAlgorithm.TOPSIS)
        assert s.shape == (0,)


# ═══════════════════════════════════════════════════════════════════════
# SEQUENTIAL SELECTION
# ═══════════════════════════════════════════════════════════════════════

class TestNextPick:
    def test_moves_best_row_to_chosen(self):
        c = _criteria([[0.1], [0.9], [0.5]], [1.0])
        state = SelectionState(remaining=(0, 1, 2), chosen=())
        new = next_pick(state, c, MCDAAlgorithm.ORDER_RANKING)
        assert new.chosen == (1,)
        assert new.remaining == (0, 2)
        # original state untouched
        assert state.remaining == (0, 1, 2)

    def test_empty_state_unchanged(self):
        c = _criteria([[0.1]], [1.0])
        state = SelectionState(remaining=(), chosen=(0,))
        assert next_pick(state, c, MCDAAlgorithm.ORDER_RANKING) == state


class TestSelectSites:
    @pytest.mark.parametrize("alg", ALL_ALGORITHMS)
    def test_best_first(self, alg):
        c = _criteria([[0.2, 0.1], [0.9, 0.8], [0.5, 0.5]], [1.0, 1.0])
        np.testing.assert_array_equal(select_sites(c, alg, 3), [1, 2, 0])

    def test_returns_original_site_indices(self):
        c = _criteria([[0.2], [0.9]], [1.0], site_index=[12, 40])
        np.testing.assert_array_equal(select_sites(c, 1, 2), [40, 12])

    def test_ties_broken_by_lowest_site_index(self):
        c = _criteria(np.ones((3, 2)), [1.0, 1.0], site_index=[5, 2, 7])
        for alg in ALL_ALGORITHMS:
            np.testing.assert_array_equal(select_sites(c, alg, 3), [2, 5, 7])

    def test_fewer_candidates_than_requested(self):
        c = _criteria([[0.2], [0.9]], [1.0])
        assert len(select_sites(c, 1, 5)) == 2

    @pytest.mark.parametrize("n", [0, -1])
    def test_non_positive_n_select_raises(self, n):
        c = _criteria([[0.2], [0.9]], [1.0])
        with pytest.raises(ConfigError):
            select_sites(c, 1, n)

    def test_exclusion_mask(self):
        c = _criteria([[0.2], [0.9], [0.5]], [1.0])
        picks = select_sites(c, 1, 3, exclusion_mask=np.array([False, True, False]))
        np.testing.assert_array_equal(picks, [2, 0])

    def test_exclusion_mask_shape_checked(self):
        c = _criteria([[0.2], [0.9]], [1.0])
        with pytest.raises(DataError):
            select_sites(c, 1, 1, exclusion_mask=np.array([True]))

    def test_all_excluded(self):
        c = _criteria([[0.2], [0.9]], [1.0])
        picks = select_sites(c, 1, 2, exclusion_mask=np.array([True, True]))
        assert picks.size == 0

    def test_empty_criteria(self):
        c = _criteria(np.zeros((0, 2)), [1.0, 1.0])
        assert select_sites(c, MCDAAlgorithm.TOPSIS, 3).size == 0


class TestDistanceSpacing:
    # Sites 0 and 1 are 1 km apart; site 2 is 10 km from both
    DIST = np.array([
        [np.nan, 1.0, 10.0],
        [1.0, np.nan, 10.0],
        [10.0, 10.0, np.nan],
    ])
    VALUES = [[0.9], [0.8], [0.1]]

    def test_too_close_site_skipped(self):
        c = _criteria(self.VALUES, [1.0])
        picks = select_sites(c, 1, 2, distances=self.DIST, min_dist=5.0)
        np.testing.assert_array_equal(picks, [0, 2])

    def test_spacing_relaxed_when_no_site_qualifies(self):
        c = _criteria(self.VALUES, [1.0])
        picks = select_sites(c, 1, 3, distances=self.DIST, min_dist=5.0)
        np.testing.assert_array_equal(picks, [0, 2, 1])

    def test_top_n_limits_alternates(self):
        """With no alternates allowed, the close site is kept."""
        c = _criteria(self.VALUES, [1.0])
        picks = select_sites(c, 1, 2, distances=self.DIST, min_dist=5.0, top_n=0)
        np.testing.assert_array_equal(picks, [0, 1])

    def test_top_n_allows_alternate(self):
        c = _criteria(self.VALUES, [1.0])
        picks = select_sites(c, 1, 2, distances=self.DIST, min_dist=5.0, top_n=1)
        np.testing.assert_array_equal(picks, [0, 2])

    def test_zero_min_dist_disables_spacing(self):
        c = _criteria(self.VALUES, [1.0])
        picks = select_sites(c, 1, 2, distances=self.DIST, min_dist=0.0)
        np.testing.assert_array_equal(picks, [0, 1])


# ═══════════════════════════════════════════════════════════════════════
# RANK RESULTS
# ═══════════════════════════════════════════════════════════════════════

class TestRankSites:
    def test_sentinel_for_unselected(self):
        c = _criteria([[0.1], [0.9], [0.5], [0.3], [0.7]], [1.0])
        selected, result = rank_sites(c, 1, 2)
        np.testing.assert_array_equal(selected, [1, 4])
        assert result.sentinel == 6
        np.testing.assert_array_equal(result.seed_rank, [6, 1, 6, 6, 2])
        np.testing.assert_array_equal(result.shade_rank, [6] * 5)

    def test_filtered_candidates_get_sentinel(self):
        """Candidates absent from the criteria rows still appear in the result."""
        c = _criteria([[0.1], [0.9]], [1.0], site_index=[3, 8])
        _, result = rank_sites(c, 1, 2, candidate_sites=[1, 3, 5, 8])
        np.testing.assert_array_equal(result.site_index, [1, 3, 5, 8])
        np.testing.assert_array_equal(result.seed_rank, [5, 2, 5, 1])

    def test_previous_ranks_carried_over(self):
        seed = _criteria([[0.1], [0.9]], [1.0])
        shade = _criteria([[0.8], [0.2]], [1.0])
        _, first = rank_sites(seed, 1, 1, column=SEED_COLUMN)
        _, both = rank_sites(shade, 1, 1, column=SHADE_COLUMN, previous_ranks=first)
        np.testing.assert_array_equal(both.seed_rank, [3, 1])
        np.testing.assert_array_equal(both.shade_rank, [1, 3])

    def test_selected_accessor(self):
        c = _criteria([[0.1], [0.9], [0.5]], [1.0])
        _, result = rank_sites(c, 1, 2)
        np.testing.assert_array_equal(result.selected(SEED_COLUMN), [1, 2])

    def test_empty_rankings(self):
        r = empty_rankings([4, 6])
        np.testing.assert_array_equal(r.ranks, [[4, 3, 3], [6, 3, 3]])
        assert empty_rankings([]).ranks.shape == (0, 3)

    def test_result_read_only(self):
        c = _criteria([[0.1], [0.9]], [1.0])
        _, result = rank_sites(c, 1, 1)
        assert not result.ranks.flags.writeable
