"""MCDA scoring and sequential site selection.

Scoring algorithms are pure functions of (normalised matrix, normalised
signed weights) returning one score per row, higher = better:

  ORDER_RANKING  Σ x_ij · w_j
  VIKOR          1 − Q, compromise of group utility S and regret R (v = 0.5)
  TOPSIS         relative closeness S⁻ / (S⁺ + S⁻) to the ideal solution

A negative weight marks a cost criterion: it lowers the weighted sum and
flips the ideal/anti-ideal side for TOPSIS and VIKOR.

Selection picks one site at a time from an immutable "remaining" set.
Composition-dependent algorithms re-normalise and re-score over the
remaining rows before each pick.  With a minimum separation distance,
sites too close to an earlier pick are skipped in favour of the next
best alternates (limited to ``top_n`` beyond the requested count); if no
alternate qualifies, spacing is relaxed.
"""

from __future__ import annotations

from typing import Callable, Dict, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from reefmcda.decision import CriteriaMatrix, mcda_normalize
from reefmcda.errors import ConfigError, DataError
from reefmcda.types import MCDAAlgorithm, RankResult, freeze


# VIKOR strategy weight (majority rule vs individual regret)
VIKOR_V = 0.5


# ═══════════════════════════════════════════════════════════════════════
# SCORING ALGORITHMS
# ═══════════════════════════════════════════════════════════════════════

def order_ranking(matrix: np.ndarray, weights: np.ndarray) -> np.ndarray:
    """Simple weighted sum of criteria."""
    return matrix @ weights


def _ideal_points(matrix: np.ndarray, weights: np.ndarray
                  ) -> Tuple[np.ndarray, np.ndarray]:
    """Per-criterion best and worst values given weight direction."""
    benefit = weights >= 0
    col_max = matrix.max(axis=0)
    col_min = matrix.min(axis=0)
    best = np.where(benefit, col_max, col_min)
    worst = np.where(benefit, col_min, col_max)
    return best, worst


def topsis(matrix: np.ndarray, weights: np.ndarray) -> np.ndarray:
    """Relative closeness to the positive ideal solution, in [0, 1]."""
    V = matrix * np.abs(weights)
    pis, nis = _ideal_points(V, weights)
    s_p = np.sqrt(np.sum((V - pis) ** 2, axis=1))
    s_n = np.sqrt(np.sum((V - nis) ** 2, axis=1))
    denom = s_p + s_n
    out = np.zeros(len(V), dtype=np.float64)
    nz = denom > 0
    out[nz] = s_n[nz] / denom[nz]
    return out


def _rescale(x: np.ndarray) -> np.ndarray:
    span = x.max() - x.min()
    if span > 0:
        return (x - x.min()) / span
    return np.zeros_like(x)


def vikor(matrix: np.ndarray, weights: np.ndarray, v: float = VIKOR_V) -> np.ndarray:
    """VIKOR compromise ranking, inverted so that higher is better."""
    best, worst = _ideal_points(matrix, weights)
    span = best - worst
    gap = np.zeros_like(matrix)
    nz = span != 0
    gap[:, nz] = (best[nz] - matrix[:, nz]) / span[nz]

    w = np.abs(weights)
    S = gap @ w
    R = (gap * w).max(axis=1) if gap.shape[1] else np.zeros(len(gap))
    Q = v * _rescale(S) + (1.0 - v) * _rescale(R)
    return 1.0 - Q


_SCORERS: Dict[MCDAAlgorithm, Callable[[np.ndarray, np.ndarray], np.ndarray]] = {
    MCDAAlgorithm.ORDER_RANKING: order_ranking,
    MCDAAlgorithm.VIKOR: vikor,
    MCDAAlgorithm.TOPSIS: topsis,
}


def as_algorithm(alg) -> MCDAAlgorithm:
    """Resolve an enum member or integer code to an MCDAAlgorithm."""
    try:
        return MCDAAlgorithm(int(alg))
    except (TypeError, ValueError):
        raise ConfigError(
            f"Unknown MCDA algorithm {alg!r}; expected one of "
            f"{[a.value for a in MCDAAlgorithm]}"
        ) from None


def score(values: np.ndarray, weights: np.ndarray, algorithm) -> np.ndarray:
    """Normalise matrix columns and weights, then score each row.

    Args:
        values: (n, m) criterion values.
        weights: (m,) signed weights.
        algorithm: MCDAAlgorithm or its integer code.

    Returns:
        (n,) scores, higher = better.
    """
    algorithm = as_algorithm(algorithm)
    values = np.asarray(values, dtype=np.float64)
    weights = np.asarray(weights, dtype=np.float64)
    if values.ndim != 2 or values.shape[1] != len(weights):
        raise DataError(
            f"Criteria matrix shape {values.shape} does not match "
            f"{len(weights)} weights"
        )
    if values.shape[0] == 0:
        return np.zeros(0, dtype=np.float64)
    return _SCORERS[algorithm](mcda_normalize(values), mcda_normalize(weights))


# ═══════════════════════════════════════════════════════════════════════
# SEQUENTIAL SELECTION
# ═══════════════════════════════════════════════════════════════════════

class SelectionState(NamedTuple):
    """Rows still available and rows chosen so far (in pick order)."""
    remaining: Tuple[int, ...]
    chosen: Tuple[int, ...]


def _row_scores(criteria: CriteriaMatrix, rows: Sequence[int],
                algorithm: MCDAAlgorithm) -> Dict[int, float]:
    rows = list(rows)
    s = score(criteria.values[rows], criteria.weights, algorithm)
    return dict(zip(rows, s.tolist()))


def _best_row(rows: Sequence[int], scores: Dict[int, float],
              site_index: np.ndarray) -> int:
    # Highest score; ties go to the lowest original site index
    return min(rows, key=lambda r: (-scores[r], int(site_index[r])))


def _far_enough(row: int, chosen: Sequence[int], site_index: np.ndarray,
                distances: np.ndarray, min_dist: float) -> bool:
    s = site_index[row]
    return all(distances[s, site_index[c]] >= min_dist for c in chosen)


def next_pick(
    state: SelectionState,
    criteria: CriteriaMatrix,
    algorithm: MCDAAlgorithm,
    scores: Optional[Dict[int, float]] = None,
    pool: Optional[frozenset] = None,
    distances: Optional[np.ndarray] = None,
    min_dist: float = 0.0,
) -> SelectionState:
    """Choose one more row and return the new state.

    Args:
        state: Current remaining/chosen rows.
        criteria: Criterion matrix being ranked.
        algorithm: Scoring algorithm.
        scores: Fixed row scores; recomputed over ``state.remaining``
            when None.
        pool: Rows allowed to be picked under the spacing rule.
        distances: (N, N) site distance matrix indexed by site index.
        min_dist: Minimum separation from every earlier pick.

    Returns:
        SelectionState with the pick moved from remaining to chosen.
    """
    if not state.remaining:
        return state
    if scores is None:
        scores = _row_scores(criteria, state.remaining, algorithm)

    candidates = list(state.remaining)
    if distances is not None and min_dist > 0 and state.chosen:
        spaced = [
            r for r in candidates
            if (pool is None or r in pool)
            and _far_enough(r, state.chosen, criteria.site_index,
                            distances, min_dist)
        ]
        if spaced:
            candidates = spaced

    pick = _best_row(candidates, scores, criteria.site_index)
    return SelectionState(
        remaining=tuple(r for r in state.remaining if r != pick),
        chosen=state.chosen + (pick,),
    )


def select_sites(
    criteria: CriteriaMatrix,
    algorithm,
    n_select: int,
    exclusion_mask: Optional[np.ndarray] = None,
    distances: Optional[np.ndarray] = None,
    min_dist: float = 0.0,
    top_n: Optional[int] = None,
) -> np.ndarray:
    """Pick up to ``n_select`` sites, best first.

    Fewer than ``n_select`` sites are returned when fewer candidates
    remain after exclusion.

    Args:
        criteria: Criterion matrix (rows = candidate sites).
        algorithm: MCDAAlgorithm or integer code.
        n_select: Number of sites wanted (> 0).
        exclusion_mask: (n_rows,) bool, True rows are never picked.
        distances: (N, N) site distances, indexed by site index.
        min_dist: Minimum separation between picks (0 disables).
        top_n: Number of alternates beyond ``n_select`` that may replace
            a pick that is too close.  None = no limit.

    Returns:
        (k,) original site indices in pick order, k <= n_select.
    """
    algorithm = as_algorithm(algorithm)
    if n_select <= 0:
        raise ConfigError(f"n_select must be > 0, got {n_select}")

    n = criteria.n_rows
    if exclusion_mask is None:
        excluded = np.zeros(n, dtype=bool)
    else:
        excluded = np.asarray(exclusion_mask, dtype=bool)
        if excluded.shape != (n,):
            raise DataError(
                f"exclusion_mask has shape {excluded.shape}, expected ({n},)"
            )

    available = tuple(i for i in range(n) if not excluded[i])
    n_pick = min(n_select, len(available))
    if n_pick == 0:
        return np.zeros(0, dtype=np.int64)

    initial = _row_scores(criteria, available, algorithm)
    fixed = None if algorithm.composition_dependent else initial

    pool = None
    if top_n is not None:
        ordered = sorted(available,
                         key=lambda r: (-initial[r], int(criteria.site_index[r])))
        pool = frozenset(ordered[:n_pick + max(int(top_n), 0)])

    state = SelectionState(remaining=available, chosen=())
    for _ in range(n_pick):
        state = next_pick(state, criteria, algorithm, scores=fixed, pool=pool,
                          distances=distances, min_dist=min_dist)

    return criteria.site_index[list(state.chosen)].astype(np.int64)


# ═══════════════════════════════════════════════════════════════════════
# RANK RESULTS
# ═══════════════════════════════════════════════════════════════════════

SEED_COLUMN = 1
SHADE_COLUMN = 2


def empty_rankings(candidate_sites) -> RankResult:
    """All candidates at the sentinel rank for seeding and shading."""
    sites = np.asarray(candidate_sites, dtype=np.int64).reshape(-1)
    sentinel = len(sites) + 1
    ranks = np.column_stack([
        sites,
        np.full(len(sites), sentinel, dtype=np.int64),
        np.full(len(sites), sentinel, dtype=np.int64),
    ]) if len(sites) else np.zeros((0, 3), dtype=np.int64)
    return RankResult(ranks=freeze(ranks))


def align_rankings(rankings: RankResult, selected: Sequence[int],
                   column: int) -> RankResult:
    """New RankResult with ``column`` ranked by ``selected`` order.

    Candidates not in ``selected`` get the sentinel rank.
    """
    ranks = np.array(rankings.ranks, copy=True)
    ranks[:, column] = rankings.sentinel
    for i, site in enumerate(selected):
        ranks[ranks[:, 0] == site, column] = i + 1
    return RankResult(ranks=freeze(ranks))


def rank_sites(
    criteria: CriteriaMatrix,
    algorithm,
    n_select: int,
    candidate_sites=None,
    column: int = SEED_COLUMN,
    exclusion_mask: Optional[np.ndarray] = None,
    previous_ranks: Optional[RankResult] = None,
    distances: Optional[np.ndarray] = None,
    min_dist: float = 0.0,
    top_n: Optional[int] = None,
) -> Tuple[np.ndarray, RankResult]:
    """Select sites and record their ranks in one column.

    Args:
        criteria: Criterion matrix.
        algorithm: MCDAAlgorithm or integer code.
        n_select: Number of sites wanted.
        candidate_sites: All candidate site indices, including those
            filtered out of ``criteria``.  Defaults to the criteria rows.
        column: SEED_COLUMN or SHADE_COLUMN.
        exclusion_mask, distances, min_dist, top_n: See select_sites.
        previous_ranks: Ranks to carry over for the other column.

    Returns:
        (selected site indices, RankResult aligned to candidate_sites).
    """
    if previous_ranks is not None:
        base = previous_ranks
    else:
        if candidate_sites is None:
            candidate_sites = criteria.site_index
        base = empty_rankings(candidate_sites)

    selected = select_sites(criteria, algorithm, n_select,
                            exclusion_mask=exclusion_mask, distances=distances,
                            min_dist=min_dist, top_n=top_n)
    return selected, align_rankings(base, selected, column)
