"""Decision matrix construction.

Assembles the per-timestep, per-replicate multi-criteria decision matrix
from site attributes, environmental projections and connectivity metrics,
applies the hard feasibility filters, and derives the seeding and shading
criterion matrices consumed by the ranker.

Column layout: see reefmcda.types.DecisionColumn.

Polarity: wave and heat columns hold risk scores as given (higher =
riskier).  The seeding/shading variants attach a signed weight to each
criterion (negative = cost) and the ranker applies the sign; no column
is inverted here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from reefmcda.errors import ConfigError, DataError
from reefmcda.types import (
    NO_PREDECESSOR,
    DecisionColumn,
    DecisionMatrix,
    N_DECISION_COLUMNS,
    freeze,
)


# ═══════════════════════════════════════════════════════════════════════
# NORMALISATION
# ═══════════════════════════════════════════════════════════════════════

def mcda_normalize(x) -> np.ndarray:
    """Vector (L2) normalisation.

    A vector is divided by its Euclidean norm; a matrix has each column
    divided by that column's norm.  All-zero vectors/columns stay zero.

    Args:
        x: (n,) vector or (n, m) matrix.

    Returns:
        Array of the same shape with unit-norm columns (or vector).
    """
    x = np.asarray(x, dtype=np.float64)
    if x.ndim == 1:
        norm = np.sqrt(np.sum(x ** 2))
        if norm > 0:
            return x / norm
        return np.zeros_like(x)

    norms = np.sqrt(np.sum(x ** 2, axis=0))
    out = np.zeros_like(x)
    nz = norms > 0
    out[:, nz] = x[:, nz] / norms[nz]
    return out


def _scale_by_max(x: np.ndarray) -> np.ndarray:
    """Divide by the maximum when it is positive (non-negative input → [0, 1])."""
    m = x.max() if x.size else 0.0
    if m > 0:
        return x / m
    return x.copy()


# ═══════════════════════════════════════════════════════════════════════
# PRIORITY CRITERIA
# ═══════════════════════════════════════════════════════════════════════

def priority_predecessors(
    site_ids: np.ndarray,
    strongest_predecessor: np.ndarray,
    priority_sites: Sequence[int],
) -> np.ndarray:
    """Indicator of candidate sites feeding a priority site.

    Args:
        site_ids: (n,) candidate site indices.
        strongest_predecessor: (N,) domain-wide strongest predecessors.
        priority_sites: Site indices flagged as priority reefs.  Only
            those among the candidates are considered.

    Returns:
        (n,) 1.0 where the candidate is the strongest predecessor of a
        candidate priority site, else 0.0.
    """
    site_ids = np.asarray(site_ids, dtype=np.int64)
    candidates = set(site_ids.tolist())
    preds = {
        int(strongest_predecessor[p]) for p in priority_sites
        if p in candidates and strongest_predecessor[p] != NO_PREDECESSOR
    }
    return np.isin(site_ids, list(preds)).astype(np.float64)


def zone_criteria(
    site_ids: np.ndarray,
    zones: np.ndarray,
    strongest_predecessor: np.ndarray,
    priority_zones: Sequence[str],
) -> np.ndarray:
    """Zone-priority weight for each candidate site.

    Priority zones present among the candidates receive descending,
    L2-normalised weights in the order listed.  A site scores its own
    zone's weight plus, for every priority zone, that zone's weight times
    the number of zone sites it is the strongest predecessor of.

    Args:
        site_ids: (n,) candidate site indices.
        zones: (N,) domain-wide zone type per site.
        strongest_predecessor: (N,) domain-wide strongest predecessors.
        priority_zones: Zone types in decreasing priority.

    Returns:
        (n,) non-negative zone criteria.
    """
    site_ids = np.asarray(site_ids, dtype=np.int64)
    cand_zones = np.array([str(z).lower() for z in np.asarray(zones)[site_ids]])
    present = set(cand_zones.tolist())
    zone_ids = [str(z).lower() for z in priority_zones if str(z).lower() in present]

    n = len(site_ids)
    zone_preds = np.zeros(n, dtype=np.float64)
    zone_sites = np.zeros(n, dtype=np.float64)
    if not zone_ids:
        return zone_preds

    zone_weights = mcda_normalize(np.arange(len(zone_ids), 0, -1, dtype=np.float64))
    for k, zone in enumerate(zone_ids):
        in_zone = cand_zones == zone
        preds = np.asarray(strongest_predecessor)[site_ids[in_zone]]
        for s in np.unique(preds):
            if s == NO_PREDECESSOR:
                continue
            zone_preds[site_ids == s] += zone_weights[k] * np.sum(preds == s)
        zone_sites[in_zone] = zone_weights[k]

    return zone_preds + zone_sites


# ═══════════════════════════════════════════════════════════════════════
# DECISION MATRIX
# ═══════════════════════════════════════════════════════════════════════

def _as_vector(name: str, x, n: int) -> np.ndarray:
    v = np.asarray(x, dtype=np.float64).reshape(-1)
    if len(v) != n:
        raise DataError(f"{name} has length {len(v)}, expected {n}")
    if not np.all(np.isfinite(v)):
        raise DataError(f"{name} contains NaN or Inf values")
    return v


def _check_probability(name: str, x: np.ndarray) -> None:
    if x.size and (x.min() < 0.0 or x.max() > 1.0):
        raise DataError(f"{name} values must lie in [0, 1]")


def _check_non_negative(name: str, x: np.ndarray) -> None:
    if x.size and x.min() < 0.0:
        raise DataError(f"{name} values must be non-negative")


def create_decision_matrix(
    site_ids,
    in_conn,
    out_conn,
    sum_cover,
    max_cover,
    area,
    wave_damage_prob,
    heat_stress_prob,
    predecessor_priority,
    zones_criteria,
    risk_tolerance: float,
) -> DecisionMatrix:
    """Build the decision matrix for one timestep/replicate.

    All vector arguments are aligned with ``site_ids``.

    Args:
        site_ids: (n,) original site indices of the candidates.
        in_conn, out_conn: (n,) connectivity strengths.
        sum_cover: (n,) current total coral cover (fraction of area).
        max_cover: (n,) maximum coral cover k (fraction of area).
        area: (n,) site area (m²).
        wave_damage_prob, heat_stress_prob: (n,) probabilities in [0, 1].
        predecessor_priority: (n,) priority-predecessor indicator.
        zones_criteria: (n,) zone-priority weights.
        risk_tolerance: Maximum acceptable heat-stress probability.

    Returns:
        DecisionMatrix with only feasible rows and the kept mask.
        Sites are dropped when heat stress > risk_tolerance or k == 0.

    Raises:
        DataError: On mismatched lengths, non-finite or out-of-range
            values, or risk_tolerance outside [0, 1].
    """
    site_ids = np.asarray(site_ids, dtype=np.int64).reshape(-1)
    n = len(site_ids)
    if not (0.0 <= risk_tolerance <= 1.0):
        raise DataError(f"risk_tolerance must be in [0, 1], got {risk_tolerance}")

    in_conn = _as_vector("in_conn", in_conn, n)
    out_conn = _as_vector("out_conn", out_conn, n)
    sum_cover = _as_vector("sum_cover", sum_cover, n)
    max_cover = _as_vector("max_cover", max_cover, n)
    area = _as_vector("area", area, n)
    damprob = _as_vector("wave_damage_prob", wave_damage_prob, n)
    heatprob = _as_vector("heat_stress_prob", heat_stress_prob, n)
    predec = _as_vector("predecessor_priority", predecessor_priority, n)
    zones = _as_vector("zones_criteria", zones_criteria, n)

    _check_probability("wave_damage_prob", damprob)
    _check_probability("heat_stress_prob", heatprob)
    _check_probability("max_cover", max_cover)
    for name, v in (("in_conn", in_conn), ("out_conn", out_conn),
                    ("sum_cover", sum_cover), ("area", area),
                    ("predecessor_priority", predec),
                    ("zones_criteria", zones)):
        _check_non_negative(name, v)

    A = np.zeros((n, N_DECISION_COLUMNS), dtype=np.float64)
    A[:, DecisionColumn.SITE_INDEX] = site_ids
    A[:, DecisionColumn.IN_CONN] = _scale_by_max(in_conn)
    A[:, DecisionColumn.OUT_CONN] = _scale_by_max(out_conn)
    # No rescaling when there is no chance of damage/heat stress
    A[:, DecisionColumn.WAVE_DAMAGE] = _scale_by_max(damprob)
    A[:, DecisionColumn.HEAT_STRESS] = _scale_by_max(heatprob)
    A[:, DecisionColumn.PRIORITY_PREDECESSOR] = _scale_by_max(predec)
    A[:, DecisionColumn.PRIORITY_ZONE] = _scale_by_max(zones)
    A[:, DecisionColumn.SEED_SPACE] = np.maximum(max_cover - sum_cover, 0.0) * area
    A[:, DecisionColumn.SHADE_SPACE] = area * max_cover

    kept = (heatprob <= risk_tolerance) & (max_cover > 0.0)

    return DecisionMatrix(values=freeze(A[kept]), kept=freeze(kept))


# ═══════════════════════════════════════════════════════════════════════
# SEEDING / SHADING CRITERIA
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, eq=False)
class CriteriaMatrix:
    """Criterion sub-matrix ready for scoring.

    site_index: (n,) original site index per row.
    values: (n, m) criterion values in [0, 1].
    weights: (m,) signed weights; negative marks a cost criterion.
    names: criterion labels, for reporting.
    """
    site_index: np.ndarray
    values: np.ndarray
    weights: np.ndarray
    names: Tuple[str, ...]

    @property
    def n_rows(self) -> int:
        return self.values.shape[0]

    @property
    def is_empty(self) -> bool:
        return self.values.shape[0] == 0


def _check_weights(**weights: float) -> None:
    for name, w in weights.items():
        if not np.isfinite(w) or w < 0:
            raise ConfigError(f"{name} must be a non-negative weight, got {w}")


_SHARED_COLUMNS = (
    DecisionColumn.IN_CONN,
    DecisionColumn.OUT_CONN,
    DecisionColumn.WAVE_DAMAGE,
    DecisionColumn.HEAT_STRESS,
    DecisionColumn.PRIORITY_PREDECESSOR,
    DecisionColumn.PRIORITY_ZONE,
)


def create_seed_matrix(
    A: DecisionMatrix,
    min_area: float,
    wt_in_conn: float,
    wt_out_conn: float,
    wt_waves: float,
    wt_heat: float,
    wt_predec: float,
    wt_zones: float,
    wt_lo_cover: float,
) -> CriteriaMatrix:
    """Seeding criteria: favour connected, low-risk sites with free space.

    Rows with no free space, or less than ``min_area``, are dropped.
    The space column is rescaled by its maximum over the remaining rows.
    """
    _check_weights(wt_in_conn=wt_in_conn, wt_out_conn=wt_out_conn,
                   wt_waves=wt_waves, wt_heat=wt_heat, wt_predec=wt_predec,
                   wt_zones=wt_zones, wt_lo_cover=wt_lo_cover)
    if min_area < 0:
        raise ConfigError(f"min_area must be >= 0, got {min_area}")

    space = A.column(DecisionColumn.SEED_SPACE)
    rows = (space > 0.0) & (space >= min_area)

    cols = [A.values[rows][:, int(c)] for c in _SHARED_COLUMNS]
    cols.append(_scale_by_max(space[rows]))

    weights = np.array([wt_in_conn, wt_out_conn, -wt_waves, -wt_heat,
                        wt_predec, wt_zones, wt_lo_cover], dtype=np.float64)
    return CriteriaMatrix(
        site_index=freeze(A.site_index[rows]),
        values=freeze(np.column_stack(cols) if cols[0].size else
                      np.zeros((0, len(weights)))),
        weights=freeze(weights),
        names=('in_conn', 'out_conn', 'wave_damage', 'heat_stress',
               'priority_predecessor', 'priority_zone', 'free_space'),
    )


def create_shade_matrix(
    A: DecisionMatrix,
    wt_conn: float,
    wt_waves: float,
    wt_heat: float,
    wt_predec: float,
    wt_zones: float,
    wt_hi_cover: float,
) -> CriteriaMatrix:
    """Shading criteria: favour connected, heat-stressed sites with high cover.

    The cover column is the coral-occupied area, k × area minus free
    space, rescaled by its maximum.  Heat stress counts in favour of
    shading; wave damage counts against.
    """
    _check_weights(wt_conn=wt_conn, wt_waves=wt_waves, wt_heat=wt_heat,
                   wt_predec=wt_predec, wt_zones=wt_zones,
                   wt_hi_cover=wt_hi_cover)

    occupied = np.maximum(
        A.column(DecisionColumn.SHADE_SPACE) - A.column(DecisionColumn.SEED_SPACE),
        0.0,
    )
    cols = [A.column(c) for c in _SHARED_COLUMNS]
    cols.append(_scale_by_max(occupied))

    weights = np.array([wt_conn, wt_conn, -wt_waves, wt_heat,
                        wt_predec, wt_zones, wt_hi_cover], dtype=np.float64)
    return CriteriaMatrix(
        site_index=freeze(A.site_index),
        values=freeze(np.column_stack(cols) if A.n_rows else
                      np.zeros((0, len(weights)))),
        weights=freeze(weights),
        names=('in_conn', 'out_conn', 'wave_damage', 'heat_stress',
               'priority_predecessor', 'priority_zone', 'coral_area'),
    )
