"""Core data types for ReefMCDA.

This module is the single place that defines:
  - DecisionColumn: column layout of the decision matrix
  - MCDAAlgorithm: closed set of scoring algorithms
  - CentralityVectors, DecisionMatrix, RankResult, SeedAllocation:
    data transfer objects passed between the selection stages

All per-site vectors are indexed by the 0-based site index established
when the Domain is built.  Named lookups (site IDs, coral types) are
resolved to integer offsets once, when these objects are constructed.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Tuple

import numpy as np


# ═══════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════

# Strongest-predecessor value for sites with no incoming connections
NO_PREDECESSOR = -1


def freeze(arr: np.ndarray) -> np.ndarray:
    """Return a read-only copy of ``arr``."""
    out = np.array(arr, copy=True)
    out.setflags(write=False)
    return out


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class DecisionColumn(IntEnum):
    """Column layout of the decision matrix.

    Columns IN_CONN .. PRIORITY_ZONE are score-bearing and scaled to
    [0, 1].  SEED_SPACE and SHADE_SPACE hold raw areas (m²) for the
    seeding/shading variants and downstream area math.
    """
    SITE_INDEX           = 0   # original 0-based site index
    IN_CONN              = 1   # betweenness centrality
    OUT_CONN             = 2   # 1 − Katz centrality
    WAVE_DAMAGE          = 3   # wave damage probability
    HEAT_STRESS          = 4   # heat stress probability
    PRIORITY_PREDECESSOR = 5   # 1.0 if strongest predecessor of a priority site
    PRIORITY_ZONE        = 6   # zone-priority weight
    SEED_SPACE           = 7   # free space for seeding (m²)
    SHADE_SPACE          = 8   # coral-supporting area, k × area (m²)


N_DECISION_COLUMNS = len(DecisionColumn)

# Columns scaled to [0, 1] by the decision matrix builder
SCORE_COLUMNS = (
    DecisionColumn.IN_CONN,
    DecisionColumn.OUT_CONN,
    DecisionColumn.WAVE_DAMAGE,
    DecisionColumn.HEAT_STRESS,
    DecisionColumn.PRIORITY_PREDECESSOR,
    DecisionColumn.PRIORITY_ZONE,
)


class MCDAAlgorithm(IntEnum):
    """Scoring algorithms.  Codes match the scenario ``guided`` field."""
    ORDER_RANKING = 1   # simple weighted sum
    VIKOR         = 2   # compromise ranking (1 − Q)
    TOPSIS        = 3   # relative closeness to the ideal solution

    @property
    def composition_dependent(self) -> bool:
        """True if scores depend on which candidates remain."""
        return self is not MCDAAlgorithm.ORDER_RANKING


# ═══════════════════════════════════════════════════════════════════════
# DATA TRANSFER OBJECTS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, eq=False)
class CentralityVectors:
    """Connectivity metrics derived from the transition-probability matrix.

    in_conn:   (N,) betweenness centrality (incoming strength)
    out_conn:  (N,) 1 − Katz centrality (outgoing strength)
    strongest_predecessor: (N,) int, NO_PREDECESSOR where no in-edges
    """
    in_conn: np.ndarray
    out_conn: np.ndarray
    strongest_predecessor: np.ndarray

    @property
    def n_sites(self) -> int:
        return len(self.in_conn)


@dataclass(frozen=True, eq=False)
class DecisionMatrix:
    """Decision matrix for one timestep/replicate.

    values: (n_kept, N_DECISION_COLUMNS) rows for feasible sites only,
        in input order.
    kept: (n_input,) bool mask over the pre-filter site ordering.
    """
    values: np.ndarray
    kept: np.ndarray

    @property
    def n_rows(self) -> int:
        return self.values.shape[0]

    @property
    def is_empty(self) -> bool:
        return self.values.shape[0] == 0

    @property
    def site_index(self) -> np.ndarray:
        return self.values[:, DecisionColumn.SITE_INDEX].astype(np.int64)

    def column(self, col: DecisionColumn) -> np.ndarray:
        return self.values[:, int(col)]


@dataclass(frozen=True, eq=False)
class RankResult:
    """Seeding and shading ranks for one replicate.

    ranks: (n_candidates, 3) int array of
        [site_index, seed_rank, shade_rank].  Rank 1 is best; sites not
        selected (or filtered out) carry ``sentinel``.
    """
    ranks: np.ndarray

    @property
    def n_candidates(self) -> int:
        return self.ranks.shape[0]

    @property
    def sentinel(self) -> int:
        return self.n_candidates + 1

    @property
    def site_index(self) -> np.ndarray:
        return self.ranks[:, 0]

    @property
    def seed_rank(self) -> np.ndarray:
        return self.ranks[:, 1]

    @property
    def shade_rank(self) -> np.ndarray:
        return self.ranks[:, 2]

    def selected(self, column: int = 1) -> np.ndarray:
        """Site indices with a non-sentinel rank, best first."""
        r = self.ranks[:, column]
        mask = r < self.sentinel
        order = np.argsort(r[mask], kind='stable')
        return self.ranks[mask, 0][order]


@dataclass(frozen=True, eq=False)
class SeedAllocation:
    """Seeded coral area distributed across selected sites.

    sites: (n_selected,) site indices, in selection order.
    coral_types: names of the seeded coral types (column labels).
    proportions: (n_selected, n_types) proportion of each site's total
        area receiving each coral type, in [0, 1).
    areas: (n_selected, n_types) absolute seeded area (m²).
    """
    sites: np.ndarray
    coral_types: Tuple[str, ...]
    proportions: np.ndarray
    areas: np.ndarray
    _offsets: Dict[str, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(
            self, '_offsets',
            {name: i for i, name in enumerate(self.coral_types)},
        )

    def type_offset(self, name: str) -> int:
        try:
            return self._offsets[name]
        except KeyError:
            raise KeyError(
                f"Unknown coral type '{name}'. "
                f"Available: {list(self.coral_types)}"
            ) from None

    def for_type(self, name: str) -> np.ndarray:
        """Proportions for one coral type across selected sites."""
        return self.proportions[:, self.type_offset(name)]

    def area_for_type(self, name: str) -> np.ndarray:
        """Absolute seeded area for one coral type across selected sites."""
        return self.areas[:, self.type_offset(name)]
