"""Seeded coral allocation.

Distributes a fixed area of seeded coral (per coral type) across the
selected sites in proportion to the free space at each site:

    area[s, t]       = seeded[t] × avail[s] / Σ avail[selected]
    proportion[s, t] = area[s, t] / total_site_area[s]

so Σ_s area[s, t] = seeded[t] (area conservation) and the site with the
most free space receives the largest area of every type.

Violations (area above a site's free space, proportion ≥ 1) indicate an
upstream planning bug and raise DataError instead of being clamped.
"""

from __future__ import annotations

from typing import Mapping, Optional, Sequence, Union

import numpy as np

from reefmcda.errors import DataError
from reefmcda.types import SeedAllocation, freeze


def available_space(total_site_area, k, current_cover_area=None) -> np.ndarray:
    """Free space for new corals at each site (m²).

    Args:
        total_site_area: (N,) site area (m²).
        k: (N,) maximum coral cover as a fraction of site area.
        current_cover_area: (N,) area already covered by coral (m²).

    Returns:
        (N,) max(k × area − cover, 0).
    """
    area = np.asarray(total_site_area, dtype=np.float64)
    k_area = area * np.asarray(k, dtype=np.float64)
    if current_cover_area is None:
        return np.maximum(k_area, 0.0)
    return np.maximum(k_area - np.asarray(current_cover_area, dtype=np.float64), 0.0)


def _named_amounts(seeded_area, coral_types: Optional[Sequence[str]]):
    """Split a name → area mapping (dict or pandas Series) into names and values."""
    if hasattr(seeded_area, 'items'):
        pairs = list(seeded_area.items())
        names = tuple(str(k) for k, _ in pairs)
        values = np.array([float(v) for _, v in pairs], dtype=np.float64)
    else:
        values = np.asarray(seeded_area, dtype=np.float64).reshape(-1)
        if coral_types is None:
            names = tuple(f"type_{i}" for i in range(len(values)))
        else:
            names = tuple(str(c) for c in coral_types)
    if len(names) != len(values):
        raise DataError(
            f"Got {len(values)} seeded areas for {len(names)} coral types"
        )
    return names, values.astype(np.float64)


def distribute_seeded_corals(
    total_site_area,
    selected_sites,
    available_space,
    seeded_area: Union[Mapping[str, float], Sequence[float]],
    coral_types: Optional[Sequence[str]] = None,
) -> SeedAllocation:
    """Allocate seeded coral area across selected sites by free space.

    Args:
        total_site_area: (N,) site area (m²), indexed by site index.
        selected_sites: Site indices chosen for seeding.
        available_space: (N,) free space (m²), indexed by site index.
        seeded_area: Area to seed per coral type (m²), as a mapping
            name → area (dict / pandas Series) or a sequence.
        coral_types: Names for a plain sequence of seeded areas.

    Returns:
        SeedAllocation with per-site, per-type proportions and areas.

    Raises:
        DataError: On invalid inputs, if a site would receive more area
            than it has free, or if a proportion reaches 1.
    """
    area = np.asarray(total_site_area, dtype=np.float64).reshape(-1)
    avail = np.asarray(available_space, dtype=np.float64).reshape(-1)
    sites = np.asarray(selected_sites, dtype=np.int64).reshape(-1)
    names, seeded = _named_amounts(seeded_area, coral_types)

    if len(area) != len(avail):
        raise DataError(
            f"total_site_area ({len(area)}) and available_space "
            f"({len(avail)}) lengths differ"
        )
    if sites.size and (sites.min() < 0 or sites.max() >= len(area)):
        raise DataError(f"Selected site index out of range [0, {len(area)})")
    if not np.all(np.isfinite(seeded)) or np.any(seeded < 0):
        raise DataError("Seeded areas must be finite and non-negative")

    sel_area = area[sites]
    sel_avail = avail[sites]
    if not np.all(np.isfinite(sel_avail)) or np.any(sel_avail < 0):
        raise DataError("Available space must be finite and non-negative")
    if np.any(sel_area <= 0):
        raise DataError("Selected sites must have positive area")

    n_types = len(seeded)
    total_avail = sel_avail.sum()
    if total_avail <= 0:
        if np.any(seeded > 0):
            raise DataError(
                "No available space at the selected sites for seeded corals"
            )
        zeros = np.zeros((len(sites), n_types), dtype=np.float64)
        return SeedAllocation(sites=freeze(sites), coral_types=names,
                              proportions=freeze(zeros), areas=freeze(zeros))

    prop_area_avail = sel_avail / total_avail
    areas = prop_area_avail[:, None] * seeded[None, :]

    over = (areas > sel_avail[:, None]) & ~np.isclose(areas, sel_avail[:, None])
    if np.any(over):
        bad = sorted(set(sites[np.any(over, axis=1)].tolist()))
        raise DataError(
            f"Seeded area exceeds available space at sites {bad}"
        )

    proportions = areas / sel_area[:, None]
    if np.any(proportions >= 1.0):
        raise DataError("Seeded coral proportion of site area reached 1")

    return SeedAllocation(
        sites=freeze(sites),
        coral_types=names,
        proportions=freeze(proportions),
        areas=freeze(areas),
    )


# Component-level name used by the selection pipeline
allocate = distribute_seeded_corals
