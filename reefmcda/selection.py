"""Site selection over replicates.

For one timestep, each replicate of the heat-stress and wave cubes gets
its own decision matrix and its own seed/shade ranking:

    depth filter → priority criteria → decision matrix
      → seeding criteria → rank (seed column)
      → shading criteria → rank (shade column)

Replicates share only read-only Domain data, so they can run on a
thread pool; each worker writes its own slice of the output array.
"""

from __future__ import annotations

import warnings
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import numpy as np

from reefmcda.config import (
    CriteriaSection,
    SeedingSection,
    SelectionConfig,
    adjust_depth_bounds,
    validate_config,
    validate_criteria,
)
from reefmcda.decision import (
    create_decision_matrix,
    create_seed_matrix,
    create_shade_matrix,
    priority_predecessors,
    zone_criteria,
)
from reefmcda.errors import ConfigError, DataError
from reefmcda.ranking import (
    SEED_COLUMN,
    SHADE_COLUMN,
    as_algorithm,
    empty_rankings,
    rank_sites,
)
from reefmcda.seeding import available_space, distribute_seeded_corals
from reefmcda.spatial import Domain
from reefmcda.types import RankResult, SeedAllocation, freeze


@dataclass(frozen=True, eq=False)
class SelectionResult:
    """Outcome of one guided selection.

    seed_sites / shade_sites: chosen site indices, best first.
    rankings: ranks of every candidate site for both interventions.
    """
    seed_sites: np.ndarray
    shade_sites: np.ndarray
    rankings: RankResult


_NO_SITES = freeze(np.zeros(0, dtype=np.int64))


# ═══════════════════════════════════════════════════════════════════════
# CANDIDATES
# ═══════════════════════════════════════════════════════════════════════

def candidate_sites(domain: Domain, criteria: CriteriaSection) -> np.ndarray:
    """Site indices within the depth window, in site order."""
    depths = domain.depths()
    criteria = adjust_depth_bounds(criteria, depths)
    max_depth = criteria.depth_min + criteria.depth_offset
    in_window = (depths >= criteria.depth_min) & (depths <= max_depth)
    return np.flatnonzero(in_window).astype(np.int64)


def resolve_priority_sites(domain: Domain, priority_sites: Sequence[str]) -> np.ndarray:
    """Site indices of the configured priority site IDs.

    Raises:
        ConfigError: If a priority site ID is not in the domain.
    """
    idx = []
    for sid in priority_sites:
        try:
            idx.append(domain.site_index(sid))
        except KeyError:
            raise ConfigError(f"Priority site '{sid}' is not in the domain") from None
    return np.array(idx, dtype=np.int64)


# ═══════════════════════════════════════════════════════════════════════
# SINGLE SELECTION
# ═══════════════════════════════════════════════════════════════════════

def guided_site_selection(
    domain: Domain,
    criteria: CriteriaSection,
    candidates: np.ndarray,
    heat_stress_prob: np.ndarray,
    wave_damage_prob: np.ndarray,
    n_site_int: int,
    area_to_seed: float,
    algorithm=None,
    priority_sites: Sequence[int] = (),
    priority_zones: Sequence[str] = (),
    sum_cover: Optional[np.ndarray] = None,
    seed: bool = True,
    shade: bool = True,
) -> SelectionResult:
    """Rank candidate sites for seeding and shading.

    Args:
        domain: Reef domain.
        criteria: Weights and thresholds.
        candidates: Site indices to consider (e.g. after the depth filter).
        heat_stress_prob: (N,) heat-stress probability for every site.
        wave_damage_prob: (N,) wave-damage probability for every site.
        n_site_int: Number of sites to select per intervention (> 0).
        area_to_seed: Seeded area per timestep; the minimum free space is
            ``area_to_seed × criteria.coral_cover_tol``.
        algorithm: MCDAAlgorithm or code; defaults to ``criteria.guided``.
        priority_sites: Site indices of priority reefs.
        priority_zones: Zone types in decreasing priority.
        sum_cover: (N,) current total cover; defaults to initial cover.
        seed, shade: Which interventions to rank.

    Returns:
        SelectionResult.  With no feasible sites, nothing is selected and
        every candidate carries the sentinel rank.
    """
    if n_site_int <= 0:
        raise ConfigError(f"n_site_int must be > 0, got {n_site_int}")
    alg = as_algorithm(criteria.guided if algorithm is None else algorithm)
    candidates = np.asarray(candidates, dtype=np.int64).reshape(-1)
    rankings = empty_rankings(candidates)
    if candidates.size == 0:
        warnings.warn("No candidate sites within the depth window",
                      UserWarning, stacklevel=2)
        return SelectionResult(_NO_SITES, _NO_SITES, rankings)

    if sum_cover is None:
        sum_cover = domain.sum_cover()
    heat = np.asarray(heat_stress_prob, dtype=np.float64)
    waves = np.asarray(wave_damage_prob, dtype=np.float64)
    strongest = domain.centrality.strongest_predecessor

    predec = priority_predecessors(candidates, strongest, priority_sites)
    zones = zone_criteria(candidates, domain.zone_types(), strongest, priority_zones)

    A = create_decision_matrix(
        candidates,
        domain.centrality.in_conn[candidates],
        domain.centrality.out_conn[candidates],
        np.asarray(sum_cover)[candidates],
        domain.site_k()[candidates],
        domain.site_area()[candidates],
        waves[candidates],
        heat[candidates],
        predec,
        zones,
        criteria.deployed_coral_risk_tol,
    )
    if A.is_empty:
        warnings.warn("No candidate sites remain after filtering",
                      UserWarning, stacklevel=2)
        return SelectionResult(_NO_SITES, _NO_SITES, rankings)

    min_dist = criteria.dist_thresh * domain.median_site_distance
    if not np.isfinite(min_dist):
        min_dist = 0.0
    spacing = dict(distances=domain.distances, min_dist=min_dist,
                   top_n=criteria.top_n)

    seed_sites = _NO_SITES
    if seed:
        S = create_seed_matrix(
            A,
            min_area=area_to_seed * criteria.coral_cover_tol,
            wt_in_conn=criteria.in_seed_connectivity,
            wt_out_conn=criteria.out_seed_connectivity,
            wt_waves=criteria.wave_stress,
            wt_heat=criteria.heat_stress,
            wt_predec=criteria.seed_priority,
            wt_zones=criteria.zone_seed,
            wt_lo_cover=criteria.coral_cover_low,
        )
        if not S.is_empty:
            seed_sites, rankings = rank_sites(
                S, alg, n_site_int, column=SEED_COLUMN,
                previous_ranks=rankings, **spacing)

    shade_sites = _NO_SITES
    if shade:
        H = create_shade_matrix(
            A,
            wt_conn=criteria.shade_connectivity,
            wt_waves=criteria.wave_stress,
            wt_heat=criteria.heat_stress,
            wt_predec=criteria.shade_priority,
            wt_zones=criteria.zone_shade,
            wt_hi_cover=criteria.coral_cover_high,
        )
        shade_sites, rankings = rank_sites(
            H, alg, n_site_int, column=SHADE_COLUMN,
            previous_ranks=rankings, **spacing)

    return SelectionResult(freeze(seed_sites), freeze(shade_sites), rankings)


# ═══════════════════════════════════════════════════════════════════════
# REPLICATE LOOP
# ═══════════════════════════════════════════════════════════════════════

def site_selection(
    domain: Domain,
    config: SelectionConfig,
    timestep: int,
    n_reps: Optional[int] = None,
    algorithm=None,
    criteria: Optional[CriteriaSection] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> np.ndarray:
    """Seed and shade ranks for every replicate at one timestep.

    Args:
        domain: Reef domain with heat-stress and wave cubes.
        config: Site-selection configuration.
        timestep: Index into the environmental cubes.
        n_reps: Replicates to use; defaults to ``config.selection.n_reps``.
        algorithm: MCDAAlgorithm or code; defaults to ``criteria.guided``.
        criteria: Overrides ``config.criteria`` (e.g. a scenario row).
        progress_callback: Called as ``progress_callback(done, n_reps)``
            after each replicate.

    Returns:
        (n_reps, n_candidates, 3) int array of
        [site_index, seed_rank, shade_rank] per candidate site.

    Raises:
        ConfigError: On invalid configuration, before any replicate runs.
        DataError: If the timestep or replicate count exceeds the cubes.
    """
    validate_config(config)
    if criteria is None:
        criteria = config.criteria
    else:
        validate_criteria(criteria)
    alg = as_algorithm(criteria.guided if algorithm is None else algorithm)

    sel = config.selection
    if n_reps is None:
        n_reps = sel.n_reps
    if n_reps <= 0:
        raise ConfigError(f"n_reps must be > 0, got {n_reps}")
    if n_reps > domain.n_reps:
        raise DataError(
            f"Requested {n_reps} replicates but the domain has {domain.n_reps}"
        )
    if not (0 <= timestep < domain.n_timesteps):
        raise DataError(
            f"timestep {timestep} out of range [0, {domain.n_timesteps})"
        )

    priority = resolve_priority_sites(domain, sel.priority_sites)
    candidates = candidate_sites(domain, criteria)
    ranks = np.zeros((n_reps, len(candidates), 3), dtype=np.int64)
    if candidates.size == 0:
        warnings.warn("No candidate sites within the depth window",
                      UserWarning, stacklevel=2)
        return ranks

    sum_cover = domain.sum_cover()

    def _run_replicate(rep: int) -> int:
        result = guided_site_selection(
            domain, criteria, candidates,
            heat_stress_prob=domain.dhw[timestep, :, rep],
            wave_damage_prob=domain.waves[timestep, :, rep],
            n_site_int=sel.n_site_int,
            area_to_seed=config.seeding.area_to_seed,
            algorithm=alg,
            priority_sites=priority,
            priority_zones=sel.priority_zones,
            sum_cover=sum_cover,
        )
        ranks[rep] = result.rankings.ranks
        return rep

    if sel.parallel_workers > 1 and n_reps > 1:
        done = 0
        with ThreadPoolExecutor(max_workers=min(sel.parallel_workers, n_reps)) as pool:
            futures = [pool.submit(_run_replicate, rep) for rep in range(n_reps)]
            for future in as_completed(futures):
                future.result()
                done += 1
                if progress_callback is not None:
                    progress_callback(done, n_reps)
    else:
        for rep in range(n_reps):
            _run_replicate(rep)
            if progress_callback is not None:
                progress_callback(rep + 1, n_reps)

    return ranks


# ═══════════════════════════════════════════════════════════════════════
# SEEDING
# ═══════════════════════════════════════════════════════════════════════

def seed_allocation(
    domain: Domain,
    seed_sites,
    seeding: SeedingSection,
    sum_cover: Optional[np.ndarray] = None,
) -> SeedAllocation:
    """Distribute the configured seeded area over the chosen seed sites.

    Free space is k × area minus the area already under coral.
    """
    if sum_cover is None:
        sum_cover = domain.sum_cover()
    area = domain.site_area()
    avail = available_space(area, domain.site_k(),
                            np.asarray(sum_cover, dtype=np.float64) * area)
    return distribute_seeded_corals(area, seed_sites, avail, seeding.seeded_area)
