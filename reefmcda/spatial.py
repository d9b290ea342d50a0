"""Spatial domain module.

Defines the reef domain: sites, their connectivity network, pairwise
distances and the environmental projections used for site selection.

Core classes:
  - SiteDefinition: static attributes of a reef site (area, k, depth, zone)
  - Domain: immutable collection of sites + derived connectivity metrics

Core functions:
  - haversine_km: great-circle distance between sites
  - site_distances: pairwise distance matrix and median distance
  - build_domain: validate inputs and compute derived fields once
  - build_domain_from_config: load connectivity per SelectionConfig, then build
  - get_5site_definitions: small example domain used in tests

Derived fields (centrality, distances) are computed eagerly in
build_domain and never recomputed; every array on a Domain is read-only,
so replicate workers can share it.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy import sparse

from reefmcda.config import SelectionConfig
from reefmcda.connectivity import (
    DEFAULT_CON_CUTOFF,
    ConnectivityData,
    connectivity_strength,
    load_connectivity,
    prepare_connectivity,
)
from reefmcda.errors import DataError
from reefmcda.rng import create_rng_hierarchy, random_probability_cube
from reefmcda.types import CentralityVectors, freeze


DEFAULT_CORAL_TYPES = ("tabular_acropora", "corymbose_acropora", "small_massives")


# ═══════════════════════════════════════════════════════════════════════
# GEODESIC DISTANCE
# ═══════════════════════════════════════════════════════════════════════

_EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1, lon1, lat2, lon2):
    """Great-circle distance in km between (lat, lon) points.

    Accepts scalars or broadcastable arrays in decimal degrees.
    """
    rlat1 = np.radians(lat1)
    rlat2 = np.radians(lat2)
    dlat = rlat2 - rlat1
    dlon = np.radians(lon2) - np.radians(lon1)
    a = (np.sin(dlat / 2.0) ** 2
         + np.cos(rlat1) * np.cos(rlat2) * np.sin(dlon / 2.0) ** 2)
    return 2.0 * _EARTH_RADIUS_KM * np.arctan2(np.sqrt(a), np.sqrt(1.0 - a))


def site_distances(lats, lons) -> Tuple[np.ndarray, float]:
    """Pairwise site distances.

    Args:
        lats: (N,) site latitudes.
        lons: (N,) site longitudes.

    Returns:
        (N, N) distance matrix in km with NaN on the diagonal, and the
        median of the off-diagonal distances (NaN if N < 2).
    """
    lats = np.asarray(lats, dtype=np.float64)
    lons = np.asarray(lons, dtype=np.float64)
    dist = haversine_km(lats[:, None], lons[:, None], lats[None, :], lons[None, :])
    dist = np.array(dist, dtype=np.float64)
    np.fill_diagonal(dist, np.nan)
    off_diag = dist[~np.isnan(dist)]
    median = float(np.median(off_diag)) if off_diag.size else float('nan')
    return dist, median


# ═══════════════════════════════════════════════════════════════════════
# SITE DEFINITION
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SiteDefinition:
    """Static attributes of a single reef site."""
    reef_siteid: str
    area: float              # m²
    k: float                 # maximum coral cover, % of site area
    depth: float             # median depth (m)
    zone_type: str = ""      # e.g. "green", "orange", "general"
    lat: float = 0.0         # decimal degrees N
    lon: float = 0.0         # decimal degrees E


# ═══════════════════════════════════════════════════════════════════════
# DOMAIN
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, eq=False)
class Domain:
    """Reef domain with connectivity, distances and projections.

    Construct with build_domain().  Arrays are indexed by site index
    (position in ``sites``); environmental cubes are
    [timestep, site, replicate].
    """
    name: str
    sites: Tuple[SiteDefinition, ...]
    connectivity: sparse.csr_matrix
    centrality: CentralityVectors
    distances: np.ndarray
    median_site_distance: float
    coral_cover: np.ndarray          # (n_types, N) cover as fraction of site area
    coral_types: Tuple[str, ...]
    dhw: np.ndarray                  # heat-stress probability cube
    waves: np.ndarray                # wave-damage probability cube
    removed_sites: Tuple[str, ...] = ()
    _index: Dict[str, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(
            self, '_index',
            {s.reef_siteid: i for i, s in enumerate(self.sites)},
        )

    # ── Sizes ─────────────────────────────────────────────────────────

    @property
    def n_sites(self) -> int:
        return len(self.sites)

    @property
    def n_timesteps(self) -> int:
        return self.dhw.shape[0]

    @property
    def n_reps(self) -> int:
        return self.dhw.shape[2]

    # ── Site attributes ───────────────────────────────────────────────

    @property
    def site_ids(self) -> Tuple[str, ...]:
        return tuple(s.reef_siteid for s in self.sites)

    def site_index(self, reef_siteid: str) -> int:
        """Site index for a unique site ID."""
        try:
            return self._index[reef_siteid]
        except KeyError:
            raise KeyError(f"Unknown site ID '{reef_siteid}'") from None

    def site_area(self) -> np.ndarray:
        return np.array([s.area for s in self.sites], dtype=np.float64)

    def site_k(self) -> np.ndarray:
        """Maximum coral cover as a proportion of site area."""
        return np.array([s.k for s in self.sites], dtype=np.float64) / 100.0

    def site_k_area(self) -> np.ndarray:
        """Maximum coral cover in absolute area (m²)."""
        return self.site_k() * self.site_area()

    def depths(self) -> np.ndarray:
        return np.array([s.depth for s in self.sites], dtype=np.float64)

    def zone_types(self) -> np.ndarray:
        return np.array([s.zone_type for s in self.sites], dtype=object)

    def sum_cover(self) -> np.ndarray:
        """Total coral cover per site, summed over coral types."""
        return self.coral_cover.sum(axis=0)

    def relative_leftover_space(self, cover: Optional[np.ndarray] = None) -> np.ndarray:
        """max(k − cover, 0) per site; cover defaults to the initial total."""
        if cover is None:
            cover = self.sum_cover()
        return np.maximum(self.site_k() - np.asarray(cover, dtype=np.float64), 0.0)

    def summary(self) -> str:
        """Human-readable summary of the domain."""
        lines = [
            f"Domain: {self.name}",
            f"  Number of sites: {self.n_sites}"
            + (f" ({len(self.removed_sites)} removed)" if self.removed_sites else ""),
            f"  Connections: {self.connectivity.nnz}",
            f"  Timesteps: {self.n_timesteps}  Replicates: {self.n_reps}",
            f"  Median site distance: {self.median_site_distance:.2f} km",
        ]
        return "\n".join(lines)


# ═══════════════════════════════════════════════════════════════════════
# DOMAIN BUILDER
# ═══════════════════════════════════════════════════════════════════════

def _check_cube(name: str, cube, n_sites: int) -> np.ndarray:
    cube = np.asarray(cube, dtype=np.float64)
    if cube.ndim != 3 or cube.shape[1] != n_sites:
        raise DataError(
            f"{name} must have shape [timestep, {n_sites}, replicate], "
            f"got {cube.shape}"
        )
    if not np.all(np.isfinite(cube)):
        raise DataError(f"{name} contains NaN or Inf values")
    if cube.size and (cube.min() < 0.0 or cube.max() > 1.0):
        raise DataError(f"{name} values must be probabilities in [0, 1]")
    return cube


def _placeholder_cover(rng: np.random.Generator, k: np.ndarray,
                       n_types: int) -> np.ndarray:
    """Random cover per type whose total stays below k at every site."""
    share = rng.random((n_types, len(k)))
    share /= share.sum(axis=0, keepdims=True)
    return share * (k * rng.random(len(k)))[None, :]


def build_domain(
    sites: Sequence[SiteDefinition],
    connectivity,
    coral_cover: Optional[np.ndarray] = None,
    dhw: Optional[np.ndarray] = None,
    waves: Optional[np.ndarray] = None,
    n_timesteps: int = 1,
    n_reps: int = 50,
    coral_types: Optional[Sequence[str]] = None,
    con_cutoff: float = DEFAULT_CON_CUTOFF,
    seed: int = 42,
    name: str = "domain",
) -> Domain:
    """Build a Domain, computing all derived fields once.

    Args:
        sites: Site definitions.
        connectivity: (N, N) TP matrix aligned with ``sites``, or a
            ConnectivityData from load_connectivity (sites missing from it
            are dropped and recorded in ``removed_sites``).
        coral_cover: (n_types, N) initial cover as fraction of site area.
            None → random placeholder cover (with a warning).
        dhw, waves: [timestep, site, replicate] probability cubes.
            None → zero cubes of shape (n_timesteps, N, n_reps).
        n_timesteps, n_reps: Cube shape when a cube is not supplied.
        coral_types: Coral type names (rows of ``coral_cover``).
        con_cutoff: Weak-connection threshold.
        seed: Seed for the placeholder cover.
        name: Human-readable domain name.

    Returns:
        Immutable Domain.

    Raises:
        DataError: On inconsistent shapes or out-of-range values.
    """
    sites = list(sites)
    removed: Tuple[str, ...] = ()

    if isinstance(connectivity, ConnectivityData):
        by_id = {s.reef_siteid: s for s in sites}
        missing = [sid for sid in connectivity.site_ids if sid not in by_id]
        if missing:
            raise DataError(f"Connectivity sites not in site table: {missing}")
        kept_ids = set(connectivity.site_ids)
        removed = tuple(s.reef_siteid for s in sites if s.reef_siteid not in kept_ids)
        sites = [by_id[sid] for sid in connectivity.site_ids]
        tp = prepare_connectivity(connectivity.matrix, con_cutoff)
    else:
        tp = prepare_connectivity(connectivity, con_cutoff)

    n = len(sites)
    if tp.shape[0] != n:
        raise DataError(
            f"Connectivity matrix is {tp.shape[0]}x{tp.shape[1]} "
            f"but {n} sites were given"
        )
    ids = [s.reef_siteid for s in sites]
    if len(set(ids)) != n:
        raise DataError("Site IDs must be unique")
    for s in sites:
        if s.area <= 0 or not (0.0 <= s.k <= 100.0):
            raise DataError(
                f"Site '{s.reef_siteid}': area must be > 0 and k in [0, 100]"
            )

    k = np.array([s.k for s in sites], dtype=np.float64) / 100.0

    if coral_cover is None:
        n_types = len(coral_types) if coral_types is not None else len(DEFAULT_CORAL_TYPES)
        warnings.warn("Using random initial coral cover", UserWarning, stacklevel=2)
        rngs = create_rng_hierarchy(seed, n_reps=0)
        cover = _placeholder_cover(rngs['cover'], k, n_types)
    else:
        cover = np.asarray(coral_cover, dtype=np.float64)
        if cover.ndim == 1:
            cover = cover[None, :]
        if cover.ndim != 2 or cover.shape[1] != n:
            raise DataError(
                f"coral_cover must have shape [type, {n}], got {cover.shape}"
            )
        if not np.all(np.isfinite(cover)) or np.any(cover < 0):
            raise DataError("coral_cover must be finite and non-negative")
        if np.any(cover.sum(axis=0) > 1.0 + 1e-9):
            raise DataError("Total coral cover exceeds 1 at some sites")

    if coral_types is None:
        coral_types = (DEFAULT_CORAL_TYPES if cover.shape[0] == len(DEFAULT_CORAL_TYPES)
                       else tuple(f"type_{i}" for i in range(cover.shape[0])))
    coral_types = tuple(coral_types)
    if len(coral_types) != cover.shape[0]:
        raise DataError(
            f"{len(coral_types)} coral type names for {cover.shape[0]} cover rows"
        )

    if dhw is None:
        dhw = np.zeros((n_timesteps, n, n_reps), dtype=np.float64)
    if waves is None:
        waves = np.zeros((n_timesteps, n, n_reps), dtype=np.float64)
    dhw = _check_cube("dhw", dhw, n)
    waves = _check_cube("waves", waves, n)
    if dhw.shape != waves.shape:
        raise DataError(
            "Heat stress and wave cubes must share timesteps and replicates, "
            f"got {dhw.shape} vs {waves.shape}"
        )

    lats = np.array([s.lat for s in sites], dtype=np.float64)
    lons = np.array([s.lon for s in sites], dtype=np.float64)
    dist, median = site_distances(lats, lons)

    return Domain(
        name=name,
        sites=tuple(sites),
        connectivity=tp,
        centrality=connectivity_strength(tp),
        distances=freeze(dist),
        median_site_distance=median,
        coral_cover=freeze(cover),
        coral_types=coral_types,
        dhw=freeze(dhw),
        waves=freeze(waves),
        removed_sites=removed,
    )


def build_domain_from_config(
    config: SelectionConfig,
    sites: Sequence[SiteDefinition],
    coral_cover: Optional[np.ndarray] = None,
    dhw: Optional[np.ndarray] = None,
    waves: Optional[np.ndarray] = None,
    n_timesteps: int = 1,
    coral_types: Optional[Sequence[str]] = None,
    name: str = "domain",
) -> Domain:
    """Build a Domain with connectivity read from ``config.connectivity``.

    The TP data under ``connectivity.tp_path`` is loaded with the
    configured cutoff, aggregation and orientation.  ``selection.seed``
    seeds the placeholder cover and ``selection.n_reps`` sizes any
    environmental cube that is not supplied.

    Raises:
        FileNotFoundError: If ``tp_path`` does not exist.
        DataError: On inconsistent connectivity or site data.
    """
    con = config.connectivity
    sel = config.selection
    data = load_connectivity(
        con.tp_path,
        [s.reef_siteid for s in sites],
        con_cutoff=con.con_cutoff,
        agg=con.agg,
        swap=con.swap,
    )
    return build_domain(
        sites,
        data,
        coral_cover=coral_cover,
        dhw=dhw,
        waves=waves,
        n_timesteps=n_timesteps,
        n_reps=sel.n_reps,
        coral_types=coral_types,
        con_cutoff=con.con_cutoff,
        seed=sel.seed,
        name=name,
    )


# ═══════════════════════════════════════════════════════════════════════
# 5-SITE EXAMPLE DOMAIN
# ═══════════════════════════════════════════════════════════════════════

def get_5site_definitions() -> List[SiteDefinition]:
    """Five example sites on a single reef.

    The last site has k = 0 (no coral habitat) and is never a candidate.
    """
    return [
        SiteDefinition("reef1_s1", area=1000.0, k=80.0, depth=6.0,
                       zone_type="green", lat=-16.75, lon=145.95),
        SiteDefinition("reef1_s2", area=800.0, k=75.0, depth=8.0,
                       zone_type="orange", lat=-16.78, lon=145.99),
        SiteDefinition("reef1_s3", area=600.0, k=95.0, depth=9.5,
                       zone_type="general", lat=-16.82, lon=146.02),
        SiteDefinition("reef1_s4", area=200.0, k=70.0, depth=12.0,
                       zone_type="green", lat=-16.86, lon=146.08),
        SiteDefinition("reef1_s5", area=200.0, k=0.0, depth=14.0,
                       zone_type="general", lat=-16.90, lon=146.12),
    ]


def get_5site_connectivity() -> np.ndarray:
    """TP matrix for the 5 example sites (row = source, column = sink)."""
    return np.array([
        [0.00, 0.30, 0.10, 0.00, 0.00],
        [0.05, 0.00, 0.25, 0.10, 0.00],
        [0.00, 0.05, 0.00, 0.20, 0.05],
        [0.00, 0.00, 0.10, 0.00, 0.15],
        [0.00, 0.00, 0.00, 0.05, 0.00],
    ])


def make_5site_domain(n_timesteps: int = 5, n_reps: int = 4,
                      seed: int = 42) -> Domain:
    """Example domain with random heat/wave projections."""
    defs = get_5site_definitions()
    rngs = create_rng_hierarchy(seed, n_reps)
    dhw = random_probability_cube(rngs, n_timesteps, len(defs), scale=0.6)
    waves = random_probability_cube(rngs, n_timesteps, len(defs), scale=0.4)
    cover = np.array([
        [0.10, 0.20, 0.30, 0.20, 0.00],
        [0.10, 0.20, 0.20, 0.20, 0.00],
        [0.10, 0.10, 0.40, 0.20, 0.00],
    ])
    return build_domain(defs, get_5site_connectivity(), coral_cover=cover,
                        dhw=dhw, waves=waves, seed=seed, name="Example_5site")


# ═══════════════════════════════════════════════════════════════════════
# YAML I/O
# ═══════════════════════════════════════════════════════════════════════

def save_site_definitions_yaml(sites: Sequence[SiteDefinition], path: str) -> None:
    """Save site definitions to a YAML file."""
    import yaml

    data = {"sites": [
        {
            "reef_siteid": s.reef_siteid,
            "area": float(s.area),
            "k": float(s.k),
            "depth": float(s.depth),
            "zone_type": s.zone_type,
            "lat": float(s.lat),
            "lon": float(s.lon),
        }
        for s in sites
    ]}

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, 'w') as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def load_site_definitions_yaml(path: str) -> List[SiteDefinition]:
    """Load site definitions from a YAML file."""
    import yaml

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return [
        SiteDefinition(
            reef_siteid=str(entry["reef_siteid"]),
            area=float(entry["area"]),
            k=float(entry["k"]),
            depth=float(entry["depth"]),
            zone_type=str(entry.get("zone_type", "")),
            lat=float(entry.get("lat", 0.0)),
            lon=float(entry.get("lon", 0.0)),
        )
        for entry in data.get("sites", [])
    ]
