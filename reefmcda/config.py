"""Configuration system for reef site selection.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → sweep overrides

Sections:
  - criteria:     criterion weights, risk tolerances, depth window, spacing
  - selection:    algorithm, number of sites, priorities, replicates
  - connectivity: TP matrix loading options
  - seeding:      seeded coral area per coral type
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import numpy as np
import yaml

from reefmcda.errors import ConfigError
from reefmcda.types import MCDAAlgorithm


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class CriteriaSection:
    """Criterion weights and filter thresholds for one intervention."""
    wave_stress: float = 1.0
    heat_stress: float = 1.0
    in_seed_connectivity: float = 1.0
    out_seed_connectivity: float = 1.0
    shade_connectivity: float = 1.0
    coral_cover_low: float = 1.0       # seeding: favour free space
    coral_cover_high: float = 1.0      # shading: favour existing coral
    seed_priority: float = 1.0
    shade_priority: float = 1.0
    zone_seed: float = 1.0
    zone_shade: float = 1.0
    deployed_coral_risk_tol: float = 1.0   # max heat-stress probability
    coral_cover_tol: float = 0.2       # min free space as fraction of area_to_seed
    depth_min: float = 5.0             # m
    depth_offset: float = 10.0         # m; window is [depth_min, depth_min + offset]
    dist_thresh: float = 0.1           # fraction of median site distance
    top_n: Optional[int] = 10          # alternates allowed under spacing; None = no limit
    guided: int = 1                    # MCDAAlgorithm code


@dataclass
class SelectionSection:
    """Sites to select and replicate control."""
    n_site_int: int = 5
    priority_sites: List[str] = field(default_factory=list)
    priority_zones: List[str] = field(default_factory=lambda: ["green", "orange"])
    n_reps: int = 50
    parallel_workers: int = 1
    seed: int = 42


@dataclass
class ConnectivitySection:
    """Connectivity matrix loading options."""
    tp_path: str = "data/connectivity"
    con_cutoff: float = 1e-6
    agg: str = "mean"          # 'mean', 'median', 'max' or 'min'
    swap: bool = False         # transpose so rows are sources


@dataclass
class SeedingSection:
    """Seeded coral area per coral type (m²)."""
    area_to_seed: float = 1.5
    seeded_area: Dict[str, float] = field(default_factory=lambda: {
        "tabular_acropora": 0.5,
        "corymbose_acropora": 0.5,
        "small_massives": 0.5,
    })


@dataclass
class SelectionConfig:
    """Complete site-selection configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    criteria: CriteriaSection = field(default_factory=CriteriaSection)
    selection: SelectionSection = field(default_factory=SelectionSection)
    connectivity: ConnectivitySection = field(default_factory=ConnectivitySection)
    seeding: SeedingSection = field(default_factory=SeedingSection)


_SECTION_MAP = {
    'criteria': CriteriaSection,
    'selection': SelectionSection,
    'connectivity': ConnectivitySection,
    'seeding': SeedingSection,
}

# Weight fields of CriteriaSection
WEIGHT_FIELDS = (
    'wave_stress', 'heat_stress', 'in_seed_connectivity',
    'out_seed_connectivity', 'shade_connectivity', 'coral_cover_low',
    'coral_cover_high', 'seed_priority', 'shade_priority', 'zone_seed',
    'zone_shade',
)

VALID_AGG = ('mean', 'median', 'max', 'min')


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added

    Args:
        base: Base dictionary (modified in place).
        override: Override dictionary.

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Mapping) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


def _yaml_to_config(data: Dict) -> SelectionConfig:
    """Convert a merged YAML dict to a SelectionConfig."""
    sections = {}
    for key, cls in _SECTION_MAP.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()
    return SelectionConfig(**sections)


def config_to_dict(config: SelectionConfig) -> Dict:
    """Plain nested dict of a config, suitable for yaml.safe_dump."""
    return dataclasses.asdict(config)


# ═══════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════

def validate_criteria(criteria: CriteriaSection) -> None:
    """Validate one criteria section. Raises ConfigError on failure."""
    for name in WEIGHT_FIELDS:
        w = getattr(criteria, name)
        if not np.isfinite(w) or w < 0:
            raise ConfigError(f"criteria.{name} must be a non-negative weight, got {w}")

    if not (0.0 <= criteria.deployed_coral_risk_tol <= 1.0):
        raise ConfigError(
            f"criteria.deployed_coral_risk_tol must be in [0, 1], "
            f"got {criteria.deployed_coral_risk_tol}"
        )
    if criteria.coral_cover_tol < 0:
        raise ConfigError(
            f"criteria.coral_cover_tol must be >= 0 (min_area), "
            f"got {criteria.coral_cover_tol}"
        )
    if criteria.depth_offset < 0:
        raise ConfigError(
            f"criteria.depth_offset must be >= 0, got {criteria.depth_offset}"
        )
    if not (0.0 <= criteria.dist_thresh <= 1.0):
        raise ConfigError(
            f"criteria.dist_thresh must be in [0, 1], got {criteria.dist_thresh}"
        )
    if criteria.top_n is not None and criteria.top_n < 0:
        raise ConfigError(f"criteria.top_n must be >= 0, got {criteria.top_n}")
    valid_algs = {a.value for a in MCDAAlgorithm}
    if criteria.guided not in valid_algs:
        raise ConfigError(
            f"criteria.guided must be one of {sorted(valid_algs)}, "
            f"got {criteria.guided!r}"
        )


def validate_config(config: SelectionConfig) -> None:
    """Validate configuration constraints. Raises ConfigError on failure.

    Checks:
      - Criterion weights are non-negative and tolerances in range
      - Selection counts and replicate settings are positive
      - Connectivity cutoff and aggregation are valid
      - Seeded areas are non-negative
    """
    validate_criteria(config.criteria)

    sel = config.selection
    if sel.n_site_int <= 0:
        raise ConfigError(f"selection.n_site_int must be > 0, got {sel.n_site_int}")
    if sel.n_reps <= 0:
        raise ConfigError(f"selection.n_reps must be > 0, got {sel.n_reps}")
    if sel.parallel_workers < 1:
        raise ConfigError(
            f"selection.parallel_workers must be >= 1, got {sel.parallel_workers}"
        )
    if sel.seed < 0:
        raise ConfigError(f"selection.seed must be non-negative, got {sel.seed}")

    con = config.connectivity
    if con.con_cutoff < 0:
        raise ConfigError(
            f"connectivity.con_cutoff must be >= 0, got {con.con_cutoff}"
        )
    if con.agg not in VALID_AGG:
        raise ConfigError(
            f"connectivity.agg must be one of {VALID_AGG}, got '{con.agg}'"
        )

    seeding = config.seeding
    if seeding.area_to_seed < 0:
        raise ConfigError(
            f"seeding.area_to_seed must be >= 0, got {seeding.area_to_seed}"
        )
    for name, area in seeding.seeded_area.items():
        if area < 0:
            raise ConfigError(
                f"seeding.seeded_area['{name}'] must be >= 0, got {area}"
            )


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    sweep_overrides: Optional[Dict] = None,
) -> SelectionConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → sweep overrides.
    Each layer overrides only the fields it specifies.

    Args:
        base_path: Path to base configuration YAML.
        scenario_path: Optional scenario override YAML.
        sweep_overrides: Optional dict of parameter sweep overrides.

    Returns:
        Validated SelectionConfig.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ConfigError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if scenario_path.exists():
            with open(scenario_path) as f:
                scenario = yaml.safe_load(f) or {}
            deep_merge(config_dict, scenario)

    if sweep_overrides is not None:
        deep_merge(config_dict, sweep_overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def default_config() -> SelectionConfig:
    """Return a SelectionConfig with all default values."""
    config = SelectionConfig()
    validate_config(config)
    return config


# ═══════════════════════════════════════════════════════════════════════
# SCENARIO HELPERS
# ═══════════════════════════════════════════════════════════════════════

def scenario_criteria(row: Mapping) -> CriteriaSection:
    """CriteriaSection from one scenario row (dict or pandas Series).

    Keys that are not criteria fields are ignored; missing fields keep
    their defaults.  Integer fields are cast from the float values a
    scenario table usually carries; ``top_n`` may also be None.

    Raises:
        ConfigError: If an integer field is non-finite or out of range.
    """
    data = {str(k): v for k, v in row.items()}
    for name in ('top_n', 'guided'):
        if name not in data or (name == 'top_n' and data[name] is None):
            continue
        try:
            value = float(data[name])
        except (TypeError, ValueError) as err:
            raise ConfigError(
                f"criteria.{name} must be an integer, got {data[name]!r}"
            ) from err
        if not np.isfinite(value):
            raise ConfigError(f"criteria.{name} must be finite, got {data[name]}")
        data[name] = int(value)
    criteria = _dict_to_section(CriteriaSection, data)
    validate_criteria(criteria)
    return criteria


# Maximum depth window when the configured minimum is below every site
_MAX_DEPTH_WINDOW = 2.0


def adjust_depth_bounds(criteria: CriteriaSection, depths) -> CriteriaSection:
    """Shift the depth window onto the sites when it misses all of them.

    If ``depth_min`` is deeper than the deepest site, the window is moved
    to start at the shallowest site and spans at most 2 m, bounded by the
    deepest site.  Otherwise ``criteria`` is returned unchanged.
    """
    depths = np.asarray(depths, dtype=np.float64)
    if depths.size == 0:
        return criteria
    shallowest = float(depths.min())
    deepest = float(depths.max())
    if criteria.depth_min <= deepest:
        return criteria
    offset = min(deepest - shallowest, _MAX_DEPTH_WINDOW)
    return dataclasses.replace(criteria, depth_min=shallowest, depth_offset=offset)
