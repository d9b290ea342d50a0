"""Tests for the reef domain (reefmcda.spatial).

Tests:
  1. Distance computation (Haversine)
  2. Pairwise site distances and their median
  3. Domain construction: derived fields, read-only arrays, accessors
  4. Connectivity alignment by site ID
  5. Environmental cube validation
  6. YAML round-trip for site definitions
"""

import numpy as np
import pandas as pd
import pytest

from reefmcda.config import default_config
from reefmcda.connectivity import ConnectivityData, prepare_connectivity
from reefmcda.errors import DataError
from reefmcda.spatial import (
    Domain,
    SiteDefinition,
    build_domain,
    build_domain_from_config,
    get_5site_connectivity,
    get_5site_definitions,
    haversine_km,
    load_site_definitions_yaml,
    make_5site_domain,
    save_site_definitions_yaml,
    site_distances,
)


# ─── Helpers ──────────────────────────────────────────────────────────

COVER = np.array([
    [0.10, 0.20, 0.30, 0.20, 0.00],
    [0.10, 0.20, 0.20, 0.20, 0.00],
])


def _domain(**kwargs):
    kwargs.setdefault("coral_cover", COVER)
    return build_domain(get_5site_definitions(), get_5site_connectivity(), **kwargs)


# ═══════════════════════════════════════════════════════════════════════
# HAVERSINE DISTANCE
# ═══════════════════════════════════════════════════════════════════════

class TestHaversine:
    def test_same_point_zero(self):
        assert haversine_km(-16.0, 146.0, -16.0, 146.0) == pytest.approx(0.0)

    def test_one_degree_latitude(self):
        assert haversine_km(0.0, 146.0, 1.0, 146.0) == pytest.approx(111.19, rel=1e-3)

    def test_symmetric(self):
        d1 = haversine_km(-16.7, 145.9, -18.2, 147.1)
        d2 = haversine_km(-18.2, 147.1, -16.7, 145.9)
        assert d1 == pytest.approx(d2)

    def test_vectorised(self):
        d = haversine_km(np.zeros(3), np.zeros(3), np.array([0.0, 1.0, 2.0]), np.zeros(3))
        assert d.shape == (3,)
        assert d[2] == pytest.approx(2 * d[1])


class TestSiteDistances:
    def test_diagonal_nan(self):
        dist, _ = site_distances([0.0, 0.0, 1.0], [0.0, 1.0, 0.0])
        assert np.all(np.isnan(np.diag(dist)))

    def test_symmetric_and_positive(self):
        dist, _ = site_distances([0.0, 0.5, 1.0], [0.0, 1.0, 0.3])
        off = ~np.eye(3, dtype=bool)
        np.testing.assert_allclose(dist, dist.T)
        assert np.all(dist[off] > 0)

    def test_median(self):
        lats = [0.0, 0.0, 0.0]
        lons = [0.0, 1.0, 3.0]
        dist, median = site_distances(lats, lons)
        # off-diagonal pairs: 1°, 2°, 3° of longitude (each twice)
        assert median == pytest.approx(dist[1, 2])

    def test_single_site(self):
        dist, median = site_distances([0.0], [0.0])
        assert dist.shape == (1, 1)
        assert np.isnan(median)


# ═══════════════════════════════════════════════════════════════════════
# DOMAIN CONSTRUCTION
# ═══════════════════════════════════════════════════════════════════════

class TestBuildDomain:
    def test_basic(self):
        d = _domain()
        assert isinstance(d, Domain)
        assert d.n_sites == 5
        assert d.centrality.n_sites == 5
        assert d.distances.shape == (5, 5)
        assert d.median_site_distance > 0
        assert d.coral_types == ("type_0", "type_1")

    def test_arrays_read_only(self):
        d = _domain()
        for arr in (d.distances, d.coral_cover, d.dhw, d.waves,
                    d.centrality.in_conn, d.centrality.out_conn,
                    d.centrality.strongest_predecessor):
            assert not arr.flags.writeable

    def test_frozen(self):
        d = _domain()
        with pytest.raises(AttributeError):
            d.name = "other"

    def test_identity_equality_and_hash(self):
        d1 = _domain()
        d2 = _domain()
        cache = {d1: "first", d1.centrality: "centrality"}
        assert cache[d1] == "first"
        assert cache[d1.centrality] == "centrality"
        assert d1 == d1
        assert d1 != d2
        assert d1.centrality != d2.centrality

    def test_default_cubes_are_zero(self):
        d = _domain(n_timesteps=3, n_reps=4)
        assert d.dhw.shape == (3, 5, 4)
        assert d.waves.shape == (3, 5, 4)
        assert d.n_timesteps == 3
        assert d.n_reps == 4
        assert not d.dhw.any()

    def test_site_accessors(self):
        d = _domain()
        np.testing.assert_allclose(d.site_area(), [1000, 800, 600, 200, 200])
        np.testing.assert_allclose(d.site_k(), [0.8, 0.75, 0.95, 0.7, 0.0])
        np.testing.assert_allclose(d.site_k_area(), [800, 600, 570, 140, 0])
        np.testing.assert_allclose(d.sum_cover(), [0.2, 0.4, 0.5, 0.4, 0.0])
        np.testing.assert_allclose(d.relative_leftover_space(),
                                   [0.6, 0.35, 0.45, 0.3, 0.0])
        assert d.zone_types()[0] == "green"
        assert d.depths()[3] == 12.0

    def test_leftover_space_clamped(self):
        d = _domain()
        space = d.relative_leftover_space(np.ones(5))
        np.testing.assert_array_equal(space, np.zeros(5))

    def test_site_index_lookup(self):
        d = _domain()
        assert d.site_index("reef1_s3") == 2
        assert d.site_ids[2] == "reef1_s3"
        with pytest.raises(KeyError, match="Unknown site ID"):
            d.site_index("nope")

    def test_placeholder_cover_warns(self):
        with pytest.warns(UserWarning, match="random initial coral cover"):
            d = build_domain(get_5site_definitions(), get_5site_connectivity())
        assert d.coral_cover.shape == (3, 5)
        assert np.all(d.sum_cover() <= d.site_k() + 1e-12)
        assert d.sum_cover()[4] == 0.0

    def test_placeholder_cover_reproducible(self):
        with pytest.warns(UserWarning):
            d1 = build_domain(get_5site_definitions(), get_5site_connectivity(), seed=3)
        with pytest.warns(UserWarning):
            d2 = build_domain(get_5site_definitions(), get_5site_connectivity(), seed=3)
        np.testing.assert_array_equal(d1.coral_cover, d2.coral_cover)

    def test_cutoff_applied(self):
        tp = get_5site_connectivity()
        tp[0, 4] = 1e-9
        d = build_domain(get_5site_definitions(), tp, coral_cover=COVER)
        assert d.connectivity[0, 4] == 0.0

    def test_summary(self):
        text = _domain(name="Test").summary()
        assert "Test" in text
        assert "Number of sites: 5" in text


class TestDomainValidation:
    def test_connectivity_size_mismatch(self):
        with pytest.raises(DataError):
            build_domain(get_5site_definitions(), np.zeros((4, 4)), coral_cover=COVER)

    def test_cube_shape_mismatch(self):
        with pytest.raises(DataError, match="dhw"):
            _domain(dhw=np.zeros((2, 4, 3)))

    def test_cube_timestep_mismatch(self):
        with pytest.raises(DataError):
            _domain(dhw=np.zeros((2, 5, 3)), waves=np.zeros((3, 5, 3)))

    def test_cube_out_of_range(self):
        with pytest.raises(DataError, match="probabilities"):
            _domain(waves=np.full((1, 5, 2), 1.5), dhw=np.zeros((1, 5, 2)))

    def test_cover_shape_mismatch(self):
        with pytest.raises(DataError, match="coral_cover"):
            _domain(coral_cover=np.zeros((2, 4)))

    def test_cover_above_one(self):
        with pytest.raises(DataError):
            _domain(coral_cover=np.full((2, 5), 0.6))

    def test_duplicate_site_ids(self):
        defs = get_5site_definitions()
        defs[1] = defs[0]
        with pytest.raises(DataError, match="unique"):
            build_domain(defs, get_5site_connectivity(), coral_cover=COVER)

    def test_coral_type_names_checked(self):
        with pytest.raises(DataError):
            _domain(coral_types=["a", "b", "c"])


class TestConnectivityAlignment:
    def test_sites_missing_from_connectivity_removed(self):
        ids = ("reef1_s2", "reef1_s1", "reef1_s3", "reef1_s4")
        data = ConnectivityData(
            matrix=prepare_connectivity(get_5site_connectivity()[:4, :4]),
            site_ids=ids,
            truncated=("reef1_s5",),
        )
        d = build_domain(get_5site_definitions(), data, coral_cover=COVER[:, :4])
        assert d.n_sites == 4
        assert d.site_ids == ids
        assert d.removed_sites == ("reef1_s5",)
        assert d.site_index("reef1_s1") == 1

    def test_unknown_connectivity_site(self):
        data = ConnectivityData(
            matrix=prepare_connectivity(np.zeros((1, 1))),
            site_ids=("elsewhere",),
            truncated=(),
        )
        with pytest.raises(DataError):
            build_domain(get_5site_definitions(), data, coral_cover=COVER[:, :1])


# ═══════════════════════════════════════════════════════════════════════
# DOMAIN FROM CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════

SITE_IDS = [s.reef_siteid for s in get_5site_definitions()]


def _write_tp(path, values):
    pd.DataFrame(values, index=SITE_IDS, columns=SITE_IDS).to_csv(path)


def _config_for(tp_path, **connectivity):
    config = default_config()
    config.connectivity.tp_path = str(tp_path)
    config.selection.n_reps = 3
    for key, value in connectivity.items():
        setattr(config.connectivity, key, value)
    return config


class TestBuildDomainFromConfig:
    def test_cutoff_from_config(self, tmp_path):
        _write_tp(tmp_path / "tp.csv", get_5site_connectivity())
        config = _config_for(tmp_path / "tp.csv", con_cutoff=0.2)
        d = build_domain_from_config(config, get_5site_definitions(), coral_cover=COVER)
        assert d.connectivity[0, 1] == pytest.approx(0.30)
        assert d.connectivity[0, 2] == 0.0
        assert d.connectivity[1, 2] == pytest.approx(0.25)
        assert d.connectivity[1, 3] == 0.0

    def test_cubes_sized_by_replicates(self, tmp_path):
        _write_tp(tmp_path / "tp.csv", get_5site_connectivity())
        config = _config_for(tmp_path / "tp.csv")
        d = build_domain_from_config(config, get_5site_definitions(),
                                     coral_cover=COVER, n_timesteps=2)
        assert d.dhw.shape == (2, 5, 3)
        assert d.waves.shape == (2, 5, 3)

    @pytest.mark.parametrize("agg,scale", [("max", 1.0), ("mean", 0.75), ("min", 0.5)])
    def test_aggregation_from_config(self, tmp_path, agg, scale):
        tp = get_5site_connectivity()
        _write_tp(tmp_path / "a.csv", tp)
        _write_tp(tmp_path / "b.csv", 0.5 * tp)
        config = _config_for(tmp_path, agg=agg)
        d = build_domain_from_config(config, get_5site_definitions(), coral_cover=COVER)
        np.testing.assert_allclose(d.connectivity.toarray(), scale * tp)

    def test_swap_from_config(self, tmp_path):
        tp = get_5site_connectivity()
        _write_tp(tmp_path / "tp.csv", tp)
        config = _config_for(tmp_path / "tp.csv", swap=True)
        d = build_domain_from_config(config, get_5site_definitions(), coral_cover=COVER)
        np.testing.assert_allclose(d.connectivity.toarray(), tp.T)

    def test_seed_from_config(self, tmp_path):
        _write_tp(tmp_path / "tp.csv", get_5site_connectivity())
        config = _config_for(tmp_path / "tp.csv")
        config.selection.seed = 7
        with pytest.warns(UserWarning, match="random initial coral cover"):
            d1 = build_domain_from_config(config, get_5site_definitions())
        with pytest.warns(UserWarning):
            d2 = build_domain(get_5site_definitions(), get_5site_connectivity(), seed=7)
        with pytest.warns(UserWarning):
            d3 = build_domain(get_5site_definitions(), get_5site_connectivity(), seed=8)
        np.testing.assert_array_equal(d1.coral_cover, d2.coral_cover)
        assert not np.array_equal(d1.coral_cover, d3.coral_cover)

    def test_missing_tp_path(self, tmp_path):
        config = _config_for(tmp_path / "nowhere")
        with pytest.raises(FileNotFoundError):
            build_domain_from_config(config, get_5site_definitions(), coral_cover=COVER)


class TestExampleDomain:
    def test_make_5site_domain(self):
        d = make_5site_domain(n_timesteps=2, n_reps=3)
        assert d.dhw.shape == (2, 5, 3)
        assert d.dhw.max() <= 0.6
        assert d.waves.max() <= 0.4
        assert d.coral_types[0] == "tabular_acropora"

    def test_reproducible(self):
        d1 = make_5site_domain(seed=9)
        d2 = make_5site_domain(seed=9)
        np.testing.assert_array_equal(d1.dhw, d2.dhw)


# ═══════════════════════════════════════════════════════════════════════
# YAML ROUND TRIP
# ═══════════════════════════════════════════════════════════════════════

class TestSiteYaml:
    def test_round_trip(self, tmp_path):
        defs = get_5site_definitions()
        path = tmp_path / "sites" / "sites.yaml"
        save_site_definitions_yaml(defs, str(path))
        loaded = load_site_definitions_yaml(str(path))
        assert loaded == defs

    def test_optional_fields(self, tmp_path):
        path = tmp_path / "sites.yaml"
        path.write_text("sites:\n  - reef_siteid: a\n    area: 10\n    k: 50\n    depth: 3\n")
        loaded = load_site_definitions_yaml(str(path))
        assert loaded == [SiteDefinition("a", area=10.0, k=50.0, depth=3.0)]
