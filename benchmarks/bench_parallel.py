#!/usr/bin/env python3
"""Benchmark parallel replicate processing.

Ranks a random N-site domain for one timestep at workers=1,2,4,8
and reports wall-clock times.
"""

import time

import numpy as np

from reefmcda.config import default_config
from reefmcda.rng import create_rng_hierarchy, random_probability_cube
from reefmcda.spatial import SiteDefinition, build_domain


def make_domain(n_sites=200, n_reps=50, seed=42):
    """Create a random test domain."""
    rng = np.random.default_rng(seed)
    defs = []
    for i in range(n_sites):
        defs.append(SiteDefinition(
            reef_siteid=f"bench_{i}",
            area=float(rng.uniform(1e3, 5e4)),
            k=float(rng.uniform(20.0, 90.0)),
            depth=float(rng.uniform(3.0, 15.0)),
            zone_type=str(rng.choice(["green", "orange", "general"])),
            lat=-16.0 - float(rng.random()) * 2.0,
            lon=145.5 + float(rng.random()) * 2.0,
        ))

    tp = rng.random((n_sites, n_sites)) * (rng.random((n_sites, n_sites)) > 0.95)
    k = np.array([d.k for d in defs]) / 100.0
    cover = rng.random((3, n_sites)) * (k / 3.0)

    rngs = create_rng_hierarchy(seed, n_reps)
    dhw = random_probability_cube(rngs, 1, n_sites, scale=0.8)
    waves = random_probability_cube(rngs, 1, n_sites, scale=0.5)
    return build_domain(defs, tp, coral_cover=cover, dhw=dhw, waves=waves,
                        seed=seed, name=f"bench_{n_sites}")


def benchmark(n_sites=200, n_reps=50, workers_list=None, algorithm=3):
    """Run benchmark across different worker counts."""
    from reefmcda.selection import site_selection

    if workers_list is None:
        workers_list = [1, 2, 4, 8]

    domain = make_domain(n_sites, n_reps)
    results = {}
    reference = None
    for w in workers_list:
        config = default_config()
        config.selection.n_reps = n_reps
        config.selection.parallel_workers = w
        config.selection.n_site_int = 10

        t0 = time.perf_counter()
        ranks = site_selection(domain, config, timestep=0, algorithm=algorithm)
        elapsed = time.perf_counter() - t0

        if reference is None:
            reference = ranks
        identical = bool(np.array_equal(ranks, reference))
        results[w] = {'elapsed': elapsed, 'identical': identical}
        print(f"  workers={w:2d}  time={elapsed:6.2f}s  "
              f"matches_serial={identical}")

    return results


if __name__ == "__main__":
    print("Benchmark: 200 sites, 50 replicates, TOPSIS")
    print(f"{'='*60}")
    results = benchmark()

    print(f"\n{'='*60}")
    print("Summary:")
    serial_time = results[1]['elapsed']
    for w, r in results.items():
        speedup = serial_time / r['elapsed'] if r['elapsed'] > 0 else 0
        print(f"  workers={w:2d}: {r['elapsed']:6.2f}s  "
              f"speedup={speedup:.2f}x")
