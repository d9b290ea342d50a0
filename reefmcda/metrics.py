"""Rank summaries across replicates.

Input is the [replicate, candidate_site, {site_index, seed_rank,
shade_rank}] array returned by site_selection.  Lower rank values are
better (1 = first choice); unselected sites carry the sentinel
n_candidates + 1.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd

from reefmcda.errors import DataError
from reefmcda.ranking import SEED_COLUMN, SHADE_COLUMN


def _check_ranks(ranks) -> np.ndarray:
    ranks = np.asarray(ranks)
    if ranks.ndim != 3 or ranks.shape[2] != 3:
        raise DataError(
            f"ranks must have shape [replicate, site, 3], got {ranks.shape}"
        )
    return ranks


def seed_ranks(ranks) -> np.ndarray:
    """[replicate, site] seeding ranks."""
    return _check_ranks(ranks)[:, :, SEED_COLUMN]


def shade_ranks(ranks) -> np.ndarray:
    """[replicate, site] shading ranks."""
    return _check_ranks(ranks)[:, :, SHADE_COLUMN]


def _top_n(ranks, site_ids: Sequence[str], n: int, column: int) -> pd.DataFrame:
    ranks = _check_ranks(ranks)
    columns = ['site_index', 'reef_siteid', 'mean_rank']
    if n < 0:
        raise ValueError(f"n must be >= 0, got {n}")

    n_sites = ranks.shape[1]
    if n_sites == 0 or ranks.shape[0] == 0 or n == 0:
        return pd.DataFrame(columns=columns)

    site_index = ranks[0, :, 0].astype(np.int64)
    mean_rank = ranks[:, :, column].mean(axis=0)
    sentinel = n_sites + 1
    if np.all(mean_rank == sentinel):
        return pd.DataFrame(columns=columns)

    site_ids = np.asarray(site_ids, dtype=object)
    df = pd.DataFrame({
        'site_index': site_index,
        'reef_siteid': site_ids[site_index],
        'mean_rank': mean_rank,
    })
    df = df.sort_values(['mean_rank', 'site_index'], kind='mergesort')
    return df.head(n).reset_index(drop=True)


def top_n_seeded_sites(ranks, site_ids: Sequence[str], n: int) -> pd.DataFrame:
    """Top ``n`` seeding sites by mean rank across replicates.

    Args:
        ranks: [replicate, site, 3] rank array.
        site_ids: Unique site IDs for the whole domain, by site index.
        n: Number of sites to return.

    Returns:
        DataFrame with columns site_index, reef_siteid, mean_rank, best
        first.  Empty when no site was ever selected.
    """
    return _top_n(ranks, site_ids, n, SEED_COLUMN)


def top_n_shaded_sites(ranks, site_ids: Sequence[str], n: int) -> pd.DataFrame:
    """Top ``n`` shading sites by mean rank across replicates."""
    return _top_n(ranks, site_ids, n, SHADE_COLUMN)


def selection_frequency(ranks, column: int = SEED_COLUMN) -> np.ndarray:
    """Fraction of replicates in which each candidate site was selected."""
    ranks = _check_ranks(ranks)
    sentinel = ranks.shape[1] + 1
    if ranks.shape[0] == 0:
        return np.zeros(ranks.shape[1], dtype=np.float64)
    return (ranks[:, :, column] < sentinel).mean(axis=0)
