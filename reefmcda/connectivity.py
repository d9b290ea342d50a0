"""Connectivity module.

Turns transition-probability (TP) matrices between reef sites into a
directed network and derives the per-site connectivity criteria used by
the decision matrix.

Core functions:
  - prepare_connectivity: validate a TP matrix, apply the weak-link cutoff
  - load_connectivity: read TP CSV file(s), aggregate, align to site IDs
  - connectivity_strength: betweenness, 1 − Katz, strongest predecessor

A nonzero cell (i, j) of the TP matrix is an edge i → j.  Centrality is
computed on the unweighted graph; the TP magnitudes only decide whether
an edge exists (after the cutoff).

Sign convention: out_conn = 1 − Katz centrality.  Downstream weights
assume this polarity, so it is preserved as-is.
"""

from __future__ import annotations

import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Tuple, Union

import networkx as nx
import numpy as np
import pandas as pd
from scipy import sparse

from reefmcda.errors import DataError
from reefmcda.types import NO_PREDECESSOR, CentralityVectors, freeze


# Katz attenuation factor
KATZ_ALPHA = 0.3

# Default threshold below which transition probabilities are treated as
# "no connection"
DEFAULT_CON_CUTOFF = 1e-6

_AGG_FUNCS = {
    'mean': np.mean,
    'median': np.median,
    'max': np.max,
    'min': np.min,
}


# ═══════════════════════════════════════════════════════════════════════
# VALIDATION & CUTOFF
# ═══════════════════════════════════════════════════════════════════════

def _check_tp_matrix(tp: np.ndarray) -> None:
    """Raise DataError unless ``tp`` is a square matrix of values in [0, 1]."""
    if tp.ndim != 2 or tp.shape[0] != tp.shape[1]:
        raise DataError(
            f"Connectivity matrix must be square, got shape {tp.shape}"
        )
    if not np.all(np.isfinite(tp)):
        raise DataError("Connectivity matrix contains NaN or Inf values")
    if tp.size and (tp.min() < 0.0 or tp.max() > 1.0):
        raise DataError(
            f"Connectivity data not scaled between 0 - 1 "
            f"(min={tp.min():.4g}, max={tp.max():.4g})"
        )


def _to_dense(tp) -> np.ndarray:
    if sparse.issparse(tp):
        return np.asarray(tp.toarray(), dtype=np.float64)
    return np.asarray(tp, dtype=np.float64)


def prepare_connectivity(
    tp,
    con_cutoff: float = DEFAULT_CON_CUTOFF,
) -> sparse.csr_matrix:
    """Validate a TP matrix and drop weak connections.

    Args:
        tp: (N, N) transition probabilities, dense or scipy.sparse.
        con_cutoff: Entries strictly below this value are set to 0.

    Returns:
        Read-only CSR matrix with explicit zeros eliminated.

    Raises:
        DataError: If the matrix is not square or values fall outside [0, 1].
    """
    if con_cutoff < 0:
        raise DataError(f"con_cutoff must be >= 0, got {con_cutoff}")

    dense = _to_dense(tp).copy()
    _check_tp_matrix(dense)

    if con_cutoff > 0.0:
        dense[dense < con_cutoff] = 0.0

    csr = sparse.csr_matrix(dense)
    csr.eliminate_zeros()
    csr.data.setflags(write=False)
    return csr


# ═══════════════════════════════════════════════════════════════════════
# CSV LOADING
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, eq=False)
class ConnectivityData:
    """TP matrix aligned to a site ordering.

    matrix:    (N, N) read-only CSR transition probabilities
    site_ids:  IDs of the N sites kept, in matrix order
    truncated: IDs removed because they appear on only one side
    """
    matrix: sparse.csr_matrix
    site_ids: Tuple[str, ...]
    truncated: Tuple[str, ...]


def _read_tp_csv(path: Path, swap: bool) -> pd.DataFrame:
    """Read one TP file; first column holds source-site labels."""
    df = pd.read_csv(path, comment='#', na_values=['NA'], index_col=0)
    if swap:
        df = df.T
    return df.astype(np.float64).fillna(0.0)


def _strip_version(label) -> str:
    """Connectivity IDs may carry a ``_v<n>`` suffix; drop it."""
    return str(label).split('_v', 1)[0]


def _collect_tp_files(file_loc: Path) -> List[List[Path]]:
    """Group CSV files by directory (one group per year/source folder)."""
    groups = []
    for root, _, files in sorted(os.walk(file_loc)):
        csvs = sorted(Path(root) / f for f in files if f.lower().endswith('.csv'))
        if csvs:
            groups.append(csvs)
    return groups


def load_connectivity(
    file_loc: Union[str, Path],
    site_ids: Sequence,
    con_cutoff: float = DEFAULT_CON_CUTOFF,
    agg: str = 'mean',
    swap: bool = False,
) -> ConnectivityData:
    """Load connectivity data and align it to the given site IDs.

    If ``file_loc`` is a directory, every CSV below it is read.  Files in
    the same folder are aggregated first (e.g. mean TP for one year), then
    the per-folder results are aggregated.  All files are assumed to share
    the row/column order of the first file read.

    Args:
        file_loc: CSV file or directory of CSV files.
        site_ids: Unique site IDs in their expected order.  Missing
            entries (None/NaN) are dropped with a warning.
        con_cutoff: Weak-connection threshold, see prepare_connectivity.
        agg: Aggregation across files: 'mean', 'median', 'max' or 'min'.
        swap: Transpose each file (rows become receiving sites).

    Returns:
        ConnectivityData with the aligned matrix.

    Raises:
        FileNotFoundError: If ``file_loc`` does not exist.
        DataError: On inconsistent file shapes or if no IDs match.
    """
    if agg not in _AGG_FUNCS:
        raise DataError(
            f"agg must be one of {sorted(_AGG_FUNCS)}, got '{agg}'"
        )
    agg_func = _AGG_FUNCS[agg]

    cleaned = [s for s in site_ids if s is not None and not pd.isna(s)]
    if len(cleaned) != len(site_ids):
        warnings.warn(
            "Removing entries marked as missing from provided list of sites.",
            UserWarning,
            stacklevel=2,
        )
    unique_ids = [str(s) for s in cleaned]

    file_loc = Path(file_loc)
    if file_loc.is_dir():
        groups = _collect_tp_files(file_loc)
        if not groups:
            raise FileNotFoundError(f"No connectivity CSV files found in {file_loc}")
    elif file_loc.is_file():
        groups = [[file_loc]]
    else:
        raise FileNotFoundError(f"Could not find location: {file_loc}")

    first = _read_tp_csv(groups[0][0], swap)
    con_ids = [_strip_version(c) for c in first.columns]
    shape = first.shape

    per_group = []
    for files in groups:
        mats = []
        for fn in files:
            df = first if fn == groups[0][0] else _read_tp_csv(fn, swap)
            if df.shape != shape:
                raise DataError(
                    f"Connectivity file {fn} has shape {df.shape}, "
                    f"expected {shape}"
                )
            mats.append(df.to_numpy())
        per_group.append(agg_func(np.stack(mats), axis=0))
    extracted = agg_func(np.stack(per_group), axis=0)

    con_set = set(con_ids)
    site_set = set(unique_ids)
    invalid = [x for x in con_ids if x not in site_set]
    invalid += [x for x in unique_ids if x not in con_set]
    valid = [x for x in unique_ids if x in con_set]

    if not valid:
        raise DataError("All sites appear to be missing from data set. Aborting.")
    if invalid:
        warnings.warn(
            f"The following sites (n={len(invalid)}) were not found in "
            f"site_ids and were removed:\n{invalid}",
            UserWarning,
            stacklevel=2,
        )

    order = [con_ids.index(x) for x in valid]
    extracted = extracted[np.ix_(order, order)]

    return ConnectivityData(
        matrix=prepare_connectivity(extracted, con_cutoff),
        site_ids=tuple(valid),
        truncated=tuple(invalid),
    )


# ═══════════════════════════════════════════════════════════════════════
# CENTRALITY
# ═══════════════════════════════════════════════════════════════════════

def connectivity_graph(tp) -> nx.DiGraph:
    """Directed graph with an edge i → j for every nonzero TP[i, j]."""
    csr = sparse.csr_matrix(_to_dense(tp))
    csr.eliminate_zeros()
    return nx.from_scipy_sparse_array(csr, create_using=nx.DiGraph)


def strongest_predecessors(g: nx.DiGraph) -> np.ndarray:
    """Strongest predecessor of every node.

    Among a node's in-neighbours, picks the one that itself has the most
    in-neighbours.  Ties go to the lowest node index.  Nodes without
    in-neighbours get NO_PREDECESSOR.
    """
    n = g.number_of_nodes()
    n_in = np.array([len(g.pred[v]) for v in range(n)], dtype=np.int64)
    strong_pred = np.full(n, NO_PREDECESSOR, dtype=np.int64)
    for v in range(n):
        incoming = sorted(g.pred[v])
        if not incoming:
            continue
        # np.argmax returns the first maximum → lowest index on ties
        strong_pred[v] = incoming[int(np.argmax(n_in[incoming]))]
    return strong_pred


def connectivity_strength(tp) -> CentralityVectors:
    """Connectivity criteria for every site.

    in_conn:  betweenness centrality (normalised, unweighted)
    out_conn: 1 − Katz centrality (alpha = 0.3, unweighted, L2-normalised)
    strongest_predecessor: see strongest_predecessors()

    Args:
        tp: (N, N) TP matrix, dense or scipy.sparse, values in [0, 1].

    Returns:
        CentralityVectors with read-only arrays.

    Raises:
        DataError: If ``tp`` is not square or has values outside [0, 1].
    """
    dense = _to_dense(tp)
    _check_tp_matrix(dense)
    n = dense.shape[0]

    if n == 0:
        empty = np.zeros(0, dtype=np.float64)
        return CentralityVectors(
            in_conn=freeze(empty),
            out_conn=freeze(empty),
            strongest_predecessor=freeze(np.zeros(0, dtype=np.int64)),
        )

    g = connectivity_graph(dense)

    between = nx.betweenness_centrality(g, normalized=True, weight=None)
    katz = nx.katz_centrality_numpy(g, alpha=KATZ_ALPHA, beta=1.0,
                                    normalized=True, weight=None)

    in_conn = np.array([between[v] for v in range(n)], dtype=np.float64)
    out_conn = 1.0 - np.array([katz[v] for v in range(n)], dtype=np.float64)

    return CentralityVectors(
        in_conn=freeze(in_conn),
        out_conn=freeze(out_conn),
        strongest_predecessor=freeze(strongest_predecessors(g)),
    )
