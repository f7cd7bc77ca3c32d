#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
topic_clustering.py

Factor loadings and k-means over a standardized user x topic matrix.

- principal_axis_loadings: eigen-decomposition of the column correlation matrix,
  loadings = eigenvector * sqrt(eigenvalue), optional varimax rotation.
  Informational only (heatmap), does not feed the clusterer.
- TopicKMeans: Lloyd relocation with seeded restarts; best restart = lowest
  within-cluster sum of squares, ties keep the earliest restart.
- elbow_curve: WCSS for a range of k (advisory, k is chosen by the caller).
"""
import warnings
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from joblib import Parallel, delayed
from scipy.linalg import eigh
from scipy.spatial.distance import cdist

from segmentation_errors import DegenerateColumnError, InsufficientDataError, InsufficientDimensionalityError

DEFAULT_MAX_ITER = 300


# -------------------------
# Helpers
# -------------------------
def as_array(data) -> Tuple[np.ndarray, Optional[pd.Index], Optional[pd.Index]]:
    """
    Accepts a StandardizedMatrix, a DataFrame or an array.
    Returns (values float64 2-D, row index or None, column index or None).
    """
    if isinstance(getattr(data, "frame", None), pd.DataFrame):
        data = data.frame  # StandardizedMatrix
    if isinstance(data, pd.DataFrame):
        return data.to_numpy(dtype="float64"), data.index, data.columns
    X = np.asarray(data, dtype="float64")
    if X.ndim != 2:
        raise ValueError(f"Expected a 2-D matrix, got shape {X.shape}.")
    return X, None, None


def distinct_row_indices(X: np.ndarray) -> np.ndarray:
    _, idx = np.unique(X, axis=0, return_index=True)
    return np.sort(idx)


# -------------------------
# Factor model
# -------------------------
def varimax(loadings: np.ndarray, gamma: float = 1.0, normalize: bool = True,
            max_iter: int = 1000, tol: float = 1e-12) -> np.ndarray:
    """
    Orthogonal varimax rotation of a p x f loadings matrix.

    With normalize=True rows are scaled to unit communality before rotating
    and scaled back afterwards (Kaiser normalization). Iterates until the
    criterion stops improving by more than tol (relative).
    """
    p, f = loadings.shape
    if normalize:
        h = np.sqrt((loadings ** 2).sum(axis=1))
        h[h == 0] = 1.0
        loadings = loadings / h[:, None]
    rotation = np.eye(f)
    d = 0.0
    for _ in range(max_iter):
        lam = loadings @ rotation
        target = lam ** 3 - (gamma / p) * lam @ np.diag(np.diag(lam.T @ lam))
        u, s, vt = np.linalg.svd(loadings.T @ target)
        rotation = u @ vt
        d_old, d = d, s.sum()
        if d_old != 0 and d <= d_old * (1 + tol):
            break
    rotated = loadings @ rotation
    if normalize:
        rotated = rotated * h[:, None]
    return rotated


def principal_axis_loadings(standardized, n_factors: int, rotation: Optional[str] = "varimax") -> pd.DataFrame:
    """
    Loadings (categories x factors) from the correlation matrix of the standardized data.
    Each factor is sign-normalized so its largest-magnitude loading is positive.
    """
    X, _, columns = as_array(standardized)
    if columns is None:
        columns = pd.RangeIndex(X.shape[1])
    if n_factors < 1:
        raise ValueError("n_factors must be >= 1.")
    if rotation not in (None, "varimax"):
        raise ValueError(f"Unknown rotation: {rotation!r}")
    if X.shape[0] < 2:
        raise InsufficientDataError("Factor extraction needs at least 2 rows.")
    flat = np.isclose(X.std(axis=0), 0.0)
    if flat.any():
        raise DegenerateColumnError(columns[flat])

    rank = int(np.linalg.matrix_rank(X - X.mean(axis=0)))
    if n_factors > rank:
        raise InsufficientDimensionalityError(
            f"Requested {n_factors} factors but the data has rank {rank} "
            f"({X.shape[0]} rows x {X.shape[1]} columns)."
        )

    corr = np.atleast_2d(np.corrcoef(X, rowvar=False))
    eigvals, eigvecs = eigh(corr)
    order = np.argsort(eigvals)[::-1][:n_factors]
    loadings = eigvecs[:, order] * np.sqrt(np.clip(eigvals[order], 0.0, None))

    if rotation == "varimax" and n_factors > 1:
        loadings = varimax(loadings)

    peak = loadings[np.abs(loadings).argmax(axis=0), np.arange(n_factors)]
    signs = np.where(peak < 0, -1.0, 1.0)
    loadings = np.clip(loadings * signs, -1.0, 1.0)

    return pd.DataFrame(
        loadings,
        index=columns,
        columns=[f"factor_{i + 1}" for i in range(n_factors)],
    )


# -------------------------
# K-means
# -------------------------
@dataclass
class RestartResult:
    labels: np.ndarray
    centers: np.ndarray
    inertia: float
    n_iter: int
    n_reseeds: int = 0


def _reseed_index(X: np.ndarray, centers: np.ndarray, rng: np.random.Generator) -> int:
    # prefer rows that do not coincide with an existing center
    free = np.flatnonzero(cdist(X, centers, "sqeuclidean").min(axis=1) > 0)
    if free.size:
        return int(rng.choice(free))
    return int(rng.integers(0, X.shape[0]))


def lloyd_single(X: np.ndarray, k: int, rng: np.random.Generator, max_iter: int = DEFAULT_MAX_ITER,
                 init: Optional[np.ndarray] = None) -> RestartResult:
    """
    One restart: assign/update until labels stop changing.
    Starts from k distinct rows drawn with rng, or from the given init centers.
    """
    if init is not None:
        centers = np.array(init, dtype="float64")
        if centers.shape != (k, X.shape[1]):
            raise ValueError(f"init must have shape {(k, X.shape[1])}, got {centers.shape}.")
    else:
        candidates = distinct_row_indices(X)
        if candidates.size < k:
            raise InsufficientDataError(f"k={k} exceeds the number of distinct rows ({candidates.size}).")
        centers = X[rng.choice(candidates, size=k, replace=False)].copy()
    labels = np.full(X.shape[0], -1, dtype=np.intp)
    n_reseeds = 0
    n_iter = 0

    for n_iter in range(1, max_iter + 1):
        new_labels = cdist(X, centers, "sqeuclidean").argmin(axis=1)
        if np.array_equal(new_labels, labels):
            break
        labels = new_labels
        for j in range(k):
            members = labels == j
            if members.any():
                centers[j] = X[members].mean(axis=0)
            else:
                centers[j] = X[_reseed_index(X, centers, rng)]
                n_reseeds += 1

    # labels consistent with the final centers
    dist = cdist(X, centers, "sqeuclidean")
    labels = dist.argmin(axis=1)
    inertia = float(dist[np.arange(X.shape[0]), labels].sum())
    return RestartResult(labels=labels, centers=centers, inertia=inertia, n_iter=n_iter, n_reseeds=n_reseeds)


def best_restart(runs: Iterable[RestartResult]) -> RestartResult:
    """Lowest inertia; on exact ties the earliest restart wins."""
    best = None
    for run in runs:
        if best is None or run.inertia < best.inertia:
            best = run
    if best is None:
        raise ValueError("No restarts to choose from.")
    return best


class TopicKMeans:
    """
    K-means with r independent seeded restarts.

    Restart i always draws from child i of SeedSequence(seed), so the first r
    restarts are the same whatever r is and best-of-r never gets worse as r grows.
    """

    def __init__(self, n_clusters: int, n_restarts: int = 10, seed: Optional[int] = 42,
                 max_iter: int = DEFAULT_MAX_ITER, n_jobs: Optional[int] = None):
        if n_clusters < 1:
            raise ValueError("n_clusters must be >= 1.")
        if n_restarts < 1:
            raise ValueError("n_restarts must be >= 1.")
        if max_iter < 1:
            raise ValueError("max_iter must be >= 1.")
        self.n_clusters = n_clusters
        self.n_restarts = n_restarts
        self.seed = seed
        self.max_iter = max_iter
        self.n_jobs = n_jobs

    def _restart_generators(self) -> List[np.random.Generator]:
        children = np.random.SeedSequence(self.seed).spawn(self.n_restarts)
        return [np.random.default_rng(child) for child in children]

    def fit(self, standardized):
        X, index, columns = as_array(standardized)
        if X.shape[0] == 0:
            raise InsufficientDataError("Cannot cluster an empty matrix.")
        n_distinct = distinct_row_indices(X).size
        if self.n_clusters > n_distinct:
            raise InsufficientDataError(
                f"k={self.n_clusters} exceeds the number of distinct rows ({n_distinct})."
            )

        rngs = self._restart_generators()
        if self.n_jobs in (None, 1):
            runs = [lloyd_single(X, self.n_clusters, rng, self.max_iter) for rng in rngs]
        else:
            runs = Parallel(n_jobs=self.n_jobs, prefer="threads")(
                delayed(lloyd_single)(X, self.n_clusters, rng, self.max_iter) for rng in rngs
            )

        best = best_restart(runs)
        n_reseeds = sum(run.n_reseeds for run in runs)
        if n_reseeds:
            warnings.warn(f"{n_reseeds} empty cluster(s) reseeded across {self.n_restarts} restarts (k={self.n_clusters}).")

        self.labels_ = best.labels
        self.cluster_centers_ = best.centers
        self.inertia_ = best.inertia
        self.n_iter_ = best.n_iter
        self.n_reseeds_ = n_reseeds
        self.restart_inertias_ = [run.inertia for run in runs]
        self.feature_names_ = columns
        self.assignment_ = pd.Series(
            best.labels, index=index if index is not None else pd.RangeIndex(X.shape[0]), name="cluster"
        )
        return self

    def fit_predict(self, standardized) -> np.ndarray:
        return self.fit(standardized).labels_

    def centers_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            self.cluster_centers_,
            columns=self.feature_names_,
            index=pd.RangeIndex(self.n_clusters, name="cluster"),
        )


def elbow_curve(standardized, k_values: Iterable[int], n_restarts: int = 10, seed: Optional[int] = 42,
                max_iter: int = DEFAULT_MAX_ITER) -> pd.DataFrame:
    """WCSS per k. k values above the number of distinct rows are skipped with a warning."""
    X, _, _ = as_array(standardized)
    rows = []
    for k in k_values:
        try:
            model = TopicKMeans(k, n_restarts=n_restarts, seed=seed, max_iter=max_iter).fit(X)
        except InsufficientDataError as e:
            warnings.warn(f"Elbow curve: skipping k={k}: {e}")
            continue
        rows.append((k, model.inertia_))
    return pd.DataFrame(rows, columns=["k", "wcss"])
