"""
Nutritional grouping of dairy cows with k-means.

Cows are grouped such that the total deviation of their energy and protein
requirements (relative to intake capacity) from the group average is
minimized (similar to McGilliard et al. 1983). Cows in one group then
require a similar energy and protein density of the ration.

Each k-means run depends on its k-means++ initial guess, so the grouping
is repeated `runs` times and the best initial guess is kept.

References
----------
McGilliard, M.L., Swisher, J.M. and James, R.E. 1983. Grouping lactating
cows by nutritional requirements for feeding. Journal of Dairy Science
66(5):1084-1093.

Arthur, D. and Vassilvitskii, S. 2007. k-means++: the advantages of careful
seeding.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

LLOYD_IT_MAX = 10_000
DEFAULT_RUNS = 15


@dataclass
class KMeansRun:
    """Initial k-means++ centroids of one run and the distortion they led to."""

    seed_centroids: np.ndarray
    distortion: float


@dataclass
class GroupingResult:
    """
    Result of `kmeans_groups`.

    Attributes
    ----------
    labels
        Group id per point (0 = highest energy density).
    centroids
        Final centroid per group, shape (k, 2), in the (possibly normalized)
        coordinates the grouping ran on.
    items
        No. of points per group; may contain zeros.
    distortion
        Sum of squared distances of the points to their group centroid.
    runs
        Every restart, in the order they were run.
    """

    labels: np.ndarray
    centroids: np.ndarray
    items: np.ndarray
    distortion: float
    runs: List[KMeansRun]

    @property
    def k(self) -> int:
        return len(self.centroids)


# ----------------------------
# Building blocks
# ----------------------------

def normalize(xy: np.ndarray) -> np.ndarray:
    """
    Min-max scale both coordinates to [0, 1].

    Returns a new array. An axis on which all values are equal is mapped to 0.
    """
    xy = np.asarray(xy, dtype=float)
    lo = xy.min(axis=0)
    span = xy.max(axis=0) - lo
    out = np.zeros_like(xy)
    ok = span > 0
    out[:, ok] = (xy[:, ok] - lo[ok]) / span[ok]
    return out


def _squared_distances(xy: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    """Squared distance of every point to every centroid, shape (n, k)."""
    diff = xy[:, None, :] - centroids[None, :, :]
    return (diff ** 2).sum(axis=2)


def sum_squared_differences(xy: np.ndarray, labels: np.ndarray, centroids: np.ndarray) -> float:
    """Total of squared distances of each point to its assigned centroid."""
    return float(((xy - centroids[labels]) ** 2).sum())


def kmeans_plus_plus(xy: np.ndarray, k: int, rng: np.random.Generator) -> np.ndarray:
    """
    k-means++ initial centroids, sorted by descending x.

    The first centroid is a uniformly drawn point. Every further centroid is
    the best of `2 + round(ln k)` candidates, each drawn with probability
    proportional to its squared distance to the nearest centroid so far;
    best means the lowest resulting total squared distance.

    Sorting by x (energy density) makes centroid 0 the group with the
    highest energy requirement, whatever the draw order was.
    """
    n = len(xy)
    n_trials = 2 + int(math.floor(math.log(k) + 0.5))

    first = int(rng.integers(n))
    centroids = [xy[first]]
    D = ((xy - xy[first]) ** 2).sum(axis=1)

    for _ in range(1, k):
        best_sum, best_idx, best_D = -1.0, -1, D
        for _ in range(n_trials):
            D_sum = D.sum()
            if D_sum > 0:
                idx = int(rng.choice(n, p=D / D_sum))
            else:
                idx = int(rng.integers(n))
            tmp_D = np.minimum(D, ((xy - xy[idx]) ** 2).sum(axis=1))
            tmp_sum = float(tmp_D.sum())
            if best_sum < 0 or tmp_sum < best_sum:
                best_sum, best_idx, best_D = tmp_sum, idx, tmp_D
        centroids.append(xy[best_idx])
        D = best_D

    centroids = np.array(centroids, dtype=float)
    order = np.argsort(-centroids[:, 0], kind="stable")
    return centroids[order]


def lloyd(
    xy: np.ndarray,
    centroids: np.ndarray,
    max_iterations: int = LLOYD_IT_MAX,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Lloyd's iteration from the given centroids until no point changes group.

    Ties go to the centroid with the lower id. A centroid without points
    keeps its coordinates.

    Returns
    -------
    (labels, centroids, items)
    """
    centroids = np.array(centroids, dtype=float, copy=True)
    k = len(centroids)
    labels: Optional[np.ndarray] = None
    items = np.zeros(k, dtype=int)

    for _ in range(max_iterations):
        new_labels = _squared_distances(xy, centroids).argmin(axis=1)
        converged = labels is not None and np.array_equal(new_labels, labels)
        labels = new_labels

        items = np.bincount(labels, minlength=k)
        sums = np.zeros_like(centroids)
        np.add.at(sums, labels, xy)
        filled = items > 0
        centroids[filled] = sums[filled] / items[filled, None]

        if converged:
            break
    else:
        logger.warning("k-means did not settle within %d iterations.", max_iterations)

    return labels, centroids, items


# ----------------------------
# Grouping
# ----------------------------

def kmeans_groups(
    xy,
    k: int,
    runs: int = DEFAULT_RUNS,
    normalize_data: bool = True,
    rng: Optional[np.random.Generator] = None,
) -> GroupingResult:
    """
    Best-of-`runs` k-means grouping of 2-D points.

    Parameters
    ----------
    xy
        Points, array-like of shape (n, 2), e.g. (energy density, protein
        density). Not modified.
    k
        No. of groups.
    runs
        No. of k-means++ / Lloyd restarts.
    normalize_data
        Min-max scale both coordinates before grouping.
    rng
        Random generator for the k-means++ draws.

    Returns
    -------
    GroupingResult
        From re-running Lloyd's iteration on the initial centroids of the
        run with the lowest distortion.
    """
    if k <= 0:
        raise ValueError(f"k must be positive, got {k}.")
    if runs <= 0:
        raise ValueError(f"runs must be positive, got {runs}.")

    xy = np.asarray(xy, dtype=float)
    if xy.ndim != 2 or xy.shape[1] != 2:
        raise ValueError(f"Points must have shape (n, 2), got {xy.shape}.")
    if len(xy) == 0:
        raise ValueError("Cannot group an empty set of points.")

    rng = np.random.default_rng() if rng is None else rng
    if normalize_data:
        xy = normalize(xy)

    history: List[KMeansRun] = []
    for run in range(runs):
        seed = kmeans_plus_plus(xy, k, rng)
        labels, centroids, _ = lloyd(xy, seed)
        distortion = sum_squared_differences(xy, labels, centroids)
        logger.debug("k-means run %d: distortion %.6f", run, distortion)
        history.append(KMeansRun(seed_centroids=seed, distortion=distortion))

    best = min(history, key=lambda r: r.distortion)
    labels, centroids, items = lloyd(xy, best.seed_centroids)

    return GroupingResult(
        labels=labels,
        centroids=centroids,
        items=items,
        distortion=sum_squared_differences(xy, labels, centroids),
        runs=history,
    )


def _get_value(record: Any, key: str):
    if isinstance(record, dict):
        return record[key]
    return getattr(record, key)


def _set_value(record: Any, key: str, value) -> None:
    if isinstance(record, dict):
        record[key] = value
    else:
        setattr(record, key, value)


def group_cows(
    data,
    k: int,
    runs: int = DEFAULT_RUNS,
    normalize_data: bool = True,
    x_attribute: Optional[str] = None,
    y_attribute: Optional[str] = None,
    label_attribute: str = "group",
    rng: Optional[np.random.Generator] = None,
) -> GroupingResult:
    """
    Group cow records and write the group id onto each record.

    Parameters
    ----------
    data
        A pandas DataFrame, a sequence of dicts / objects, or a sequence of
        raw (x, y) pairs.
    x_attribute, y_attribute
        Column / key / attribute names holding the two coordinates, e.g.
        'E_density' and 'P_density'. Leave both unset for raw pairs.
    label_attribute
        Where the group id is written. Raw pairs get no label written; read
        `GroupingResult.labels` instead.

    Returns
    -------
    GroupingResult
        `distortion` is the total squared deviation of the final grouping.
    """
    use_attributes = bool(x_attribute) and bool(y_attribute)

    if isinstance(data, pd.DataFrame):
        if not use_attributes:
            raise ValueError("x_attribute and y_attribute are required for a DataFrame.")
        missing = {x_attribute, y_attribute} - set(data.columns)
        if missing:
            raise ValueError(f"DataFrame missing columns: {sorted(missing)}")
        xy = data[[x_attribute, y_attribute]].to_numpy(dtype=float)
        result = kmeans_groups(xy, k, runs=runs, normalize_data=normalize_data, rng=rng)
        data[label_attribute] = result.labels
        return result

    records: Sequence[Any] = list(data)
    if use_attributes:
        xy = [(_get_value(r, x_attribute), _get_value(r, y_attribute)) for r in records]
    else:
        xy = records

    result = kmeans_groups(xy, k, runs=runs, normalize_data=normalize_data, rng=rng)

    if use_attributes:
        for record, label in zip(records, result.labels):
            _set_value(record, label_attribute, int(label))

    return result


def group_herd(
    cow_df: pd.DataFrame,
    k: int,
    x_attribute: str = "E_density",
    y_attribute: str = "P_density",
    runs: int = DEFAULT_RUNS,
    normalize_data: bool = True,
    dry_column: str = "is_dry",
    label_attribute: str = "group",
    rng: Optional[np.random.Generator] = None,
) -> GroupingResult:
    """
    Group the lactating cows of a herd table; dry cows form group `k`.

    The group id is written to `cow_df[label_attribute]`. If every cow is
    dry, all of them go to group `k` and the result has empty labels, NaN
    centroids and zero distortion.
    """
    if k <= 0:
        raise ValueError(f"k must be positive, got {k}.")
    if runs <= 0:
        raise ValueError(f"runs must be positive, got {runs}.")
    if dry_column not in cow_df.columns:
        raise ValueError(f"cow_df missing column '{dry_column}'.")

    lactating = cow_df.loc[~cow_df[dry_column].astype(bool)].copy()
    if lactating.empty:
        # nothing to place the centroids on; all groups but the dry one stay empty
        cow_df[label_attribute] = k
        return GroupingResult(
            labels=np.zeros(0, dtype=int),
            centroids=np.full((k, 2), np.nan),
            items=np.zeros(k, dtype=int),
            distortion=0.0,
            runs=[],
        )

    result = group_cows(
        lactating,
        k,
        runs=runs,
        normalize_data=normalize_data,
        x_attribute=x_attribute,
        y_attribute=y_attribute,
        label_attribute=label_attribute,
        rng=rng,
    )

    cow_df[label_attribute] = k
    cow_df.loc[lactating.index, label_attribute] = lactating[label_attribute]
    cow_df[label_attribute] = cow_df[label_attribute].astype(int)
    return result
