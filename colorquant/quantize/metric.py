import math

import numpy as np
from numba import njit

from colorquant.quantize.colorspace import ColorSpace, has_circular_hue

# Stands in for a non-finite distance; loses against any real distance
DISTANCE_FALLBACK = 1.0e30


@njit(cache=True)
def circular_delta(a, b):
    d = a - b
    if d > 0.5:
        d -= 1.0
    elif d < -0.5:
        d += 1.0
    return d


@njit(cache=True)
def feature_distance_sq(sample, centroid, circular):
    """Squared distance over the three color channels; alpha is ignored."""
    if circular:
        d0 = circular_delta(sample[0], centroid[0])
    else:
        d0 = sample[0] - centroid[0]
    d1 = sample[1] - centroid[1]
    d2 = sample[2] - centroid[2]
    dist = d0 * d0 + d1 * d1 + d2 * d2
    if not math.isfinite(dist):
        return DISTANCE_FALLBACK
    return dist


@njit(cache=True)
def nearest_centroid(sample, centroids, cluster_count, circular):
    """Linear scan; the first minimum wins ties."""
    best_idx = 0
    best_dist = feature_distance_sq(sample, centroids[0], circular)
    for idx in range(1, cluster_count):
        dist = feature_distance_sq(sample, centroids[idx], circular)
        if dist < best_dist:
            best_dist = dist
            best_idx = idx
    return best_idx, best_dist


def distance(sample, centroid, color_space=ColorSpace.OKLAB) -> float:
    a = np.asarray(sample, dtype=np.float64)
    b = np.asarray(centroid, dtype=np.float64)
    return float(feature_distance_sq(a, b, bool(has_circular_hue(int(color_space)))))


def distances_to(samples: np.ndarray, centroid, color_space=ColorSpace.OKLAB) -> np.ndarray:
    """Vectorised squared distance from every sample row to one centroid."""
    centroid = np.asarray(centroid, dtype=np.float64)
    diff = samples[:, :3] - centroid[:3]
    if has_circular_hue(int(color_space)):
        d0 = np.abs(diff[:, 0])
        diff[:, 0] = np.minimum(d0, 1.0 - d0)
    dist = np.einsum('ij,ij->i', diff, diff)
    return np.where(np.isfinite(dist), dist, DISTANCE_FALLBACK)
