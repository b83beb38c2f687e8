"""Initial centroid selection.

Every method is deterministic for a given seed and returns centroids in the
feature space of the samples it was given.
"""
import math

import numpy as np

from colorquant.quantize.colorspace import TAU, encode, has_circular_hue
from colorquant.quantize.metric import distances_to
from colorquant.utils.appconfig import MAX_CLUSTERS, InitMethod, QuantizeConfig
from colorquant.utils.logging_utils import logger

DEDUP_THRESHOLD = 1.0e-8
AREA_MAX_SAMPLES = 50_000
RANDOM_ATTEMPTS_PER_CLUSTER = 16
KMEANS_PARALLEL_ROUNDS = 5
MAX_CANDIDATES = MAX_CLUSTERS * 8

_RANDOM_SALT = 0x1234ABCD
_TOPUP_SALT = 0x2545F491
_KMEANS_SALT = 0x4F1BBCDC


def _rng(seed, salt):
    return np.random.default_rng((int(seed) ^ salt) & 0xFFFFFFFFFFFFFFFF)


def dedup_centroids(centroids: np.ndarray, color_space, threshold: float = DEDUP_THRESHOLD) -> np.ndarray:
    """Drop centroids closer than ``threshold`` (squared distance) to an earlier one."""
    centroids = np.asarray(centroids, dtype=np.float64).reshape(-1, 4)
    kept = []
    for centroid in centroids:
        if kept and distances_to(np.asarray(kept), centroid, color_space).min() < threshold:
            continue
        kept.append(centroid)
    if not kept:
        return np.empty((0, 4), dtype=np.float64)
    return np.array(kept, dtype=np.float64)


def init_centroids_random(samples: np.ndarray, k: int, seed: int, color_space) -> np.ndarray:
    n = samples.shape[0]
    rng = _rng(seed, _RANDOM_SALT)
    picks = rng.integers(0, n, size=max(1, k) * RANDOM_ATTEMPTS_PER_CLUSTER)

    chosen = []
    for idx in picks:
        candidate = samples[idx]
        if chosen and distances_to(np.asarray(chosen), candidate, color_space).min() < DEDUP_THRESHOLD:
            continue
        chosen.append(candidate)
        if len(chosen) >= k:
            break
    if not chosen:
        chosen.append(samples[0])
    return np.array(chosen, dtype=np.float64)


def _group_center(sums, hue_sums, count, circular):
    center = sums / count
    if circular:
        hue_cos, hue_sin = hue_sums / count
        if abs(hue_cos) > 1e-8 or abs(hue_sin) > 1e-8:
            center[0] = (math.atan2(hue_sin, hue_cos) / TAU) % 1.0
    return center


def init_centroids_area(samples: np.ndarray, k: int, threshold: float, color_space,
                        max_samples: int = AREA_MAX_SAMPLES) -> np.ndarray:
    """Group similar colors greedily and seed from the largest groups."""
    n = samples.shape[0]
    circular = bool(has_circular_hue(int(color_space)))
    threshold_sq = threshold * threshold
    step = max(1, n // max_samples)
    indices = np.arange(0, n, step)[:max_samples]

    centers = np.empty((len(indices), 4), dtype=np.float64)
    sums = np.zeros((len(indices), 4), dtype=np.float64)
    hue_sums = np.zeros((len(indices), 2), dtype=np.float64)
    counts = np.zeros(len(indices), dtype=np.int64)
    groups = 0

    for idx in indices:
        sample = samples[idx]
        if groups:
            dist = distances_to(centers[:groups], sample, color_space)
            j = int(np.argmin(dist))
            if dist[j] > threshold_sq:
                j = groups
                groups += 1
        else:
            j = 0
            groups = 1
        sums[j] += sample
        if circular:
            theta = sample[0] * TAU
            hue_sums[j] += (math.cos(theta), math.sin(theta))
        counts[j] += 1
        centers[j] = _group_center(sums[j], hue_sums[j], counts[j], circular)

    order = np.argsort(-counts[:groups], kind='stable')
    logger.debug(f"Area seeding: {groups} groups from {len(indices)} samples")
    return centers[order[:k]].copy()


def init_centroids_selected(colors, color_space) -> np.ndarray:
    if not colors:
        return np.empty((0, 4), dtype=np.float64)
    return np.array([encode((r, g, b, 1.0), color_space) for r, g, b in colors], dtype=np.float64)


def _weighted_pick(rng, weights):
    total = weights.sum()
    if not math.isfinite(total) or total <= 1e-20:
        return int(np.argmax(weights))
    cumulative = np.cumsum(weights)
    target = rng.random() * total
    return int(min(np.searchsorted(cumulative, target, side='right'), len(weights) - 1))


def init_centroids_kmeans_parallel(samples: np.ndarray, k: int, seed: int, color_space) -> np.ndarray:
    """k-means|| oversampling followed by weighted greedy reduction to ``k`` centroids."""
    n = samples.shape[0]
    rng = _rng(seed, _KMEANS_SALT)
    if k <= 1:
        return samples[int(seed) % n][None, :].copy()

    oversampling = min(64, max(2, 2 * k))
    candidates = samples[int(rng.integers(n))][None, :].copy()
    nearest_sq = distances_to(samples, candidates[0], color_space)

    for _ in range(KMEANS_PARALLEL_ROUNDS):
        phi = max(float(nearest_sq.sum()), 1e-12)
        probability = np.minimum(1.0, oversampling * nearest_sq / phi)
        picked = samples[rng.random(n) < probability]
        if picked.shape[0] == 0:
            continue
        candidates = dedup_centroids(np.vstack([candidates, picked]), color_space)
        if candidates.shape[0] > MAX_CANDIDATES:
            break
        for candidate in picked:
            np.minimum(nearest_sq, distances_to(samples, candidate, color_space), out=nearest_sq)

    m = candidates.shape[0]
    if m <= k:
        return candidates

    # Weight each candidate by the number of samples it is nearest to
    best_sq = np.full(n, np.inf)
    owner = np.zeros(n, dtype=np.int64)
    for j, candidate in enumerate(candidates):
        dist = distances_to(samples, candidate, color_space)
        closer = dist < best_sq
        best_sq[closer] = dist[closer]
        owner[closer] = j
    weights = np.bincount(owner, minlength=m).astype(np.float64)

    chosen = [_weighted_pick(rng, weights)]
    taken = np.zeros(m, dtype=bool)
    taken[chosen[0]] = True
    candidate_sq = distances_to(candidates, candidates[chosen[0]], color_space)
    while len(chosen) < k:
        scores = np.where(taken, 0.0, weights * candidate_sq)
        if scores.sum() <= 1e-20:
            j = int(np.argmax(np.where(taken, -1.0, weights)))
        else:
            j = _weighted_pick(rng, scores)
        chosen.append(j)
        taken[j] = True
        np.minimum(candidate_sq, distances_to(candidates, candidates[j], color_space), out=candidate_sq)
    return candidates[chosen].copy()


def build_initial_centroids(samples: np.ndarray, config: QuantizeConfig, target_k: int) -> np.ndarray:
    """Seed up to ``target_k`` distinct centroids with the configured method.

    Shortfalls are topped up with random samples; duplicates are dropped, so
    an image with fewer distinct colors than ``target_k`` gets fewer centroids.
    """
    n = samples.shape[0]
    if n == 0 or target_k <= 0:
        return np.empty((0, 4), dtype=np.float64)
    target_k = min(int(target_k), n, MAX_CLUSTERS)
    color_space = config.color_space
    method = InitMethod(config.init_method)

    if method is InitMethod.area:
        centroids = init_centroids_area(samples, target_k, config.area_similarity_threshold, color_space)
    elif method is InitMethod.selected_colors:
        centroids = init_centroids_selected(config.selected_colors, color_space)[:target_k]
    elif method is InitMethod.kmeans_parallel:
        centroids = init_centroids_kmeans_parallel(samples, target_k, config.seed, color_space)
    else:
        centroids = init_centroids_random(samples, target_k, config.seed, color_space)

    centroids = dedup_centroids(centroids, color_space)
    if centroids.shape[0] < target_k:
        rng = _rng(config.seed, _TOPUP_SALT)
        extra = samples[rng.integers(0, n, size=(target_k - centroids.shape[0]) * RANDOM_ATTEMPTS_PER_CLUSTER)]
        centroids = dedup_centroids(np.vstack([centroids, extra]), color_space)[:target_k]

    logger.debug(f"Seeded {centroids.shape[0]} of {target_k} centroids with '{method.value}'")
    return centroids
