"""Data-parallel passes of the k-means quantizer.

Each kernel is one launch. Ordering between passes comes from the driver
calling them in sequence; ordering inside the reduction comes from the end of
the per-workgroup ``prange`` loop, which every partial accumulator has
finished writing before ``fold_partials`` starts reading.

Accumulator row layout (int64, fixed point):
    0..3  feature channel sums
    4, 5  hue unit vector sums, cos/sin mapped to [0, 1] (hue spaces only)
    6     sample count
"""
import math

import numpy as np
from numba import njit, prange

from colorquant.quantize.colorspace import TAU, clamp01, decode_feature, sanitize01, wrap01
from colorquant.quantize.metric import nearest_centroid

INVALID_LABEL = -1

PIXELS_WORKGROUP = 256
MAX_WORKGROUPS = 1024

ACC_HUE_COS = 4
ACC_HUE_SIN = 5
ACC_COUNT = 6
ACC_WIDTH = 7

# Half of the unsigned 32-bit range: pixel_count * scale must stay below this
ACCUMULATOR_HEADROOM = (2 ** 32 - 1) // 2
MAX_SUM_SCALE = 65535

# Fixed-point units of rounding a mapped hue-vector mean may carry after the [0, 1] -> [-1, 1] map
_HUE_NOISE_UNITS = 2.0


def compute_sum_scale(pixel_count: int) -> int:
    n = max(1, int(pixel_count))
    return int(min(MAX_SUM_SCALE, max(1, ACCUMULATOR_HEADROOM // n)))


def dispatch_dim(size: int, workgroup_size: int) -> int:
    return (size + workgroup_size - 1) // workgroup_size


def workgroup_size_for(pixel_count: int, base: int = PIXELS_WORKGROUP) -> int:
    """Grow the workgroup so the partial scratch never exceeds MAX_WORKGROUPS slots."""
    size = max(1, int(base))
    if dispatch_dim(pixel_count, size) > MAX_WORKGROUPS:
        size = dispatch_dim(pixel_count, MAX_WORKGROUPS)
    return size


@njit(cache=True)
def to_fixed(value, scale):
    return np.int64(math.floor(value * scale + 0.5))


# --- Reduction ------------------------------------------------------------
@njit(cache=True, parallel=True)
def assign_accumulate(samples, centroids, cluster_count, labels, partials, group_changes,
                      workgroup_size, scale, circular):
    """Assign every pixel to its nearest centroid and reduce into per-workgroup slots.

    ``partials[g]`` and ``group_changes[g]`` are owned by workgroup ``g`` alone.
    """
    n = samples.shape[0]
    groups = partials.shape[0]
    for g in prange(groups):
        local = partials[g]
        local[:, :] = 0
        changed = 0
        start = g * workgroup_size
        end = min(start + workgroup_size, n)
        for i in range(start, end):
            sample = samples[i]
            best, _ = nearest_centroid(sample, centroids, cluster_count, circular)
            if labels[i] != best:
                labels[i] = best
                changed += 1
            for c in range(4):
                local[best, c] += to_fixed(sample[c], scale)
            if circular:
                theta = sample[0] * TAU
                local[best, ACC_HUE_COS] += to_fixed((math.cos(theta) + 1.0) * 0.5, scale)
                local[best, ACC_HUE_SIN] += to_fixed((math.sin(theta) + 1.0) * 0.5, scale)
            local[best, ACC_COUNT] += 1
        group_changes[g] = changed


@njit(cache=True, parallel=True)
def fold_partials(partials, accumulators, cluster_count):
    """Fold nonzero workgroup slots into the global accumulator, one task per cluster."""
    groups = partials.shape[0]
    for j in prange(cluster_count):
        for g in range(groups):
            if partials[g, j, ACC_COUNT] != 0:
                for c in range(ACC_WIDTH):
                    accumulators[j, c] += partials[g, j, c]


# --- Centroid update ------------------------------------------------------
@njit(cache=True, parallel=True)
def update_centroids(accumulators, centroids, cluster_count, scale, circular):
    for j in prange(cluster_count):
        count = accumulators[j, ACC_COUNT]
        if count > 0:
            denom = float(count) * scale
            for c in range(4):
                mean = accumulators[j, c] / denom
                if math.isfinite(mean):
                    centroids[j, c] = clamp01(mean)
            if circular:
                # Below the rounding noise the direction is meaningless; keep the linear mean
                hue_floor = _HUE_NOISE_UNITS / scale
                hue_cos = accumulators[j, ACC_HUE_COS] / denom * 2.0 - 1.0
                hue_sin = accumulators[j, ACC_HUE_SIN] / denom * 2.0 - 1.0
                if abs(hue_cos) > hue_floor or abs(hue_sin) > hue_floor:
                    hue = wrap01(math.atan2(hue_sin, hue_cos) / TAU)
                    if math.isfinite(hue):
                        centroids[j, 0] = hue


# --- Output resolve -------------------------------------------------------
@njit(cache=True, parallel=True)
def resolve_output(samples, centroids, cluster_count, labels, color_space, preserve_alpha, out):
    palette = np.empty((cluster_count, 3), dtype=np.float64)
    for j in range(cluster_count):
        r, g, b = decode_feature(centroids[j, 0], centroids[j, 1], centroids[j, 2], color_space)
        palette[j, 0] = r
        palette[j, 1] = g
        palette[j, 2] = b

    n = samples.shape[0]
    for i in prange(n):
        label = labels[i]
        if label < 0 or label >= cluster_count:
            label = 0
        out[i, 0] = palette[label, 0]
        out[i, 1] = palette[label, 1]
        out[i, 2] = palette[label, 2]
        if preserve_alpha:
            out[i, 3] = samples[i, 3]
        else:
            out[i, 3] = sanitize01(centroids[label, 3])
