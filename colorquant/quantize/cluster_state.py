from __future__ import annotations

import numpy as np

from colorquant.quantize.kernels import (
    ACC_WIDTH,
    INVALID_LABEL,
    PIXELS_WORKGROUP,
    dispatch_dim,
    workgroup_size_for,
)

# name -> value written by reset()
_RESET_VALUES = {
    'labels': INVALID_LABEL,
    'accumulators': 0,
    'partials': 0,
    'group_changes': 0,
    'change_counter': 0,
}


class ClusterState:
    """Arena of named buffers for one clustering run.

    ``samples``        (N, 4) float64, read-only after construction
    ``centroids``      (K, 4) float64, written by the centroid-update pass
    ``labels``         (N,) int32, written by the reduction pass
    ``accumulators``   (K, 7) int64, reset before every reduction pass
    ``partials``       (G, K, 7) int64, one slot per workgroup
    ``group_changes``  (G,) int64, per-workgroup change counts
    ``change_counter`` (1,) int64, reset before every pass
    """

    def __init__(self, samples: np.ndarray, initial_centroids: np.ndarray, scale: int,
                 workgroup_size: int | None = None):
        samples = np.ascontiguousarray(samples, dtype=np.float64)
        centroids = np.array(initial_centroids, dtype=np.float64, copy=True).reshape(-1, 4)
        if samples.ndim != 2 or samples.shape[1] != 4:
            raise ValueError(f"samples must have shape (N, 4), got {samples.shape}")
        if centroids.shape[0] == 0:
            raise ValueError("At least one initial centroid is required")

        self.pixel_count = samples.shape[0]
        self.cluster_count = centroids.shape[0]
        self.scale = int(scale)
        self.workgroup_size = workgroup_size_for(self.pixel_count, workgroup_size or PIXELS_WORKGROUP)
        self.workgroup_count = dispatch_dim(self.pixel_count, self.workgroup_size)

        k = self.cluster_count
        g = self.workgroup_count
        self.buffers = {
            'samples': samples,
            'centroids': np.ascontiguousarray(centroids),
            'labels': np.full(self.pixel_count, INVALID_LABEL, dtype=np.int32),
            'accumulators': np.zeros((k, ACC_WIDTH), dtype=np.int64),
            'partials': np.zeros((g, k, ACC_WIDTH), dtype=np.int64),
            'group_changes': np.zeros(g, dtype=np.int64),
            'change_counter': np.zeros(1, dtype=np.int64),
        }

    def __getitem__(self, name: str) -> np.ndarray:
        return self.buffers[name]

    def reset(self, *names: str):
        for name in names:
            self.buffers[name].fill(_RESET_VALUES[name])

    @property
    def samples(self) -> np.ndarray:
        return self.buffers['samples']

    @property
    def centroids(self) -> np.ndarray:
        return self.buffers['centroids']

    @property
    def labels(self) -> np.ndarray:
        return self.buffers['labels']

    @property
    def accumulators(self) -> np.ndarray:
        return self.buffers['accumulators']

    @property
    def change_count(self) -> int:
        return int(self.buffers['change_counter'][0])

    def nbytes(self) -> int:
        return sum(buf.nbytes for buf in self.buffers.values())
