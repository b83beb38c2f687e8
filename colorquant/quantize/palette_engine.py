from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

import numpy as np

from colorquant.quantize.colorspace import decode_buffer, encode_buffer
from colorquant.quantize.driver import CancelToken, ConvergenceDriver, RunStats
from colorquant.quantize.errors import ConfigurationError, DispatchError
from colorquant.quantize.seeding import build_initial_centroids
from colorquant.utils.appconfig import MAX_CLUSTERS, QuantizeConfig, load_config
from colorquant.utils.logging_utils import PerfFrame, logger


@dataclass
class QuantizeResult:
    pixels: np.ndarray      # same shape as the input, float RGBA in [0, 1]
    labels: np.ndarray      # input shape without the channel axis
    centroids: np.ndarray   # (K, 4) feature space
    palette: np.ndarray     # (K, 4) decoded RGBA
    stats: RunStats
    config: QuantizeConfig

    @property
    def cluster_count(self) -> int:
        return self.centroids.shape[0]


def _check_pixels(pixels) -> np.ndarray:
    pixels = np.asarray(pixels)
    if pixels.ndim < 2 or pixels.shape[-1] != 4:
        raise ConfigurationError(f"Expected an (..., 4) RGBA buffer, got shape {pixels.shape}")
    if not np.issubdtype(pixels.dtype, np.floating):
        # 8-bit images go through imageutils.image_to_rgba first
        raise ConfigurationError(f"Pixels must be floats in [0, 1], got dtype {pixels.dtype}")
    return pixels


def _check_centroids(initial_centroids) -> np.ndarray:
    centroids = np.asarray(initial_centroids, dtype=np.float64)
    if centroids.ndim != 2 or centroids.shape[1] != 4:
        raise ConfigurationError(f"initial_centroids must have shape (K, 4), got {centroids.shape}")
    if not 1 <= centroids.shape[0] <= MAX_CLUSTERS:
        raise ConfigurationError(f"Between 1 and {MAX_CLUSTERS} initial centroids are required")
    return np.clip(np.nan_to_num(centroids, nan=0.0, posinf=1.0, neginf=0.0), 0.0, 1.0)


def quantize_pixels(pixels, config: Optional[QuantizeConfig] = None, initial_centroids=None,
                    cancel: CancelToken = None, workgroup_size: Optional[int] = None) -> QuantizeResult:
    """Reduce an RGBA float buffer to at most ``cluster_count`` colors.

    ``pixels`` is ``(H, W, 4)`` or ``(N, 4)``; the output keeps that shape.
    When ``initial_centroids`` is given, seeding is skipped and those feature
    vectors are used as-is (clamped to [0, 1]).
    """
    perf = PerfFrame()
    pixels = _check_pixels(pixels)
    spatial_shape = pixels.shape[:-1]
    pixel_count = int(np.prod(spatial_shape))

    if config is None:
        config = load_config()
    try:
        settings = config.validate(pixel_count)
    except ConfigurationError as e:
        logger.error(f"Rejected quantize request: {e}")
        raise
    perf.mark("read_settings")

    try:
        samples = encode_buffer(pixels, settings.color_space)
    except MemoryError as e:
        logger.error(f"Sample buffer allocation failed for {pixel_count} pixels")
        raise DispatchError("encode_pixels", "sample allocation failed") from e
    perf.mark("encode_input")

    if initial_centroids is None:
        initial = build_initial_centroids(samples, settings, settings.cluster_count)
    else:
        initial = _check_centroids(initial_centroids)[:pixel_count]
    settings = replace(settings, cluster_count=initial.shape[0])
    perf.mark("init_centroids")

    driver = ConvergenceDriver(samples, initial, settings, cancel=cancel, workgroup_size=workgroup_size)
    run = driver.run()
    perf.mark("cluster")

    palette = decode_buffer(run.centroids, settings.color_space)
    perf.mark("decode_palette")

    if len(spatial_shape) == 2:
        height, width = spatial_shape
    else:
        height, width = pixel_count, 1
    perf.flush(width, height, extra=f"k={settings.cluster_count} space={settings.color_space.name} "
                                    f"passes={run.stats.iterations}")

    return QuantizeResult(
        pixels=run.output.reshape(pixels.shape),
        labels=run.labels.reshape(spatial_shape),
        centroids=run.centroids,
        palette=palette,
        stats=run.stats,
        config=settings,
    )
