from typing import Optional, Tuple

import numpy as np
from PIL import Image

from colorquant.quantize.driver import CancelToken
from colorquant.quantize.palette_engine import QuantizeResult, quantize_pixels
from colorquant.utils.appconfig import QuantizeConfig
from colorquant.utils.logging_utils import logger


def load_image(path, f='RGBA'):
    """Load an image path into a PIL Image converted to mode ``f``."""
    try:
        with Image.open(path) as im:
            return im.convert(f)
    except OSError as e:
        logger.error(f"Failed to load image {path}: {e}")
        raise


def save_image(img: Image.Image, path):
    img.save(path)
    logger.debug(f"Saved {img.size[0]}x{img.size[1]} image to {path}")


def image_to_rgba(img: Image.Image) -> np.ndarray:
    """8-bit PIL image -> (H, W, 4) float64 RGBA in [0, 1]."""
    if img.mode != 'RGBA':
        img = img.convert('RGBA')
    return np.asarray(img, dtype=np.float64) / 255.0


def rgba_to_image(rgba: np.ndarray) -> Image.Image:
    """(H, W, 4) float RGBA in [0, 1] -> 8-bit RGBA PIL image."""
    arr = np.clip(np.rint(np.asarray(rgba, dtype=np.float64) * 255.0), 0, 255).astype(np.uint8)
    return Image.fromarray(arr)


def quantize_image(img: Image.Image, config: Optional[QuantizeConfig] = None,
                   cancel: CancelToken = None) -> Tuple[Image.Image, QuantizeResult]:
    result = quantize_pixels(image_to_rgba(img), config=config, cancel=cancel)
    return rgba_to_image(result.pixels), result


def quantize_file(in_path, out_path, config: Optional[QuantizeConfig] = None) -> QuantizeResult:
    out_img, result = quantize_image(load_image(in_path), config)
    save_image(out_img, out_path)
    logger.info(f"Quantized {in_path} -> {out_path} ({result.cluster_count} colors)")
    return result
