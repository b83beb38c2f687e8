"""Feature-space codec for the quantizer.

Every pixel becomes a four-channel feature ``(f0, f1, f2, alpha)`` in ``[0, 1]``.
Spaces with a hue keep it in ``f0`` as a circular fraction of a turn; signed
chroma channels are packed into ``[0, 1]`` with an affine signed-to-unit map.

Input pixels are sRGB-encoded RGBA. Decoding always returns sRGB-encoded RGBA.

The kernels here are compiled without fastmath so the finite guards stay intact.
"""
import math
from enum import IntEnum

import numpy as np
from numba import njit, prange


class ColorSpace(IntEnum):
    LINEAR_RGB = 0
    OKLAB = 1
    OKLCH = 2
    HSV = 3
    YIQ = 4
    ALPHA_ONLY = 5


# Plain ints for the jitted code paths
LINEAR_RGB = 0
OKLAB = 1
OKLCH = 2
HSV = 3
YIQ = 4
ALPHA_ONLY = 5

OKLAB_AB_MAX = 0.5
OKLCH_CHROMA_MAX = 0.4
# |I| and |Q| peak at 0.5959 and 0.5227 on the sRGB cube corners
YIQ_I_MAX = 0.596
YIQ_Q_MAX = 0.523
TAU = 2.0 * math.pi

_YIQ_FROM_RGB = np.array([
    [0.299, 0.587, 0.114],
    [0.59590059, -0.27455667, -0.32134392],
    [0.21153661, -0.52273617, 0.31119955],
], dtype=np.float64)
_RGB_FROM_YIQ = np.linalg.inv(_YIQ_FROM_RGB)


# --- Scalar helpers -------------------------------------------------------
@njit(cache=True)
def clamp01(value):
    if value < 0.0:
        return 0.0
    if value > 1.0:
        return 1.0
    return value


@njit(cache=True)
def sanitize01(value):
    if not math.isfinite(value):
        return 0.0
    return clamp01(value)


@njit(cache=True)
def wrap01(value):
    wrapped = value - math.floor(value)
    if wrapped >= 1.0:
        return 0.0
    return wrapped


@njit(cache=True)
def encode_signed(value, max_abs):
    if max_abs <= 0.0:
        return 0.5
    return clamp01((value / max_abs + 1.0) * 0.5)


@njit(cache=True)
def decode_signed(channel, max_abs):
    if max_abs <= 0.0:
        return 0.0
    return (clamp01(channel) * 2.0 - 1.0) * max_abs


@njit(cache=True)
def encode_pos(value, max_value):
    if max_value <= 0.0:
        return 0.0
    return clamp01(value / max_value)


@njit(cache=True)
def decode_pos(channel, max_value):
    if max_value <= 0.0:
        return 0.0
    return clamp01(channel) * max_value


@njit(cache=True)
def has_circular_hue(color_space):
    return color_space == OKLCH or color_space == HSV


# --- Transfer functions and primaries -------------------------------------
@njit(cache=True)
def srgb_to_linear(c):
    if c <= 0.04045:
        return c / 12.92
    return ((c + 0.055) / 1.055) ** 2.4


@njit(cache=True)
def linear_to_srgb(c):
    c = clamp01(c)
    if c <= 0.0031308:
        return 12.92 * c
    return 1.055 * (c ** (1.0 / 2.4)) - 0.055


@njit(cache=True)
def _cbrt(x):
    if x >= 0.0:
        return x ** (1.0 / 3.0)
    return -((-x) ** (1.0 / 3.0))


@njit(cache=True)
def linear_to_oklab(r, g, b):
    l = 0.4122214708 * r + 0.5363325363 * g + 0.0514459929 * b
    m = 0.2119034982 * r + 0.6806995451 * g + 0.1073969566 * b
    s = 0.0883024619 * r + 0.2817188376 * g + 0.6299787005 * b

    l_ = _cbrt(l)
    m_ = _cbrt(m)
    s_ = _cbrt(s)

    L = 0.2104542553 * l_ + 0.7936177850 * m_ - 0.0040720468 * s_
    A = 1.9779984951 * l_ - 2.4285922050 * m_ + 0.4505937099 * s_
    B = 0.0259040371 * l_ + 0.7827717662 * m_ - 0.8086757660 * s_
    return L, A, B


@njit(cache=True)
def oklab_to_linear(L, A, B):
    l_ = L + 0.3963377774 * A + 0.2158037573 * B
    m_ = L - 0.1055613458 * A - 0.0638541728 * B
    s_ = L - 0.0894841775 * A - 1.2914855480 * B

    l = l_ * l_ * l_
    m = m_ * m_ * m_
    s = s_ * s_ * s_

    r = 4.0767416621 * l - 3.3077115913 * m + 0.2309699292 * s
    g = -1.2684380046 * l + 2.6097574011 * m - 0.3413193965 * s
    b = -0.0041960863 * l - 0.7034186147 * m + 1.7076147010 * s
    return r, g, b


@njit(cache=True)
def srgb_to_hsv(r, g, b):
    mx = max(r, max(g, b))
    mn = min(r, min(g, b))
    delta = mx - mn
    s = delta / mx if mx > 0.0 else 0.0
    if delta <= 0.0:
        return 0.0, s, mx
    if mx == r:
        h = (g - b) / delta
    elif mx == g:
        h = (b - r) / delta + 2.0
    else:
        h = (r - g) / delta + 4.0
    return wrap01(h / 6.0), s, mx


@njit(cache=True)
def hsv_to_srgb(h, s, v):
    if s <= 0.0:
        return v, v, v
    h6 = wrap01(h) * 6.0
    sector_f = math.floor(h6)
    f = h6 - sector_f
    sector = int(sector_f) % 6
    p = v * (1.0 - s)
    q = v * (1.0 - s * f)
    t = v * (1.0 - s * (1.0 - f))
    if sector == 0:
        return v, t, p
    if sector == 1:
        return q, v, p
    if sector == 2:
        return p, v, t
    if sector == 3:
        return p, q, v
    if sector == 4:
        return t, p, v
    return v, p, q


@njit(cache=True)
def srgb_to_yiq(r, g, b):
    y = _YIQ_FROM_RGB[0, 0] * r + _YIQ_FROM_RGB[0, 1] * g + _YIQ_FROM_RGB[0, 2] * b
    i = _YIQ_FROM_RGB[1, 0] * r + _YIQ_FROM_RGB[1, 1] * g + _YIQ_FROM_RGB[1, 2] * b
    q = _YIQ_FROM_RGB[2, 0] * r + _YIQ_FROM_RGB[2, 1] * g + _YIQ_FROM_RGB[2, 2] * b
    return y, i, q


@njit(cache=True)
def yiq_to_srgb(y, i, q):
    r = _RGB_FROM_YIQ[0, 0] * y + _RGB_FROM_YIQ[0, 1] * i + _RGB_FROM_YIQ[0, 2] * q
    g = _RGB_FROM_YIQ[1, 0] * y + _RGB_FROM_YIQ[1, 1] * i + _RGB_FROM_YIQ[1, 2] * q
    b = _RGB_FROM_YIQ[2, 0] * y + _RGB_FROM_YIQ[2, 1] * i + _RGB_FROM_YIQ[2, 2] * q
    return r, g, b


# --- Feature codec --------------------------------------------------------
@njit(cache=True)
def encode_feature(r, g, b, a, color_space):
    r = sanitize01(r)
    g = sanitize01(g)
    b = sanitize01(b)

    if color_space == OKLAB:
        L, A, B = linear_to_oklab(srgb_to_linear(r), srgb_to_linear(g), srgb_to_linear(b))
        return encode_signed(A, OKLAB_AB_MAX), encode_signed(B, OKLAB_AB_MAX), clamp01(L)
    if color_space == OKLCH:
        L, A, B = linear_to_oklab(srgb_to_linear(r), srgb_to_linear(g), srgb_to_linear(b))
        hue = wrap01(math.atan2(B, A) / TAU)
        return hue, encode_pos(math.hypot(A, B), OKLCH_CHROMA_MAX), clamp01(L)
    if color_space == HSV:
        h, s, v = srgb_to_hsv(r, g, b)
        return h, clamp01(s), clamp01(v)
    if color_space == YIQ:
        y, i, q = srgb_to_yiq(r, g, b)
        return encode_signed(i, YIQ_I_MAX), encode_signed(q, YIQ_Q_MAX), clamp01(y)
    if color_space == ALPHA_ONLY:
        return sanitize01(a), 0.0, 0.0
    return clamp01(srgb_to_linear(r)), clamp01(srgb_to_linear(g)), clamp01(srgb_to_linear(b))


@njit(cache=True)
def decode_feature(f0, f1, f2, color_space):
    if color_space == OKLAB:
        r, g, b = oklab_to_linear(clamp01(f2), decode_signed(f0, OKLAB_AB_MAX), decode_signed(f1, OKLAB_AB_MAX))
        return sanitize01(linear_to_srgb(r)), sanitize01(linear_to_srgb(g)), sanitize01(linear_to_srgb(b))
    if color_space == OKLCH:
        chroma = decode_pos(f1, OKLCH_CHROMA_MAX)
        theta = wrap01(f0) * TAU
        r, g, b = oklab_to_linear(clamp01(f2), chroma * math.cos(theta), chroma * math.sin(theta))
        return sanitize01(linear_to_srgb(r)), sanitize01(linear_to_srgb(g)), sanitize01(linear_to_srgb(b))
    if color_space == HSV:
        r, g, b = hsv_to_srgb(f0, clamp01(f1), clamp01(f2))
        return sanitize01(r), sanitize01(g), sanitize01(b)
    if color_space == YIQ:
        r, g, b = yiq_to_srgb(clamp01(f2), decode_signed(f0, YIQ_I_MAX), decode_signed(f1, YIQ_Q_MAX))
        return sanitize01(r), sanitize01(g), sanitize01(b)
    if color_space == ALPHA_ONLY:
        v = sanitize01(f0)
        return v, v, v
    return sanitize01(linear_to_srgb(f0)), sanitize01(linear_to_srgb(f1)), sanitize01(linear_to_srgb(f2))


@njit(cache=True, parallel=True)
def encode_pixels(rgba, color_space):
    n = rgba.shape[0]
    out = np.empty((n, 4), dtype=np.float64)
    for i in prange(n):
        f0, f1, f2 = encode_feature(rgba[i, 0], rgba[i, 1], rgba[i, 2], rgba[i, 3], color_space)
        out[i, 0] = f0
        out[i, 1] = f1
        out[i, 2] = f2
        out[i, 3] = sanitize01(rgba[i, 3])
    return out


@njit(cache=True, parallel=True)
def decode_pixels(features, color_space):
    n = features.shape[0]
    out = np.empty((n, 4), dtype=np.float64)
    for i in prange(n):
        r, g, b = decode_feature(features[i, 0], features[i, 1], features[i, 2], color_space)
        out[i, 0] = r
        out[i, 1] = g
        out[i, 2] = b
        out[i, 3] = sanitize01(features[i, 3])
    return out


# --- Python-facing wrappers -----------------------------------------------
def _as_rgba(values):
    arr = np.asarray(values, dtype=np.float64).reshape(-1)
    if arr.shape[0] == 3:
        return float(arr[0]), float(arr[1]), float(arr[2]), 1.0
    if arr.shape[0] != 4:
        raise ValueError(f"Expected 3 or 4 channels, got {arr.shape[0]}")
    return float(arr[0]), float(arr[1]), float(arr[2]), float(arr[3])


def encode(rgba, color_space=ColorSpace.OKLAB) -> np.ndarray:
    """Encode one sRGB(A) color into a four-channel feature vector."""
    r, g, b, a = _as_rgba(rgba)
    f0, f1, f2 = encode_feature(r, g, b, a, int(color_space))
    return np.array([f0, f1, f2, sanitize01(a)], dtype=np.float64)


def decode(feature, color_space=ColorSpace.OKLAB) -> np.ndarray:
    """Decode one feature vector back to sRGB RGBA."""
    f0, f1, f2, a = _as_rgba(feature)
    r, g, b = decode_feature(f0, f1, f2, int(color_space))
    return np.array([r, g, b, sanitize01(a)], dtype=np.float64)


def encode_buffer(pixels: np.ndarray, color_space=ColorSpace.OKLAB) -> np.ndarray:
    """Encode an ``(..., 4)`` RGBA buffer into an ``(N, 4)`` sample array."""
    flat = np.ascontiguousarray(np.asarray(pixels, dtype=np.float64).reshape(-1, 4))
    return encode_pixels(flat, int(color_space))


def decode_buffer(features: np.ndarray, color_space=ColorSpace.OKLAB) -> np.ndarray:
    """Decode an ``(N, 4)`` feature array into ``(N, 4)`` sRGB RGBA."""
    flat = np.ascontiguousarray(np.asarray(features, dtype=np.float64).reshape(-1, 4))
    return decode_pixels(flat, int(color_space))
