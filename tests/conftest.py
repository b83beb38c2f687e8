import numpy as np
import pytest

RED = (1.0, 0.0, 0.0, 1.0)
BLUE = (0.0, 0.0, 1.0, 1.0)


@pytest.fixture(autouse=True)
def app_home(tmp_path, monkeypatch):
    """Keep config and log files out of the working directory."""
    monkeypatch.setenv("COLORQUANT_HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def two_color_pixels():
    """4x4 image, top half red and bottom half blue."""
    pixels = np.empty((4, 4, 4), dtype=np.float64)
    pixels[:2] = RED
    pixels[2:] = BLUE
    return pixels


@pytest.fixture
def random_pixels():
    rng = np.random.default_rng(7)
    pixels = rng.random((8, 8, 4))
    pixels[..., 3] = rng.choice([0.25, 0.5, 1.0], size=(8, 8))
    return pixels


def stripes(colors, counts):
    """(N, 4) buffer holding ``counts[i]`` copies of ``colors[i]``."""
    return np.concatenate([np.tile(np.asarray(c, dtype=np.float64), (n, 1)) for c, n in zip(colors, counts)])
