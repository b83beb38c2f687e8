import numpy as np
import pytest

from colorquant.quantize.cluster_state import ClusterState
from colorquant.quantize.colorspace import ColorSpace, decode_buffer, encode, encode_buffer
from colorquant.quantize.kernels import (
    ACC_COUNT,
    ACCUMULATOR_HEADROOM,
    INVALID_LABEL,
    MAX_SUM_SCALE,
    MAX_WORKGROUPS,
    assign_accumulate,
    compute_sum_scale,
    dispatch_dim,
    fold_partials,
    resolve_output,
    update_centroids,
    workgroup_size_for,
)

from conftest import BLUE, RED

GREEN = (0.0, 1.0, 0.0, 1.0)


def _run_pass(state, circular=False):
    state.reset('change_counter', 'accumulators')
    assign_accumulate(state['samples'], state['centroids'], state.cluster_count, state['labels'],
                      state['partials'], state['group_changes'], state.workgroup_size, float(state.scale),
                      circular)
    fold_partials(state['partials'], state['accumulators'], state.cluster_count)
    state['change_counter'][0] = state['group_changes'].sum()
    update_centroids(state['accumulators'], state['centroids'], state.cluster_count, float(state.scale),
                     circular)
    return state.change_count


def _two_color_state(two_color_pixels, extra=(), workgroup_size=None, space=ColorSpace.OKLAB):
    samples = encode_buffer(two_color_pixels, space)
    centroids = np.array([encode(c, space) for c in (RED, BLUE) + tuple(extra)])
    return ClusterState(samples, centroids, compute_sum_scale(len(samples)), workgroup_size)


def test_one_pass_on_two_color_image(two_color_pixels):
    # Start both centroids off-target so the pass has to move them
    state = _two_color_state(two_color_pixels, workgroup_size=3, space=ColorSpace.LINEAR_RGB)
    state.centroids[0] = (0.8, 0.1, 0.1, 0.9)
    state.centroids[1] = (0.1, 0.1, 0.7, 0.9)
    assert np.all(state.labels == INVALID_LABEL)

    assert _run_pass(state) == 16
    assert state.accumulators[0, ACC_COUNT] == 8
    assert state.accumulators[1, ACC_COUNT] == 8
    assert np.all(state.labels[:8] == 0)
    assert np.all(state.labels[8:] == 1)
    np.testing.assert_array_equal(state.centroids[0], RED)
    np.testing.assert_array_equal(state.centroids[1], BLUE)

    # Labels are stable, so the next pass reports convergence
    assert _run_pass(state) == 0


def test_empty_cluster_keeps_its_centroid(two_color_pixels):
    state = _two_color_state(two_color_pixels, extra=[GREEN])
    before = state.centroids[2].copy()
    _run_pass(state)
    assert state.accumulators[2, ACC_COUNT] == 0
    np.testing.assert_array_equal(state.centroids[2], before)


def test_accumulators_are_reset_every_pass(two_color_pixels):
    state = _two_color_state(two_color_pixels)
    _run_pass(state)
    _run_pass(state)
    assert state.accumulators[:, ACC_COUNT].sum() == 16


@pytest.mark.parametrize("workgroup_size", [1, 5, 64])
def test_partials_do_not_depend_on_workgroup_size(random_pixels, workgroup_size):
    samples = encode_buffer(random_pixels, ColorSpace.OKLAB)
    centroids = samples[[0, 9, 21, 40]]
    scale = compute_sum_scale(len(samples))

    reference = ClusterState(samples, centroids, scale)
    split = ClusterState(samples, centroids, scale, workgroup_size)
    for _ in range(3):
        _run_pass(reference)
        _run_pass(split)
    np.testing.assert_array_equal(split.labels, reference.labels)
    np.testing.assert_array_equal(split.accumulators, reference.accumulators)
    np.testing.assert_array_equal(split.centroids, reference.centroids)


def test_circular_mean_wraps_hue():
    # Hues 0.95 and 0.05 average to 0.0, not 0.5
    samples = np.array([
        [0.95, 0.5, 0.5, 1.0],
        [0.05, 0.5, 0.5, 1.0],
    ])
    state = ClusterState(samples, samples[:1], compute_sum_scale(2))
    _run_pass(state, circular=True)
    hue = state.centroids[0, 0]
    assert min(hue, 1.0 - hue) < 1e-3


@pytest.mark.parametrize("hues", [(0.1, 0.6), (0.0, 0.5), (0.3, 0.8)])
def test_opposite_hues_fall_back_to_linear_mean(hues):
    # The unit vectors cancel, so only fixed-point rounding is left in the sums
    samples = np.array([
        [hues[0], 0.5, 0.5, 1.0],
        [hues[1], 0.5, 0.5, 1.0],
    ])
    state = ClusterState(samples, samples[:1], compute_sum_scale(2))
    _run_pass(state, circular=True)
    assert state.centroids[0, 0] == pytest.approx(sum(hues) / 2.0, abs=1e-4)


def test_resolve_output_uses_palette_and_alpha(two_color_pixels):
    pixels = two_color_pixels.copy()
    pixels[..., 3] = 0.5
    samples = encode_buffer(pixels, ColorSpace.OKLAB)
    state = ClusterState(samples, np.array([encode(RED), encode(BLUE)]), compute_sum_scale(16))
    _run_pass(state)

    palette = decode_buffer(state.centroids, ColorSpace.OKLAB)
    out = np.empty((16, 4))
    resolve_output(state.samples, state.centroids, 2, state.labels, int(ColorSpace.OKLAB), True, out)
    np.testing.assert_allclose(out[:, :3], palette[state.labels, :3], atol=1e-12)
    np.testing.assert_array_equal(out[:, 3], 0.5)

    resolve_output(state.samples, state.centroids, 2, state.labels, int(ColorSpace.OKLAB), False, out)
    np.testing.assert_allclose(out[:, 3], state.centroids[state.labels, 3], atol=1e-12)


def test_resolve_output_maps_invalid_labels_to_first_centroid():
    samples = encode_buffer(np.array([[0.2, 0.4, 0.6, 1.0]] * 3), ColorSpace.OKLAB)
    centroids = np.array([encode(RED), encode(BLUE)])
    labels = np.array([INVALID_LABEL, 7, 1], dtype=np.int32)
    out = np.empty((3, 4))
    resolve_output(samples, centroids, 2, labels, int(ColorSpace.OKLAB), True, out)
    np.testing.assert_allclose(out[0, :3], RED[:3], atol=1e-5)
    np.testing.assert_allclose(out[1, :3], RED[:3], atol=1e-5)
    np.testing.assert_allclose(out[2, :3], BLUE[:3], atol=1e-5)


def test_sum_scale_respects_headroom():
    assert compute_sum_scale(16) == MAX_SUM_SCALE
    assert compute_sum_scale(1_000_000) == ACCUMULATOR_HEADROOM // 1_000_000
    for n in (1, 4096, 1_000_000, ACCUMULATOR_HEADROOM):
        scale = compute_sum_scale(n)
        assert scale >= 1
        assert n * scale <= ACCUMULATOR_HEADROOM


def test_workgroup_count_is_capped():
    assert dispatch_dim(1000, 256) == 4
    size = workgroup_size_for(10_000_000)
    assert dispatch_dim(10_000_000, size) <= MAX_WORKGROUPS
    assert workgroup_size_for(100) == 256


def test_cluster_state_rejects_bad_shapes():
    with pytest.raises(ValueError):
        ClusterState(np.zeros((4, 3)), np.zeros((1, 4)), 1)
    with pytest.raises(ValueError):
        ClusterState(np.zeros((4, 4)), np.zeros((0, 4)), 1)


def test_cluster_state_copies_initial_centroids():
    initial = np.full((2, 4), 0.5)
    state = ClusterState(np.zeros((4, 4)), initial, 1)
    state.centroids[0, 0] = 0.0
    assert initial[0, 0] == 0.5
    assert state.nbytes() > 0
