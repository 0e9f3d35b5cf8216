import numpy as np
import pytest

from conftest import METRIC, X0, X1, Y_NORTH, Y_SOUTH, make_points
from subway_access.errors import ConfigurationError, DegeneratePatternError
from subway_access.point_pattern import (
    PointProcess,
    _isotropic_weights,
    build_point_process,
    default_radii,
    estimate_intensity,
    k_function,
    k_statistic,
    monte_carlo_envelope,
    sample_intensity_at_points,
    simulate_csr,
)
from subway_access.spatial_filter import BoundingBox


@pytest.fixture
def process(csr_points):
    return build_point_process(csr_points, METRIC)


def test_process_window_is_point_bounding_box(process, csr_points):
    assert process.n == len(csr_points)
    assert process.window.xmin == pytest.approx(csr_points.geometry.x.min())
    assert process.window.ymax == pytest.approx(csr_points.geometry.y.max())
    assert process.intensity == pytest.approx(process.n / process.area)


@pytest.mark.parametrize("coords", [
    [],
    [(585_000.0, 4_512_000.0)],
    [(585_000.0, 4_512_000.0), (586_000.0, 4_512_000.0), (587_000.0, 4_512_000.0)],
])
def test_degenerate_patterns_raise(coords):
    with pytest.raises(DegeneratePatternError):
        build_point_process(make_points(coords), METRIC)


def test_intensity_surface_peaks_at_cluster():
    rng = np.random.default_rng(1)
    cluster = rng.normal(loc=(582_000.0, 4_511_000.0), scale=100.0, size=(80, 2))
    corners = [(X0, Y_SOUTH), (X1, Y_NORTH)]
    process = build_point_process(make_points(list(map(tuple, cluster)) + corners), METRIC)

    surface = estimate_intensity(process, bandwidth_m=300.0, grid_size=64)
    assert surface.values.shape == (64, 64)
    assert (surface.values >= 0).all()
    row, col = np.unravel_index(np.argmax(surface.values), surface.values.shape)
    assert surface.xs[col] == pytest.approx(582_000.0, abs=500.0)
    assert surface.ys[row] == pytest.approx(4_511_000.0, abs=500.0)


def test_intensity_requires_positive_bandwidth(process):
    with pytest.raises(ConfigurationError):
        estimate_intensity(process, bandwidth_m=0.0)


def test_sampling_at_grid_nodes_returns_node_values(process):
    surface = estimate_intensity(process, bandwidth_m=1000.0, grid_size=16)
    nodes = make_points([(surface.xs[3], surface.ys[5]), (surface.xs[0], surface.ys[-1])])
    for method in ("linear", "nearest"):
        values = sample_intensity_at_points(surface, nodes, method=method)
        assert values.tolist() == pytest.approx([surface.values[5, 3], surface.values[-1, 0]])


def test_sampling_outside_window_is_missing(process, csr_points):
    surface = estimate_intensity(process, bandwidth_m=1000.0, grid_size=16)
    points = make_points([(X0 - 5_000.0, Y_SOUTH)])
    assert np.isnan(sample_intensity_at_points(surface, points).iloc[0])
    inside = sample_intensity_at_points(surface, csr_points)
    assert inside.notna().all()
    assert inside.index.equals(csr_points.index)


def test_edge_weights():
    window = BoundingBox(0.0, 0.0, 100.0, 100.0)
    centers = np.array([[50.0, 50.0], [0.0, 50.0], [0.0, 0.0], [50.0, 50.0]])
    d = np.array([10.0, 10.0, 10.0, 0.0])
    assert _isotropic_weights(centers, d, window) == pytest.approx([1.0, 2.0, 4.0, 1.0])


def test_k_function_shape(process):
    radii = default_radii(process.window, 32)
    curve = k_function(process, radii)
    assert curve.values[0] == 0.0
    assert (np.diff(curve.values) >= 0).all()
    assert curve.theoretical == pytest.approx(np.pi * radii ** 2)


def test_k_function_of_csr_is_close_to_pi_r_squared():
    rng = np.random.default_rng(7)
    window = BoundingBox(0.0, 0.0, 1000.0, 1000.0)
    process = PointProcess(coords=rng.uniform(0.0, 1000.0, size=(600, 2)), window=window)
    radii = np.array([50.0, 100.0, 200.0])
    curve = k_function(process, radii)
    assert curve.values == pytest.approx(np.pi * radii ** 2, rel=0.15)
    # without edge correction, K is biased low
    uncorrected = k_function(process, radii, correction="none")
    assert (uncorrected.values < curve.values).all()


def test_k_function_detects_clustering():
    rng = np.random.default_rng(3)
    centres = rng.uniform(100.0, 900.0, size=(10, 2))
    coords = np.vstack([c + rng.normal(scale=15.0, size=(30, 2)) for c in centres])
    process = PointProcess(coords=coords, window=BoundingBox(0.0, 0.0, 1000.0, 1000.0))
    curve = k_function(process, np.array([30.0]))
    assert curve.values[0] > 5 * np.pi * 30.0 ** 2


def test_envelope_is_reproducible(process):
    radii = default_radii(process.window, 16)
    first = monte_carlo_envelope(process, n_simulations=19, seed=6750, radii=radii)
    second = monte_carlo_envelope(process, n_simulations=19, seed=6750, radii=radii)
    np.testing.assert_array_equal(first.lower, second.lower)
    np.testing.assert_array_equal(first.upper, second.upper)
    np.testing.assert_array_equal(first.mean, second.mean)

    other = monte_carlo_envelope(process, n_simulations=19, seed=1, radii=radii)
    assert not np.array_equal(first.mean, other.mean)


def test_envelope_does_not_depend_on_workers(process):
    radii = default_radii(process.window, 8)
    serial = monte_carlo_envelope(process, n_simulations=6, seed=11, radii=radii, n_jobs=1)
    parallel = monte_carlo_envelope(process, n_simulations=6, seed=11, radii=radii, n_jobs=2)
    np.testing.assert_array_equal(serial.lower, parallel.lower)
    np.testing.assert_array_equal(serial.upper, parallel.upper)


def test_envelope_bounds_are_ordered(process):
    radii = default_radii(process.window, 16)
    minmax = monte_carlo_envelope(process, n_simulations=39, seed=5, radii=radii, rank=1)
    ranked = monte_carlo_envelope(process, n_simulations=39, seed=5, radii=radii, rank=2)
    assert (minmax.lower <= minmax.mean).all() and (minmax.mean <= minmax.upper).all()
    assert (ranked.lower >= minmax.lower).all()
    assert (ranked.upper <= minmax.upper).all()


def test_csr_pattern_lies_inside_its_envelope(process):
    radii = default_radii(process.window, 32)
    envelope = monte_carlo_envelope(process, n_simulations=99, seed=6750, radii=radii)
    csr = simulate_csr(process, np.random.default_rng(2024))
    inside = envelope.contains(k_function(csr, radii).values)
    assert inside.mean() >= 0.7


def test_envelope_uses_given_statistic(process):
    radii = default_radii(process.window, 8)
    envelope = monte_carlo_envelope(process, n_simulations=5, seed=1, radii=radii,
                                    statistic=k_statistic("none"))
    np.testing.assert_allclose(envelope.observed, k_function(process, radii, correction="none").values)


@pytest.mark.parametrize("kwargs", [{"n_simulations": 0}, {"n_simulations": 5, "rank": 6}])
def test_envelope_rejects_bad_settings(process, kwargs):
    with pytest.raises(ConfigurationError):
        monte_carlo_envelope(process, **kwargs)
