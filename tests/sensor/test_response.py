import numpy as np
import pytest

from artsoem.sensor.response import (antenna_diagram_gaussian,
                                     antenna_transfer_matrix,
                                     backend_matrix,
                                     channel_response_flat,
                                     channel_response_gaussian,
                                     integration_vector,
                                     mixer_matrix,
                                     scale_antenna_diagram,
                                     sideband_response)


def test_integration_vector():
    h = integration_vector(np.ones(2), [0.0, 1.0], [0.0, 0.5, 1.0])
    assert(np.allclose(h, [0.25, 0.5, 0.25]))

    # Exact for piecewise linear functions.
    x_g = np.array([0.0, 0.3, 1.0, 2.0])
    x_f = np.array([-1.0, 0.5, 1.5, 3.0])
    f = 2.0 * x_f + 1.0
    h = integration_vector(f, x_f, x_g)
    assert(np.isclose(h @ x_g, 2.0 / 3.0 * 8.0 + 2.0))


def test_integration_vector_no_overlap():
    h = integration_vector(np.ones(2), [0.0, 1.0], [2.0, 3.0])
    assert(np.all(h == 0.0))

    with pytest.raises(ValueError):
        integration_vector(np.ones(3), [0.0, 1.0], [2.0, 3.0])
    with pytest.raises(ValueError):
        integration_vector(np.ones(2), [1.0, 0.0], [2.0, 3.0])


def test_antenna_diagram():
    a = antenna_diagram_gaussian([0.0, 0.5, -0.5], 1.0)
    assert(np.allclose(a, [1.0, 0.5, 0.5]))

    assert(np.isclose(scale_antenna_diagram(0.5, 1.0, 2.0), 0.25))

    with pytest.raises(ValueError):
        antenna_diagram_gaussian([0.0], 0.0)


def test_antenna_transfer_matrix():
    f_grid = np.array([1e9, 2e9])

    h = antenna_transfer_matrix([0.0], None, None, f_grid)
    assert(np.all(h.toarray() == np.eye(2)))

    za = np.linspace(-3.0, 3.0, 61)
    a = antenna_diagram_gaussian(za, 1.0)
    h = antenna_transfer_matrix([-1.0, 0.0, 1.0], a, za, f_grid).toarray()
    assert(h.shape == (2, 6))
    assert(np.allclose(h.sum(axis = 1), 1.0))
    assert(np.all(h[0, 1::2] == 0.0))
    assert(np.all(h[1, 0::2] == 0.0))
    assert(np.isclose(h[0, 0], h[0, 4]))
    assert(h[0, 2] > h[0, 0])


def test_antenna_transfer_matrix_scaling():
    f_grid = np.array([1e9, 2e9])
    za = np.linspace(-3.0, 3.0, 61)
    a = antenna_diagram_gaussian(za, 1.0)
    h = antenna_transfer_matrix([-1.0, 0.0, 1.0], a, za, f_grid,
                                f_ref = 1e9).toarray()
    # The beam narrows with increasing frequency.
    assert(h[1, 3] > h[0, 2])


def test_mixer_matrix():
    f_grid = np.linspace(90.0, 110.0, 21)
    h, f_if = mixer_matrix(f_grid, 100.0, [-20.0, 20.0], [1.0, 1.0])
    assert(np.allclose(f_if, np.arange(11.0)))
    h = h.toarray()
    assert(h.shape == (11, 21))
    assert(np.allclose(h.sum(axis = 1), 1.0))
    assert(np.isclose(h[5, 5], 0.5))
    assert(np.isclose(h[5, 15], 0.5))
    assert(np.isclose(h[0, 10], 1.0))


def test_mixer_single_sideband():
    f_grid = np.linspace(90.0, 110.0, 21)
    h, f_if = mixer_matrix(f_grid, 100.0, [-20.0, -0.5, 0.5, 20.0],
                           [0.0, 0.0, 1.0, 1.0])
    h = h.toarray()
    assert(np.isclose(h[5, 15], 1.0))
    assert(np.isclose(h[5, 5], 0.0))


def test_mixer_no_overlap():
    f_grid = np.linspace(90.0, 110.0, 21)
    with pytest.raises(ValueError):
        mixer_matrix(f_grid, 200.0, [-20.0, 20.0], [1.0, 1.0])


def test_backend_matrix():
    f_grid = np.linspace(0.0, 10.0, 11)
    grid, response = channel_response_flat(2.0)
    h = backend_matrix(f_grid, [2.0, 5.0], grid, response)
    assert(h.shape == (2, 11))
    assert(np.allclose(h.toarray()[0, 1:4], [0.25, 0.5, 0.25]))
    assert(np.allclose(h @ f_grid, [2.0, 5.0]))

    grids = [grid, 2.0 * grid]
    responses = [response, response]
    h = backend_matrix(f_grid, [2.0, 5.0], grids, responses)
    assert(np.allclose(h.toarray()[1, 3:8], [0.125, 0.25, 0.25, 0.25, 0.125]))

    with pytest.raises(ValueError):
        backend_matrix(f_grid, [20.0], grid, response)


def test_channel_response_gaussian():
    x, r = channel_response_gaussian(1.0)
    assert(x.size == 61)
    assert(np.isclose(r[30], 1.0))
    assert(np.allclose(x, -x[::-1]))
    assert(np.isclose(np.interp(0.5, x, r), 0.5, atol = 1e-2))


def test_sideband_response():
    f_grid, h, channel_f = sideband_response([100.0], [[0.0, 2.0]])
    assert(np.allclose(f_grid, [98.0, 100.0, 102.0]))
    h = h.toarray()
    assert(np.allclose(h, [[0.0, 1.0, 0.0], [0.5, 0.0, 0.5]]))
    assert(np.allclose(channel_f, [100.0, 98.0]))

    f_grid, h, channel_f = sideband_response([100.0], [[0.0, 2.0]],
                                             order = "negative")
    h = h.toarray()
    assert(np.allclose(h, [[0.5, 0.0, 0.5], [0.0, 1.0, 0.0]]))
    assert(np.allclose(channel_f, [98.0, 100.0]))

    f_grid, h, _ = sideband_response([100.0, 200.0], [[2.0, 1.0], [3.0]])
    assert(np.allclose(f_grid, [98.0, 99.0, 101.0, 102.0, 197.0, 203.0]))
    h = h.toarray()
    assert(np.allclose(h[0], [0.0, 0.5, 0.5, 0.0, 0.0, 0.0]))
    assert(np.allclose(h[1], [0.5, 0.0, 0.0, 0.5, 0.0, 0.0]))
    assert(np.allclose(h[2], [0.0, 0.0, 0.0, 0.0, 0.5, 0.5]))

    with pytest.raises(ValueError):
        sideband_response([100.0], [[-1.0]])
