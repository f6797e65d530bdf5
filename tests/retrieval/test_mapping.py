"""
Tests for the mapping between atmospheric state and state vector.
"""
import numpy as np
import pytest

from artsoem.jacobian import JacobianQuantity, Log10, jacobian_indices
from artsoem.physics import number_density
from artsoem.retrieval import (RetrievalQuantity, clip_x,
                               quantity_to_atmgrids, setup_xa, x2arts_std)


def test_setup_xa_temperature(state):
    p = state.p_grid[::5]
    q = JacobianQuantity.temperature(p)
    xa = setup_xa([q], jacobian_indices([q]), state)
    assert(xa.size == 7)
    assert(np.allclose(xa, state.t_field[::5, 0, 0]))


def test_setup_xa_species(state):
    p = state.p_grid
    vmr = state.vmr_field[0, :, 0, 0]
    t = state.t_field[:, 0, 0]

    quantities = [JacobianQuantity.absorption_species("H2O", "rel", p),
                  JacobianQuantity.absorption_species("H2O", "vmr", p),
                  JacobianQuantity.absorption_species("H2O", "nd", p),
                  JacobianQuantity.absorption_species("H2O", "vmr", p,
                                                      transformation = Log10())]
    indices = jacobian_indices(quantities)
    xa = setup_xa(quantities, indices, state)
    assert(xa.size == 4 * 31)
    assert(np.allclose(xa[:31], 1.0))
    assert(np.allclose(xa[31 : 62], vmr))
    assert(np.allclose(xa[62 : 93], vmr * number_density(p, t)))
    assert(np.allclose(xa[93:], np.log10(vmr)))


def test_setup_xa_outside_atmosphere(state):
    p = np.array([2.0 * state.p_grid[0], state.p_grid[-1]])
    q = JacobianQuantity.temperature(p)
    with pytest.raises(ValueError):
        setup_xa([q], jacobian_indices([q]), state)


def test_x2arts_temperature(state):
    p = state.p_grid[5:-5:5]
    q = JacobianQuantity.temperature(p)
    indices = jacobian_indices([q])
    x = 250.0 * np.ones(p.size)
    t_ref = np.copy(state.t_field)

    new = x2arts_std(x, [q], indices, state)
    assert(np.allclose(new.t_field, 250.0))
    assert(np.all(state.t_field == t_ref))

    # Constant extrapolation outside of the retrieval grid.
    x = np.linspace(200.0, 250.0, p.size)
    new = x2arts_std(x, [q], indices, state)
    assert(np.allclose(new.t_field[:5, 0, 0], 200.0))
    assert(np.allclose(new.t_field[-5:, 0, 0], 250.0))


def test_x2arts_species(state):
    p = state.p_grid
    vmr = np.copy(state.vmr_field[0, :, 0, 0])

    q = JacobianQuantity.absorption_species("H2O", "rel", p)
    new = x2arts_std(2.0 * np.ones(31), [q], [[0, 30]], state)
    assert(np.allclose(new.vmr_field[0, :, 0, 0], 2.0 * vmr))

    q = JacobianQuantity.absorption_species("H2O", "vmr", p)
    new = x2arts_std(1e-3 * np.ones(31), [q], [[0, 30]], state)
    assert(np.allclose(new.vmr_field, 1e-3))

    q = JacobianQuantity.absorption_species("H2O", "vmr", p,
                                            transformation = Log10())
    new = x2arts_std(-3.0 * np.ones(31), [q], [[0, 30]], state)
    assert(np.allclose(new.vmr_field, 1e-3))

    assert(np.all(state.vmr_field[0, :, 0, 0] == vmr))


def test_x2arts_number_density(state):
    p = state.p_grid
    quantities = [JacobianQuantity.temperature(p),
                  JacobianQuantity.absorption_species("H2O", "nd", p)]
    indices = jacobian_indices(quantities)
    xa = setup_xa(quantities, indices, state)

    new = x2arts_std(xa, quantities, indices, state)
    assert(np.allclose(new.vmr_field, state.vmr_field))

    # Number densities are converted using the new temperature.
    x = np.copy(xa)
    x[:31] *= 2.0
    new = x2arts_std(x, quantities, indices, state)
    assert(np.allclose(new.vmr_field, 2.0 * state.vmr_field))


def test_x2arts_number_density_order(state):
    p = state.p_grid
    t = JacobianQuantity.temperature(p)
    h2o = JacobianQuantity.absorption_species("H2O", "nd", p)

    for quantities in [[t, h2o], [h2o, t]]:
        indices = jacobian_indices(quantities)
        x = setup_xa(quantities, indices, state)
        i, j = indices[quantities.index(t)]
        x[i : j + 1] *= 1.2
        new = x2arts_std(x, quantities, indices, state)
        assert(np.allclose(new.t_field, 1.2 * state.t_field))
        assert(np.allclose(new.vmr_field, 1.2 * state.vmr_field))


def test_x2arts_invalid_length(state):
    q = JacobianQuantity.temperature(state.p_grid)
    with pytest.raises(ValueError):
        x2arts_std(np.ones(30), [q], jacobian_indices([q]), state)
    with pytest.raises(ValueError):
        x2arts_std(np.ones(31), [q], [[0, 29]], state)


def test_2d_atmosphere(state):
    s2 = state.expand_1d([-10.0, 0.0, 10.0])
    p = state.p_grid[::10]
    q = JacobianQuantity.temperature(p, lat_grid = [0.0])
    indices = jacobian_indices([q])

    xa = setup_xa([q], indices, s2)
    assert(np.allclose(xa, state.t_field[::10, 0, 0]))

    new = x2arts_std(250.0 * np.ones(p.size), [q], indices, s2)
    assert(new.t_field.shape == (31, 3, 1))
    assert(np.allclose(new.t_field, 250.0))

    field = quantity_to_atmgrids(xa, q, s2)
    assert(field.shape == (31, 3))

    q = JacobianQuantity.temperature(p)
    with pytest.raises(ValueError):
        setup_xa([q], jacobian_indices([q]), s2)


def test_clip_x(state):
    q = RetrievalQuantity.temperature(state.p_grid[::10])
    q.limit_low = 200.0
    q.limit_high = 280.0
    x = np.array([150.0, 250.0, 300.0, 250.0])
    x_c = clip_x(x, [q], jacobian_indices([q]))
    assert(np.all(x_c == [200.0, 250.0, 280.0, 250.0]))
    assert(x[0] == 150.0)
