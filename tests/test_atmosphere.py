import numpy as np
import pytest

from artsoem.atmosphere import AtmosphericState


def test_from_data_provider(data_provider, state):
    assert(state.atmosphere_dim == 1)
    assert(state.field_shape == (31, 1, 1))
    assert(state.t_field.shape == (31, 1, 1))
    assert(state.vmr_field.shape == (1, 31, 1, 1))
    assert(state.z_field is not None)
    assert(np.allclose(state.t_field.ravel(), data_provider.get_temperature()))
    assert(state.check())


def test_missing_species(data_provider):
    with pytest.raises(Exception):
        AtmosphericState.from_data_provider(data_provider, ["O3"])


def test_species_index(state):
    assert(state.species_index("H2O") == 0)
    with pytest.raises(ValueError):
        state.species_index("O3")


def test_check(state):
    s = state.copy()
    s.p_grid = s.p_grid[::-1]
    with pytest.raises(ValueError):
        s.check()

    s = state.copy()
    s.vmr_field[0, 3] = -1.0
    with pytest.raises(ValueError):
        s.check()

    s = state.copy()
    s.t_field[0] = np.nan
    with pytest.raises(ValueError):
        s.check()

    s = state.copy()
    s.lat_grid = np.array([0.0])
    with pytest.raises(ValueError):
        s.check()


def test_copy(state):
    s = state.copy()
    s.t_field[:] = 100.0
    assert(np.all(state.t_field > 200.0))


def test_expand_1d(state):
    s2 = state.expand_1d([-10.0, 0.0, 10.0])
    assert(s2.atmosphere_dim == 2)
    assert(s2.t_field.shape == (31, 3, 1))
    assert(s2.vmr_field.shape == (1, 31, 3, 1))
    for i in range(3):
        assert(np.all(s2.t_field[:, i, 0] == state.t_field[:, 0, 0]))
    assert(s2.check())

    s3 = state.expand_1d([-10.0, 0.0, 10.0], [0.0, 5.0])
    assert(s3.atmosphere_dim == 3)
    assert(s3.z_field.shape == (31, 3, 2))
    assert(s3.check())

    with pytest.raises(ValueError):
        s2.expand_1d([0.0, 1.0])
