import numpy as np
import pytest

from artsoem.physics import number_density


def test_number_density():
    # Loschmidt constant
    n = number_density(101325.0, 273.15)
    assert(np.isclose(n, 2.6868e25, rtol = 1e-3))

    n = number_density(np.array([1e5, 1e4]), np.array([300.0, 300.0]))
    assert(np.isclose(n[0] / n[1], 10.0))


def test_number_density_invalid_temperature():
    with pytest.raises(ValueError):
        number_density(1e5, 0.0)
