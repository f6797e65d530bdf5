import numpy as np
import pytest

from artsoem.atmosphere import AtmosphericState
from artsoem.data_provider import DataProviderBase


class DataProvider(DataProviderBase):
    """
    Simple 1D test atmosphere on 31 levels between 0 and 30 km with a
    tropopause at 11 km and a warming stratosphere above 20 km.
    """
    def __init__(self):
        super().__init__()
        self.z = np.linspace(0.0, 30e3, 31)

    def get_altitude(self, *args, **kwargs):
        return np.copy(self.z)

    def get_pressure(self, *args, **kwargs):
        return 101325.0 * np.exp(-self.z / 7000.0)

    def get_temperature(self, *args, **kwargs):
        t = 288.15 - 6.5e-3 * np.minimum(self.z, 11e3)
        t += 1e-3 * np.maximum(self.z - 20e3, 0.0)
        return t

    def get_H2O(self, *args, **kwargs):
        return 1e-2 * np.exp(-self.z / 2000.0) + 5e-6


@pytest.fixture
def data_provider():
    return DataProvider()


@pytest.fixture
def state(data_provider):
    return AtmosphericState.from_data_provider(data_provider, ["H2O"])
