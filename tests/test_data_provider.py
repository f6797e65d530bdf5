import numpy as np
import pytest

from artsoem.atmosphere import AtmosphericState
from artsoem.data_provider import (
    DataProviderBase,
    AtmosphericStateProvider,
    Constant,
    FunctorDataProvider,
    CombinedProvider,
)

################################################################################
# Data provider classes
################################################################################

class DataProvider(DataProviderBase):

    def __init__(self):
        super().__init__()
        self.temperature = 275.0

    def get_temperature(self):
        return 300.0

class SubProvider1(DataProviderBase):

    def __init__(self):
        super().__init__()

    def get_temperature_xa(self):
        return 300.0

class SubProvider2(DataProviderBase):

    def __init__(self):
        super().__init__()
        self.temperature_xa =  300.0

################################################################################
# Tests
################################################################################

def test_priority():
    """
    Test that attributes take priority over get functions.

    We first test the get function which should return the value of the
    temperature attribute instead of calling the get_temperature method.

    Then we remove the temperature attribute and check that the returned
    value is the one returned by the get_temperature method.
    """
    dp  = DataProvider()
    assert(dp.get_temperature() == 275.0)

    dp.__dict__.pop("temperature")
    assert(dp.get_temperature() == 300.0)

def test_subproviders():
    """
    Test that call to get_temperature_xa is correctly forwarded to the
    get_temperature temperature method of the Subprovider1 object, which
    comes first in the list of data providers.
    """

    dp  = DataProvider()
    sp1 = SubProvider1()
    sp2 = SubProvider2()

    dp.add(sp1)
    dp.add(sp2)

    assert(dp.get_temperature_xa() == 300.0)

def test_missing_getter():
    dp = DataProvider()
    dp.add(SubProvider1())
    assert(not hasattr(dp, "get_pressure"))
    with pytest.raises(AttributeError):
        dp.get_pressure()

def test_add_invalid():
    dp = DataProvider()
    with pytest.raises(ValueError):
        dp.add(object())

def test_combined_provider():
    """
    Test priority with which getters are returned from the
    CombinedDataProvider.
    """
    dp_1 = DataProvider()
    dp_1.add(FunctorDataProvider("value", "temperature", lambda x: 2.0 * x))

    dp_2 = DataProvider()
    dp_2.add(FunctorDataProvider("value", "temperature", lambda x: 3.0 * x))

    dp = CombinedProvider(dp_1, dp_2)
    assert(dp.get_value() == 2.0 * dp.get_temperature())

    dp = CombinedProvider(dp_2, dp_1)
    assert(dp.get_value() == 3.0 * dp.get_temperature())

def test_constant_provider():
    dp = Constant("value", 100)
    value = dp.get_value()
    assert(value == 100)

def test_functional_provider():
    dp = DataProvider()
    dp.add(FunctorDataProvider("value", "temperature", lambda x: 2.0 * x))
    value = dp.get_value()
    assert(value == 2.0 * dp.get_temperature())

def test_functional_provider_without_owner():
    """
    A functor provider that was never added to a parent provider has no
    variable to apply its function to.
    """
    dp = FunctorDataProvider("value", "temperature", lambda x: 2.0 * x)
    with pytest.raises(ValueError):
        dp.get_value()

def test_atmospheric_state_provider(state):
    dp = AtmosphericStateProvider(state)
    assert(np.all(dp.get_pressure() == state.p_grid))
    assert(np.all(dp.get_temperature() == state.t_field[:, 0, 0]))
    assert(np.all(dp.get_H2O() == state.vmr_field[0, :, 0, 0]))
    assert(np.all(dp.get_altitude() == state.z_field[:, 0, 0]))

    # Profiles are copies of the state fields.
    t = dp.get_temperature()
    t[:] = 0.0
    assert(np.all(state.t_field > 0.0))

    state_2 = AtmosphericState.from_data_provider(dp, ["H2O"])
    assert(np.all(state_2.t_field == state.t_field))
    assert(np.all(state_2.vmr_field == state.vmr_field))
    assert(np.all(state_2.z_field == state.z_field))

def test_atmospheric_state_provider_no_altitude(state):
    state = AtmosphericState(state.p_grid,
                             state.t_field,
                             state.vmr_field,
                             state.abs_species)
    dp = AtmosphericStateProvider(state)
    assert(not hasattr(dp, "get_altitude"))

    with pytest.raises(ValueError):
        AtmosphericStateProvider(state.expand_1d([0.0, 10.0]))

def test_missing_variable_messages():
    dp = DataProvider()
    dp.add(FunctorDataProvider("value", "pressure", lambda x: 2.0 * x))
    with pytest.raises(ValueError, match = "Could not get variable pressure"):
        dp.get_value()
    with pytest.raises(AttributeError, match = "no attribute 'get_humidity'"):
        dp.get_humidity()
