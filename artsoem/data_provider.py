"""
data_provider
-------------

Data providers supply the inputs of a retrieval: atmospheric profiles,
a priori means and covariances and observations. A data provider is any
object exposing :code:`get_<name>` methods. All getters are called with
the arguments passed to :meth:`RetrievalCalculation.run`, which allows
a single provider to serve many retrieval cases, e.g. one per profile
index.

The :code:`DataProviderBase` class implements composition of providers
and the overriding of get methods through attributes.
"""
import weakref

import numpy as np

################################################################################
# Data provider classes
################################################################################


class DataProviderBase:
    """
    The :code:`DataProviderBase` implements generic functionality for

    - The overriding of get methods with attributes
    - Composition of data providers

    When a data provider inherits from :code:`DataProviderBase`, the values
    returned from a :code:`get_<attribute>` can be overridden simply setting
    the attribute with the name :code:`<attribute>` of the object.

    Sub-providers can be added with :meth:`add`. A get method that the data
    provider doesn't provide itself is looked up in the sub-providers in the
    order they were added.
    """

    def __init__(self):
        self._owner = None
        self.subproviders = []

    @property
    def owner(self):
        """The data provider this provider was added to."""
        if self._owner is None:
            raise ValueError("Data provider has not been added to a parent "
                             "provider.")
        owner = self._owner()
        if owner:
            return owner
        raise ValueError("Parent data provider has been deleted.")

    @owner.setter
    def owner(self, owner):
        self._owner = weakref.ref(owner)

    def add(self, subprovider):
        """
        Add a subprovider to the data provider.

        Arguments:

            subprovider: The subprovider to add. Must inherit
                from :code:`DataProviderBase`.

        Raises:

            ValueError: If :code:`subprovider` doesn't inherit from
            :code:`DataProviderBase`.
        """
        if not isinstance(subprovider, DataProviderBase):
            raise ValueError("Subprovider objects must inherit from "
                             "DataProviderBase.")
        subprovider.owner = self
        self.subproviders += [subprovider]

    def __getattribute__(self, name):

        if not name[:4] == "get_":
            return object.__getattribute__(self, name)

        attribute_name = name[4:]
        try:
            attr = object.__getattribute__(self, attribute_name)

            def wrapper(*_, **__):
                return attr

            return wrapper
        except AttributeError:
            pass

        try:
            return object.__getattribute__(self, name)
        except AttributeError:
            pass

        for prov in self.subproviders:
            try:
                return getattr(prov, name)
            except AttributeError:
                pass

        raise AttributeError("'{}' object has no attribute '{}'."
                             .format(self, name))


class CombinedProvider(DataProviderBase):
    """
    The :code:`CombinedProvider` allows the combination of multiple data
    providers. Get methods are looked up in the combined providers in the
    order in which they were given to the constructor and the first hit is
    returned.
    """

    def __init__(self, *args):
        super().__init__()
        self.providers = list(args)

    def add(self, provider):
        """
        Add a provider to the combined data provider.

        Arguments:

            provider: The data provider to add. Must inherit
                from :code:`DataProviderBase`.
        """
        if not isinstance(provider, DataProviderBase):
            raise ValueError("Data providers to add must inherit from "
                             "DataProviderBase.")
        provider.owner = self
        self.providers += [provider]

    def __getattribute__(self, name):

        if not name[:4] == "get_":
            return object.__getattribute__(self, name)

        for prov in self.providers:
            try:
                return getattr(prov, name)
            except AttributeError:
                pass

        raise AttributeError("'{}' object has no attribute '{}'."
                             .format(self, name))


class Constant(DataProviderBase):
    """
    Data provider that returns a constant value for a given quantity.
    """

    def __init__(self, name, value):
        """
        Arguments:

            name(:code:`str`): Name of the quantity to provide. The
                created object will have a member function
                :code:`get_<name>`.

            value: The value to return for the quantity.
        """
        super().__init__()
        self.value = value
        self.__dict__["get_" + name] = self.get

    def get(self, *_, **__):
        """Template function for the final get_'name' method."""
        return self.value


class FunctorDataProvider(DataProviderBase):
    """
    The FunctorDataProvider turns a function into a data provider that
    provides a get function for the results of the given function applied
    to a variable from the parent provider.
    """

    def __init__(self, name, variable, func):
        """
        Arguments:

            name(:code:`str`): Name of the quantity to provide. The
                created object will have a member function name
                :code:`get_<name>`.

            variable(:code:`str`): The quantity to get from the parent
                data provider.

            func(:code:`function`): Function to apply to the values of
                :code:`variable`.
        """
        super().__init__()
        self.variable = variable
        self.func = func
        self.__dict__["get_" + name] = self.get

    def get(self, *args, **kwargs):
        try:
            f_get = getattr(self.owner, "get_" + self.variable)
        except AttributeError:
            raise ValueError("Could not get variable {} from data provider."
                             .format(self.variable))
        return self.func(f_get(*args, **kwargs))


class AtmosphericStateProvider(DataProviderBase):
    """
    Provides the profiles of a 1D :class:`~artsoem.atmosphere.AtmosphericState`
    through :code:`get_pressure`, :code:`get_temperature` and
    :code:`get_<species>` methods. If the state has an altitude field,
    :code:`get_altitude` is provided as well.

    Profiles are returned in the order of the pressure grid, i.e. from the
    surface upwards.
    """

    def __init__(self, state):
        super().__init__()
        if state.atmosphere_dim != 1:
            raise ValueError("Only 1D atmospheric states can be provided.")
        self.state = state
        for i, s in enumerate(state.abs_species):
            self.__dict__["get_" + s] = self._make_getter(i)
        if state.z_field is not None:
            self.__dict__["get_altitude"] = self._get_altitude

    def _make_getter(self, i):
        def get(*_, **__):
            return np.copy(self.state.vmr_field[i, :, 0, 0])
        return get

    def get_pressure(self, *_, **__):
        return np.copy(self.state.p_grid)

    def get_temperature(self, *_, **__):
        return np.copy(self.state.t_field[:, 0, 0])

    def _get_altitude(self, *_, **__):
        return np.copy(self.state.z_field[:, 0, 0])
