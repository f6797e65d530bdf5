"""
artsoem.atmosphere
------------------

The :class:`AtmosphericState` bundles the atmospheric grids and fields
that retrieval quantities are mapped to and from. Fields are stored with
three spatial dimensions :code:`(p, lat, lon)` regardless of the
dimensionality of the atmosphere, unused dimensions have length one.
"""
import copy
import logging

import numpy as np

logger = logging.getLogger(__name__)


class AtmosphericState:
    """
    Grids and fields describing a model atmosphere.

    Attributes:

        p_grid(:code:`numpy.ndarray`): Strictly decreasing pressure grid in
            Pa.

        lat_grid(:code:`numpy.ndarray`): Latitude grid, empty for 1D
            atmospheres.

        lon_grid(:code:`numpy.ndarray`): Longitude grid, empty for 1D and 2D
            atmospheres.

        t_field(:code:`numpy.ndarray`): Temperature field of shape
            :code:`(n_p, n_lat, n_lon)`.

        vmr_field(:code:`numpy.ndarray`): Volume mixing ratios of shape
            :code:`(n_species, n_p, n_lat, n_lon)`.

        abs_species(:code:`list`): Names of the absorption species in the
            order of the first dimension of :code:`vmr_field`.

        z_field(:code:`numpy.ndarray`): Optional altitude field with the
            same shape as :code:`t_field`.
    """
    def __init__(self,
                 p_grid,
                 t_field,
                 vmr_field = None,
                 abs_species = None,
                 lat_grid = None,
                 lon_grid = None,
                 z_field = None):

        self.p_grid = np.asarray(p_grid, dtype=float).ravel()

        if lat_grid is None:
            lat_grid = np.zeros(0)
        if lon_grid is None:
            lon_grid = np.zeros(0)
        self.lat_grid = np.asarray(lat_grid, dtype=float).ravel()
        self.lon_grid = np.asarray(lon_grid, dtype=float).ravel()

        shape = self.field_shape
        self.t_field = np.asarray(t_field, dtype=float).reshape(shape)

        if abs_species is None:
            abs_species = []
        self.abs_species = list(abs_species)

        if vmr_field is None:
            vmr_field = np.zeros((0,) + shape)
        self.vmr_field = np.asarray(vmr_field, dtype=float)
        if self.vmr_field.size == len(self.abs_species) * int(np.prod(shape)):
            self.vmr_field = self.vmr_field.reshape((len(self.abs_species),)
                                                    + shape)

        if z_field is not None:
            z_field = np.asarray(z_field, dtype=float).reshape(shape)
        self.z_field = z_field

    @classmethod
    def from_data_provider(cls, data_provider, abs_species, *args, **kwargs):
        """
        Create a 1D atmospheric state from a data provider.

        The data provider must provide :code:`get_pressure`,
        :code:`get_temperature` and a :code:`get_<species>` method for each
        species in :code:`abs_species`. If it provides :code:`get_altitude`
        the altitude field is set as well.

        Arguments:

            data_provider: The data provider to query.

            abs_species(:code:`list`): Names of the absorption species.

            *args, **kwargs: Forwarded to the getters of the data provider.
        """
        p = data_provider.get_pressure(*args, **kwargs)
        t = data_provider.get_temperature(*args, **kwargs)

        vmrs = []
        for s in abs_species:
            try:
                f = getattr(data_provider, "get_" + s)
            except AttributeError:
                raise Exception("The data provider must provide a get method "
                                "for absorption species {0}.".format(s))
            vmrs += [np.asarray(f(*args, **kwargs), dtype=float).ravel()]

        z = None
        if hasattr(data_provider, "get_altitude"):
            z = data_provider.get_altitude(*args, **kwargs)

        if vmrs:
            vmr_field = np.stack(vmrs)
        else:
            vmr_field = None

        return cls(p, t, vmr_field, abs_species, z_field = z)

    @property
    def atmosphere_dim(self):
        """The dimensionality of the atmosphere."""
        if self.lon_grid.size > 0:
            return 3
        if self.lat_grid.size > 0:
            return 2
        return 1

    @property
    def field_shape(self):
        """Shape of atmospheric fields :code:`(n_p, n_lat, n_lon)`."""
        return (self.p_grid.size,
                max(self.lat_grid.size, 1),
                max(self.lon_grid.size, 1))

    def species_index(self, species):
        """
        Return the position of :code:`species` in :code:`abs_species`.

        Raises:

            ValueError if the species is not included in the state.
        """
        try:
            return self.abs_species.index(species)
        except ValueError:
            raise ValueError("The species {} is not contained in abs_species "
                             "({}).".format(species, self.abs_species))

    def check(self):
        """
        Check grids and fields for consistency.

        Raises:

            ValueError with a message naming the offending variable if any
            check fails.
        """
        if self.p_grid.size < 2:
            raise ValueError("The pressure grid must contain at least two "
                             "points.")
        if not np.all(np.diff(self.p_grid) < 0.0):
            raise ValueError("The pressure grid must be strictly decreasing.")
        if np.any(self.p_grid <= 0.0):
            raise ValueError("The pressure grid must be strictly positive.")

        if self.lon_grid.size > 0 and self.lat_grid.size == 0:
            raise ValueError("A longitude grid requires a latitude grid.")
        for name in ["lat_grid", "lon_grid"]:
            g = getattr(self, name)
            if g.size == 1:
                raise ValueError("The {} must be empty or contain at least "
                                 "two points.".format(name))
            if g.size > 1 and not np.all(np.diff(g) > 0.0):
                raise ValueError("The {} must be strictly increasing."
                                 .format(name))
        if self.lat_grid.size > 0 and (np.any(self.lat_grid < -90.0)
                                       or np.any(self.lat_grid > 90.0)):
            raise ValueError("Latitudes must lie within [-90, 90].")

        shape = self.field_shape
        if self.t_field.shape != shape:
            raise ValueError("The t_field has shape {} but {} is expected."
                             .format(self.t_field.shape, shape))
        if not np.all(np.isfinite(self.t_field)):
            raise ValueError("The t_field contains non-finite values.")
        if np.any(self.t_field <= 0.0):
            raise ValueError("The t_field must be strictly positive.")

        if self.abs_species:
            vmr_shape = (len(self.abs_species),) + shape
            if self.vmr_field.shape != vmr_shape:
                raise ValueError("The vmr_field has shape {} but {} is "
                                 "expected.".format(self.vmr_field.shape,
                                                    vmr_shape))
            if not np.all(np.isfinite(self.vmr_field)):
                raise ValueError("The vmr_field contains non-finite values.")
            if np.any(self.vmr_field < 0.0):
                raise ValueError("The vmr_field contains negative values.")

        if self.z_field is not None:
            if self.z_field.shape != shape:
                raise ValueError("The z_field has shape {} but {} is expected."
                                 .format(self.z_field.shape, shape))
            if not np.all(np.diff(self.z_field, axis=0) > 0.0):
                raise ValueError("The z_field must be strictly increasing "
                                 "along the pressure dimension.")
        return True

    def expand_1d(self, lat_grid, lon_grid = None):
        """
        Expand a 1D atmosphere to 2D or 3D by repeating its profiles.

        Arguments:

            lat_grid: The latitude grid of the expanded atmosphere.

            lon_grid: Optional longitude grid. If given, the atmosphere is
                expanded to 3D.

        Returns:

            A new :class:`AtmosphericState`.
        """
        if self.atmosphere_dim != 1:
            raise ValueError("Only 1D atmospheres can be expanded.")
        if lon_grid is None:
            lon_grid = np.zeros(0)

        lat_grid = np.asarray(lat_grid, dtype=float).ravel()
        lon_grid = np.asarray(lon_grid, dtype=float).ravel()
        shape = (self.p_grid.size,
                 max(lat_grid.size, 1),
                 max(lon_grid.size, 1))
        n_species = len(self.abs_species)

        t_field = np.broadcast_to(self.t_field[:, :1, :1], shape).copy()
        vmr_field = np.broadcast_to(self.vmr_field[:, :, :1, :1],
                                    (n_species,) + shape).copy()
        z_field = None
        if self.z_field is not None:
            z_field = np.broadcast_to(self.z_field[:, :1, :1], shape).copy()

        expanded = AtmosphericState(self.p_grid,
                                    t_field,
                                    vmr_field,
                                    self.abs_species,
                                    lat_grid = lat_grid,
                                    lon_grid = lon_grid,
                                    z_field = z_field)
        logger.debug("Expanded 1D atmosphere to %dD.",
                     expanded.atmosphere_dim)
        return expanded

    def copy(self):
        """Return a deep copy of the state."""
        return copy.deepcopy(self)
