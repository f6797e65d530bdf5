"""
artsoem.retrieval.a_priori
--------------------------

The :code:`retrieval.a_priori` sub-module provides modular data provider
objects that can be used to build a priori data providers.

An a priori provider for the retrieval quantity :code:`name` provides the
get methods :code:`get_<name>_xa` and :code:`get_<name>_covariance` and/or
:code:`get_<name>_precision` that :class:`RetrievalCalculation` queries
during the setup of a retrieval run.
"""
import numpy as np
import scipy as sp
import scipy.interpolate
import scipy.sparse

from artsoem.data_provider import DataProviderBase


################################################################################
# Covariances
################################################################################

class Diagonal:
    """
    Diagonal covariance matrix.

    Arguments:

        diagonal: Scalar or vector holding the diagonal of the covariance
            matrix. Scalars are expanded to the size of the altitude grid.

        mask: Optional mask; diagonal elements where the mask is false are
            set to :code:`mask_value`.

        mask_value(:code:`float`): Variance to use outside of the mask.
    """
    def __init__(self,
                 diagonal,
                 mask = None,
                 mask_value = 1e-12):
        self.diagonal = np.array(diagonal, dtype=float)
        self.mask = mask
        self.mask_value = mask_value

    def get_covariance(self, data_provider, *args, **kwargs):

        if self.diagonal.size == 1:
            z = data_provider.get_altitude(*args, **kwargs)
            diagonal = self.diagonal.ravel() * np.ones(z.size)
        else:
            diagonal = np.copy(self.diagonal)

        if not self.mask is None:
            mask = np.logical_not(self.mask(data_provider, *args, **kwargs))
            diagonal[mask] = self.mask_value

        return sp.sparse.diags(diagonal, format = "coo")


class SpatialCorrelation:
    """
    Adds spatial correlation to a given covariance matrix.
    """
    def __init__(self,
                 covariance,
                 correlation_length,
                 correlation_type = "exp",
                 cutoff = 1e-12,
                 mask = None,
                 mask_value = 1e-12,
                 z = None):
        """
        Arguments:

            covariance: Covariance object providing the original covariance
                matrix to which to apply the spatial correlation.

            correlation_length(:code:`float`): Correlation length in meters.

            correlation_type(:code:`str`): Type of the correlation to apply,
                :code:`"exp"` or :code:`"gauss"`.

            cutoff(:code:`float`): Threshold below which to set correlation
                coefficients to zero.

            mask: Optional mask. Grid points outside the mask are
                uncorrelated and have variance :code:`mask_value`.

            z: Optional altitude grid to use instead of the one of the
                data provider.
        """
        if correlation_type not in ["exp", "gauss"]:
            raise ValueError("The correlation type must be 'exp' or 'gauss'.")
        self.covariance         = covariance
        self.correlation_length = correlation_length
        self.correlation_type   = correlation_type
        self.cutoff = cutoff
        self.mask = mask
        self.mask_value = mask_value
        self.z = z

    def get_covariance(self, data_provider, *args, **kwargs):

        if self.z is None:
            z = data_provider.get_altitude(*args, **kwargs)
        else:
            z = self.z
        z = np.asarray(z, dtype=float).ravel()
        dz = np.abs(z.reshape(-1, 1) - z.reshape(1, -1))

        if self.correlation_type == "exp":
            corr = np.exp(- np.abs(dz / self.correlation_length))
        else:
            corr = np.exp(- (dz / self.correlation_length) ** 2)

        corr[corr < self.cutoff] = 0.0

        covmat = self.covariance.get_covariance(data_provider, *args, **kwargs)
        if sp.sparse.issparse(covmat):
            covmat = covmat.toarray()
        diag = np.sqrt(np.diag(covmat))
        covmat = corr * np.outer(diag, diag)

        if not self.mask is None:
            inds = np.logical_not(self.mask(data_provider, *args, **kwargs))
            inds2 = np.logical_or(inds.reshape(-1, 1), inds.reshape(1, -1))
            covmat[inds2] = 0.0
            covmat[inds, inds] = self.mask_value

        return covmat


class Thikhonov:
    """
    Thikhonov regularization using second order finite differences.
    """
    def __init__(self,
                 scaling    = 1.0,
                 diagonal   = 0.0,
                 mask       = None,
                 mask_value = 1e12,
                 z_scaling  = True,
                 z_grid = None):
        """
        Arguments:
            scaling(:code:`float`): Scalar to scale the precision matrix with.

            diagonal(:code:`float`): Value to add to the diagonal of the
                precision matrix, which makes it invertible.

            mask: A mask object defining indices on the diagonal on the
                precision matrix to which to as :code:`mask_value`.

            mask_value(:code:`float`): Scalar to set on the diagonal of the
                precision matrix on locations outside of :code:`mask`.

            z_scaling(:code:`Bool`): Whether or not to scale matrix
                coefficients according to height differences between levels.

            z_grid: Optional altitude grid of the retrieval. If given, the
                mask is interpolated from the altitude grid of the data
                provider to this grid.
        """
        self.scaling    = scaling
        self.diagonal   = diagonal
        self.mask       = mask
        self.mask_value = mask_value
        self.z_scaling  = z_scaling
        self.z_grid = z_grid

    def get_covariance(self, data_provider, *args, **kwargs):
        precmat = self.get_precision(data_provider, *args, **kwargs)
        diag = precmat.diagonal()
        return sp.sparse.diags(1.0 / diag, format = "coo")

    def get_precision(self, data_provider, *args, **kwargs):

        if self.z_grid is None:
            z = data_provider.get_altitude(*args, **kwargs)
            z_old = None
        else:
            z = self.z_grid
            z_old = data_provider.get_altitude(*args, **kwargs)
        z = np.asarray(z, dtype=float).ravel()
        n = z.size
        if n < 3:
            raise ValueError("Thikhonov regularization requires at least three "
                             "grid points.")

        du2 = np.ones(n - 2)

        du1 = -4.0 * np.ones(n - 1)
        du1[0]  = -2.0
        du1[-1] = -2.0

        dl1 = np.copy(du1)
        dl2 = np.copy(du2)

        d     = 6.0 * np.ones(n)
        d[:2]  = [1, 5]
        d[-2:] = [5, 1]

        if self.diagonal > 0.0:
            d += self.diagonal

        if not self.mask is None:
            mask = self.mask(data_provider, *args, **kwargs).astype(float)
            if not z_old is None:
                f = sp.interpolate.interp1d(z_old, mask,
                                            axis = 0,
                                            bounds_error = False,
                                            fill_value = (mask[0], mask[-1]))
                mask = f(z) > 0.5
            else:
                mask = mask > 0.5

            mask = np.logical_not(mask)
            du1[mask[:-1]] = 0
            du2[mask[:-2]] = 0
            dl1[mask[1:]]  = 0
            dl2[mask[2:]]  = 0
            d[mask] = self.mask_value

        precmat = sp.sparse.diags(diagonals = [du2, du1, d, dl1, dl2],
                                  offsets   = [2, 1, 0, -1, -2],
                                  format    = "csr")
        precmat = precmat * self.scaling

        if self.z_scaling:
            zf = (np.diff(z) / np.diff(z).mean()) ** 2.0
            zf1 = np.zeros(z.shape)
            zf1[1:]  += zf
            zf1[:-1] += zf
            zf1[1:-1] *= 0.5
            precmat = sp.sparse.diags(zf1, format = "csr") @ precmat

        return precmat.tocoo()

################################################################################
# APrioriProviderBase
################################################################################

class APrioriProviderBase(DataProviderBase):
    """
    Base class for a priori providers of a single retrieval quantity.

    The constructor registers the :code:`get_<name>_xa` method and,
    depending on the capabilities of the covariance object, the
    :code:`get_<name>_covariance` and :code:`get_<name>_precision`
    methods.
    """
    def __init__(self,
                 name,
                 covariance):
        """
        Arguments:

            name(:code:`name`): Name of the retrieval quantity.

            covariance: Covariance object providing :code:`get_covariance`
                and/or :code:`get_precision` methods.
        """

        super().__init__()
        self.__dict__["get_" + name + "_xa"] = self.get_xa

        if hasattr(covariance, "get_covariance"):
            self.__dict__["get_" + name + "_covariance"] = self.get_covariance
        if hasattr(covariance, "get_precision"):
            self.__dict__["get_" + name + "_precision"] = self.get_precision

        if hasattr(self, "get_mask"):
            self.__dict__["get_" + name + "_mask"] = self.get_mask

        self.name = name
        self._covariance = covariance

    def get_covariance(self, *args, **kwargs):
        return self._covariance.get_covariance(self.owner, *args, **kwargs)

    def get_precision(self, *args, **kwargs):
        return self._covariance.get_precision(self.owner, *args, **kwargs)

################################################################################
# Masks
################################################################################

class And:
    """
    Creates a combined mask by applying logical and to a list
    of single masks.
    """
    def __init__(self, *args):
        self.masks = list(args)

    def __call__(self, data_provider, *args, **kwargs):
        """
        Arguments:

            data_provider: Data provider describing the atmospheric scenario.

            *args: Arguments to forward to data provider.

            **kwargs: Keyword arguments to forward to data_provider.
        """
        masks = [m(data_provider, *args, **kwargs) for m in self.masks]

        m_and = masks[0]
        for m in masks[1:]:
            m_and = np.logical_and(m_and, m)

        return m_and


class TropopauseMask:
    """
    Returns a mask that is true only below the approximate height of the
    tropopause. The tropopause is detected as the first grid point
    where the lapse rate is negative and the temperature below 220 K.
    """
    def __init__(self):
        pass

    def __call__(self, data_provider, *args, **kwargs):
        t     = np.asarray(data_provider.get_temperature(*args, **kwargs)).ravel()
        t_avg = 0.5 * (t[1:] + t[:-1])
        lr    = - np.diff(t)

        tp = np.where(np.logical_and(lr < 0, t_avg < 220))[0]
        inds = np.ones(t.size, dtype = bool)
        if len(tp) > 0:
            inds[tp[0] + 1 :] = False
        return inds


class FreezingLevel:
    """
    Mask that is true above the freezing level, i.e. from the first grid
    point with a temperature below 273.15 K upwards.
    """
    def __init__(self,
                 lower_inclusive = False,
                 invert = False):
        self.lower_inclusive = lower_inclusive
        self.invert = invert

    def __call__(self, data_provider, *args, **kwargs):
        t    = np.asarray(data_provider.get_temperature(*args, **kwargs)).ravel()
        inds = np.where(t < 273.15)[0]
        if len(inds) > 0:
            i = inds[0]
        else:
            i = 0
        if self.lower_inclusive:
            i = max(i - 1, 0)
        inds = np.zeros(t.size, dtype = bool)
        inds[i:] = True

        if self.invert:
            inds = np.logical_not(inds)

        return inds


class TemperatureMask:
    """
    Mask that is true at grid points with temperatures in the half-open
    interval :code:`[lower_limit, upper_limit)`.
    """
    def __init__(self,
                 lower_limit,
                 upper_limit,
                 lower_inclusive = False,
                 upper_inclusive = False):
        """
        Arguments:

            lower_limit(:code:`float`): The lower temperature limit

            upper_limit(:code:`float`): The upper temperature limit

            lower_inclusive: Whether or not to include the grid point below
                each point inside the interval.

            upper_inclusive: Whether or not to include the grid point above
                each point inside the interval.
        """
        self.lower_limit = lower_limit
        self.upper_limit = upper_limit
        self.upper_inclusive = upper_inclusive
        self.lower_inclusive = lower_inclusive

    def __call__(self, data_provider, *args, **kwargs):
        t    = np.asarray(data_provider.get_temperature(*args, **kwargs))
        inds = np.logical_and(t.ravel() >= self.lower_limit,
                              t.ravel() <  self.upper_limit)
        result = np.copy(inds)
        if self.upper_inclusive:
            result[1:] = np.logical_or(result[1:], inds[:-1])
        if self.lower_inclusive:
            result[:-1] = np.logical_or(result[:-1], inds[1:])
        return result


class AltitudeMask:
    """
    Mask that is true at grid points with altitudes in the half-open
    interval :code:`[lower_limit, upper_limit)`.
    """
    def __init__(self, lower_limit, upper_limit):
        self.lower_limit = lower_limit
        self.upper_limit = upper_limit

    def __call__(self, data_provider, *args, **kwargs):
        z    = np.asarray(data_provider.get_altitude(*args, **kwargs))
        inds = np.logical_and(z.ravel() >= self.lower_limit,
                              z.ravel() <  self.upper_limit)
        return inds

################################################################################
# A priori providers
################################################################################

class DataProviderAPriori(APrioriProviderBase):
    """
    A priori provider that propagates an atmospheric quantity :code:`name`
    as a priori mean profile from the data provider.

    Arguments:

        name(:code:`str`): Name of the retrieval quantity.

        covariance: Covariance object for the retrieval quantity.

        transformation: Optional transformation applied to the profile
            before it is returned.
    """
    def __init__(self,
                 name,
                 covariance,
                 transformation = None):
        super().__init__(name, covariance)
        self.transformation = transformation

    def get_xa(self, *args, **kwargs):

        f_name = "get_" + self.name
        try:
            f = getattr(self.owner, f_name)
        except AttributeError:
            raise ValueError("DataProviderAPriori instance requires get method "
                             "{0} from its owning data provider."
                             .format(f_name))

        x = np.array(f(*args, **kwargs), dtype=float)
        if not self.transformation is None:
            x = self.transformation(x)
        return x


class FixedAPriori(APrioriProviderBase):
    """
    Returns an a priori profile that does not depend on the atmospheric
    state.

    Arguments:

        name(:code:`str`): Name of the retrieval quantity.

        xa: Scalar or vector holding the a priori profile. Scalars are
            expanded to the size of the altitude grid.

        covariance: Covariance object for the retrieval quantity.

        mask: Optional mask; elements outside the mask are set to
            :code:`mask_value`.

        mask_value(:code:`float`): Value to use outside of the mask.
    """
    def __init__(self,
                 name,
                 xa,
                 covariance,
                 mask = None,
                 mask_value = 1e-12):

        if not mask is None:
            self.__dict__["get_mask"] = self._get_mask

        super().__init__(name, covariance)
        self._xa   = np.array(xa, dtype=float)
        self.mask = mask
        self.mask_value = mask_value

    def _get_mask(self, *args, **kwargs):
        return self.mask(self.owner, *args, **kwargs)

    def get_xa(self, *args, **kwargs):

        if self._xa.size == 1:
            z = self.owner.get_altitude(*args, **kwargs)
            xa = self._xa.ravel() * np.ones(np.size(z))
        else:
            xa = np.copy(self._xa)

        if not self.mask is None:
            mask = np.logical_not(self.mask(self.owner, *args, **kwargs))
            xa[mask] = self.mask_value

        return xa


class FunctionalAPriori(APrioriProviderBase):
    """
    Returns an a priori profile that is a functional transform
    of some variable.

    Arguments:

        name(:code:`str`): Name of the retrieval quantity.

        variable(:code:`str`): Name of the variable to request from the
            owning data provider.

        f: Function to apply to the variable.

        covariance: Covariance object for the retrieval quantity.
    """
    def __init__(self,
                 name,
                 variable,
                 f,
                 covariance,
                 mask = None,
                 mask_value = 1e-12):

        if not mask is None:
            self.__dict__["get_mask"] = self._get_mask

        super().__init__(name, covariance)
        self.variable   = variable
        self.f          = f
        self.mask       = mask
        self.mask_value = mask_value

    def _get_mask(self, *args, **kwargs):
        return self.mask(self.owner, *args, **kwargs)

    def get_xa(self, *args, **kwargs):

        try:
            f_get = getattr(self.owner, "get_" + self.variable)
        except AttributeError:
            raise ValueError("Could not get variable {} from data provider."
                             .format(self.variable))

        xa = np.array(self.f(f_get(*args, **kwargs)), dtype=float)

        if not self.mask is None:
            mask = np.logical_not(self.mask(self.owner, *args, **kwargs))
            xa[mask] = self.mask_value

        return xa

################################################################################
# Sensor a priori
################################################################################

class SensorNoiseAPriori(DataProviderBase):
    """
    Measurement error due to sensor noise.

    The :code:`SensorNoiseAPriori` class constructs a combined
    observation error covariance matrix from the noise characteristics
    of a list of sensors. The blocks of the sensors are stacked in the
    order in which the sensors are given.

    The noise of particular sensors can be amplified by adding the
    scaling factor to the :code:`noise_scaling` attribute of the
    class.

    Attributes:

        noise_scaling(:code:`dict`): Dictionary mapping sensor names to
            noise scaling factors.
    """
    def __init__(self,
                 sensors):
        """
        Arguments:

            sensors(list of :code:`artsoem.sensor.Sensor`): Sensors used
                in the observation for which to construct the observation
                error covariance matrix.
        """
        super().__init__()
        self.sensors = sensors
        self.noise_scaling = {}

    def get_observation_error_covariance(self, *args, **kwargs):
        stds = []
        for s in self.sensors:
            c = self.noise_scaling.get(s.name, 1.0)
            stds += [c * s.noise_vector()]

        sig = np.concatenate(stds).ravel()
        return sp.sparse.diags(sig ** 2.0, format = "coo")
