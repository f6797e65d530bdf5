"""
artsoem.retrieval
-----------------

The :code:`retrieval` module handles OEM retrievals of atmospheric
quantities. It provides three layers:

1. :func:`setup_xa` and :func:`x2arts_std` map between the atmospheric
   state and the state vector :math:`\\mathbf{x}` of the retrieval.

2. :func:`oem` runs a single OEM inversion: it checks its inputs, builds
   the a priori state vector, evaluates the forward model at the a priori
   state and dispatches to the requested solver.

3. :class:`RetrievalCalculation` takes care of the book-keeping around
   retrieval quantities: it collects a priori means and covariance
   matrices from a data provider, runs one or several
   :class:`RetrievalRun` and keeps their results.

Retrieving quantities
=====================

Retrieval quantities are instances of :class:`RetrievalQuantity` and are
added to a calculation using its :code:`add` method:

::

    retrieval = RetrievalCalculation()
    retrieval.add(RetrievalQuantity.temperature(p_grid))
    retrieval.run(forward_model, state, data_provider)

For each quantity the data provider must provide a covariance
(:code:`get_<name>_covariance`) or precision matrix
(:code:`get_<name>_precision`). If it provides :code:`get_<name>_xa` this
is used as a priori mean, otherwise the a priori is taken from the
atmospheric state.

Forward models
==============

The forward model is either an :class:`artsoem.oem.ForwardModel` operating
directly on state vectors, or a callable :code:`f(state, jacobian_do)`
that takes an :class:`artsoem.atmosphere.AtmosphericState` and returns a
tuple :code:`(y, jacobian)`. The Jacobian is w.r.t. the untransformed
retrieval quantities on their retrieval grids, stacked in the order in
which the quantities were added.

Reference
=========
"""
import logging
import weakref

import matplotlib.pyplot as plt
import numpy as np
import scipy as sp
import scipy.linalg
import scipy.sparse
import xarray as xr

from artsoem.interpolation import (gp4length1grid, gridpos,
                                   jacobian_type_extrapol, p2gridpos,
                                   regrid_atmfield_by_gp)
from artsoem.jacobian import (TEMPERATURE, JacobianQuantity,
                              jacobian_indices, transform_jacobian)
from artsoem.exceptions import ForwardModelError
from artsoem.oem import (DEFAULT_GA_SETTINGS, STATUS_ERROR,
                         STATUS_HIGH_START_COST, ForwardModel, OEMResult,
                         avk, covmat_so, covmat_ss, oem_cost_y,
                         oem_gauss_newton, oem_levenberg_marquardt,
                         oem_linear_nform)
from artsoem.physics import number_density

logger = logging.getLogger(__name__)

################################################################################
# Mapping between atmospheric state and state vector
################################################################################

def _check_grids(q, state):
    dim = state.atmosphere_dim
    if len(q.grids) != dim:
        raise ValueError("The retrieval quantity {} has {} retrieval grid(s) "
                         "but the atmosphere is {}D."
                         .format(q.name, len(q.grids), dim))


def _gp_atmgrids_to_rq(q, state):
    """
    Grid positions of the retrieval grids of :code:`q` with respect to the
    atmospheric grids. Retrieval grids must lie inside the atmospheric grids.
    """
    _check_grids(q, state)
    dim = state.atmosphere_dim
    gps = [p2gridpos(state.p_grid, q.grids[0], 0.0), None, None]
    if dim >= 2:
        gps[1] = gridpos(state.lat_grid, q.grids[1], 0.0)
    if dim == 3:
        gps[2] = gridpos(state.lon_grid, q.grids[2], 0.0)
    return gps


def _gp_rq_to_atmgrids(q, state):
    """
    Grid positions of the atmospheric grids with respect to the retrieval
    grids of :code:`q`. Values outside of the retrieval grids are
    extrapolated as constants.
    """
    _check_grids(q, state)
    atm_grids = [state.p_grid, state.lat_grid, state.lon_grid]
    gps = [None, None, None]
    for i, g in enumerate(q.grids):
        if g.size == 1:
            gps[i] = gp4length1grid(atm_grids[i].size)
            continue
        if i == 0:
            gp = p2gridpos(g, atm_grids[i], np.inf)
        else:
            gp = gridpos(g, atm_grids[i], np.inf)
        gps[i] = jacobian_type_extrapol(gp)
    return gps


def _values_from_state(q, state):
    """
    Values of retrieval quantity :code:`q` on its retrieval grids, flattened
    with the pressure dimension running fastest.
    """
    gp_p, gp_lat, gp_lon = _gp_atmgrids_to_rq(q, state)
    dim = state.atmosphere_dim

    def regrid(field):
        return regrid_atmfield_by_gp(field, dim, gp_p, gp_lat, gp_lon)

    if q.maintag == TEMPERATURE:
        values = regrid(state.t_field)
    else:
        i = state.species_index(q.subtag)
        if q.mode == "rel":
            values = np.ones(q.grid_shape)
        elif q.mode == "vmr":
            values = regrid(state.vmr_field[i])
        else:
            t = regrid(state.t_field)
            p = q.p_grid.reshape(-1, 1, 1)
            values = regrid(state.vmr_field[i]) * number_density(p, t)
    return values.ravel(order = "F")


def _check_indices(quantities, indices):
    if len(indices) != len(quantities):
        raise ValueError("Different number of elements in the retrieval "
                         "quantities and the Jacobian indices.")
    for q, (i, j) in zip(quantities, indices):
        if j - i + 1 != q.n_elements:
            raise ValueError("The Jacobian indices [{}, {}] do not match the "
                             "{} elements of retrieval quantity {}."
                             .format(i, j, q.n_elements, q.name))


def setup_xa(quantities, indices, state):
    """
    Build the a priori state vector from an atmospheric state.

    The atmospheric fields are interpolated to the retrieval grids, which
    must lie within the atmospheric grids. Temperatures are taken from the
    temperature field. Absorption species in mode :code:`"rel"` have an a
    priori of one, in mode :code:`"vmr"` the volume mixing ratio and in
    mode :code:`"nd"` the number density computed from the interpolated
    volume mixing ratio and temperature and the retrieval pressure.

    Arguments:

        quantities: The :class:`artsoem.jacobian.JacobianQuantity` objects
            of the state vector.

        indices: Their indices as returned by
            :func:`artsoem.jacobian.jacobian_indices`.

        state(:class:`artsoem.atmosphere.AtmosphericState`): The a priori
            atmospheric state.

    Returns:

        The a priori state vector in transformed space.
    """
    _check_indices(quantities, indices)
    n = indices[-1][1] + 1 if indices else 0
    xa = np.zeros(n)
    for q, (i, j) in zip(quantities, indices):
        xa[i : j + 1] = q.transformation(_values_from_state(q, state))
    return xa


def quantity_to_atmgrids(x, q, state):
    """
    Interpolate values of retrieval quantity :code:`q` given on its
    retrieval grids to the atmospheric grids of :code:`state`.

    Returns:

        Array with one dimension per dimension of the atmosphere.
    """
    values = np.asarray(x, dtype=float).reshape(q.grid_shape, order = "F")
    gp_p, gp_lat, gp_lon = _gp_rq_to_atmgrids(q, state)
    dim = state.atmosphere_dim
    field = regrid_atmfield_by_gp(values, dim, gp_p, gp_lat, gp_lon)
    return field.reshape(state.field_shape[:dim])


def x2arts_std(x, quantities, indices, state):
    """
    Map a state vector onto an atmospheric state.

    Values on the retrieval grids are interpolated to the atmospheric grids,
    outside of the retrieval grids the values at the end points are used.
    Absorption species in mode :code:`"rel"` scale the volume mixing ratio
    of :code:`state`, in mode :code:`"vmr"` they replace it and in mode
    :code:`"nd"` they are converted to volume mixing ratios using the
    temperature of the new state.

    Arguments:

        x: The state vector in transformed space.

        quantities: The retrieval quantities of the state vector.

        indices: Their indices in the state vector.

        state(:class:`artsoem.atmosphere.AtmosphericState`): The reference
            state. It is not modified.

    Returns:

        A new :class:`artsoem.atmosphere.AtmosphericState`.
    """
    _check_indices(quantities, indices)
    x = np.asarray(x, dtype=float).ravel()
    n = indices[-1][1] + 1 if indices else 0
    if x.size != n:
        raise ValueError("The state vector has length {} but the retrieval "
                         "quantities require {} elements.".format(x.size, n))

    new = state.copy()
    dim = state.atmosphere_dim

    def to_field(q, i, j):
        values = q.transformation.invert(x[i : j + 1])
        values = np.asarray(values, dtype=float).reshape(q.grid_shape,
                                                         order = "F")
        gp_p, gp_lat, gp_lon = _gp_rq_to_atmgrids(q, state)
        return regrid_atmfield_by_gp(values, dim, gp_p, gp_lat, gp_lon)

    # Temperature first, number densities are converted with the new one.
    for q, (i, j) in zip(quantities, indices):
        if q.maintag == TEMPERATURE:
            new.t_field = to_field(q, i, j)

    for q, (i, j) in zip(quantities, indices):
        if q.maintag == TEMPERATURE:
            continue
        field = to_field(q, i, j)
        k = new.species_index(q.subtag)
        if q.mode == "rel":
            new.vmr_field[k] = state.vmr_field[k] * field
        elif q.mode == "vmr":
            new.vmr_field[k] = field
        else:
            p = state.p_grid.reshape(-1, 1, 1)
            new.vmr_field[k] = field / number_density(p, new.t_field)
    return new


def clip_x(x, quantities, indices):
    """
    Apply the limits of the retrieval quantities to a state vector.

    Returns:

        A clipped copy of :code:`x`.
    """
    x = np.array(x, dtype=float)
    for q, (i, j) in zip(quantities, indices):
        low = getattr(q, "limit_low", None)
        high = getattr(q, "limit_high", None)
        if low is None and high is None:
            continue
        low = -np.inf if low is None else low
        high = np.inf if high is None else high
        x[i : j + 1] = np.clip(x[i : j + 1], low, high)
    return x

################################################################################
# Forward model on atmospheric states
################################################################################

class AtmosphericForwardModel(ForwardModel):
    """
    Adapts a function of the atmospheric state to the
    :class:`artsoem.oem.ForwardModel` interface.

    In each evaluation the state vector is clipped to the limits of the
    retrieval quantities, mapped onto the atmospheric state with
    :func:`x2arts_std` and passed to the function. Jacobians returned by the
    function are transformed to the space of the state vector.

    Arguments:

        f: Function :code:`f(state, jacobian_do)` returning a tuple
            :code:`(y, jacobian)`.

        state: The reference atmospheric state.

        quantities: The retrieval quantities.

        debug(:code:`bool`): Whether to record the state, forward model
            output and Jacobian of each evaluation in :code:`history`.
    """
    def __init__(self, f, state, quantities, debug = False):
        self.f = f
        self.state = state
        self.quantities = quantities
        self.indices = jacobian_indices(quantities)
        self.debug = debug
        self.history = {"x" : [], "yf" : [], "jacobian" : []}

    def to_state(self, x):
        x = clip_x(x, self.quantities, self.indices)
        return x2arts_std(x, self.quantities, self.indices, self.state)

    def evaluate(self, x):
        y, _ = self.f(self.to_state(x), False)
        if self.debug:
            self.history["x"] += [np.copy(x)]
            self.history["yf"] += [np.copy(y)]
        return y

    def evaluate_jacobian(self, x):
        x = clip_x(x, self.quantities, self.indices)
        y, k = self.f(x2arts_std(x, self.quantities, self.indices,
                                 self.state), True)
        if k is None:
            raise ForwardModelError("jacobian", (np.size(y), x.size), None)
        if sp.sparse.issparse(k):
            k = k.toarray()
        k = np.asarray(k, dtype=float)
        if k.ndim != 2 or k.shape[1] != x.size:
            raise ForwardModelError("jacobian", (np.size(y), x.size), k.shape)
        k = transform_jacobian(k, x, self.quantities, self.indices)

        if self.debug:
            self.history["x"] += [np.copy(x)]
            self.history["yf"] += [np.copy(y)]
            self.history["jacobian"] += [np.copy(k)]
        return y, k

################################################################################
# OEM
################################################################################

def _shape(m):
    if sp.sparse.issparse(m):
        return m.shape
    return np.shape(m)


def oem(forward_model,
        state,
        quantities,
        y,
        covmat_sx_inv,
        covmat_so_inv,
        xa = None,
        x0 = None,
        method = "lm",
        max_start_cost = np.inf,
        x_norm = None,
        max_iter = 10,
        stop_dx = 0.01,
        lm_ga_settings = DEFAULT_GA_SETTINGS,
        clear_matrices = 0,
        display_progress = 0):
    """
    Run an OEM inversion.

    Arguments:

        forward_model: An :class:`artsoem.oem.ForwardModel` or a function
            :code:`f(state, jacobian_do)` of the atmospheric state.

        state(:class:`artsoem.atmosphere.AtmosphericState`): The a priori
            atmospheric state.

        quantities: The retrieval quantities making up the state vector.

        y: The measurement vector.

        covmat_sx_inv: Inverse of the a priori covariance matrix.

        covmat_so_inv: Inverse of the observation error covariance matrix.

        xa: Optional a priori state vector. If not given, it is computed from
            :code:`state` using :func:`setup_xa`.

        x0: Optional start state of the iteration. Defaults to :code:`xa`.

        method(:code:`str`): :code:`"li"` (linear), :code:`"gn"`
            (Gauss-Newton) or :code:`"lm"`/:code:`"ml"`
            (Levenberg-Marquardt).

        max_start_cost(:code:`float`): No inversion is performed if the
            cost of the a priori state exceeds this value. Only applied if
            positive.

        x_norm: Optional normalisation vector for the state vector.

        max_iter(:code:`int`): Maximum number of iterations.

        stop_dx(:code:`float`): Convergence threshold.

        lm_ga_settings: Settings of the Levenberg-Marquardt parameter, see
            :func:`artsoem.oem.oem_levenberg_marquardt`.

        clear_matrices(:code:`int`): If 1, Jacobian and gain matrix are
            not returned.

        display_progress(:code:`int`): If 1, progress is printed.

    Returns:

        :class:`artsoem.oem.OEMResult` with additional attributes
        :code:`xa` and :code:`errors`. Errors raised during the inversion
        are reported with status 9 and their messages stored in
        :code:`errors`.

    Raises:

        ValueError if the inputs are inconsistent.
    """
    nq = len(quantities)
    if nq == 0:
        raise ValueError("The retrieval quantities are empty, no inversion "
                         "to do.")
    indices = jacobian_indices(quantities)
    n = indices[-1][1] + 1

    y = np.asarray(y, dtype=float).ravel()
    m = y.size

    s = _shape(covmat_sx_inv)
    if len(s) != 2 or s[0] != s[1]:
        raise ValueError("covmat_sx_inv must be a square matrix.")
    if s[0] != n:
        raise ValueError("Size of covmat_sx_inv ({}) does not agree with the "
                         "retrieval quantities ({}).".format(s[0], n))
    s = _shape(covmat_so_inv)
    if len(s) != 2 or s[0] != s[1]:
        raise ValueError("covmat_so_inv must be a square matrix.")
    if s[0] != m:
        raise ValueError("Inconsistency in size between y ({}) and "
                         "covmat_so_inv ({}).".format(m, s[0]))

    if method not in ["li", "gn", "lm", "ml"]:
        raise ValueError("Valid options for method are 'li', 'gn', 'lm' and "
                         "'ml', not '{}'.".format(method))
    if x_norm is None:
        x_norm = np.zeros(0)
    x_norm = np.asarray(x_norm, dtype=float).ravel()
    if not (x_norm.size == 0 or x_norm.size == n):
        raise ValueError("The vector x_norm must have length 0 or match "
                         "covmat_sx_inv.")
    if x_norm.size > 0 and np.min(x_norm) <= 0.0:
        raise ValueError("All values in x_norm must be > 0.")
    if max_iter <= 0:
        raise ValueError("The argument max_iter must be > 0.")
    if stop_dx <= 0:
        raise ValueError("The argument stop_dx must be > 0.")
    if method in ["lm", "ml"]:
        lm_ga_settings = np.asarray(lm_ga_settings, dtype=float).ravel()
        if lm_ga_settings.size != 6:
            raise ValueError("When using 'lm', lm_ga_settings must be a "
                             "vector of length 6.")
        if np.min(lm_ga_settings) < 0.0:
            raise ValueError("The vector lm_ga_settings can not contain any "
                             "negative value.")
    if clear_matrices not in [0, 1]:
        raise ValueError("Valid options for clear_matrices are 0 and 1.")
    if display_progress not in [0, 1]:
        raise ValueError("Valid options for display_progress are 0 and 1.")

    state.check()

    if xa is None:
        xa = setup_xa(quantities, indices, state)
    else:
        xa = np.asarray(xa, dtype=float).ravel()
        if xa.size != n:
            raise ValueError("The a priori vector has length {} but {} is "
                             "expected.".format(xa.size, n))
    if x0 is not None:
        x0 = np.asarray(x0, dtype=float).ravel()
        if x0.size != n:
            raise ValueError("The start vector has length {} but {} is "
                             "expected.".format(x0.size, n))

    if isinstance(forward_model, ForwardModel):
        fm = forward_model
    else:
        fm = AtmosphericForwardModel(forward_model, state, quantities)

    if x_norm.size == 0:
        x_norm = None

    errors = []
    cost_start = np.nan
    try:
        yf, k = fm.evaluate_jacobian(xa)
        yf = np.asarray(yf, dtype=float).ravel()
        cost_start = oem_cost_y(y, yf, covmat_so_inv, m)

        if max_start_cost > 0 and cost_start > max_start_cost:
            if display_progress:
                print("\n   No OEM inversion, too high start cost:\n"
                      "        Set limit : {}\n"
                      "      Found value : {}\n".format(max_start_cost,
                                                        cost_start))
            result = OEMResult(None, yf, k, None, cost_start, np.nan, np.nan,
                               0, STATUS_HIGH_START_COST)
        elif method == "li":
            result = oem_linear_nform(fm, xa, y, covmat_so_inv, covmat_sx_inv,
                                      x_norm = x_norm,
                                      yf = yf,
                                      jacobian = k,
                                      display_progress = display_progress)
        else:
            if x0 is None:
                start = {"yf" : yf, "jacobian" : k}
            else:
                start = {}
            if method == "gn":
                result = oem_gauss_newton(fm, xa, y, covmat_so_inv,
                                          covmat_sx_inv,
                                          x0 = x0,
                                          x_norm = x_norm,
                                          max_iter = max_iter,
                                          stop_dx = stop_dx,
                                          display_progress = display_progress,
                                          **start)
            else:
                result = oem_levenberg_marquardt(fm, xa, y, covmat_so_inv,
                                                 covmat_sx_inv,
                                                 x0 = x0,
                                                 x_norm = x_norm,
                                                 max_iter = max_iter,
                                                 stop_dx = stop_dx,
                                                 ga_settings = lm_ga_settings,
                                                 display_progress = display_progress,
                                                 **start)
            result.cost_start = cost_start
    except Exception as e:
        logger.error("Error in OEM computation: %s", e)
        errors = ["Error in OEM computation.", str(e)]
        result = OEMResult(None, None, None, None, cost_start, np.nan, np.nan,
                           0, STATUS_ERROR)

    if clear_matrices:
        result.jacobian = np.zeros((0, 0))
        result.dxdy = np.zeros((0, 0))

    result.xa = xa
    result.errors = errors
    logger.info("OEM inversion finished with status %d.", result.status)
    return result

################################################################################
# RetrievalQuantity
################################################################################

def _invert(m):
    """
    Invert a covariance or precision matrix. Diagonal sparse matrices stay
    sparse.
    """
    if sp.sparse.issparse(m):
        d = m.diagonal()
        if (m - sp.sparse.diags(d)).count_nonzero() == 0:
            return sp.sparse.diags(1.0 / d, format = "csr")
        m = m.toarray()
    return sp.linalg.inv(np.asarray(m, dtype=float))


class RetrievalQuantity(JacobianQuantity):
    """
    A quantity that is retrieved in a :class:`RetrievalCalculation`.

    In addition to the attributes of
    :class:`artsoem.jacobian.JacobianQuantity`, retrieval quantities hold
    the settings for the retrieval and the a priori data of the most
    recent retrieval run.

    Attributes:

        limit_low(:code:`float`): Optional lower cutoff applied to the
            quantity in the state vector before each forward model
            evaluation.

        limit_high(:code:`float`): Optional upper cutoff.

        xa: The a priori mean of the quantity.

        x0: The start value of the retrieval iteration.

        covariance: The a priori covariance matrix or :code:`None`.

        precision: The a priori precision matrix or :code:`None`.

    .. note: All numeric values given for a retrieval quantity are assumed
        to be in the transformed space of the quantity. If a quantity has
        constant a priori mean :math:`x_a = 10^{-5}` and is
        :math:`log_{10}`-transformed, :code:`xa` should be given as :code:`-5`.
    """
    def __init__(self,
                 maintag,
                 subtag = "",
                 mode = "",
                 p_grid = None,
                 lat_grid = None,
                 lon_grid = None,
                 transformation = None,
                 limit_low = None,
                 limit_high = None):
        super().__init__(maintag,
                         subtag = subtag,
                         mode = mode,
                         p_grid = p_grid,
                         lat_grid = lat_grid,
                         lon_grid = lon_grid,
                         transformation = transformation)
        self.limit_low = limit_low
        self.limit_high = limit_high

        self.xa = None
        self.x0 = None
        self.covariance = None
        self.precision = None

    def get_xa(self, data_provider, state, *args, **kwargs):
        """
        Get a priori vector from the data provider or, if it doesn't
        provide :code:`get_<name>_xa`, from the atmospheric state and set
        the :code:`xa` attribute of this object.
        """
        xa_fun = getattr(data_provider, "get_" + self.name + "_xa", None)
        if xa_fun is None:
            xa = self.transformation(_values_from_state(self, state))
        else:
            xa = np.asarray(xa_fun(*args, **kwargs), dtype=float).ravel()
        if xa.size != self.n_elements:
            raise ValueError("The a priori of retrieval quantity {} has {} "
                             "elements but {} are expected."
                             .format(self.name, xa.size, self.n_elements))
        self.xa = xa
        return xa

    def setup(self, data_provider, state, *args, **kwargs):
        """
        Get a priori mean, start vector and covariance or precision matrix
        for this quantity.

        If no start vector :code:`get_<name>_x0` is provided, the a priori
        state is used as initial state.

        Arguments:

            data_provider: Data provider object to query a priori settings
                from.

            state: The atmospheric state, used if the data provider doesn't
                provide an a priori mean.

            :code:`*args` and :code:`**kwargs` are forwarded to the data
            provider.
        """
        self.get_xa(data_provider, state, *args, **kwargs)

        x0_fun = getattr(data_provider, "get_" + self.name + "_x0", None)
        if x0_fun is None:
            self.x0 = np.copy(self.xa)
        else:
            self.x0 = np.asarray(x0_fun(*args, **kwargs), dtype=float).ravel()

        covmat_fun = getattr(data_provider, "get_" + self.name + "_covariance",
                             None)
        precmat_fun = getattr(data_provider, "get_" + self.name + "_precision",
                              None)
        if covmat_fun is None and precmat_fun is None:
            raise ValueError("The data provider must provide a get method for "
                             "the covariance or the precision matrix of "
                             "retrieval quantity {0}.".format(self.name))

        self.covariance = None
        self.precision = None
        if covmat_fun is not None:
            self.covariance = covmat_fun(*args, **kwargs)
        if precmat_fun is not None:
            self.precision = precmat_fun(*args, **kwargs)

        n = self.n_elements
        for m in [self.covariance, self.precision]:
            if m is not None and _shape(m) != (n, n):
                raise ValueError("The a priori matrices of retrieval quantity "
                                 "{} must have shape {}.".format(self.name,
                                                                 (n, n)))

    def get_precision(self):
        """The precision matrix, computed from the covariance if necessary."""
        if self.precision is not None:
            return self.precision
        return _invert(self.covariance)

    def get_covariance(self):
        """
        The covariance matrix, computed from the precision matrix if
        necessary. :code:`None` if the precision matrix is singular.
        """
        if self.covariance is not None:
            return self.covariance
        try:
            return _invert(self.precision)
        except np.linalg.LinAlgError:
            logger.warning("The precision matrix of %s is singular, no "
                           "covariance matrix available.", self.name)
            return None

################################################################################
# RetrievalRun
################################################################################

class RetrievalRun:
    """
    The :class:`RetrievalRun` represents a single OEM inversion. A single
    retrieval calculation can consist of several sequential retrieval runs
    performed with different settings. Each of these runs is represented by
    a single :code:`RetrievalRun` instance that holds the retrieval settings
    as well as the results of the single run.

    Attributes:

        name(:code:`str`): A name to identify the retrieval run.

        y(:code:`numpy.ndarray`): The observation vector for the retrieval.

        settings(:code:`dict`): A dictionary holding the retrieval
            settings.

        retrieval_quantities(:code:`list`): The quantities retrieved in this
            run. Quantities of the calculation that are not in this list
            are fixed to the result of the previous run.
    """
    def __init__(self,
                 name,
                 calculation,
                 y,
                 settings,
                 sensor_indices,
                 retrieval_quantities,
                 data_provider,
                 previous_run = None):

        self.name           = name
        self.y              = np.copy(y)
        self.settings       = dict(settings)
        self.sensor_indices = sensor_indices
        self.rq_indices     = {}
        self.retrieval_quantities = list(retrieval_quantities)
        self.previous_run   = previous_run

        self._calculation = weakref.ref(calculation)
        self._data_provider = weakref.ref(data_provider)

        self.x = None
        self.xa = None
        self.x0 = None
        self.yf = None
        self.jacobian = None
        self.dxdy = None
        self.avk = None
        self.covmat_so = None
        self.covmat_ss = None
        self.oem_diagnostics = None
        self.oem_errors = None
        self.ga_history = None
        self.state = None
        self.retrieved_state = None
        self.debug = None

    @property
    def calculation(self):
        calculation = self._calculation()
        if calculation:
            return calculation
        raise ValueError("The corresponding retrieval calculation has been "
                         "deleted.")

    @property
    def data_provider(self):
        data_provider = self._data_provider()
        if data_provider:
            return data_provider
        raise ValueError("The corresponding data provider has been "
                         "destroyed.")

    @property
    def status(self):
        """The convergence status of the OEM run."""
        if self.oem_diagnostics is None:
            return None
        return int(self.oem_diagnostics[0])

    def get_result(self,
                   q,
                   attribute = "x",
                   interpolate = False,
                   transform_back = False):
        """
        Get retrieval result for a retrieval quantity.

        If the quantity was not retrieved in this run, the result of the
        previous run is returned.

        Arguments:

            q: The retrieval quantity.

            attribute(:code:`str`): The vector from which to extract the
                results, e.g. :code:`"x"` or :code:`"x0"`.

            interpolate(:code:`bool`): Whether to interpolate the result to
                the atmospheric grids.

            transform_back(:code:`bool`): Whether to invert the
                transformation of the quantity.
        """
        if q in self.rq_indices:
            i, j = self.rq_indices[q]
            x = getattr(self, attribute)
            if x is None:
                return x
            x = x[i : j]

            if transform_back:
                x = q.transformation.invert(x)

            if interpolate:
                x = quantity_to_atmgrids(x, q, self.state)

            return x

        if not self.previous_run is None:
            return self.previous_run.get_result(q,
                                                attribute = attribute,
                                                interpolate = interpolate,
                                                transform_back = transform_back)
        return None

    def get_xa(self, q, interpolate = True, transform_back = False):
        """The a priori mean of retrieval quantity :code:`q`."""
        return self.get_result(q,
                               attribute = "xa",
                               interpolate = interpolate,
                               transform_back = transform_back)

    def get_avk(self, q):
        """The block of the averaging kernel matrix of quantity :code:`q`."""
        if q in self.rq_indices:
            if self.avk is None:
                return None
            i, j = self.rq_indices[q]
            return self.avk[i : j, i : j]

        if not self.previous_run is None:
            return self.previous_run.get_avk(q)
        return None

    #
    # Setup and execution
    #

    def _fixed_state(self, state, *args, **kwargs):
        """
        Set quantities of the calculation that are not retrieved in this run
        to their previous results or, if they haven't been retrieved yet, to
        the a priori provided by the data provider.
        """
        for rq in self.calculation.retrieval_quantities:
            if rq in self.retrieval_quantities:
                continue
            x_p = self.get_result(rq)
            if x_p is None:
                name = "get_" + rq.name + "_xa"
                if getattr(self.data_provider, name, None) is None:
                    continue
                x_p = rq.get_xa(self.data_provider, state, *args, **kwargs)
            indices = [[0, rq.n_elements - 1]]
            state = x2arts_std(x_p, [rq], indices, state)
        return state

    def setup_a_priori(self, state, *args, **kwargs):
        """
        Gather a priori mean states, start vectors and covariance matrices
        for all retrieval quantities of this run.

        Arguments:

            state: The atmospheric state of the retrieval.

            *args, **kwargs: Arguments and keyword arguments that are passed
                on to the data provider.
        """
        data_provider = self.data_provider

        xa = []
        x0 = []
        precisions = []
        covariances = []

        rq_index = 0
        for rq in self.retrieval_quantities:
            rq.setup(data_provider, state, *args, **kwargs)
            xa += [rq.xa]

            r = None
            if not self.previous_run is None:
                r = self.previous_run.get_result(rq)
            if r is None:
                r = rq.x0
            x0 += [r]

            precisions += [rq.get_precision()]
            covariances += [rq.get_covariance()]

            self.rq_indices[rq] = (rq_index, rq_index + xa[-1].size)
            rq_index += xa[-1].size

        self.xa = np.concatenate(xa)
        self.x0 = np.concatenate(x0)
        self.covmat_sx_inv = sp.sparse.block_diag(
            [sp.sparse.csr_matrix(p) for p in precisions], format = "csr")
        if any([c is None for c in covariances]):
            self.covmat_sx = None
        else:
            self.covmat_sx = sp.sparse.block_diag(
                [sp.sparse.csr_matrix(c) for c in covariances], format = "csr")

        f = getattr(data_provider, "get_observation_error_covariance", None)
        if f is None:
            raise ValueError("The data provider must provide a get method for "
                             "the observation error covariance matrix.")
        self.covmat_se = f(*args, **kwargs)
        if _shape(self.covmat_se) != (self.y.size, self.y.size):
            raise ValueError("The observation error covariance matrix has "
                             "shape {} but the measurement vector has length "
                             "{}.".format(_shape(self.covmat_se), self.y.size))
        self.covmat_se_inv = _invert(self.covmat_se)

    def run(self, forward_model, state, *args, **kwargs):
        """
        Run the OEM inversion.

        Arguments:

            forward_model: The forward model, see :func:`oem`.

            state: The a priori atmospheric state.

            *args, **kwargs: Passed on to the data provider.
        """
        logger.info("Starting retrieval run %s.", self.name)
        state = self._fixed_state(state, *args, **kwargs)
        self.state = state
        self.setup_a_priori(state, *args, **kwargs)

        debug = self.calculation.debug_mode
        if isinstance(forward_model, ForwardModel):
            fm = forward_model
        else:
            fm = AtmosphericForwardModel(forward_model, state,
                                         self.retrieval_quantities,
                                         debug = debug)

        result = oem(fm,
                     state,
                     self.retrieval_quantities,
                     self.y,
                     self.covmat_sx_inv,
                     self.covmat_se_inv,
                     xa = self.xa,
                     x0 = self.x0,
                     **self.settings)

        if debug and isinstance(fm, AtmosphericForwardModel):
            self.debug = fm.history

        self.x               = result.x
        self.yf              = result.yf
        self.jacobian        = result.jacobian
        self.dxdy            = result.dxdy
        self.oem_diagnostics = result.diagnostics
        self.ga_history      = result.ga_history

        if self.status <= 2 and self.dxdy is not None and self.dxdy.size > 0:
            self.avk = avk(self.dxdy, self.jacobian)
            self.covmat_so = covmat_so(self.dxdy, self.covmat_se)
            if self.covmat_sx is not None:
                self.covmat_ss = covmat_ss(self.avk, self.covmat_sx)
            else:
                self.covmat_ss = None
        else:
            self.avk       = None
            self.covmat_so = None
            self.covmat_ss = None

        if self.x is not None:
            indices = jacobian_indices(self.retrieval_quantities)
            x = clip_x(self.x, self.retrieval_quantities, indices)
            self.retrieved_state = x2arts_std(x, self.retrieval_quantities,
                                              indices, state)

        if self.status == STATUS_ERROR:
            self.oem_errors = result.errors
            logger.error("Retrieval run %s failed: %s", self.name,
                         self.oem_errors)
        else:
            self.oem_errors = None
        logger.info("Retrieval run %s finished with status %d.", self.name,
                    self.status)

    #
    # Output
    #

    def to_dataset(self):
        """
        Return the results of the run as :code:`xarray.Dataset`.

        The dataset contains the state, measurement and fitted measurement
        vectors, the OEM diagnostics and, for each retrieval quantity, the
        retrieved values and a priori on its retrieval grids.
        """
        data = {}
        coords = {}
        if self.oem_diagnostics is not None:
            data["oem_diagnostics"] = (("diagnostics",), self.oem_diagnostics)
        data["y"] = (("m",), self.y)
        for name in ["x", "xa", "x0"]:
            v = getattr(self, name)
            if v is not None:
                data[name] = (("n",), v)
        if self.yf is not None:
            data["yf"] = (("m",), self.yf)
        for name in ["avk", "covmat_so", "covmat_ss"]:
            v = getattr(self, name)
            if v is not None:
                data[name] = (("n", "n_"), np.asarray(v))
        if self.jacobian is not None and self.jacobian.size > 0:
            data["jacobian"] = (("m", "n"), self.jacobian)

        for q in self.retrieval_quantities:
            dims = [q.name + "_" + g for g in ["p", "lat", "lon"]]
            dims = tuple(dims[:len(q.grids)])
            for d, g in zip(dims, q.grids):
                coords[d] = g
            shape = tuple(g.size for g in q.grids)
            for suffix, attribute in [("", "x"), ("_xa", "xa")]:
                v = self.get_result(q, attribute = attribute,
                                    transform_back = True)
                if v is not None:
                    data[q.name + suffix] = (dims,
                                             np.reshape(v, shape, order = "F"))

        dataset = xr.Dataset(data, coords = coords)
        dataset.attrs["name"] = self.name
        if self.oem_errors:
            dataset.attrs["oem_errors"] = "\n".join(self.oem_errors)
        return dataset

    #
    # Plotting functions
    #

    def plot_result(self,
                    q,
                    ax = None,
                    transform_back = True,
                    include_prior = True,
                    data_provider = None,
                    args = [],
                    kwargs = {}):
        """
        Plot retrieved results of given quantity.

        Works only in 1-dimensional atmospheres. Profiles are plotted
        against altitude if the atmospheric state has an altitude field
        and against pressure otherwise.

        Args:
            q: The retrieval quantity of which to plot the results
            ax: matplotlib Axes object in which to plot the results. If
                 None, a new axes object is constructed using subplots(1, 1).
            transform_back: Whether or not to plot results in
                transformed (:code:`False`) or original state space
                (True, default)
            include_prior: If :code:`True` also the a priori mean is plotted
                using a dashed line.
            data_provider: If given, the reference profile returned by its
                :code:`get_<name>` method is plotted as well.
        """
        if self.state.atmosphere_dim != 1:
            raise ValueError("Results can only be plotted for 1D "
                             "atmospheres.")

        x = self.get_result(q,
                            interpolate = True,
                            transform_back = transform_back)
        if x is None:
            s = "No result for retrieval quantity {} available.".format(q.name)
            raise ValueError(s)

        if ax is None:
            _, ax = plt.subplots(1, 1)

        if self.state.z_field is not None:
            z = self.state.z_field.ravel()
        else:
            z = self.state.p_grid
            ax.set_yscale("log")
            ax.invert_yaxis()

        ls = ax.plot(x, z, label = q.name)

        if include_prior:
            xa = self.get_xa(q,
                             interpolate = True,
                             transform_back = transform_back)
            ax.plot(xa, z, label = q.name + " (a priori)",
                    c = ls[0].get_color(), ls = "--")

        if data_provider:
            getter = getattr(data_provider, "get_" + q.name)
            x = getter(*args, **kwargs)
            ax.plot(x, z, label = "Reference", c = ls[0].get_color(), ls = "-.")

        return ax

    def plot_jacobian(self,
                      sensor,
                      q,
                      ax = None):
        """
        Plot the Jacobian of observations from a given sensor w.r.t.
        a given retrieval quantity. Note that the Jacobian is always
        displayed in transformed coordinates.

        Args:
            sensor: The sensor providing the observations of which the
                Jacobian should be plotted.
            q: The retrieval quantity w.r.t. to which the Jacobian should be
                plotted.
            ax: matplotlib Axes object in which to plot the results. If
                 None, a new axes object is constructed using subplots(1, 1).
        """
        if self.jacobian is None or self.jacobian.size == 0:
            s = "No Jacobian for retrieval quantity {} available.".format(q.name)
            raise ValueError(s)

        i1, j1 = self.sensor_indices[sensor.name]
        i2, j2 = self.rq_indices[q]
        dydx = self.jacobian[i1 : j1, i2 : j2]

        if ax is None:
            _, ax = plt.subplots(1, 1)

        for i in range(dydx.shape[0]):
            ax.plot(dydx[i, :], label = "Channel {}".format(i))
        return ax

################################################################################
# RetrievalCalculation
################################################################################

class RetrievalCalculation:
    """
    The :class:`RetrievalCalculation` takes care of the book-keeping around
    retrieval quantities as well as the execution of the retrieval
    calculation.

    Attributes:

        settings(:code:`dict`): The settings passed on to :func:`oem`.

        callbacks(:code:`list`): Optional list of callbacks. If non-empty,
            one retrieval run is performed for each callback. Each callback
            is called with the :class:`RetrievalRun` before it is executed
            and may modify its settings and retrieval quantities. Callbacks
            may be given as tuples :code:`(name, callback)`.

        results: The :class:`RetrievalRun` of the last call to :code:`run`
            or a list of runs if callbacks are used.

    Arguments:

        sensors(:code:`list`): Sensors whose measurements make up the
            measurement vector, in order.

        debug_mode(:code:`bool`): If set to true, debug information will be
            collected while the retrieval is run.
    """
    def __init__(self,
                 sensors = None,
                 debug_mode = False):

        self.retrieval_quantities = []
        if sensors is None:
            sensors = []
        self.sensors = list(sensors)
        self.y = None

        self.settings = {"method" : "lm",
                         "max_start_cost" : np.inf,
                         "x_norm" : np.zeros(0),
                         "max_iter" : 20,
                         "stop_dx" : 0.1,
                         "lm_ga_settings" : np.array([1000.0, 5.0, 2.0, 1e6, 1.0, 1.0]),
                         "clear_matrices" : 0,
                         "display_progress" : 1}

        self.callbacks = []
        self.debug_mode = debug_mode
        self.results = None

    def add(self, rq):
        """
        Add a retrieval quantity to the retrieval calculation.

        While the data provider is not required to provide get methods for
        the retrieval quantity itself, it must provide its covariance or
        precision matrix.

        Arguments:

            rq(:code:`RetrievalQuantity`): The retrieval quantity to
                retrieve.
        """
        if not isinstance(rq, RetrievalQuantity):
            raise ValueError("Only RetrievalQuantity objects can be added to "
                             "a retrieval calculation.")
        if rq in self.retrieval_quantities:
            raise ValueError("Retrieval quantity {} has already been added."
                             .format(rq.name))
        self.retrieval_quantities += [rq]

    def _get_y_vector(self, data_provider, *args, **kwargs):

        y = self.y
        if y is None:
            f = getattr(data_provider, "get_y", None)
            if not f is None:
                y = f(*args, **kwargs)
            else:
                if not self.sensors:
                    raise ValueError("The data provider must provide get_y "
                                     "if no sensors are given.")
                ys = []
                for s in self.sensors:
                    fname = "get_y_" + s.name
                    f = getattr(data_provider, fname, None)
                    if f is None:
                        raise ValueError("No measurement vector provided for "
                                         "sensor {0}.".format(s.name))
                    ys += [np.asarray(f(*args, **kwargs)).ravel()]
                y = np.concatenate(ys)
        return np.asarray(y, dtype=float).ravel()

    def run(self, forward_model, state, data_provider, *args, **kwargs):
        """
        Run the retrieval calculation.

        This methods:

        1. Gathers a priori mean states and covariance matrices for all
           registered retrieval quantities from the data provider.

        2. Runs the OEM inversion once or, if callbacks are given, once
           for each callback, starting each run from the results of the
           previous one.

        Arguments:

            forward_model: The forward model, see :func:`oem`.

            state(:class:`artsoem.atmosphere.AtmosphericState`): The a
                priori atmospheric state.

            data_provider: The data provider providing a priori data and
                observations.

            *args, **kwargs: Arguments and keyword arguments that are passed
                on to the data provider.

        Returns:

            The :code:`results` attribute.
        """
        if not self.retrieval_quantities:
            raise ValueError("No retrieval quantities have been added.")

        self._y = self._get_y_vector(data_provider, *args, **kwargs)

        i_start = 0
        self.sensor_indices = {}
        for s in self.sensors:
            self.sensor_indices[s.name] = (i_start, i_start + s.y_vector_length)
            i_start += s.y_vector_length
        if self.sensors and i_start != self._y.size:
            raise ValueError("The measurement vector has length {} but the "
                             "sensors produce {} values."
                             .format(self._y.size, i_start))

        previous_run = None
        if self.callbacks == []:
            retrieval = RetrievalRun("Retrieval",
                                     self,
                                     self._y,
                                     self.settings,
                                     self.sensor_indices,
                                     self.retrieval_quantities,
                                     data_provider)
            retrieval.run(forward_model, state, *args, **kwargs)
            self.results = retrieval
        else:
            self.results = []
            for cb in self.callbacks:

                if type(cb) is tuple:
                    name, cb = cb
                else:
                    name = str(len(self.results))

                retrieval = RetrievalRun(name,
                                         self,
                                         self._y,
                                         self.settings,
                                         self.sensor_indices,
                                         self.retrieval_quantities,
                                         data_provider,
                                         previous_run = previous_run)

                if not cb is None:
                    cb(retrieval)

                retrieval.run(forward_model, state, *args, **kwargs)
                self.results += [retrieval]
                previous_run = retrieval
        return self.results
