"""
artsoem.oem
-----------

Solvers for the optimal estimation method (OEM).

The solvers find the state :math:`\\mathbf{x}` that minimises the cost
function

.. math::

    \\chi^2 = (\\mathbf{y} - F(\\mathbf{x}))^T \\mathbf{S}_o^{-1}
              (\\mathbf{y} - F(\\mathbf{x}))
            + (\\mathbf{x} - \\mathbf{x}_a)^T \\mathbf{S}_x^{-1}
              (\\mathbf{x} - \\mathbf{x}_a)

for a forward model :math:`F`, a measurement :math:`\\mathbf{y}` with
observation error covariance :math:`\\mathbf{S}_o` and a Gaussian a priori
distribution with mean :math:`\\mathbf{x}_a` and covariance
:math:`\\mathbf{S}_x`. Three solvers are available:

- :func:`oem_linear_nform`: the linear solution in n-form,
- :func:`oem_gauss_newton`: Gauss-Newton iteration,
- :func:`oem_levenberg_marquardt`: Levenberg-Marquardt iteration
  following Rodgers (2000), eq. 5.36.

All reported cost values are normalised by the length :math:`m` of the
measurement vector.

Iterations stop when the normalised step size

.. math::

    d_i^2 = \\frac{1}{n} \\delta\\mathbf{x}^T
            (\\mathbf{K}^T\\mathbf{S}_o^{-1}\\mathbf{K} + \\mathbf{S}_x^{-1})
            \\delta\\mathbf{x}

falls below :code:`stop_dx`.
"""
import logging
from abc import ABCMeta, abstractmethod

import numpy as np
import scipy as sp
import scipy.linalg
import scipy.sparse

from artsoem.exceptions import ForwardModelError, OEMError

logger = logging.getLogger(__name__)

#: Convergence status codes used in the first element of OEM diagnostics.
STATUS_CONVERGED = 0
STATUS_MAX_ITER = 1
STATUS_MAX_GAMMA = 2
STATUS_ERROR = 9
STATUS_HIGH_START_COST = 99

#: Default settings of the Levenberg-Marquardt parameter.
DEFAULT_GA_SETTINGS = (1000.0, 5.0, 2.0, 1e6, 1.0, 1.0)

################################################################################
# Forward model interface
################################################################################

class ForwardModel(metaclass = ABCMeta):
    """
    Interface of forward models used by the OEM solvers.

    A forward model computes the simulated measurement vector for a given
    state vector and, on request, its Jacobian.
    """
    @abstractmethod
    def evaluate(self, x):
        """
        Evaluate forward model.

        Arguments:

            x: The state vector.

        Returns:

            The simulated measurement vector.
        """
        pass

    @abstractmethod
    def evaluate_jacobian(self, x):
        """
        Evaluate forward model and its Jacobian.

        Arguments:

            x: The state vector.

        Returns:

            Tuple :code:`(y, K)` of simulated measurement vector and
            Jacobian :math:`\\partial \\mathbf{y} / \\partial \\mathbf{x}`.
        """
        pass


class FunctionForwardModel(ForwardModel):
    """
    Forward model wrapping a plain function :code:`f(x, jacobian_do)` that
    returns a tuple :code:`(y, jacobian)`. The Jacobian may be
    :code:`None` when :code:`jacobian_do` is false.
    """
    def __init__(self, f):
        self.f = f

    def evaluate(self, x):
        y, _ = self.f(x, False)
        return y

    def evaluate_jacobian(self, x):
        return self.f(x, True)


def _evaluate(forward_model, x, m, jacobian_do = True):
    """
    Evaluate forward model and check the shapes of the results.
    """
    if jacobian_do:
        y, k = forward_model.evaluate_jacobian(x)
    else:
        y, k = forward_model.evaluate(x), None

    y = np.asarray(y, dtype=float).ravel()
    if y.size != m:
        raise ForwardModelError("y", (m,), y.shape)
    if not np.all(np.isfinite(y)):
        raise OEMError("The forward model returned non-finite values.")

    if jacobian_do:
        if sp.sparse.issparse(k):
            k = k.toarray()
        k = np.asarray(k, dtype=float)
        if k.shape != (m, x.size):
            raise ForwardModelError("jacobian", (m, x.size), k.shape)
        if not np.all(np.isfinite(k)):
            raise OEMError("The forward model returned a non-finite "
                           "Jacobian.")
    return y, k

################################################################################
# Results
################################################################################

class OEMResult:
    """
    Results of an OEM inversion.

    Attributes:

        x: The retrieved state vector.

        yf: The fitted measurement vector :math:`F(\\mathbf{x})`.

        jacobian: The Jacobian at the retrieved state.

        dxdy: The gain matrix
            :math:`\\partial \\mathbf{x} / \\partial \\mathbf{y}`.

        cost_start: The cost at the start of the iteration.

        cost_y: The measurement part of the final cost.

        cost_x: The a priori part of the final cost.

        iterations: Number of performed iterations.

        status: Convergence status, one of the :code:`STATUS_*` codes.

        ga_history: Values of the Levenberg-Marquardt parameter after
            each iteration. Empty for other methods.
    """
    def __init__(self,
                 x,
                 yf,
                 jacobian,
                 dxdy,
                 cost_start,
                 cost_y,
                 cost_x,
                 iterations,
                 status,
                 ga_history = None):
        self.x = x
        self.yf = yf
        self.jacobian = jacobian
        self.dxdy = dxdy
        self.cost_start = cost_start
        self.cost_y = cost_y
        self.cost_x = cost_x
        self.iterations = iterations
        self.status = status
        if ga_history is None:
            ga_history = np.zeros(0)
        self.ga_history = np.asarray(ga_history)

    @property
    def cost(self):
        """The final value of the normalised cost function."""
        return self.cost_y + self.cost_x

    @property
    def converged(self):
        return self.status == STATUS_CONVERGED

    @property
    def diagnostics(self):
        """
        Vector of length 5 holding convergence status, start cost, end cost,
        end cost of the measurement part and the number of iterations.
        """
        return np.array([self.status,
                         self.cost_start,
                         self.cost,
                         self.cost_y,
                         self.iterations], dtype=float)

################################################################################
# Cost functions and linear algebra
################################################################################

def _dense(m):
    if sp.sparse.issparse(m):
        return m.toarray()
    return np.asarray(m, dtype=float)


def oem_cost_y(y, yf, so_inv, normfac):
    """
    Measurement part of the cost function.

    Arguments:

        y: The measurement vector.

        yf: The simulated measurement vector.

        so_inv: Inverse of the observation error covariance matrix.

        normfac(:code:`float`): Normalisation factor.
    """
    dy = np.asarray(y) - np.asarray(yf)
    return float(dy @ np.asarray(so_inv @ dy).ravel()) / normfac


def oem_cost_x(x, xa, sx_inv, normfac):
    """
    A priori part of the cost function.

    Arguments:

        x: The state vector.

        xa: The a priori state vector.

        sx_inv: Inverse of the a priori covariance matrix.

        normfac(:code:`float`): Normalisation factor.
    """
    dx = np.asarray(x) - np.asarray(xa)
    return float(dx @ np.asarray(sx_inv @ dx).ravel()) / normfac


def _solve(lhs, rhs, x_norm):
    """
    Solve :code:`lhs @ z = rhs` after scaling the state space with
    :code:`x_norm`.
    """
    try:
        if x_norm is None or x_norm.size == 0:
            return sp.linalg.solve(lhs, rhs)
        if rhs.ndim == 1:
            t = x_norm
        else:
            t = x_norm.reshape(-1, 1)
        lhs_n = x_norm.reshape(-1, 1) * lhs * x_norm.reshape(1, -1)
        return t * sp.linalg.solve(lhs_n, t * rhs)
    except (np.linalg.LinAlgError, ValueError) as e:
        raise OEMError("Solving the OEM linear system failed: {}"
                       .format(e)) from e


def _gain_matrix(k, so_inv, sx_inv, x_norm):
    ktso = np.asarray(so_inv @ k).T
    lhs = ktso @ k + sx_inv
    return _solve(lhs, ktso, x_norm)


def avk(dxdy, jacobian):
    """The averaging kernel matrix :math:`\\mathbf{A} = \\mathbf{G K}`."""
    return np.asarray(dxdy) @ np.asarray(jacobian)


def covmat_so(dxdy, covmat_se):
    """
    Covariance of the retrieval error caused by measurement errors,
    :math:`\\mathbf{G S}_e \\mathbf{G}^T`.
    """
    dxdy = np.asarray(dxdy)
    return dxdy @ np.asarray(covmat_se @ dxdy.T)


def covmat_ss(avk, covmat_sx):
    """
    Covariance of the smoothing error,
    :math:`(\\mathbf{A} - \\mathbf{I}) \\mathbf{S}_x
    (\\mathbf{A} - \\mathbf{I})^T`.
    """
    a = np.asarray(avk) - np.eye(avk.shape[0])
    return a @ np.asarray(covmat_sx @ a.T)

################################################################################
# Progress display
################################################################################

def _print_header(method):
    print("\n                      MAP Computation                      ")
    print("Method: {}".format(method))
    print("")
    print("{:>5} {:>15} {:>15} {:>15} {:>12} {:>10}".format(
        "Step", "Total Cost", "x-Cost", "y-Cost", "Conv. Crit.", "Gamma"))
    print("-" * 77)


def _print_step(i, cost_x, cost_y, di2 = None, gamma = None):
    di2 = "" if di2 is None else "{:12.4e}".format(di2)
    gamma = "" if gamma is None else "{:10.3e}".format(gamma)
    print("{:>5} {:15.6e} {:15.6e} {:15.6e} {:>12} {:>10}".format(
        i, cost_x + cost_y, cost_x, cost_y, di2, gamma))


def _print_footer(status, iterations):
    print("-" * 77)
    messages = {STATUS_CONVERGED: "converged",
                STATUS_MAX_ITER: "maximum number of iterations reached",
                STATUS_MAX_GAMMA: "maximum gamma reached"}
    print("Total number of steps: {} ({})".format(iterations,
                                                  messages.get(status, status)))
    print("")

################################################################################
# Solvers
################################################################################

def _start(forward_model, x, m, yf, jacobian):
    if yf is None or jacobian is None:
        return _evaluate(forward_model, x, m)
    yf = np.asarray(yf, dtype=float).ravel()
    jacobian = _dense(jacobian)
    if yf.size != m:
        raise ForwardModelError("y", (m,), yf.shape)
    if jacobian.shape != (m, x.size):
        raise ForwardModelError("jacobian", (m, x.size), jacobian.shape)
    return yf, jacobian


def _prepare(xa, y, so_inv, sx_inv, x_norm):
    xa = np.asarray(xa, dtype=float).ravel()
    y = np.asarray(y, dtype=float).ravel()
    if x_norm is not None:
        x_norm = np.asarray(x_norm, dtype=float).ravel()
    return xa, y, _dense(so_inv), _dense(sx_inv), x_norm


def oem_linear_nform(forward_model,
                     xa,
                     y,
                     so_inv,
                     sx_inv,
                     x_norm = None,
                     yf = None,
                     jacobian = None,
                     display_progress = False):
    """
    Linear OEM in n-form.

    .. math::

        \\mathbf{x} = \\mathbf{x}_a + (\\mathbf{K}^T\\mathbf{S}_o^{-1}
        \\mathbf{K} + \\mathbf{S}_x^{-1})^{-1} \\mathbf{K}^T
        \\mathbf{S}_o^{-1} (\\mathbf{y} - F(\\mathbf{x}_a))

    Arguments:

        forward_model(:class:`ForwardModel`): The forward model.

        xa: The a priori state vector.

        y: The measurement vector.

        so_inv: Inverse of the observation error covariance matrix.

        sx_inv: Inverse of the a priori covariance matrix.

        x_norm: Optional normalisation vector for the state.

        yf: Optional forward model output at :code:`xa`. If given together
            with :code:`jacobian` the forward model is not evaluated at the
            a priori state.

        jacobian: Optional Jacobian at :code:`xa`.

        display_progress(:code:`bool`): Whether to print progress.

    Returns:

        :class:`OEMResult`
    """
    xa, y, so_inv, sx_inv, x_norm = _prepare(xa, y, so_inv, sx_inv, x_norm)
    m = y.size

    yf, jacobian = _start(forward_model, xa, m, yf, jacobian)

    cost_start = oem_cost_y(y, yf, so_inv, m)
    if display_progress:
        _print_header("Linear")
        _print_step(0, 0.0, cost_start)

    dxdy = _gain_matrix(jacobian, so_inv, sx_inv, x_norm)
    x = xa + dxdy @ (y - yf)

    yf, _ = _evaluate(forward_model, x, m, jacobian_do = False)
    cost_y = oem_cost_y(y, yf, so_inv, m)
    cost_x = oem_cost_x(x, xa, sx_inv, m)

    if display_progress:
        _print_step(1, cost_x, cost_y)
        _print_footer(STATUS_CONVERGED, 1)

    return OEMResult(x, yf, jacobian, dxdy, cost_start, cost_y, cost_x, 1,
                     STATUS_CONVERGED)


def oem_gauss_newton(forward_model,
                     xa,
                     y,
                     so_inv,
                     sx_inv,
                     x0 = None,
                     x_norm = None,
                     max_iter = 10,
                     stop_dx = 0.01,
                     yf = None,
                     jacobian = None,
                     display_progress = False):
    """
    Gauss-Newton OEM iteration.

    .. math::

        \\mathbf{x}_{i+1} = \\mathbf{x}_a + (\\mathbf{K}_i^T\\mathbf{S}_o^{-1}
        \\mathbf{K}_i + \\mathbf{S}_x^{-1})^{-1} \\mathbf{K}_i^T
        \\mathbf{S}_o^{-1} (\\mathbf{y} - F(\\mathbf{x}_i)
        + \\mathbf{K}_i(\\mathbf{x}_i - \\mathbf{x}_a))

    Arguments:

        forward_model(:class:`ForwardModel`): The forward model.

        xa: The a priori state vector.

        y: The measurement vector.

        so_inv: Inverse of the observation error covariance matrix.

        sx_inv: Inverse of the a priori covariance matrix.

        x0: Start state of the iteration. Defaults to :code:`xa`.

        x_norm: Optional normalisation vector for the state.

        max_iter(:code:`int`): Maximum number of iterations.

        stop_dx(:code:`float`): Convergence threshold for :math:`d_i^2`.

        yf: Optional forward model output at the start state.

        jacobian: Optional Jacobian at the start state. Together with
            :code:`yf` it saves the first forward model evaluation.

        display_progress(:code:`bool`): Whether to print progress.

    Returns:

        :class:`OEMResult`
    """
    xa, y, so_inv, sx_inv, x_norm = _prepare(xa, y, so_inv, sx_inv, x_norm)
    m = y.size
    n = xa.size

    if x0 is None:
        x = np.copy(xa)
    else:
        x = np.asarray(x0, dtype=float).ravel().copy()

    yf, k = _start(forward_model, x, m, yf, jacobian)
    cost_y = oem_cost_y(y, yf, so_inv, m)
    cost_x = oem_cost_x(x, xa, sx_inv, m)
    cost_start = cost_x + cost_y

    if display_progress:
        _print_header("Gauss-Newton")
        _print_step(0, cost_x, cost_y)

    status = STATUS_MAX_ITER
    iterations = 0
    while iterations < max_iter:
        ktso = np.asarray(so_inv @ k).T
        lhs = ktso @ k + sx_inv
        rhs = ktso @ (y - yf + k @ (x - xa))
        x_new = xa + _solve(lhs, rhs, x_norm)

        dx = x_new - x
        di2 = float(dx @ lhs @ dx) / n

        x = x_new
        iterations += 1
        yf, k = _evaluate(forward_model, x, m)
        cost_y = oem_cost_y(y, yf, so_inv, m)
        cost_x = oem_cost_x(x, xa, sx_inv, m)

        logger.debug("Gauss-Newton step %d: cost = %g, d_i^2 = %g",
                     iterations, cost_x + cost_y, di2)
        if display_progress:
            _print_step(iterations, cost_x, cost_y, di2)

        if di2 < stop_dx:
            status = STATUS_CONVERGED
            break

    if display_progress:
        _print_footer(status, iterations)

    dxdy = _gain_matrix(k, so_inv, sx_inv, x_norm)
    return OEMResult(x, yf, k, dxdy, cost_start, cost_y, cost_x, iterations,
                     status)


def oem_levenberg_marquardt(forward_model,
                            xa,
                            y,
                            so_inv,
                            sx_inv,
                            x0 = None,
                            x_norm = None,
                            max_iter = 10,
                            stop_dx = 0.01,
                            ga_settings = DEFAULT_GA_SETTINGS,
                            yf = None,
                            jacobian = None,
                            display_progress = False):
    """
    Levenberg-Marquardt OEM iteration.

    .. math::

        \\mathbf{x}_{i+1} = \\mathbf{x}_i + ((1 + \\gamma)\\mathbf{S}_x^{-1}
        + \\mathbf{K}_i^T\\mathbf{S}_o^{-1}\\mathbf{K}_i)^{-1}
        (\\mathbf{K}_i^T\\mathbf{S}_o^{-1}(\\mathbf{y} - F(\\mathbf{x}_i))
        - \\mathbf{S}_x^{-1}(\\mathbf{x}_i - \\mathbf{x}_a))

    A step is accepted if it decreases the cost function; :math:`\\gamma` is
    then decreased. Otherwise :math:`\\gamma` is increased and the step is
    recomputed. A rejected step with :math:`d_i^2` below :code:`stop_dx`
    ends the iteration as converged.

    Arguments:

        forward_model(:class:`ForwardModel`): The forward model.

        xa: The a priori state vector.

        y: The measurement vector.

        so_inv: Inverse of the observation error covariance matrix.

        sx_inv: Inverse of the a priori covariance matrix.

        x0: Start state of the iteration. Defaults to :code:`xa`.

        x_norm: Optional normalisation vector for the state.

        max_iter(:code:`int`): Maximum number of iterations.

        stop_dx(:code:`float`): Convergence threshold for :math:`d_i^2`.

        yf: Optional forward model output at the start state.

        jacobian: Optional Jacobian at the start state. Together with
            :code:`yf` it saves the first forward model evaluation.

        ga_settings: Six values controlling :math:`\\gamma`:

            1. Start value.
            2. Factor by which :math:`\\gamma` is divided after a successful
               step.
            3. Factor by which :math:`\\gamma` is multiplied after an
               unsuccessful step.
            4. Maximum value. If exceeded, the iteration stops.
            5. Threshold below which :math:`\\gamma` is set to zero. When
               :math:`\\gamma` has to be increased from zero it is set to
               this value.
            6. Convergence is only considered when :math:`\\gamma` is at
               most this value.

        display_progress(:code:`bool`): Whether to print progress.

    Returns:

        :class:`OEMResult`
    """
    xa, y, so_inv, sx_inv, x_norm = _prepare(xa, y, so_inv, sx_inv, x_norm)
    m = y.size
    n = xa.size

    ga_start, ga_decrease, ga_increase, ga_max, ga_threshold, ga_stop = \
        [float(v) for v in ga_settings]

    if x0 is None:
        x = np.copy(xa)
    else:
        x = np.asarray(x0, dtype=float).ravel().copy()

    yf, k = _start(forward_model, x, m, yf, jacobian)
    cost_y = oem_cost_y(y, yf, so_inv, m)
    cost_x = oem_cost_x(x, xa, sx_inv, m)
    cost = cost_x + cost_y
    cost_start = cost

    if display_progress:
        _print_header("Levenberg-Marquardt")
        _print_step(0, cost_x, cost_y, gamma = ga_start)

    gamma = ga_start
    ga_history = []
    status = STATUS_MAX_ITER
    iterations = 0

    while iterations < max_iter:
        ktso = np.asarray(so_inv @ k).T
        hessian = ktso @ k
        gradient = ktso @ (y - yf) - sx_inv @ (x - xa)

        step_found = False
        stalled = False
        while not step_found:
            lhs = (1.0 + gamma) * sx_inv + hessian
            dx = _solve(lhs, gradient, x_norm)
            di2 = float(dx @ (hessian + sx_inv) @ dx) / n
            x_new = x + dx
            yf_new, _ = _evaluate(forward_model, x_new, m, jacobian_do = False)
            cost_y_new = oem_cost_y(y, yf_new, so_inv, m)
            cost_x_new = oem_cost_x(x_new, xa, sx_inv, m)
            cost_new = cost_x_new + cost_y_new

            if cost_new < cost:
                step_found = True
                gamma = gamma / ga_decrease
                if gamma < ga_threshold:
                    gamma = 0.0
            elif di2 < stop_dx:
                # No cost decrease for a step below the convergence threshold.
                stalled = True
                break
            else:
                if gamma == 0.0:
                    gamma = ga_threshold if ga_threshold > 0.0 else 1.0
                else:
                    gamma = gamma * ga_increase
                logger.debug("Levenberg-Marquardt step rejected, increasing "
                             "gamma to %g.", gamma)
                if gamma > ga_max:
                    break

        ga_history += [gamma]
        if stalled:
            status = STATUS_CONVERGED
            break
        if not step_found:
            status = STATUS_MAX_GAMMA
            break

        x = x_new
        iterations += 1
        yf, k = _evaluate(forward_model, x, m)
        cost_y = oem_cost_y(y, yf, so_inv, m)
        cost_x = oem_cost_x(x, xa, sx_inv, m)
        cost = cost_x + cost_y

        logger.debug("Levenberg-Marquardt step %d: cost = %g, d_i^2 = %g, "
                     "gamma = %g", iterations, cost, di2, gamma)
        if display_progress:
            _print_step(iterations, cost_x, cost_y, di2, gamma)

        if gamma <= ga_stop and di2 < stop_dx:
            status = STATUS_CONVERGED
            break

    if display_progress:
        _print_footer(status, iterations)

    dxdy = _gain_matrix(k, so_inv, sx_inv, x_norm)
    return OEMResult(x, yf, k, dxdy, cost_start, cost_y, cost_x, iterations,
                     status, ga_history = ga_history)
