"""
Tests for the OEM solvers in artsoem.oem.
"""
import numpy as np
import pytest

from artsoem.exceptions import ForwardModelError
from artsoem.oem import (STATUS_CONVERGED, STATUS_MAX_GAMMA, STATUS_MAX_ITER,
                         FunctionForwardModel, avk, covmat_so, covmat_ss,
                         oem_cost_x, oem_cost_y, oem_gauss_newton,
                         oem_levenberg_marquardt, oem_linear_nform)

################################################################################
# Test problems
################################################################################

K = np.array([[1.0, 0.5, 0.0],
              [0.2, 1.0, 0.3],
              [0.0, 0.4, 1.0],
              [0.5, 0.5, 0.5]])
SO_INV = np.diag([1.0, 2.0, 4.0, 0.5])
SX_INV = np.diag([0.1, 0.2, 0.3])
XA = np.array([1.0, 2.0, 3.0])
Y = np.array([2.0, 3.0, 4.0, 5.0])


def linear_model():
    return FunctionForwardModel(lambda x, jacobian_do: (K @ x, K))


def linear_solution():
    lhs = K.T @ SO_INV @ K + SX_INV
    return XA + np.linalg.solve(lhs, K.T @ SO_INV @ (Y - K @ XA))


def cubic(x, jacobian_do):
    y = x + 0.1 * x ** 3
    k = np.diag(1.0 + 0.3 * x ** 2)
    return y, k


X_TRUE = np.array([1.0, -0.5, 0.2])

################################################################################
# Tests
################################################################################

def test_cost_functions():
    assert(np.isclose(oem_cost_y(np.ones(2), np.zeros(2), np.eye(2), 2), 1.0))
    assert(np.isclose(oem_cost_x(np.ones(2), np.zeros(2), 2.0 * np.eye(2), 4),
                      1.0))


def test_linear():
    result = oem_linear_nform(linear_model(), XA, Y, SO_INV, SX_INV)
    assert(result.converged)
    assert(result.iterations == 1)
    assert(np.allclose(result.x, linear_solution()))
    assert(np.allclose(result.yf, K @ result.x))

    lhs = K.T @ SO_INV @ K + SX_INV
    assert(np.allclose(result.dxdy, np.linalg.solve(lhs, K.T @ SO_INV)))
    assert(result.diagnostics.size == 5)
    assert(result.cost < result.cost_start)


def test_linear_x_norm():
    x_norm = np.array([1.0, 10.0, 100.0])
    result = oem_linear_nform(linear_model(), XA, Y, SO_INV, SX_INV,
                              x_norm = x_norm)
    assert(np.allclose(result.x, linear_solution()))


def test_gauss_newton_linear():
    result = oem_gauss_newton(linear_model(), XA, Y, SO_INV, SX_INV,
                              max_iter = 10, stop_dx = 1e-6)
    assert(result.status == STATUS_CONVERGED)
    assert(np.allclose(result.x, linear_solution()))


def test_gauss_newton_nonlinear():
    y, _ = cubic(X_TRUE, False)
    result = oem_gauss_newton(FunctionForwardModel(cubic),
                              np.zeros(3), y, np.eye(3), 1e-6 * np.eye(3),
                              max_iter = 20, stop_dx = 1e-10)
    assert(result.converged)
    assert(np.allclose(result.x, X_TRUE, atol = 1e-3))
    _, k = cubic(result.x, True)
    assert(np.allclose(result.jacobian, k))


def test_gauss_newton_max_iter():
    y, _ = cubic(X_TRUE, False)
    result = oem_gauss_newton(FunctionForwardModel(cubic),
                              np.zeros(3), y, np.eye(3), 1e-6 * np.eye(3),
                              max_iter = 1, stop_dx = 1e-10)
    assert(result.status == STATUS_MAX_ITER)
    assert(result.iterations == 1)


def test_levenberg_marquardt():
    y, _ = cubic(X_TRUE, False)
    result = oem_levenberg_marquardt(FunctionForwardModel(cubic),
                                     np.zeros(3), y, np.eye(3),
                                     1e-6 * np.eye(3),
                                     max_iter = 50, stop_dx = 1e-8)
    assert(result.converged)
    assert(np.allclose(result.x, X_TRUE, atol = 1e-3))
    assert(result.ga_history.size >= result.iterations)


def test_levenberg_marquardt_linear():
    result = oem_levenberg_marquardt(linear_model(), XA, Y, SO_INV, SX_INV,
                                     max_iter = 100, stop_dx = 1e-8,
                                     ga_settings = [10.0, 2.0, 2.0, 1e6,
                                                    1.0, 1.0])
    assert(result.converged)
    assert(np.allclose(result.x, linear_solution(), atol = 1e-4))


def test_start_from_x0():
    x0 = linear_solution()
    result = oem_gauss_newton(linear_model(), XA, Y, SO_INV, SX_INV,
                              x0 = x0, stop_dx = 1e-6)
    assert(result.converged)
    assert(result.iterations == 1)


def test_forward_model_error():
    fm = FunctionForwardModel(lambda x, jacobian_do: (np.ones(3), np.eye(3)))
    with pytest.raises(ForwardModelError):
        oem_gauss_newton(fm, XA, Y, SO_INV, SX_INV)

    fm = FunctionForwardModel(lambda x, jacobian_do: (K @ x, np.eye(3)))
    with pytest.raises(ForwardModelError):
        oem_linear_nform(fm, XA, Y, SO_INV, SX_INV)


def test_error_analysis():
    result = oem_linear_nform(linear_model(), XA, Y, SO_INV, SX_INV)
    a = avk(result.dxdy, result.jacobian)
    assert(a.shape == (3, 3))

    s_e = np.linalg.inv(SO_INV)
    s_o = covmat_so(result.dxdy, s_e)
    assert(np.allclose(s_o, s_o.T))

    s_x = np.linalg.inv(SX_INV)
    s_s = covmat_ss(a, s_x)
    assert(np.allclose(s_s, s_s.T))

    # The posterior covariance is the sum of both error contributions.
    s_post = np.linalg.inv(K.T @ SO_INV @ K + SX_INV)
    assert(np.allclose(s_o + s_s, s_post))

    assert(np.allclose(covmat_ss(np.eye(3), s_x), 0.0))


def wrong_sign_model():
    """Identity forward model whose Jacobian points the wrong way."""
    return FunctionForwardModel(lambda x, jacobian_do: (x, -np.eye(x.size)))


def test_levenberg_marquardt_max_gamma():
    xa = np.zeros(3)
    result = oem_levenberg_marquardt(wrong_sign_model(), xa, np.ones(3),
                                     np.eye(3), 0.01 * np.eye(3),
                                     max_iter = 10, stop_dx = 1e-30,
                                     ga_settings = [1.0, 2.0, 10.0, 100.0,
                                                    1.0, 1.0])
    assert(result.status == STATUS_MAX_GAMMA)
    assert(result.iterations == 0)
    assert(np.all(result.x == xa))
    assert(result.ga_history[-1] > 100.0)
    assert(result.diagnostics[0] == 2)


def test_levenberg_marquardt_no_cost_decrease():
    """
    A rejected step that is below the convergence threshold ends the
    iteration as converged.
    """
    xa = np.zeros(3)
    result = oem_levenberg_marquardt(wrong_sign_model(), xa, np.ones(3),
                                     np.eye(3), 0.01 * np.eye(3),
                                     max_iter = 10, stop_dx = 10.0,
                                     ga_settings = [1.0, 2.0, 10.0, 100.0,
                                                    1.0, 1.0])
    assert(result.status == STATUS_CONVERGED)
    assert(result.iterations == 0)
    assert(np.all(result.x == xa))


def test_levenberg_marquardt_gamma_stop():
    """
    Convergence is only considered once gamma has dropped to the stop
    limit.
    """
    result = oem_levenberg_marquardt(linear_model(), XA, Y, SO_INV, SX_INV,
                                     max_iter = 100, stop_dx = 1e-2,
                                     ga_settings = [1000.0, 2.0, 2.0, 1e6,
                                                    1.0, 1e6])
    assert(result.converged)
    assert(result.iterations == 1)
    assert(result.ga_history[-1] == 500.0)

    result = oem_levenberg_marquardt(linear_model(), XA, Y, SO_INV, SX_INV,
                                     max_iter = 100, stop_dx = 1e-2,
                                     ga_settings = [1000.0, 2.0, 2.0, 1e6,
                                                    1.0, 1.0])
    assert(result.converged)
    assert(result.iterations >= 10)
    assert(result.ga_history[-1] <= 1.0)


def test_display_progress(capsys):
    oem_gauss_newton(linear_model(), XA, Y, SO_INV, SX_INV,
                     stop_dx = 1e-6, display_progress = True)
    out = capsys.readouterr().out
    assert("MAP Computation" in out)
    assert("Method: Gauss-Newton" in out)
    assert("converged" in out)

    oem_levenberg_marquardt(linear_model(), XA, Y, SO_INV, SX_INV,
                            max_iter = 1, display_progress = True)
    out = capsys.readouterr().out
    assert("Method: Levenberg-Marquardt" in out)
    assert("Gamma" in out)
    assert("maximum number of iterations reached" in out)

    oem_linear_nform(linear_model(), XA, Y, SO_INV, SX_INV,
                     display_progress = False)
    assert(capsys.readouterr().out == "")


def test_forward_model_error_message():
    e = ForwardModelError("jacobian", (4, 3), (3, 3))
    assert(str(e) == "Forward model returned jacobian with shape (3, 3) but "
                     "(4, 3) was expected.")
