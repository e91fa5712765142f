"""
Tests for the solver handle (NLPSolver), solve_nlp and SolverConfig.
"""

import dataclasses
import math

import numpy as np
import pytest
from scipy.optimize import OptimizeResult

from dnc_optree import SolverConfig
from dnc_optree.kernel import ContractViolation, NLPSolver, SolverResult, solve_nlp
from dnc_optree.kernel import solve as solve_module


def _quadratic(x):
    return (x[0] - 1.0) ** 2 + (x[1] + 2.0) ** 2


def _quadratic_gradient(x):
    return np.array([2.0 * (x[0] - 1.0), 2.0 * (x[1] + 2.0)])


def test_slsqp_respects_bounds():
    """
    WHAT IS THIS TEST?
    ==================
    Minimise (x-1)^2 + (y+2)^2 with y >= 0. The unconstrained minimum is at
    (1, -2); the box pushes y onto its lower bound.
    """
    solver = NLPSolver("SLSQP", 2)
    solver.set_xtol_rel(1e-6)
    solver.set_bounds([-np.inf, 0.0], [np.inf, np.inf])
    solver.set_min_objective(_quadratic, _quadratic_gradient)

    result = solver.optimize([5.0, 5.0])

    assert result.status == solve_module.SUCCESS
    np.testing.assert_allclose(result.x, [1.0, 0.0], atol=1e-5)
    assert np.isclose(result.min_value, 4.0, atol=1e-6)
    print(f"✓ SLSQP minimum {result.min_value:.6f} at {result.x}")


def test_unknown_algorithm_is_value_error():
    with pytest.raises(ValueError):
        NLPSolver("BFGS-ish", 2)
    with pytest.raises(ValueError):
        SolverConfig(algorithm="SBPLX")


@pytest.mark.parametrize("cap", [0, -1, -100])
def test_non_positive_cap_means_unlimited(cap):
    """
    WHAT IS THIS TEST?
    ==================
    max_evaluations <= 0 must mean "no limit", never "stop immediately".
    """
    for algorithm in ("SLSQP", "L-BFGS-B", "TNC", "Nelder-Mead", "Powell", "COBYLA"):
        solver = NLPSolver(algorithm, 1)
        solver.set_max_evaluations(cap)
        options = solver.solver_options()
        assert options
        assert all(v == solve_module.UNLIMITED_EVALUATIONS for v in options.values())

    config = SolverConfig(max_evaluations=cap)
    result = solve_nlp(config, _quadratic, _quadratic_gradient,
                       [-10.0, -10.0], [10.0, 10.0], [5.0, 5.0])
    assert result.status == solve_module.SUCCESS
    np.testing.assert_allclose(result.x, [1.0, -2.0], atol=1e-4)


def test_positive_cap_is_forwarded():
    solver = NLPSolver("Nelder-Mead", 2)
    solver.set_max_evaluations(7)
    assert solver.solver_options() == {"maxfev": 7}

    solver.set_bounds([-10.0, -10.0], [10.0, 10.0])
    solver.set_min_objective(lambda x: (1 - x[0]) ** 2 + 100 * (x[1] - x[0] ** 2) ** 2)
    result = solver.optimize([-1.5, 2.0])
    assert result.status == solve_module.MAXEVAL_REACHED
    assert math.isfinite(result.min_value)


def test_solver_exception_becomes_failure_sentinel(caplog):
    """
    WHAT IS THIS TEST?
    ==================
    An exception inside the solver must not crash the caller: optimize()
    returns status -1, min_value -inf, and logs a warning.
    """
    def exploding(x):
        raise RuntimeError("objective blew up")

    solver = NLPSolver("SLSQP", 1)
    solver.set_min_objective(exploding)

    with caplog.at_level("WARNING"):
        result = solver.optimize([0.0])

    assert result.failed
    assert result.status == -1
    assert result.min_value == -math.inf
    assert "objective blew up" in caplog.text
    print("✓ solver crash -> failure sentinel, logged")


def test_dimension_mismatch_is_contract_violation():
    solver = NLPSolver("SLSQP", 2)
    solver.set_min_objective(_quadratic)
    with pytest.raises(ContractViolation):
        solver.optimize([0.0])
    with pytest.raises(ContractViolation):
        solver.set_bounds([0.0], [1.0])


def _fake_optimize(values):
    """Patch NLPSolver.optimize to return canned results per algorithm."""
    def optimize(self, x0):
        value = values[self.algorithm]
        if value is None:
            return SolverResult.failure(x0, self.algorithm)
        return SolverResult(1, value, np.asarray(x0, dtype=float), self.algorithm)
    return optimize


@pytest.mark.parametrize("values, winner", [
    ({"SLSQP": 2.0, "Nelder-Mead": 1.0}, "Nelder-Mead"),
    ({"SLSQP": 1.0, "Nelder-Mead": 2.0}, "SLSQP"),
    ({"SLSQP": 1.0, "Nelder-Mead": 1.0}, "SLSQP"),
    ({"SLSQP": None, "Nelder-Mead": 3.0}, "Nelder-Mead"),
])
def test_meta_algorithm_keeps_smaller_objective(monkeypatch, values, winner):
    monkeypatch.setattr(NLPSolver, "optimize", _fake_optimize(values))
    config = SolverConfig(algorithm="SLSQP+Nelder-Mead")

    result = solve_nlp(config, _quadratic, None, [0.0, 0.0], [1.0, 1.0], [0.0, 0.0])

    assert result.algorithm == winner


def test_meta_algorithm_all_failed(monkeypatch):
    monkeypatch.setattr(NLPSolver, "optimize", _fake_optimize({"SLSQP": None, "Nelder-Mead": None}))
    result = solve_nlp(SolverConfig(algorithm="SLSQP+Nelder-Mead"), _quadratic, None,
                       [0.0, 0.0], [1.0, 1.0], [0.0, 0.0])
    assert result.failed
    assert result.min_value == -math.inf


@pytest.mark.parametrize("forward, algorithm, expected", [
    (False, "SLSQP", False),
    (True, "SLSQP", True),
    (True, "L-BFGS-B", False),
])
def test_constraints_forwarded_only_when_enabled(monkeypatch, forward, algorithm, expected):
    seen = {}

    def fake_minimize(fun, x0, **kwargs):
        seen.update(kwargs)
        return OptimizeResult(x=np.asarray(x0), fun=float(fun(x0)), success=True, nfev=1, message="ok")

    monkeypatch.setattr(solve_module, "minimize", fake_minimize)
    config = SolverConfig(algorithm=algorithm, forward_constraints=forward)
    constraints = [{"type": "ineq", "fun": lambda x: x[0] - 0.5}]

    solve_nlp(config, _quadratic, _quadratic_gradient, [0.0, 0.0], [1.0, 1.0], [0.0, 0.0], constraints)

    assert ("constraints" in seen) == expected
    assert seen["method"] == algorithm
    assert "tol" not in seen
    assert np.isclose(seen["options"]["ftol"], config.xtol_rel ** 2)


def test_gradient_only_for_gradient_based_algorithms():
    solver = NLPSolver("Nelder-Mead", 2)
    solver.set_min_objective(_quadratic, _quadratic_gradient)
    assert solver.gradient is None

    solver = NLPSolver("L-BFGS-B", 2)
    solver.set_min_objective(_quadratic, _quadratic_gradient)
    assert solver.gradient is _quadratic_gradient


def test_config_validation():
    assert SolverConfig().algorithm == "SLSQP"
    assert SolverConfig().xtol_rel == 1e-4
    with pytest.raises(ValueError):
        SolverConfig(xtol_rel=0.0)
    with pytest.raises(ValueError):
        SolverConfig(convexity_samples=0)
    with pytest.raises(ValueError):
        SolverConfig(convexity_vector_range=(1.0, -1.0))
    with pytest.raises(dataclasses.FrozenInstanceError):
        SolverConfig().algorithm = "TNC"


def test_tolerance_options_per_method():
    """
    WHAT IS THIS TEST?
    ==================
    xtol_rel is a relative x tolerance, but every scipy method spells its
    stopping rule differently. Each one must receive its own option, never
    the generic `tol` that SLSQP reads as an absolute function tolerance.
    """
    y0 = np.array([0.0, 3.0])
    expected = {
        "SLSQP": {"ftol": 1e-8},
        "L-BFGS-B": {"ftol": 1e-8},
        "TNC": {"xtol": 1e-4},
        "Powell": {"xtol": 1e-4},
        "Nelder-Mead": {"xatol": 3e-4, "fatol": 1e-4},
        "COBYLA": {"tol": 1e-4},
    }
    for algorithm, options in expected.items():
        solver = NLPSolver(algorithm, 2)
        assert solver.tolerance_options(y0) == {}
        solver.set_xtol_rel(1e-4)
        actual = solver.tolerance_options(y0)
        assert actual.keys() == options.keys()
        for name, value in options.items():
            assert np.isclose(actual[name], value), (algorithm, name)

    tight = NLPSolver("SLSQP", 1)
    tight.set_xtol_rel(1e-9)
    assert tight.tolerance_options(np.zeros(1)) == {"ftol": 1e-14}
    print("✓ xtol_rel mapped onto each method's own option")


def test_tiny_objective_still_reaches_minimum():
    """
    WHAT IS THIS TEST?
    ==================
    1e-6 * (x - 5)^2 from x0 = 0. Every function change is far below any
    absolute tolerance, so an unscaled SLSQP stops at x = 0. The solver
    divides the objective by |f(x0)| first, so the minimum is found.
    """
    solver = NLPSolver("SLSQP", 1)
    solver.set_xtol_rel(1e-4)
    solver.set_min_objective(lambda x: 1e-6 * (x[0] - 5.0) ** 2,
                             lambda x: np.array([2e-6 * (x[0] - 5.0)]))

    result = solver.optimize([0.0])

    assert result.status == solve_module.SUCCESS
    np.testing.assert_allclose(result.x, [5.0], atol=1e-3)
    assert result.min_value < 1e-10
    print(f"✓ tiny objective minimised at x = {result.x[0]:.6f}")


def test_variable_scale_is_undone_in_the_result():
    """Bounds, x0 and the returned x are all in the caller's units."""
    solver = NLPSolver("L-BFGS-B", 2)
    solver.set_xtol_rel(1e-6)
    solver.set_variable_scale(10.0)
    solver.set_bounds([-np.inf, 0.0], [np.inf, np.inf])
    solver.set_min_objective(_quadratic, _quadratic_gradient)

    result = solver.optimize([5.0, 5.0])

    assert not result.failed
    np.testing.assert_allclose(result.x, [1.0, 0.0], atol=1e-4)
    assert np.isclose(result.min_value, 4.0, atol=1e-6)


@pytest.mark.parametrize("scale", [0.0, -1.0, float("inf"), float("nan")])
def test_variable_scale_must_be_positive(scale):
    with pytest.raises(ContractViolation):
        NLPSolver("SLSQP", 1).set_variable_scale(scale)
