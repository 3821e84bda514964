import unittest

import numpy as np
import pandas as pd

from lifelines import CoxPHFitter

from cox_aipw.counting import EstimatingEquationMatrices, build_estimating_matrices
from cox_aipw.crossfit import NuisancePredictions
from cox_aipw.exceptions import NonConvergence
from cox_aipw.inference import (
    baseline_cumulative_hazard,
    influence_terms,
    sandwich_variance,
    survival_curves,
    time_varying_diagnostic,
)
from cox_aipw.solver import EstimatingEquation, group_column_sums, risk_set_groups
from cox_aipw.time_grid import build_follow_up


def _cox_score_equation(n=60, seed=3):
    """Uncensored data whose AIPCW equation is the Cox partial-likelihood score."""
    rng = np.random.default_rng(seed)
    group = rng.binomial(1, 0.5, size=n).astype(float)
    time = rng.exponential(1.0 / np.exp(0.7 * group))
    follow = build_follow_up(time, np.ones(n))
    m = follow.n_res
    flat = np.full((n, m), 0.5)
    pred = NuisancePredictions(flat, flat, np.ones((n, m)), np.ones((n, m)))
    mats = build_estimating_matrices(follow, group, pred, np.ones(n), 'AIPCW')
    groups, n_groups = risk_set_groups(np.ones(n, dtype=int), cross_fit=False)
    return EstimatingEquation(mats, groups, n_groups), follow, group, time


class GroupingTests(unittest.TestCase):
    def test_group_column_sums(self):
        values = np.array([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]])
        out = group_column_sums(values, np.array([0, 1, 0]), 2)
        np.testing.assert_allclose(out, [[6.0, 8.0], [3.0, 4.0]])

    def test_risk_set_groups(self):
        folds = np.array([1, 1, 2, 2, 3])
        groups, n_groups = risk_set_groups(folds, cross_fit=True)
        np.testing.assert_array_equal(groups, [0, 0, 1, 1, 2])
        self.assertEqual(n_groups, 3)
        groups, n_groups = risk_set_groups(folds, cross_fit=False)
        np.testing.assert_array_equal(groups, np.zeros(5))
        self.assertEqual(n_groups, 1)


class EstimatingEquationTests(unittest.TestCase):
    def test_matches_cox_partial_likelihood(self):
        equation, _, group, time = _cox_score_equation()
        root = equation.solve()
        self.assertTrue(root.converged)
        self.assertAlmostEqual(root.U, 0.0, places=6)

        df = pd.DataFrame({'T': time, 'E': 1, 'A': group})
        cph = CoxPHFitter().fit(df, duration_col='T', event_col='E', robust=True)
        self.assertAlmostEqual(root.beta, cph.params_['A'], places=4)

        se = sandwich_variance(equation, root.beta)
        np.testing.assert_allclose(se, cph.standard_errors_['A'], rtol=1e-2)

    def test_derivative_is_negative(self):
        equation, _, _, _ = _cox_score_equation()
        for beta in (-1.0, 0.0, 1.0):
            self.assertLess(equation.dU(beta), 0.0)

    def test_empty_risk_set_gives_zero_ratio(self):
        n, m = 2, 3
        mats = EstimatingEquationMatrices(
            dN1=np.zeros((n, m)), dN0=np.zeros((n, m)),
            untilted=np.zeros((n, m)), tilted=np.zeros((n, m)), weights=np.ones(n),
        )
        equation = EstimatingEquation(mats, np.zeros(n, dtype=int), 1)
        np.testing.assert_array_equal(equation.A_bar(0.5), np.zeros((1, m)))

    def test_flat_equation_does_not_converge(self):
        n, m = 4, 3
        mats = EstimatingEquationMatrices(
            dN1=np.ones((n, m)), dN0=np.zeros((n, m)),
            untilted=np.ones((n, m)), tilted=np.ones((n, m)), weights=np.ones(n),
        )
        equation = EstimatingEquation(mats, np.zeros(n, dtype=int), 1)
        with self.assertRaises(NonConvergence):
            equation.solve()


class SafeguardedSolveTests(unittest.TestCase):
    """U(beta) = (0.5 - expit(beta) - 0.1 * A2(beta)) / 2, A2 with a pole at log(20)."""

    def _equation(self, with_pole):
        if with_pole:
            tilted = np.array([[1.0, 1.0], [0.0, 0.0]])
            untilted = np.array([[0.0, 0.0], [1.0, -20.0]])
            dN0 = np.array([[0.5, 0.05], [0.5, 0.05]])
        else:
            tilted = np.array([[1.0, 0.0], [0.0, 0.0]])
            untilted = np.array([[0.0, 0.0], [1.0, 0.0]])
            dN0 = np.array([[0.5, 0.0], [0.5, 0.0]])
        mats = EstimatingEquationMatrices(
            dN1=np.array([[0.5, 0.0], [0.0, 0.0]]), dN0=dN0,
            untilted=untilted, tilted=tilted, weights=np.ones(2),
        )
        return EstimatingEquation(mats, np.zeros(2, dtype=int), 1)

    def test_newton_from_a_distant_start(self):
        # plain Newton-Raphson on a logistic curve diverges from beta0=3
        root = self._equation(with_pole=False).solve(beta0=3.0)
        self.assertAlmostEqual(root.beta, 0.0, places=6)
        self.assertAlmostEqual(root.U, 0.0, places=8)

    def test_brackets_straddling_a_pole_are_skipped(self):
        root = self._equation(with_pole=True).solve(beta0=6.0)
        self.assertLess(root.beta, np.log(20.0) - 0.01)
        self.assertAlmostEqual(root.U, 0.0, places=6)

    def test_root_near_zero_without_fallback(self):
        root = self._equation(with_pole=True).solve(beta0=0.0)
        self.assertLess(abs(root.beta), 0.1)
        self.assertAlmostEqual(root.U, 0.0, places=8)


class InferenceTests(unittest.TestCase):
    def test_baseline_counts_identical_groups_once(self):
        dLambda0 = np.array([[0.1, -0.3, 0.2], [0.1, -0.3, 0.2]])
        np.testing.assert_allclose(baseline_cumulative_hazard(dLambda0), [0.1, 0.1, 0.1])

    def test_baseline_averages_distinct_groups(self):
        dLambda0 = np.array([[0.1, 0.2], [0.3, 0.0]])
        np.testing.assert_allclose(baseline_cumulative_hazard(dLambda0), [0.2, 0.3])

    def test_running_sum_without_envelope(self):
        dLambda0 = np.array([[0.1, -0.3, 0.2], [0.1, -0.3, 0.2]])
        np.testing.assert_allclose(baseline_cumulative_hazard(dLambda0, envelope=False),
                                   [0.1, -0.2, 0.0], atol=1e-12)
        raw = baseline_cumulative_hazard(dLambda0, envelope=False)
        np.testing.assert_allclose(baseline_cumulative_hazard(dLambda0),
                                   np.maximum.accumulate(np.maximum(raw, 0.0)))

    def test_survival_curves(self):
        Lambda0 = np.array([0.0, 0.2, 0.5])
        surv0, surv1 = survival_curves(Lambda0, np.log(2.0))
        np.testing.assert_allclose(surv0, np.exp(-Lambda0))
        np.testing.assert_allclose(surv1, surv0 ** 2)

    def test_breslow_increments_without_censoring(self):
        equation, follow, group, _ = _cox_score_equation()
        beta = equation.solve().beta
        terms = influence_terms(equation, beta)
        order = np.argsort(follow.time)
        risk = np.exp(beta * group[order])[::-1].cumsum()[::-1]
        np.testing.assert_allclose(terms.dLambda0[0], 1.0 / risk)

    def test_influence_rows_sum_to_score(self):
        equation, _, _, _ = _cox_score_equation()
        beta = equation.solve().beta
        terms = influence_terms(equation, beta)
        self.assertAlmostEqual(terms.matrix.sum() / equation.n, 0.0, places=6)

    def test_diagnostic_is_centred_at_beta(self):
        equation, follow, _, _ = _cox_score_equation()
        beta = equation.solve().beta
        diag = time_varying_diagnostic(equation, beta, follow.grid)
        self.assertEqual(len(diag.x), len(diag.y))
        self.assertGreater(len(diag.x), 0)
        self.assertTrue(np.all(np.isin(diag.x, follow.grid)))
        self.assertTrue(np.all(np.isfinite(diag.y)))
        self.assertAlmostEqual(diag.y.mean(), beta, places=10)


if __name__ == "__main__":
    unittest.main()
