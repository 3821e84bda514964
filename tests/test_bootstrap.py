import unittest

import numpy as np

from cox_aipw.bootstrap import bayesian_bootstrap
from cox_aipw.data_generation import SimulationConfig, simulate_cox_msm
from cox_aipw.models import cox_aipw

from tests.fakes import ConstantPropensity, ExponentialSurvival


class BayesianBootstrapTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.data, _ = simulate_cox_msm(SimulationConfig(n=120, seed=5))
        cls.options = dict(
            T_model=ExponentialSurvival(0.3, 0.3),
            C_model=ExponentialSurvival(0.1, 0.1),
            PS_model=ConstantPropensity(0.5),
            cross_fit=False,
        )

    def test_draws_and_summary(self):
        res = bayesian_bootstrap(self.data, n_boot=8, seed=1, **self.options)
        self.assertEqual(res.draws.shape, (8,))
        self.assertTrue(np.all(np.isfinite(res.draws)))
        self.assertGreater(res.se, 0.0)
        lo, hi = res.percentile_interval(0.9)
        self.assertLessEqual(lo, hi)
        self.assertEqual(res.beta, cox_aipw(self.data, **self.options).beta)

    def test_seed_reproduces_draws(self):
        first = bayesian_bootstrap(self.data, n_boot=4, seed=3, **self.options)
        second = bayesian_bootstrap(self.data, n_boot=4, seed=3, **self.options)
        np.testing.assert_array_equal(first.draws, second.draws)

    def test_needs_two_replicates(self):
        with self.assertRaises(ValueError):
            bayesian_bootstrap(self.data, n_boot=1, **self.options)


if __name__ == "__main__":
    unittest.main()
