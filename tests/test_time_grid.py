import unittest

import numpy as np

from cox_aipw.exceptions import InvalidConfig
from cox_aipw.time_grid import assign_folds, build_follow_up


class BuildFollowUpTests(unittest.TestCase):
    def test_distinct_times_keep_their_values(self):
        follow = build_follow_up([1.0, 2.0, 3.0, 4.0], [1, 1, 0, 1], tau=4.0)
        np.testing.assert_array_equal(follow.grid, [1.0, 2.0, 3.0, 4.0])
        np.testing.assert_array_equal(follow.rank, [0, 1, 2, 3])
        np.testing.assert_array_equal(follow.censored, [0, 0, 1, 0])
        self.assertEqual(follow.n_res, 4)

    def test_tau_defaults_to_max_time(self):
        follow = build_follow_up([0.5, 2.5, 1.5], [1, 0, 1])
        self.assertEqual(follow.tau, 2.5)
        # censored exactly at tau is not a censoring event
        np.testing.assert_array_equal(follow.censored, [0, 0, 0])

    def test_ties_broken_stably_by_row_order(self):
        follow = build_follow_up([3.0, 1.0, 2.0, 1.0, 5.0], [1, 1, 0, 1, 1])
        self.assertEqual(follow.time[1], 1.0)
        self.assertAlmostEqual(follow.time[3], 1.0 + 1e-6, places=12)
        self.assertEqual(follow.n_res, 5)
        self.assertTrue(np.all(np.diff(follow.grid) > 0))
        self.assertEqual(follow.rank[1], 0)
        self.assertEqual(follow.rank[3], 1)

    def test_tie_perturbation_never_reaches_next_time(self):
        follow = build_follow_up([1.0, 1.0, 1.0, 1.0 + 1e-7, 2.0], [1, 1, 1, 1, 1])
        self.assertEqual(follow.n_res, 5)
        self.assertTrue(np.all(np.diff(follow.grid) > 0))
        self.assertLess(follow.time[2], 1.0 + 1e-7)

    def test_ties_at_large_times_stay_distinct(self):
        # a 1e-6 shift is below the float spacing at 1e11
        follow = build_follow_up([1e11, 1e11, 2e11, 3e11], [1, 1, 1, 1])
        self.assertEqual(follow.n_res, 4)
        self.assertEqual(follow.time[0], 1e11)
        self.assertGreater(follow.time[1], 1e11)
        self.assertLess(follow.time[1], 2e11)
        np.testing.assert_array_equal(follow.rank, [0, 1, 2, 3])

    def test_ties_that_cannot_be_separated_are_rejected(self):
        t = 1.0
        t_next = np.nextafter(t, 2.0)
        with self.assertRaises(InvalidConfig):
            build_follow_up([t, t, t, t_next, 2.0], [1, 1, 1, 1, 1])

    def test_tau_below_max_recensors_later_times(self):
        follow = build_follow_up([1.0, 2.0, 3.0, 4.0], [1, 1, 1, 1], tau=2.5)
        np.testing.assert_array_equal(follow.event, [1, 1, 0, 0])
        np.testing.assert_array_equal(follow.time, [1.0, 2.0, 2.5, 2.5])
        np.testing.assert_array_equal(follow.grid, [1.0, 2.0, 2.5])
        np.testing.assert_array_equal(follow.censored, [0, 0, 0, 0])
        self.assertTrue(np.all(follow.time <= follow.tau))

    def test_tied_times_at_tau_share_last_grid_point(self):
        follow = build_follow_up([1.0, 5.0, 5.0, 7.0], [1, 1, 0, 1], tau=5.0)
        np.testing.assert_array_equal(follow.grid, [1.0, 5.0])
        np.testing.assert_array_equal(follow.rank, [0, 1, 1, 1])

    def test_tau_before_every_event_is_rejected(self):
        with self.assertRaises(InvalidConfig):
            build_follow_up([2.0, 3.0], [1, 1], tau=1.0)

    def test_non_positive_or_infinite_tau_is_rejected(self):
        for tau in (0.0, -1.0, np.inf, np.nan):
            with self.assertRaises(InvalidConfig):
                build_follow_up([1.0, 2.0], [1, 1], tau=tau)


class AssignFoldsTests(unittest.TestCase):
    def test_contiguous_near_equal_folds(self):
        folds = assign_folds(10, 3)
        np.testing.assert_array_equal(folds, [1, 1, 1, 1, 2, 2, 2, 3, 3, 3])

    def test_single_fold(self):
        np.testing.assert_array_equal(assign_folds(4, 1), [1, 1, 1, 1])

    def test_every_row_in_exactly_one_fold(self):
        folds = assign_folds(17, 5)
        self.assertEqual(len(folds), 17)
        self.assertEqual(set(folds.tolist()), {1, 2, 3, 4, 5})

    def test_invalid_fold_counts(self):
        for k in (0, 11, 2.0, True):
            with self.assertRaises(InvalidConfig):
                assign_folds(10, k)


if __name__ == "__main__":
    unittest.main()
