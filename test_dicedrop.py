# test_dicedrop.py
import numpy as np
import unittest

from DiceDrop import (
    DIE_FACES,
    MaxScore,
    PlayGame,
    RollDice,
    WarmUp,
    _discard_neutral,
    _resolve_round,
    _simulate_batch_numba,
)


class ScriptedRng:
    """
    Stands in for a numpy Generator and hands out fixed rolls.

    Each call to integers() consumes the next scripted roll, which must have
    exactly as many dice as were requested.
    """

    def __init__(self, *rolls):
        self.rolls = [list(roll) for roll in rolls]

    def integers(self, low, high, size, dtype=np.int64):
        if not self.rolls:
            raise AssertionError(f"Unexpected roll of {size} dice")
        roll = self.rolls.pop(0)
        if len(roll) != size:
            raise AssertionError(f"Scripted roll {roll} does not match {size} dice")
        return np.array(roll, dtype=dtype)


class TestRoundRule(unittest.TestCase):

    def test_discard_neutral_removes_every_three(self):
        dice = np.array([1, 3, 2, 3, 5], dtype=np.int8)
        active = _discard_neutral(dice, 5)
        self.assertEqual(active, 3)
        self.assertEqual(dice[:active].tolist(), [1, 2, 5])

    def test_discard_neutral_without_threes_keeps_all(self):
        dice = np.array([1, 2, 4, 5, 6], dtype=np.int8)
        self.assertEqual(_discard_neutral(dice, 5), 5)
        self.assertEqual(dice.tolist(), [1, 2, 4, 5, 6])

    def test_discard_neutral_only_looks_at_live_prefix(self):
        dice = np.array([3, 4, 3], dtype=np.int8)
        active = _discard_neutral(dice, 2)
        self.assertEqual(active, 1)
        self.assertEqual(dice[0], 4)

    def test_bust_round_scores_nothing(self):
        # The 1 would be the minimum, but a 3 on the table busts the round.
        dice = np.array([1, 3, 6], dtype=np.int8)
        active, points = _resolve_round(dice, 3)
        self.assertEqual(points, 0)
        self.assertEqual(active, 2)
        self.assertEqual(sorted(dice[:active].tolist()), [1, 6])

    def test_scoring_round_removes_lowest_die(self):
        dice = np.array([4, 2, 6], dtype=np.int8)
        active, points = _resolve_round(dice, 3)
        self.assertEqual(points, 2)
        self.assertEqual(active, 2)
        self.assertEqual(sorted(dice[:active].tolist()), [4, 6])

    def test_tied_minimum_removes_a_single_die(self):
        dice = np.array([5, 1, 1], dtype=np.int8)
        active, points = _resolve_round(dice, 3)
        self.assertEqual(points, 1)
        self.assertEqual(sorted(dice[:active].tolist()), [1, 5])

    def test_last_die_scores_its_face(self):
        dice = np.array([6], dtype=np.int8)
        self.assertEqual(_resolve_round(dice, 1), (0, 6))


class TestPlayGame(unittest.TestCase):

    def test_single_die_scores_its_face(self):
        rng = ScriptedRng([4])
        self.assertEqual(PlayGame(1, rng), 4)
        self.assertEqual(rng.rolls, [])

    def test_single_die_showing_three_busts_to_zero(self):
        rng = ScriptedRng([3])
        self.assertEqual(PlayGame(1, rng), 0)
        self.assertEqual(rng.rolls, [])

    def test_two_dice_bust_then_score(self):
        # {3, 5}: the 3 is discarded, the 5 is re-rolled to 2 and scored.
        rng = ScriptedRng([3, 5], [2])
        self.assertEqual(PlayGame(2, rng), 2)
        self.assertEqual(rng.rolls, [])

    def test_all_threes_leave_in_one_round(self):
        rng = ScriptedRng([1, 3, 4, 5, 6], [2, 2, 5, 6], [3, 3, 3])
        self.assertEqual(PlayGame(5, rng), 2)
        self.assertEqual(rng.rolls, [])

    def test_tied_minimum_scores_once_per_round(self):
        rng = ScriptedRng([2, 2], [6])
        self.assertEqual(PlayGame(2, rng), 8)

    def test_every_scoring_round_adds_its_minimum(self):
        rng = ScriptedRng([6, 5, 4], [6, 6], [1])
        self.assertEqual(PlayGame(3, rng), 4 + 6 + 1)

    def test_scores_stay_within_bounds(self):
        rng = np.random.default_rng(2024)
        for num_dice in range(1, 11):
            for _ in range(50):
                score = PlayGame(num_dice, rng)
                self.assertGreaterEqual(score, 0)
                self.assertLessEqual(score, MaxScore(num_dice))

    def test_single_die_never_scores_three(self):
        rng = np.random.default_rng(7)
        scores = {PlayGame(1, rng) for _ in range(500)}
        self.assertNotIn(3, scores)
        self.assertTrue(scores <= {0, 1, 2, 4, 5, 6})

    def test_games_vary(self):
        rng = np.random.default_rng()
        scores = [PlayGame(3, rng) for _ in range(20)]
        self.assertGreater(len(set(scores)), 1, "All game scores were identical")

    def test_many_dice_complete(self):
        self.assertGreaterEqual(PlayGame(50, np.random.default_rng(1)), 0)


class TestDiceRolls(unittest.TestCase):

    def test_roll_dice_range(self):
        dice = RollDice(1000, np.random.default_rng(3))
        self.assertEqual(dice.shape, (1000,))
        self.assertEqual(dice.dtype, np.int8)
        self.assertTrue(np.all((dice >= 1) & (dice <= DIE_FACES)))

    def test_roll_dice_covers_all_faces(self):
        dice = RollDice(1000, np.random.default_rng(11))
        self.assertEqual(sorted(set(dice.tolist())), [1, 2, 3, 4, 5, 6])

    def test_roll_dice_without_rng(self):
        self.assertEqual(len(RollDice(4)), 4)


class TestCompiledBatch(unittest.TestCase):

    def test_batch_histogram_counts_every_game(self):
        bins = _simulate_batch_numba(500, 3, 1234)
        self.assertEqual(bins.shape, (MaxScore(3) + 1,))
        self.assertEqual(int(bins.sum()), 500)

    def test_batch_is_reproducible_for_a_seed(self):
        first = _simulate_batch_numba(300, 4, 99)
        second = _simulate_batch_numba(300, 4, 99)
        np.testing.assert_array_equal(first, second)

    def test_batch_single_die_never_scores_three(self):
        bins = _simulate_batch_numba(2000, 1, 5)
        self.assertEqual(bins[3], 0)
        self.assertGreater(bins[0], 0)

    def test_warm_up_compiles_round_rule(self):
        WarmUp()
        self.assertTrue(_resolve_round.signatures)
        self.assertTrue(_simulate_batch_numba.signatures)


if __name__ == '__main__':
    unittest.main()
