import math
import unittest

from points_derby import minigames
from points_derby.auth import CallerContext
from points_derby.config import RaceSettings
from points_derby.database.store import MemoryStore, user_key
from points_derby.errors import InsufficientPoints, InvalidWager


class MinigameTestCase(unittest.TestCase):
    def setUp(self):
        self.store = MemoryStore()
        self.settings = RaceSettings()
        self.caller = CallerContext("player")
        with self.store.session(user_key("player")) as session:
            session.create_player("player", 1000)

    def balance(self):
        with self.store.session() as session:
            return session.get_balance("player")


class ColorStripTests(MinigameTestCase):
    def test_strip_layout(self):
        self.assertEqual(len(minigames.STRIP), 17)
        self.assertEqual(minigames.STRIP.count("green"), 1)
        self.assertEqual(minigames.STRIP.count("red"), 10)

    def test_outcome_is_reproducible(self):
        self.assertEqual(minigames.strip_outcome("spin:x:1"), minigames.strip_outcome("spin:x:1"))

    def test_spin_settles_against_multiplier(self):
        round_id = "spin:player:fixed"
        index, color, multiplier = minigames.strip_outcome(round_id)

        result = minigames.spin_color_strip(self.store, self.caller, 200, self.settings, round_id=round_id)

        expected_delta = math.floor(200 * multiplier) - 200
        self.assertEqual(result.index, index)
        self.assertEqual(result.color, color)
        self.assertEqual(result.delta, expected_delta)
        self.assertEqual(result.points, 1000 + expected_delta)
        self.assertEqual(self.balance(), 1000 + expected_delta)

    def test_spin_rejects_bad_amounts(self):
        for amount in (50, 10001, 150.5):
            with self.assertRaises(InvalidWager):
                minigames.spin_color_strip(self.store, self.caller, amount, self.settings)
        self.assertEqual(self.balance(), 1000)

    def test_spin_needs_points(self):
        with self.assertRaises(InsufficientPoints):
            minigames.spin_color_strip(self.store, self.caller, 5000, self.settings)
        self.assertEqual(self.balance(), 1000)


class SlotDropTests(MinigameTestCase):
    def test_rewards(self):
        self.assertEqual(minigames.slot_reward("EXACT", 4, 4, 100), 200)
        self.assertEqual(minigames.slot_reward("EXACT", 3, 4, 100), 0)
        self.assertEqual(minigames.slot_reward("ODD", None, 3, 101), 151)
        self.assertEqual(minigames.slot_reward("EVEN", None, 3, 100), 0)
        self.assertEqual(minigames.slot_reward("LEFT", None, 3, 100), 150)
        self.assertEqual(minigames.slot_reward("RIGHT", None, 3, 100), 0)
        self.assertEqual(minigames.slot_reward("RIGHT", None, 4, 100), 150)

    def test_drop_lands_in_range(self):
        for n in range(30):
            self.assertTrue(1 <= minigames.slot_outcome(f"drop:{n}") <= minigames.SLOT_COUNT)

    def test_drop_settles(self):
        round_id = "drop:player:fixed"
        final_slot = minigames.slot_outcome(round_id)

        result = minigames.drop_slot(self.store, self.caller, "odd", 200, settings=self.settings, round_id=round_id)

        reward = minigames.slot_reward("ODD", None, final_slot, 200)
        self.assertEqual(result.bet_type, "ODD")
        self.assertEqual(result.final_slot, final_slot)
        self.assertEqual(result.win, reward > 0)
        self.assertEqual(self.balance(), 1000 - 200 + reward)

    def test_exact_bet_needs_slot(self):
        for slot in (None, 0, 7):
            with self.assertRaises(InvalidWager):
                minigames.drop_slot(self.store, self.caller, "EXACT", 100, slot, self.settings)
        self.assertEqual(self.balance(), 1000)

    def test_unknown_bet_type(self):
        with self.assertRaises(InvalidWager):
            minigames.drop_slot(self.store, self.caller, "MIDDLE", 100, settings=self.settings)


if __name__ == "__main__":
    unittest.main()
