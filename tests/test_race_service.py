import threading
import unittest
from collections import Counter
from unittest.mock import patch

from points_derby.auth import CallerContext
from points_derby.config import RaceSettings
from points_derby.database.store import MemoryStore, _MemorySession, race_key
from points_derby.engine.data_models import RacePhase
from points_derby.engine.items import get_item
from points_derby.errors import (
    Forbidden,
    InsufficientPoints,
    InvalidWager,
    NotFound,
    PolicyViolation,
    StorageFailure,
    TooEarly,
)
from points_derby.race_service import RaceService


class FakeClock:
    def __init__(self, now=1_000_000):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class RaceServiceTestCase(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.store = MemoryStore(clock=self.clock)
        self.settings = RaceSettings(
            horses=5,
            min_bet=100,
            max_bet=10000,
            countdown_ms=1000,
            race_ms=9000,
            state_ttl_seconds=600,
            win_multiplier=2.0,
            starting_points=10000,
        )
        self.service = RaceService(self.store, self.settings, clock=self.clock)
        self.owner = CallerContext("owner")
        self.rival = CallerContext("rival")
        self.service.register_player(self.owner)
        self.service.register_player(self.rival)

    def _force_winner(self, race_id, winner):
        with self.store.session(race_key(race_id)) as session:
            state = session.get_race_state(race_id)
            state.winner = winner
            session.put_race_state(state, self.settings.state_ttl_seconds)

    def _finished_race(self, pick=3, bet=500, winner=None):
        ticket = self.service.start_race(self.owner, pick, bet)
        if winner is not None:
            self._force_winner(ticket.state.race_id, winner)
        self.clock.advance(self.settings.countdown_ms + self.settings.race_ms)
        return ticket.state.race_id


class StartRaceTests(RaceServiceTestCase):
    def test_register_is_idempotent(self):
        self.assertEqual(self.service.register_player(self.owner), 10000)
        self.assertEqual(self.service.balance(self.owner), 10000)

    def test_wager_escrowed_at_start(self):
        ticket = self.service.start_race(self.owner, 3, 500)

        self.assertEqual(ticket.points, 9500)
        self.assertEqual(self.service.balance(self.owner), 9500)
        self.assertEqual(ticket.state.owner_id, "owner")
        self.assertEqual(ticket.state.phase, RacePhase.COUNTDOWN)
        with self.store.session() as session:
            self.assertIsNotNone(session.get_race_state(ticket.state.race_id))

    def test_invalid_wager_leaves_balance(self):
        for bet in (99, 10001):
            with self.assertRaises(InvalidWager):
                self.service.start_race(self.owner, 3, bet)
        self.assertEqual(self.service.balance(self.owner), 10000)

    def test_insufficient_points(self):
        self.service.start_race(self.owner, 1, 10000)
        with self.assertRaises(InsufficientPoints):
            self.service.start_race(self.owner, 1, 100)
        self.assertEqual(self.service.balance(self.owner), 0)

    def test_unknown_player(self):
        with self.assertRaises(NotFound):
            self.service.start_race(CallerContext("ghost"), 1, 100)


class SettleTests(RaceServiceTestCase):
    def test_win_pays_bet(self):
        race_id = self._finished_race(pick=3, bet=500, winner=3)
        result = self.service.settle(self.owner, race_id)

        self.assertEqual(result.winner, 3)
        self.assertTrue(result.win)
        self.assertEqual(result.delta, 500)
        self.assertEqual(result.after_points, 10000 + 500)
        self.assertEqual(self.service.balance(self.owner), 10500)

    def test_loss_costs_bet(self):
        race_id = self._finished_race(pick=3, bet=500, winner=1)
        result = self.service.settle(self.owner, race_id)

        self.assertFalse(result.win)
        self.assertEqual(result.delta, -500)
        self.assertEqual(result.after_points, 9500)
        self.assertEqual(self.service.balance(self.owner), 9500)

    def test_configured_multiplier(self):
        service = RaceService(self.store, RaceSettings(countdown_ms=0, win_multiplier=1.5), clock=self.clock)
        ticket = service.start_race(self.owner, 2, 1000)
        self._force_winner(ticket.state.race_id, 2)
        self.clock.advance(9000)

        result = service.settle(self.owner, ticket.state.race_id)
        self.assertEqual(result.delta, 500)
        self.assertEqual(self.service.balance(self.owner), 10500)

    def test_settle_is_idempotent(self):
        race_id = self._finished_race(winner=3)
        first = self.service.settle(self.owner, race_id)
        second = self.service.settle(self.owner, race_id)

        self.assertFalse(first.already_settled)
        self.assertTrue(second.already_settled)
        self.assertEqual(
            (first.winner, first.delta, first.after_points),
            (second.winner, second.delta, second.after_points),
        )
        self.assertEqual(self.service.balance(self.owner), 10500)

    def test_computed_winner_is_stored(self):
        race_id = self._finished_race()
        result = self.service.settle(self.owner, race_id)
        with self.store.session() as session:
            state = session.get_race_state(race_id)

        self.assertTrue(state.settled)
        self.assertEqual(state.winner, result.winner)
        self.assertEqual(state.delta, result.delta)
        self.assertEqual(state.after_points, result.after_points)
        self.assertEqual(state.phase, RacePhase.FINISHED)

    def test_too_early_changes_nothing(self):
        ticket = self.service.start_race(self.owner, 3, 500)
        self.clock.advance(5000)

        with self.assertRaises(TooEarly):
            self.service.settle(self.owner, ticket.state.race_id)
        self.assertEqual(self.service.balance(self.owner), 9500)
        with self.store.session() as session:
            self.assertFalse(session.get_race_state(ticket.state.race_id).settled)

    def test_only_owner_may_settle(self):
        race_id = self._finished_race()
        with self.assertRaises(Forbidden):
            self.service.settle(self.rival, race_id)
        self.assertEqual(self.service.balance(self.rival), 10000)

    def test_unknown_race(self):
        with self.assertRaises(NotFound):
            self.service.settle(self.owner, "no-such-race")

    def test_expired_race_is_gone(self):
        race_id = self._finished_race()
        self.clock.advance(self.settings.state_ttl_seconds * 1000)
        with self.assertRaises(NotFound):
            self.service.settle(self.owner, race_id)
        # abandoned races keep the stake
        self.assertEqual(self.service.balance(self.owner), 9500)

    def test_failed_write_then_retry_pays_once(self):
        race_id = self._finished_race(winner=3)

        with patch.object(_MemorySession, "set_balance", side_effect=StorageFailure("disk on fire")):
            with self.assertRaises(StorageFailure):
                self.service.settle(self.owner, race_id)

        self.assertEqual(self.service.balance(self.owner), 9500)
        with self.store.session() as session:
            self.assertFalse(session.get_race_state(race_id).settled)

        self.service.settle(self.owner, race_id)
        self.service.settle(self.owner, race_id)
        self.assertEqual(self.service.balance(self.owner), 10500)

    def test_concurrent_settles_pay_once(self):
        race_id = self._finished_race(winner=3)
        results, errors = [], []

        def worker():
            try:
                results.append(self.service.settle(self.owner, race_id))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(results), 8)
        self.assertEqual(sum(1 for result in results if not result.already_settled), 1)
        self.assertEqual({result.after_points for result in results}, {10500})
        self.assertEqual(self.service.balance(self.owner), 10500)


class ApplyItemTests(RaceServiceTestCase):
    def setUp(self):
        super().setUp()
        self.race_id = self.service.start_race(self.owner, 3, 500).state.race_id

    def _run(self):
        self.clock.advance(self.settings.countdown_ms + 500)

    def test_caller_pays_for_item(self):
        self._run()
        receipt = self.service.apply_item(self.rival, self.race_id, "mud", 2)

        self.assertEqual(receipt.cost, 8000)
        self.assertEqual(receipt.points, 2000)
        self.assertEqual(self.service.balance(self.rival), 2000)
        self.assertEqual(self.service.balance(self.owner), 9500)

        status = self.service.race_status(self.owner, self.race_id)
        self.assertEqual(len(status.state.applied_effects), 1)
        self.assertEqual(status.phase, RacePhase.RUNNING)

    def test_pick_target_rejected_without_charge(self):
        self._run()
        with self.assertRaises(PolicyViolation):
            self.service.apply_item(self.rival, self.race_id, "stop", 3)
        self.assertEqual(self.service.balance(self.rival), 10000)

    def test_items_wait_for_running_phase(self):
        with self.assertRaises(PolicyViolation):
            self.service.apply_item(self.rival, self.race_id, "mud", 1)
        self.assertEqual(self.service.balance(self.rival), 10000)

    def test_items_rejected_after_finish(self):
        self.clock.advance(60_000)
        with self.assertRaises(PolicyViolation):
            self.service.apply_item(self.rival, self.race_id, "mud", 1)

    def test_unaffordable_item_changes_nothing(self):
        self._run()
        with self.assertRaises(InsufficientPoints):
            self.service.apply_item(self.owner, self.race_id, "stop", 1)

        self.assertEqual(self.service.balance(self.owner), 9500)
        status = self.service.race_status(self.owner, self.race_id)
        self.assertEqual(status.state.applied_effects, [])

    def test_unknown_race_or_item(self):
        self._run()
        with self.assertRaises(NotFound):
            self.service.apply_item(self.rival, "missing", "mud", 1)
        with self.assertRaises(PolicyViolation):
            self.service.apply_item(self.rival, self.race_id, "banana", 1)

    def test_status_standings(self):
        status = self.service.race_status(self.owner, self.race_id)
        self.assertEqual(status.phase, RacePhase.COUNTDOWN)
        self.assertEqual(status.ms_until_start, 1000)
        self.assertEqual(sorted(entity_id for entity_id, _ in status.standings), [1, 2, 3, 4, 5])

    def test_concurrent_purchases_all_land(self):
        wealthy = RaceSettings(countdown_ms=1000, race_ms=9000, starting_points=100000)
        service = RaceService(self.store, wealthy, clock=self.clock)
        buyers = [CallerContext(f"buyer-{n}") for n in range(6)]
        for buyer in buyers:
            service.register_player(buyer)
        cost = get_item("mud").cost
        self._run()
        errors = []

        def worker(buyer):
            try:
                for _ in range(4):
                    service.apply_item(buyer, self.race_id, "mud", 1)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(buyer,)) for buyer in buyers]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        status = service.race_status(self.owner, self.race_id)
        self.assertEqual(len(status.state.applied_effects), 24)
        self.assertEqual(
            Counter(effect.caller_id for effect in status.state.applied_effects),
            {buyer.user_id: 4 for buyer in buyers},
        )
        for buyer in buyers:
            self.assertEqual(service.balance(buyer), 100000 - 4 * cost)

        self.clock.advance(60_000)
        first = service.settle(self.owner, self.race_id)
        second = service.settle(self.owner, self.race_id)
        self.assertEqual(
            (first.winner, first.delta, first.after_points),
            (second.winner, second.delta, second.after_points),
        )


if __name__ == "__main__":
    unittest.main()
