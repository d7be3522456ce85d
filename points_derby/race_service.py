from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from points_derby.auth import CallerContext
from points_derby.config import RaceSettings
from points_derby.database.store import BalanceStore, StoreSession, now_ms, race_key, user_key
from points_derby.engine.data_models import EffectRecord, RacePhase, RaceState
from points_derby.engine.generator import create_race, new_race_id, validate_wager
from points_derby.engine.items import ITEM_CATALOG, ItemDefinition, apply_effect, check_item_allowed, get_item
from points_derby.engine.motion import standings
from points_derby.engine.state_machine import advance, phase_at
from points_derby.errors import Forbidden, InsufficientPoints, NotFound, StorageFailure, TooEarly
from points_derby.settlement import (
    SettlementResult,
    payout_delta,
    record_settlement,
    resolve_winner,
    settlement_credit,
    stored_result,
)


@dataclass(frozen=True)
class RaceTicket:
    state: RaceState
    points: int


@dataclass(frozen=True)
class ItemReceipt:
    effect: EffectRecord
    cost: int
    points: int


@dataclass(frozen=True)
class RaceStatus:
    state: RaceState
    phase: RacePhase
    standings: List[Tuple[int, float]]
    ms_until_start: int
    ms_until_end: int


class RaceService:
    """
    Every race operation as one locked read-modify-write against the store.
    Race locks sort before user locks ("race:" < "user:"), which keeps lock
    order consistent across operations.
    """

    def __init__(
        self,
        store: BalanceStore,
        settings: Optional[RaceSettings] = None,
        clock: Callable[[], int] = now_ms,
        catalog: Optional[Dict[str, ItemDefinition]] = None,
    ):
        self.store = store
        self.settings = settings or RaceSettings.load()
        self.clock = clock
        self.catalog = catalog if catalog is not None else ITEM_CATALOG

    # --- Helpers ---

    def _load(self, session: StoreSession, race_id: str) -> RaceState:
        state = session.get_race_state(race_id)
        if state is None:
            raise NotFound(f"Race '{race_id}' was not found. It may have expired.")
        return state

    def _peek_owner(self, race_id: str) -> str:
        # owner_id never changes after creation, so an unlocked read is enough
        with self.store.session() as session:
            return self._load(session, race_id).owner_id

    # --- Players ---

    def balance(self, caller: CallerContext) -> int:
        with self.store.session(user_key(caller.user_id)) as session:
            return session.get_balance(caller.user_id)

    def register_player(self, caller: CallerContext) -> int:
        """Creates the caller with the starting balance if needed; returns the balance."""
        with self.store.session(user_key(caller.user_id)) as session:
            if session.create_player(caller.user_id, self.settings.starting_points):
                print(f"  -> Registered player {caller.user_id} with {self.settings.starting_points:,} points")
            return session.get_balance(caller.user_id)

    # --- Races ---

    def start_race(self, caller: CallerContext, pick: int, bet: int) -> RaceTicket:
        validate_wager(pick, bet, self.settings)

        now = self.clock()
        race_id = new_race_id(caller.user_id, now)
        state = create_race(caller.user_id, pick, bet, self.settings, now, race_id=race_id)

        with self.store.session(race_key(race_id), user_key(caller.user_id)) as session:
            points = session.get_balance(caller.user_id)
            if points < bet:
                raise InsufficientPoints(f"You need {bet:,} points but have {points:,}.")
            session.put_race_state(state, self.settings.state_ttl_seconds)
            session.set_balance(caller.user_id, points - bet)

        print(f"  -> Race {race_id} started by {caller.user_id}: pick #{pick}, bet {bet:,}")
        return RaceTicket(state=state, points=points - bet)

    def race_status(self, caller: CallerContext, race_id: str) -> RaceStatus:
        now = self.clock()
        with self.store.session() as session:
            state = self._load(session, race_id)
        return RaceStatus(
            state=state,
            phase=phase_at(state, now),
            standings=standings(state, now),
            ms_until_start=max(0, state.race_starts_at - now),
            ms_until_end=max(0, state.race_ends_at - now),
        )

    def apply_item(self, caller: CallerContext, race_id: str, item_key: str, target_id: Optional[int] = None) -> ItemReceipt:
        item = get_item(item_key, self.catalog)
        now = self.clock()

        with self.store.session(race_key(race_id), user_key(caller.user_id)) as session:
            state = self._load(session, race_id)
            check_item_allowed(state, item, caller.user_id, target_id, now)

            points = session.get_balance(caller.user_id)
            if points < item.cost:
                raise InsufficientPoints(f"'{item.key}' costs {item.cost:,} points but you have {points:,}.")

            advance(state, now)
            effect = apply_effect(state, item, caller.user_id, target_id, now)
            session.put_race_state(state, self.settings.state_ttl_seconds)
            session.set_balance(caller.user_id, points - item.cost)

        print(f"  -> {caller.user_id} used '{item.key}' in race {race_id} (target {effect.target_id})")
        return ItemReceipt(effect=effect, cost=item.cost, points=points - item.cost)

    def settle(self, caller: CallerContext, race_id: str) -> SettlementResult:
        owner_id = self._peek_owner(race_id)
        if owner_id != caller.user_id:
            raise Forbidden("You can only settle your own race.")

        now = self.clock()
        with self.store.session(race_key(race_id), user_key(owner_id)) as session:
            state = self._load(session, race_id)
            if state.owner_id != caller.user_id:
                raise Forbidden("You can only settle your own race.")

            if state.settled:
                if state.winner is None or state.delta is None or state.after_points is None:
                    raise StorageFailure(f"Race '{race_id}' is marked settled but its result is incomplete.")
                return stored_result(state)

            if now < state.race_ends_at:
                raise TooEarly(f"Race '{race_id}' finishes in {(state.race_ends_at - now) / 1000:.1f}s.")

            winner, source = resolve_winner(state, self.settings.horses)
            win = state.pick == winner
            delta = payout_delta(state.bet, win, self.settings.win_multiplier)

            points = session.get_balance(owner_id)
            after_points = points + settlement_credit(state.bet, delta)

            advance(state, now)
            record_settlement(state, winner, delta, after_points)
            # Settled snapshot first; both land in the same commit
            session.put_race_state(state, self.settings.state_ttl_seconds)
            session.set_balance(owner_id, after_points)

        print(f"  -> Race {race_id} settled: winner #{winner} ({source}), delta {delta:+,}, balance {after_points:,}")
        return SettlementResult(
            race_id=race_id,
            winner=winner,
            win=win,
            delta=delta,
            after_points=after_points,
        )
