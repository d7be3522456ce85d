from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

import psycopg2
import psycopg2.extras as pg_extras

from points_derby.database.connection import get_db_connection
from points_derby.database.store import BalanceStore, StoreSession, decode_race_state
from points_derby.engine.data_models import RaceState
from points_derby.errors import NotFound, StorageFailure

PLAYERS_TABLE = "derby.players"
RACE_STATES_TABLE = "derby.race_states"


class _PostgresSession(StoreSession):
    """Runs every call on the session's single transaction."""

    def __init__(self, conn):
        self.conn = conn

    def get_balance(self, user_id: str) -> int:
        with self.conn.cursor() as cur:
            cur.execute(
                f"SELECT points FROM {PLAYERS_TABLE} WHERE user_id = %s FOR UPDATE;",
                (user_id,)
            )
            row = cur.fetchone()
        if row is None:
            raise NotFound(f"Unknown user '{user_id}'.")
        return int(row[0])

    def set_balance(self, user_id: str, points: int) -> None:
        with self.conn.cursor() as cur:
            cur.execute(
                f"UPDATE {PLAYERS_TABLE} SET points = %s, updated_at = NOW() WHERE user_id = %s;",
                (int(points), user_id)
            )
            if cur.rowcount == 0:
                raise NotFound(f"Unknown user '{user_id}'.")

    def create_player(self, user_id: str, points: int) -> bool:
        with self.conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO {PLAYERS_TABLE} (user_id, points)
                VALUES (%s, %s)
                ON CONFLICT (user_id) DO NOTHING;
                """,
                (user_id, int(points))
            )
            return cur.rowcount == 1

    def get_race_state(self, race_id: str) -> Optional[RaceState]:
        with self.conn.cursor() as cur:
            cur.execute(
                f"SELECT payload FROM {RACE_STATES_TABLE} WHERE race_id = %s AND expires_at > NOW();",
                (race_id,)
            )
            row = cur.fetchone()
        if row is None:
            return None
        return decode_race_state(row[0])

    def put_race_state(self, state: RaceState, ttl_seconds: int) -> None:
        with self.conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO {RACE_STATES_TABLE} (race_id, owner_id, payload, expires_at)
                VALUES (%s, %s, %s, NOW() + %s * INTERVAL '1 second')
                ON CONFLICT (race_id) DO UPDATE
                SET payload = EXCLUDED.payload, expires_at = EXCLUDED.expires_at;
                """,
                (state.race_id, state.owner_id, pg_extras.Json(state.to_dict()), int(ttl_seconds))
            )


class PostgresStore(BalanceStore):
    """
    Balance store backed by the derby schema. A session is one transaction;
    lock keys become transaction-scoped advisory locks, released on commit or
    rollback.
    """

    def __init__(self, connect=get_db_connection):
        self._connect = connect

    @contextmanager
    def session(self, *lock_keys: str) -> Iterator[StoreSession]:
        conn = self._connect()
        if conn is None:
            raise StorageFailure("Database is unavailable. Please try again.")
        try:
            with conn.cursor() as cur:
                for key in sorted(set(lock_keys)):
                    cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s));", (key,))
            yield _PostgresSession(conn)
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            print(f"  -> Storage failure, transaction rolled back: {e}")
            raise StorageFailure("Storage is temporarily unavailable. Please try again.") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def purge_expired_races(self) -> int:
        return purge_expired_races(self._connect)


def purge_expired_races(connect=get_db_connection) -> int:
    """
    Deletes race snapshots past their retention window.
    Returns the number of rows removed (0 on error).
    """
    conn = None
    removed = 0
    try:
        conn = connect()
        if conn is None:
            return 0
        with conn.cursor() as cur:
            cur.execute(f"DELETE FROM {RACE_STATES_TABLE} WHERE expires_at <= NOW();")
            removed = cur.rowcount
        conn.commit()
    except psycopg2.Error as e:
        if conn:
            conn.rollback()
        print(f"Error purging expired races: {e}")
    finally:
        if conn:
            conn.close()
    return removed
