import os

import psycopg2
from dotenv import load_dotenv

load_dotenv()

APPLICATION_NAME = "points-derby"
# Sessions wait on advisory locks; give up instead of hanging a command forever
DEFAULT_LOCK_TIMEOUT_MS = 5000
DEFAULT_CONNECT_TIMEOUT = 5


def connection_kwargs() -> dict:
    """
    Builds psycopg2.connect() arguments from the environment.

    DATABASE_URL wins when set; otherwise the DB_* variables are used. Every
    session searches the derby schema first and runs in UTC.
    """
    lock_timeout = os.getenv('DERBY_LOCK_TIMEOUT_MS', str(DEFAULT_LOCK_TIMEOUT_MS))
    kwargs = {
        'application_name': APPLICATION_NAME,
        'connect_timeout': int(os.getenv('DB_CONNECT_TIMEOUT', DEFAULT_CONNECT_TIMEOUT)),
        'options': f"-c search_path=derby,public -c timezone=UTC -c lock_timeout={int(lock_timeout)}",
    }
    dsn = os.getenv('DATABASE_URL')
    if dsn:
        kwargs['dsn'] = dsn
        return kwargs

    kwargs.update(
        dbname=os.getenv('DB_NAME'),
        user=os.getenv('DB_USER'),
        password=os.getenv('DB_PASSWORD'),
        host=os.getenv('DB_HOST'),
        port=os.getenv('DB_PORT', 5432),
    )
    return kwargs


def get_db_connection():
    """Opens a new connection for one store session. Returns None when unreachable."""
    try:
        return psycopg2.connect(**connection_kwargs())
    except (psycopg2.Error, ValueError) as e:
        print(f"Error: Could not connect to the database. {e}")
        return None


if __name__ == '__main__':
    conn = get_db_connection()
    if conn:
        print("Database connection successful!")
        conn.close()
    else:
        print("Database connection failed.")
