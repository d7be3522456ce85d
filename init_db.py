import os
import sys

import psycopg2

from points_derby.database.connection import get_db_connection

SCHEMA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'points_derby', 'database', 'schema.sql')


def initialize_database(reset: bool = False) -> bool:
    """
    Reads schema.sql and executes it to create the derby tables.
    With ``reset`` the 'derby' schema is dropped first, wiping balances and
    race snapshots.
    """
    try:
        with open(SCHEMA_PATH, 'r') as f:
            sql_commands = f.read()
    except FileNotFoundError:
        print(f"Error: schema.sql not found at {SCHEMA_PATH}")
        return False

    conn = get_db_connection()
    if conn is None:
        print("Failed to get database connection.")
        return False

    try:
        if reset:
            # DROP SCHEMA can't run inside a transaction block.
            conn.autocommit = True
            with conn.cursor() as cur:
                print("Dropping existing 'derby' schema (if it exists)...")
                cur.execute("DROP SCHEMA IF EXISTS derby CASCADE;")
                print("'derby' schema dropped.")
            conn.autocommit = False

        with conn.cursor() as cur:
            print("Creating 'derby' schema and tables...")
            cur.execute(sql_commands)
            print("Database tables created successfully!")

        conn.commit()
        print("All changes committed to the database.")
        return True
    except psycopg2.Error as e:
        conn.rollback()
        print("An error occurred. Transaction rolled back.")
        print(f"Error details: {e}")
        return False
    finally:
        conn.close()
        print("Database connection closed.")


if __name__ == '__main__':
    reset = '--reset' in sys.argv
    if reset:
        print("This script will RESET your 'derby' database schema.")
        print("WARNING: All existing balances and race snapshots will be WIPED.")
        response = input("Are you sure you want to continue? (y/n): ")
        if response.lower() != 'y':
            print("Database initialization cancelled.")
            sys.exit(0)
    sys.exit(0 if initialize_database(reset=reset) else 1)
