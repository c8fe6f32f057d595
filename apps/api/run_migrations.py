#!/usr/bin/env python3
"""Database bootstrap: run Alembic migrations before the API starts.

- Wait for the database to accept connections.
- Always run `alembic upgrade head`.
- If migrations fail, fail fast (don't start with an unknown schema).
"""

import os
import sys
import time
from dotenv import load_dotenv

load_dotenv()

# Run from anywhere: the API modules live next to this file.
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))


def check_db_ready() -> bool:
    """Check if database is ready"""
    from core.database import check_db_connection

    return check_db_connection()


def _get_alembic_config():
    """Load Alembic config for programmatic migrations."""
    from alembic.config import Config

    here = os.path.dirname(os.path.abspath(__file__))
    cfg = Config(os.path.join(here, "alembic.ini"))
    return cfg


def alembic_upgrade_head() -> None:
    """Apply all pending migrations."""
    from alembic import command

    command.upgrade(_get_alembic_config(), "head")


def main():
    print("Waiting for database to be ready...")
    max_retries = 30
    retry_count = 0

    while retry_count < max_retries:
        if check_db_ready():
            print("Database is ready!")
            break
        retry_count += 1
        print(f"Database is unavailable - sleeping (attempt {retry_count}/{max_retries})")
        time.sleep(1)
    else:
        print("ERROR: Database is not ready after maximum retries")
        sys.exit(1)

    try:
        alembic_upgrade_head()
    except Exception as e:
        print(f"ERROR: Alembic upgrade failed: {e}")
        sys.exit(1)
    print("Migrations completed successfully!")


if __name__ == '__main__':
    main()
