"""Script to run database migrations.

Usage:
    python scripts/migrate.py                 upgrade to head
    python scripts/migrate.py down <revision> downgrade to a revision
    python scripts/migrate.py current         show the current revision
"""

import sys

from alembic import command
from alembic.config import Config
from alembic.util import CommandError


def _config() -> Config:
    return Config("alembic.ini")


def run_migrations(revision: str = "head") -> None:
    """Upgrade the database schema."""
    try:
        print(f"Upgrading database to {revision}...")
        command.upgrade(_config(), revision)
        print("✓ Migrations completed successfully!")
    except CommandError as e:
        print(f"✗ Migration failed: {e}", file=sys.stderr)
        sys.exit(1)


def downgrade(revision: str) -> None:
    """Downgrade the database schema."""
    try:
        print(f"Downgrading database to {revision}...")
        command.downgrade(_config(), revision)
        print("✓ Downgrade completed successfully!")
    except CommandError as e:
        print(f"✗ Downgrade failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    args = sys.argv[1:]
    if not args:
        run_migrations()
    elif args[0] == "down" and len(args) == 2:
        downgrade(args[1])
    elif args[0] == "current":
        command.current(_config(), verbose=True)
    else:
        print(__doc__)
        sys.exit(2)
