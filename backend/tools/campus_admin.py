"""Operator commands for the campus backend.

Why:
    Public sign-up never creates admins (unless explicitly enabled), so the
    first admin account is created from the command line. Storage buckets can
    likewise be provisioned ahead of the first upload.

Usage:
    python -m backend.tools.campus_admin create-admin \
      --email admin@school.example --name "Site Admin" --password '...'
    python -m backend.tools.campus_admin ensure-buckets

Notes:
    - Both commands are idempotent in effect: `create-admin` refuses an email
      that already exists, `ensure-buckets` only creates missing buckets.
    - The database DSN is resolved like the web app (`CAMPUS_DATABASE_URL`,
      `DATABASE_URL`, `SUPABASE_DB_URL`).
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import click
from dotenv import load_dotenv

# Allow `identity_access.*` imports when invoked as `python -m backend.tools...`.
_BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))

from backend.storage.bootstrap import ensure_buckets  # noqa: E402
from backend.storage.config import public_buckets, required_buckets  # noqa: E402
from identity_access.accounts import AccountsService  # noqa: E402

logger = logging.getLogger("campus.identity")


def _build_accounts_repo():
    """Return the DB-backed accounts repository (separate for test patching)."""
    from identity_access.repo_db import DBAccountsRepo

    return DBAccountsRepo()


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
def cli() -> None:
    """Campus backend operator commands."""
    if (os.getenv("CAMPUS_ENABLE_DOTENV", "true") or "").strip().lower() in ("1", "true", "yes"):
        load_dotenv()
    logging.basicConfig(
        level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command("create-admin")
@click.option("--email", required=True, help="Login email of the new admin.")
@click.option("--name", required=True, help="Display name.")
@click.option("--password", required=True, help="Initial password (min. 8 characters).")
def create_admin(email: str, name: str, password: str) -> None:
    """Create an admin account (user, credential)."""
    try:
        repo = _build_accounts_repo()
    except RuntimeError as exc:
        raise click.ClickException(f"database unavailable: {exc}")
    service = AccountsService(repo)
    try:
        user = service.sign_up(email=email, password=password, name=name, role="admin", allow_admin=True)
    except ValueError as exc:
        raise click.ClickException(str(exc.args[0]) if exc.args else "invalid_input")
    logger.info("admin created id=%s", user["id"])
    click.echo(f"Created admin {user['email']} ({user['id']})")


@cli.command("ensure-buckets")
def ensure_buckets_cmd() -> None:
    """Create the storage buckets the app needs when they are missing."""
    base = (os.getenv("SUPABASE_URL") or "").strip()
    key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    if not base or not key:
        raise click.ClickException("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required")
    created = ensure_buckets(base, key, required_buckets(), public=public_buckets())
    if created:
        click.echo("Created buckets: " + ", ".join(created))
    else:
        click.echo("All buckets present; nothing to do.")


if __name__ == "__main__":  # pragma: no cover - manual entry
    cli()
