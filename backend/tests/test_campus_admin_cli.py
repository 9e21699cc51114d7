"""
Operator CLI: first-admin creation and bucket provisioning.
"""
from __future__ import annotations

import pytest
from click.testing import CliRunner

import backend.tools.campus_admin as campus_admin  # type: ignore


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def test_create_admin(runner, memory_repo, monkeypatch):
    monkeypatch.setattr(campus_admin, "_build_accounts_repo", lambda: memory_repo)
    result = runner.invoke(
        campus_admin.cli,
        ["create-admin", "--email", "Root@School.test", "--name", "Root", "--password", "admin-pass-1"],
    )
    assert result.exit_code == 0, result.output
    user = memory_repo.get_user_by_email("root@school.test")
    assert user["role"] == "admin"
    assert f"Created admin root@school.test ({user['id']})" in result.output

    again = runner.invoke(
        campus_admin.cli,
        ["create-admin", "--email", "root@school.test", "--name", "Root", "--password", "admin-pass-1"],
    )
    assert again.exit_code != 0
    assert "email_taken" in again.output


def test_create_admin_without_database(runner, monkeypatch):
    def _no_db():
        raise RuntimeError("No database DSN configured")

    monkeypatch.setattr(campus_admin, "_build_accounts_repo", _no_db)
    result = runner.invoke(
        campus_admin.cli, ["create-admin", "--email", "a@school.test", "--name", "A", "--password", "admin-pass-1"]
    )
    assert result.exit_code != 0
    assert "database unavailable" in result.output


def test_ensure_buckets_requires_credentials(runner, monkeypatch):
    result = runner.invoke(campus_admin.cli, ["ensure-buckets"])
    assert result.exit_code != 0
    assert "SUPABASE_URL" in result.output


def test_ensure_buckets_reports_created(runner, monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://sb.test")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "srk")
    seen: dict = {}

    def fake_ensure(base, key, buckets, *, public):
        seen.update(base=base, key=key, buckets=list(buckets), public=set(public))
        return ["avatars"]

    monkeypatch.setattr(campus_admin, "ensure_buckets", fake_ensure)
    result = runner.invoke(campus_admin.cli, ["ensure-buckets"])
    assert result.exit_code == 0, result.output
    assert "Created buckets: avatars" in result.output
    assert seen["base"] == "https://sb.test"
    assert "course-files" in seen["buckets"]

    monkeypatch.setattr(campus_admin, "ensure_buckets", lambda *a, **k: [])
    result = runner.invoke(campus_admin.cli, ["ensure-buckets"])
    assert "nothing to do" in result.output
