"""
Shared fixtures. Force AnyIO to use the asyncio backend and give every test a fresh,
in-memory world (repositories, video provider, session store) so tests never
depend on a running Postgres, Supabase or Daily.co.
"""
import os
import importlib
import sys
from pathlib import Path
import pytest

# Keep import-time wiring (storage, config guard, dotenv) inert for the suite.
for _var in (
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "DAILY_API_KEY",
    "AUTO_CREATE_STORAGE_BUCKETS",
    "SESSIONS_BACKEND",
    "CAMPUS_ENV",
):
    os.environ.pop(_var, None)
os.environ["CAMPUS_ENABLE_DOTENV"] = "false"

# Import roots used by the app: repo root, backend/, backend/web/ (+ tests/ for utils).
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
WEB_DIR = BACKEND_DIR / "web"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(REPO_ROOT), str(BACKEND_DIR), str(WEB_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def memory_repo():
    """Inject one fresh `InMemoryRepo` as accounts, teaching and chat repo."""
    import repos  # type: ignore
    from repo_memory import InMemoryRepo  # type: ignore

    repo = InMemoryRepo()
    repos.set_repos(accounts=repo, teaching=repo, chat=repo)
    yield repo
    repos.set_repos(accounts=None, teaching=None, chat=None)


@pytest.fixture(autouse=True)
def rooms():
    """Install a recording fake video provider (see `utils.fakes`)."""
    import repos  # type: ignore
    from utils.fakes import FakeRoomProvider

    provider = FakeRoomProvider()
    repos.set_room_provider(provider)
    yield provider
    repos.set_room_provider(None)


@pytest.fixture(autouse=True)
def _reset_session_store_and_storage(monkeypatch: pytest.MonkeyPatch):
    """Fresh memory session store and the Null storage adapter for every test."""
    try:
        import main  # type: ignore
        from identity_access.stores import SessionStore  # type: ignore
        from teaching.storage import NullStorageAdapter  # type: ignore
        import routes.courses as courses  # type: ignore
    except Exception:
        yield
        return

    # `main` and `backend.web.main` can both be loaded; patch both.
    shared_session = SessionStore()
    monkeypatch.setattr(main, "SESSION_STORE", shared_session, raising=False)
    try:
        bwm = importlib.import_module("backend.web.main")  # type: ignore
        monkeypatch.setattr(bwm, "SESSION_STORE", shared_session, raising=False)
    except Exception:
        pass
    courses.set_storage_adapter(NullStorageAdapter())
    yield
    courses.set_storage_adapter(NullStorageAdapter())


@pytest.fixture(autouse=True)
def _clear_feature_flags(monkeypatch: pytest.MonkeyPatch):
    """Clear env-driven toggles that may leak across tests.

    Behavior:
        - Default `dev` environment unless a test opts in explicitly.
        - No proxy trust, no strict CSRF, no admin self sign-up.
    """
    for var in (
        "CAMPUS_ENV",
        "STRICT_CSRF",
        "CAMPUS_TRUST_PROXY",
        "ALLOW_ADMIN_SIGNUP",
        "SUPABASE_URL",
        "SUPABASE_SERVICE_ROLE_KEY",
        "DAILY_API_KEY",
        "AUTO_CREATE_STORAGE_BUCKETS",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture(autouse=True)
def _reset_settings_environment_override():
    """Reset main.SETTINGS.override_environment between tests."""
    try:
        for name in ("main", "backend.web.main"):
            mod = sys.modules.get(name) or importlib.import_module(name)
            if hasattr(mod, "SETTINGS") and hasattr(mod.SETTINGS, "override_environment"):
                mod.SETTINGS.override_environment(None)
    except Exception:
        pass
    yield
