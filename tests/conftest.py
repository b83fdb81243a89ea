import os
import sys
from pathlib import Path

os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402
from argon2 import PasswordHasher, Type  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from raceauth.config import Settings, reset_settings_cache  # noqa: E402
from raceauth.service.hashing import Argon2Hasher  # noqa: E402
from raceauth.service.runtime import Runtime  # noqa: E402
from raceauth.storage.memory import MemoryStore  # noqa: E402


@pytest.fixture(autouse=True)
def reset_settings_state():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def hasher():
    # Minimal argon2 cost so the suite stays fast
    return Argon2Hasher(
        PasswordHasher(time_cost=1, memory_cost=8, parallelism=1, type=Type.ID)
    )


@pytest.fixture
def memory_store():
    return MemoryStore(timeout_seconds=1.0)


@pytest.fixture
def settings():
    return Settings(use_memory_store=True, max_login_attempts=4)


@pytest.fixture
def runtime(settings, memory_store, hasher):
    with Runtime(settings, store=memory_store, hasher=hasher) as rt:
        yield rt


@pytest.fixture
def account(runtime):
    return runtime.accounts.create_account(
        "Ada Runner", "ada@example.com", runtime.hasher.hash("correct horse"), "free"
    )
