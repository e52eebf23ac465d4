# ubora/conftest.py
import itertools
import sys
from pathlib import Path

import pytest

# Add repository root to PYTHONPATH
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from ubora.features.sessions.resolver import UserSessionService  # noqa: E402
from ubora.features.sessions.service import SubscriptionSessionService  # noqa: E402
from ubora.features.sessions.store import InMemoryUserStore  # noqa: E402
from ubora.features.transitions.service import PackageTransitionService  # noqa: E402
from ubora.models.user import UserRecord  # noqa: E402

from ubora.tests.factories import FIXED_NOW, FakeClock  # noqa: E402


@pytest.fixture
def clock():
    return FakeClock(FIXED_NOW)


@pytest.fixture
def id_factory():
    """Deterministic ids: session_1, purchase_2, ..."""
    counter = itertools.count(1)

    def make(prefix: str) -> str:
        return f"{prefix}_{next(counter)}"

    return make


@pytest.fixture
def store(clock):
    return InMemoryUserStore(clock=clock)


@pytest.fixture
def sessions(store, clock, id_factory):
    return SubscriptionSessionService(store, clock=clock, id_factory=id_factory)


@pytest.fixture
def resolver(clock):
    return UserSessionService(clock=clock, director_roles={"director", "directeur"})


@pytest.fixture
def transitions(store, clock, id_factory, sessions):
    return PackageTransitionService(store, clock=clock, id_factory=id_factory, sessions=sessions)


@pytest.fixture
def add_user(store):
    """Insert a user record and return it."""

    def _add(user_id: str = "dir_1", role: str = "director", sessions=(), current_session_id=None):
        return store.add(UserRecord(
            user_id=user_id,
            role=role,
            name="Awa Diallo",
            email=f"{user_id}@agence.test",
            agency_id="agency_1",
            subscription_sessions=list(sessions),
            current_session_id=current_session_id,
        ))

    return _add

