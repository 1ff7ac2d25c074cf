"""
Test configuration for Simple Tracker tests.

sys.path is configured so 'from tracker...' resolves no matter which directory
pytest is started from.
"""
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

_project_root = Path(__file__).parent.parent.parent   # .../simple-tracker/

if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from tracker.cache import MemoryStorage  # noqa: E402
from tracker.tests.fakes import FakeClock, FakeWizardApi  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    # noon UTC; VALID_DATE and FUTURE_DATE are days away from it, so every local zone agrees which is past
    return FakeClock(datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def api() -> FakeWizardApi:
    return FakeWizardApi()
