import pytest
from core.config import Settings
from services.reconciliation_service import RetryPolicy


def test_defaults():
    policy = RetryPolicy()

    assert policy.max_attempts == 5
    assert policy.delay_seconds == 3.0
    assert policy.is_terminal("APPROVED")
    assert not policy.is_terminal("PENDING")


def test_from_settings():
    policy = RetryPolicy.from_settings(Settings(POLL_MAX_ATTEMPTS=2, POLL_DELAY_SECONDS=0.5))

    assert policy.max_attempts == 2
    assert policy.delay_seconds == 0.5


@pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"delay_seconds": -1}])
def test_rejects_invalid_values(kwargs):
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)
