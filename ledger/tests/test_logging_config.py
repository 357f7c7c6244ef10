"""
Unit Tests for Logging Configuration
"""

import json

import pytest
import structlog

from ledger.logging_config import setup_logging
from ledger.settings import Settings


@pytest.fixture
def staging():
    settings = Settings(_env_file=None, app_name="rewards-staging", env="staging", log_format="json")
    setup_logging(settings)
    yield settings
    setup_logging()


def render(event_dict):
    for processor in structlog.get_config()["processors"]:
        event_dict = processor(None, "info", event_dict)
    return event_dict


class TestSetupLogging:
    """Tests for the structlog processor chain."""

    def test_events_carry_service_and_env(self, staging):
        """Test every rendered event names the deployment it came from."""
        data = json.loads(render({"event": "reward_granted", "user_id": "u1"}))

        assert data["service"] == "rewards-staging"
        assert data["env"] == "staging"
        assert data["level"] == "info"
        assert data["timestamp"].endswith("Z")

    def test_bound_values_win(self, staging):
        """Test an explicit service key is not overwritten."""
        data = json.loads(render({"event": "import_done", "service": "importer"}))

        assert data["service"] == "importer"
        assert data["env"] == "staging"
