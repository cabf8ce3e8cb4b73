"""Shared fixtures for the campaign runner tests."""

import pytest

from volume_campaign.config import Settings
from volume_campaign.models import BumpMode, CampaignConfig

TOKEN = "0x4200000000000000000000000000000000000006"
WALLET = "0x1234567890123456789012345678901234567890"


@pytest.fixture
def settings():
    """Settings with the settle pause disabled so campaigns finish instantly."""
    return Settings(sell_settle_seconds=0, poll_interval=0.01)


@pytest.fixture
def make_config():
    def _make(trade_count=3, duration_minutes=3, pacing=None, trade_size=0.01):
        return CampaignConfig(
            token_address=TOKEN,
            trade_count=trade_count,
            duration_minutes=duration_minutes,
            trade_size=trade_size,
            slippage_percent=1.0,
            pacing=pacing or BumpMode(),
        )
    return _make
