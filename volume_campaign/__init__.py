"""
Volume Campaign Runner

Paces buy/sell trade pairs for a token over a time window, or delegates the
whole campaign to a remote bot-execution service and follows its progress.

Usage:
    from volume_campaign import PacingEngine, DryRunExecutor, RawFormInput, validate

    # See the volume-campaign CLI for the full flow
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .config import Settings, ConfigManager
from .models import (
    Mode,
    RunStatus,
    CampaignConfig,
    CampaignRun,
    TradeLogEntry,
    BoostMode,
    BumpMode,
    AdvancedMode,
    TrendingMode,
    DelayRange,
    TrendingSelection,
)
from .validation import RawFormInput, LookupResult, ValidationResult, run_lookup, validate
from .pacing import PacingEngine, DelaySchedule
from .executors import TradeExecutor, TradeResult, DryRunExecutor, SwapExecutor, JobExecutor
from .api_client import BackendClient
from .utils import (
    logger,
    VolumeCampaignError,
    ValidationError,
    LookupUnavailable,
    TradeOperationFailed,
    TransportTimeout,
    JobTerminalFailure,
    CampaignAlreadyRunning,
)

__all__ = [
    "Settings",
    "ConfigManager",
    "Mode",
    "RunStatus",
    "CampaignConfig",
    "CampaignRun",
    "TradeLogEntry",
    "BoostMode",
    "BumpMode",
    "AdvancedMode",
    "TrendingMode",
    "DelayRange",
    "TrendingSelection",
    "RawFormInput",
    "LookupResult",
    "ValidationResult",
    "run_lookup",
    "validate",
    "PacingEngine",
    "DelaySchedule",
    "TradeExecutor",
    "TradeResult",
    "DryRunExecutor",
    "SwapExecutor",
    "JobExecutor",
    "BackendClient",
    "logger",
    "VolumeCampaignError",
    "ValidationError",
    "LookupUnavailable",
    "TradeOperationFailed",
    "TransportTimeout",
    "JobTerminalFailure",
    "CampaignAlreadyRunning",
]
