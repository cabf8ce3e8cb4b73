"""
Campaign Data Model
===================
Immutable value types shared by the configurator, the pacing engine and the
progress aggregator.

Mode-specific parameters are a tagged union: a campaign carries exactly one of
BoostMode, BumpMode, AdvancedMode or TrendingMode, and only the variants that
need extra parameters have them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional, Tuple, Union

DISPLAY_LOG_LIMIT = 10


class Mode(Enum):
    """Pacing mode, valued by its wire name."""
    BOOST = "boost"
    BUMP = "bump"
    ADVANCED = "advanced"
    TRENDING = "trending"

    @classmethod
    def parse(cls, value: str) -> "Mode":
        return cls(str(value).strip().lower())


class RunStatus(Enum):
    RUNNING = "running"
    PAUSED = "paused"
    ERROR = "error"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.ERROR)


class TradeDirection(Enum):
    BUY = "buy"
    SELL = "sell"


class TradeStatus(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class DelayRange:
    """Inclusive per-trade delay bounds for advanced mode, in seconds."""
    min_seconds: float
    max_seconds: float


@dataclass(frozen=True)
class TrendingSelection:
    platforms: FrozenSet[str]
    intensity: str


@dataclass(frozen=True)
class BoostMode:
    """Front-loaded spike: trades packed into roughly half the window."""
    mode = Mode.BOOST


@dataclass(frozen=True)
class BumpMode:
    """Even distribution across the whole window."""
    mode = Mode.BUMP


@dataclass(frozen=True)
class AdvancedMode:
    delay_range: DelayRange
    mode = Mode.ADVANCED


@dataclass(frozen=True)
class TrendingMode:
    selection: TrendingSelection
    mode = Mode.TRENDING


Pacing = Union[BoostMode, BumpMode, AdvancedMode, TrendingMode]


@dataclass(frozen=True)
class CampaignConfig:
    """A validated campaign. Built by validation.validate(); never mutated."""
    token_address: str
    trade_count: int
    duration_minutes: int
    trade_size: float
    slippage_percent: float
    pacing: Pacing = field(default_factory=BumpMode)

    @property
    def mode(self) -> Mode:
        return self.pacing.mode

    @property
    def slippage_bps(self) -> int:
        return int(round(self.slippage_percent * 100))

    @property
    def minutes_per_trade(self) -> float:
        return self.duration_minutes / self.trade_count


@dataclass(frozen=True)
class TradeLogEntry:
    """One buy or sell leg. Created pending, resolved exactly once."""
    id: str
    pair_index: int
    direction: TradeDirection
    amount: float
    timestamp: datetime = field(default_factory=datetime.now)
    status: TradeStatus = TradeStatus.PENDING
    tx_reference: Optional[str] = None
    error_detail: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.status is not TradeStatus.PENDING


@dataclass(frozen=True)
class CampaignRun:
    """
    Snapshot of one campaign's progress.

    Every update produces a new CampaignRun (see aggregator.apply); holders of
    an older snapshot never see it change.
    """
    id: str
    trade_count: int
    estimated_remaining_minutes: float
    status: RunStatus = RunStatus.RUNNING
    completed_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    volume_generated: float = 0.0
    trade_log: Tuple[TradeLogEntry, ...] = ()
    job_id: Optional[str] = None
    error_message: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def begin(cls, run_id: str, config: CampaignConfig) -> "CampaignRun":
        return cls(
            id=run_id,
            trade_count=config.trade_count,
            estimated_remaining_minutes=float(config.duration_minutes),
        )

    @property
    def progress_percentage(self) -> float:
        if self.trade_count == 0:
            return 0.0
        return self.completed_count / self.trade_count * 100

    @property
    def success_rate(self) -> float:
        if self.completed_count == 0:
            return 0.0
        return self.success_count / self.completed_count * 100

    def recent_trades(self, limit: int = DISPLAY_LOG_LIMIT) -> Tuple[TradeLogEntry, ...]:
        """Most recent log entries, newest first."""
        if limit <= 0:
            return ()
        return tuple(reversed(self.trade_log[-limit:]))


# Events consumed by aggregator.apply

@dataclass(frozen=True)
class LegSubmitted:
    entry: TradeLogEntry


@dataclass(frozen=True)
class LegResolved:
    entry_id: str
    success: bool
    tx_reference: Optional[str] = None
    error_detail: Optional[str] = None


@dataclass(frozen=True)
class TradeOutcomeEvent:
    """A whole trade pair has resolved."""
    pair_index: int
    success: bool
    volume: float = 0.0
    minutes_elapsed: float = 0.0


@dataclass(frozen=True)
class ProgressSnapshot:
    """Progress of a remote job as reported by GET /bot-progress/{job_id}."""
    job_id: str
    status: str
    completed_makers: int = 0
    total_makers: int = 0
    generated_volume: float = 0.0
    progress_percentage: float = 0.0
    estimated_completion: Optional[float] = None
    successful: int = 0
    failed: int = 0
    total_transactions: int = 0
    active_wallets: int = 0
    current_buy_ratio: float = 0.0
    error_message: Optional[str] = None

    TERMINAL_STATUSES = ("completed", "failed", "error", "stopped")
    FAILURE_STATUSES = ("failed", "error")

    @property
    def normalized_status(self) -> str:
        return (self.status or "").strip().lower()

    @property
    def is_terminal(self) -> bool:
        return self.normalized_status in self.TERMINAL_STATUSES

    @property
    def is_failure(self) -> bool:
        return self.normalized_status in self.FAILURE_STATUSES

    @classmethod
    def from_dict(cls, data: dict) -> "ProgressSnapshot":
        transactions = data.get("transactions") or {}
        return cls(
            job_id=str(data.get("job_id", "")),
            status=str(data.get("status", "")),
            completed_makers=int(data.get("completed_makers") or 0),
            total_makers=int(data.get("total_makers") or 0),
            generated_volume=float(data.get("generated_volume") or 0.0),
            progress_percentage=float(data.get("progress_percentage") or 0.0),
            estimated_completion=data.get("estimated_completion"),
            successful=int(transactions.get("successful") or 0),
            failed=int(transactions.get("failed") or 0),
            total_transactions=int(transactions.get("total") or 0),
            active_wallets=int(data.get("active_wallets") or 0),
            current_buy_ratio=float(data.get("current_buy_ratio") or 0.0),
            error_message=data.get("error_message"),
        )


@dataclass(frozen=True)
class StatusChange:
    status: RunStatus
    error_message: Optional[str] = None


CampaignEvent = Union[LegSubmitted, LegResolved, TradeOutcomeEvent, ProgressSnapshot, StatusChange]
