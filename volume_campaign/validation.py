"""
Campaign Configurator
=====================
Turns raw campaign input (CLI flags, a form) into a CampaignConfig.

validate() collects every violation instead of stopping at the first one, so
the caller can show the complete list. It never raises for bad input.

Balance and pool lookups are performed by the caller (see run_lookup) and
passed in as LookupResults. An unavailable lookup becomes a warning and does
not block the campaign.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional

from .api_client import DEFAULT_TRENDING_CATALOG
from .models import (
    AdvancedMode,
    BoostMode,
    BumpMode,
    CampaignConfig,
    DelayRange,
    Mode,
    TrendingMode,
    TrendingSelection,
)
from .utils import LookupUnavailable, logger, validate_address

DURATION_BOUNDS = (1, 1440)
TRADE_SIZE_BOUNDS = (0.01, 0.1)
SLIPPAGE_BOUNDS = (0.1, 10.0)
MIN_CUSTOM_DELAY_SECONDS = 1


@dataclass(frozen=True)
class LookupResult:
    """Outcome of a best-effort external read: a value, or why there is none."""
    value: Any = None
    error: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.error is None

    @classmethod
    def unavailable(cls, reason: str) -> "LookupResult":
        return cls(error=reason or "lookup unavailable")


def run_lookup(fn: Callable[[], Any]) -> LookupResult:
    """Call ``fn`` and wrap its value; LookupUnavailable becomes an unavailable result."""
    try:
        return LookupResult(value=fn())
    except LookupUnavailable as e:
        logger.warning(f"Lookup unavailable: {e}")
        return LookupResult.unavailable(str(e))


@dataclass
class RawFormInput:
    """Unvalidated campaign input. Numeric fields may still be strings."""
    token_address: Any = ""
    trade_count: Any = None
    duration_minutes: Any = None
    trade_size: Any = None
    slippage_percent: Any = None
    mode: Any = "bump"
    wallet_connected: bool = False
    wallet_address: Optional[str] = None
    custom_delay_min: Any = None
    custom_delay_max: Any = None
    selected_platforms: Iterable[str] = ()
    trending_intensity: Optional[str] = None
    balance: LookupResult = field(default_factory=lambda: LookupResult.unavailable("not checked"))
    pool: LookupResult = field(default_factory=lambda: LookupResult.unavailable("not checked"))


@dataclass
class ValidationResult:
    config: Optional[CampaignConfig] = None
    errors: Dict[str, str] = field(default_factory=dict)
    warnings: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.config is not None and not self.errors


def _parse_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _parse_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    # nan/inf never satisfy a bound check; treat them as not a number
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def _check_range(errors, name, value, bounds, label, parse):
    """Parse ``value`` and check it against inclusive ``bounds``; returns the parsed value or None."""
    low, high = bounds
    parsed = parse(value)
    if parsed is None:
        errors[name] = f"{label} must be a number"
        return None
    if not low <= parsed <= high:
        errors[name] = f"{label} must be between {low:g} and {high:g}"
        return None
    return parsed


def validate(raw: RawFormInput, settings, known_intensities: Optional[Iterable[str]] = None) -> ValidationResult:
    """
    Validate ``raw`` against the bounds in ``settings``.

    Args:
        raw: campaign input, including the balance and pool lookup results
        settings: Settings providing chain, trade-count bounds and minimum balance
        known_intensities: trending intensity ids accepted; defaults to the
            built-in catalog

    Returns:
        ValidationResult with either a config or the field -> message errors
    """
    errors: Dict[str, str] = {}
    warnings: Dict[str, str] = {}

    # Wallet preconditions
    if not raw.wallet_connected:
        errors["wallet"] = "Connect a wallet first"

    if raw.balance.available:
        balance = _parse_float(raw.balance.value)
        if balance is None or balance < settings.min_balance:
            errors["balance"] = f"Insufficient balance: at least {settings.min_balance:g} required"
    else:
        warnings["balance"] = raw.balance.error

    # Token address
    token_address = str(raw.token_address or "").strip()
    address_ok = False
    if not token_address:
        errors["token_address"] = "Token address is required"
    elif not validate_address(token_address, settings.chain):
        errors["token_address"] = f"Not a valid {settings.chain} token address"
    else:
        address_ok = True

    # Pool existence is only meaningful for a well-formed address
    if address_ok:
        if raw.pool.available:
            exists = getattr(raw.pool.value, "exists", raw.pool.value)
            if not exists:
                errors["token_address"] = "No liquidity pool found for this token"
        else:
            warnings["pool"] = raw.pool.error

    # Numeric bounds
    trade_count = _check_range(
        errors, "trade_count", raw.trade_count,
        (settings.min_trades, settings.max_trades), "Trade count", _parse_int,
    )
    duration = _check_range(
        errors, "duration_minutes", raw.duration_minutes,
        DURATION_BOUNDS, "Duration (minutes)", _parse_int,
    )
    trade_size = _check_range(
        errors, "trade_size", raw.trade_size,
        TRADE_SIZE_BOUNDS, "Trade size", _parse_float,
    )
    slippage = _check_range(
        errors, "slippage_percent", raw.slippage_percent,
        SLIPPAGE_BOUNDS, "Slippage (%)", _parse_float,
    )

    # Mode and its parameters
    pacing = None
    try:
        mode = Mode.parse(raw.mode)
    except ValueError:
        errors["mode"] = f"Unknown mode: {raw.mode!r}"
        mode = None

    if mode is Mode.BOOST:
        pacing = BoostMode()
    elif mode is Mode.BUMP:
        pacing = BumpMode()
    elif mode is Mode.ADVANCED:
        pacing = _validate_delay_range(raw, errors)
    elif mode is Mode.TRENDING:
        pacing = _validate_trending(raw, errors, known_intensities)

    if errors:
        logger.debug(f"Campaign rejected: {', '.join(sorted(errors))}")
        return ValidationResult(errors=errors, warnings=warnings)

    config = CampaignConfig(
        token_address=token_address,
        trade_count=trade_count,
        duration_minutes=duration,
        trade_size=trade_size,
        slippage_percent=slippage,
        pacing=pacing,
    )
    return ValidationResult(config=config, warnings=warnings)


def _validate_delay_range(raw: RawFormInput, errors: Dict[str, str]) -> Optional[AdvancedMode]:
    low = _parse_float(raw.custom_delay_min)
    high = _parse_float(raw.custom_delay_max)

    if low is None:
        errors["custom_delay_min"] = "Minimum delay must be a number"
    elif low < MIN_CUSTOM_DELAY_SECONDS:
        errors["custom_delay_min"] = f"Minimum delay must be at least {MIN_CUSTOM_DELAY_SECONDS}s"
    if high is None:
        errors["custom_delay_max"] = "Maximum delay must be a number"
    elif low is not None and high <= low:
        errors["custom_delay_max"] = "Maximum delay must be greater than minimum delay"

    if "custom_delay_min" in errors or "custom_delay_max" in errors:
        return None
    return AdvancedMode(DelayRange(min_seconds=low, max_seconds=high))


def _validate_trending(raw, errors, known_intensities) -> Optional[TrendingMode]:
    if known_intensities is None:
        known_intensities = DEFAULT_TRENDING_CATALOG.intensity_ids

    platforms = frozenset(p.strip().lower() for p in (raw.selected_platforms or ()) if p and p.strip())
    intensity = (raw.trending_intensity or "").strip().lower()

    if not platforms:
        errors["selected_platforms"] = "Select at least one trending platform"
    if intensity not in set(known_intensities):
        errors["trending_intensity"] = f"Unknown trending intensity: {raw.trending_intensity!r}"

    if "selected_platforms" in errors or "trending_intensity" in errors:
        return None
    return TrendingMode(TrendingSelection(platforms=platforms, intensity=intensity))
