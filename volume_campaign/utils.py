"""
Utility Module

Error taxonomy, secure logging, formatting and validation helpers shared by
the configurator, the pacing engine and the CLI.

Logging goes through a SecureLogger that redacts private keys, passwords and
API keys before anything reaches the console or the log file.
"""

import os
import re
import logging
from typing import Dict, Optional

import base58
from web3 import Web3
from rich.console import Console
from rich.logging import RichHandler

from .logging_utils import JSONFormatter


# Global console for Rich output
console = Console()

EVM_CHAINS = ("base", "ethereum")
SOLANA_CHAINS = ("solana",)
SUPPORTED_CHAINS = EVM_CHAINS + SOLANA_CHAINS


class VolumeCampaignError(Exception):
    """Base class for every error raised by this package."""
    pass


class ValidationError(VolumeCampaignError):
    """Campaign input failed validation; carries the full field -> message map."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        fields = ", ".join(sorted(self.errors)) or "unknown"
        super().__init__(f"Invalid campaign configuration: {fields}")


class LookupUnavailable(VolumeCampaignError):
    """An external read-only lookup (balance, pool, catalog) could not be completed."""
    pass


class TradeOperationFailed(VolumeCampaignError):
    """One leg of a trade pair failed."""

    def __init__(self, message: str, step: Optional[str] = None):
        self.step = step
        super().__init__(f"{step} failed: {message}" if step else message)


class TransportTimeout(TradeOperationFailed, LookupUnavailable):
    """A network call exceeded its fixed deadline."""

    def __init__(self, message: str, step: Optional[str] = None, timeout: Optional[float] = None):
        self.timeout = timeout
        if timeout is not None:
            message = f"{message} (timeout after {timeout:g}s)"
        super().__init__(message, step)


class JobTerminalFailure(VolumeCampaignError):
    """The remote bot job reported a failed terminal status."""

    def __init__(self, job_id: str, reason: Optional[str] = None):
        self.job_id = job_id
        self.reason = reason
        super().__init__(f"Job {job_id} failed: {reason or 'no reason given'}")


class CampaignAlreadyRunning(VolumeCampaignError):
    """start() was called while a campaign is still running."""
    pass


class SecureLogger:
    """
    Logger that sanitizes sensitive data from log messages.
    """

    # Patterns to redact from logs
    SENSITIVE_PATTERNS = [
        (r'0x[a-fA-F0-9]{64}\b', '[PRIVATE_KEY_REDACTED]'),
        (r'password["\']?\s*[:=]\s*\S+', 'password=[REDACTED]'),
        (r'api[_-]?key["\']?\s*[:=]\s*\S+', 'api_key=[REDACTED]'),
        (r'secret["\']?\s*[:=]\s*\S+', 'secret=[REDACTED]'),
    ]

    def __init__(self, logger: logging.Logger, formatter: Optional[JSONFormatter] = None):
        self._logger = logger
        self._formatter = formatter

    @property
    def name(self) -> str:
        return self._logger.name

    def _sanitize(self, msg) -> str:
        """Remove sensitive data from log message."""
        if not isinstance(msg, str):
            msg = str(msg)

        sanitized = msg
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
        return sanitized

    def set_correlation_id(self, cid: Optional[str]):
        """Tag subsequent file records with a campaign id."""
        if self._formatter is not None:
            self._formatter.set_correlation_id(cid)

    def debug(self, msg: str, *args, **kwargs):
        self._logger.debug(self._sanitize(msg), *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._logger.info(self._sanitize(msg), *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._logger.warning(self._sanitize(msg), *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._logger.error(self._sanitize(msg), *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        self._logger.exception(self._sanitize(msg), *args, **kwargs)

    def critical(self, msg: str, *args, **kwargs):
        self._logger.critical(self._sanitize(msg), *args, **kwargs)


_json_formatter = JSONFormatter()


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> SecureLogger:
    """
    Setup logging with Rich console output and an optional JSON log file.

    Calling it again reconfigures the same underlying logger, so modules that
    already imported ``logger`` pick up the new handlers.
    """
    level = getattr(logging, log_level.upper())
    base = logging.getLogger("volume_campaign")
    base.setLevel(level)
    base.propagate = False

    # Remove existing handlers
    base.handlers = []

    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True
    )
    rich_handler.setLevel(level)
    rich_handler.setFormatter(logging.Formatter("%(message)s"))
    base.addHandler(rich_handler)

    if log_file:
        log_path = os.path.abspath(log_file)
        os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_handler.setFormatter(_json_formatter)
        base.addHandler(file_handler)

    return SecureLogger(base, _json_formatter)


# Console-only until the CLI loads settings and calls setup_logging again
logger = setup_logging()


# Formatting utilities

def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        minutes = seconds // 60
        secs = seconds % 60
        return f"{minutes}m {secs}s" if secs > 0 else f"{minutes}m"
    else:
        hours = seconds // 3600
        minutes = (seconds % 3600) // 60
        return f"{hours}h {minutes}m"


def format_minutes(minutes: float) -> str:
    """Format a remaining-time estimate given in minutes."""
    minutes = int(round(minutes))
    if minutes >= 60:
        return f"{minutes // 60}h {minutes % 60}m"
    return f"{minutes}m"


def format_volume(amount: float) -> str:
    """Format a USD volume figure with K/M suffixes."""
    if amount >= 1_000_000:
        return f"${amount / 1_000_000:.2f}M"
    elif amount >= 1000:
        return f"${amount / 1000:.2f}K"
    return f"${amount:.2f}"


def format_address(address: str, length: int = 6) -> str:
    """Format an on-chain address with ellipsis."""
    if len(address) <= length * 2 + 2:
        return address
    return f"{address[:length + 2]}...{address[-length:]}"


def format_tx_hash(tx_hash: str, length: int = 8) -> str:
    """Format transaction hash with ellipsis."""
    if len(tx_hash) <= length * 2:
        return tx_hash
    return f"{tx_hash[:length]}...{tx_hash[-length:]}"


def create_progress_bar(current: int, total: int, width: int = 30) -> str:
    """Create a text-based progress bar."""
    if total == 0:
        return "[" + " " * width + "] 0%"

    ratio = min(current / total, 1.0)
    filled = int(width * ratio)
    empty = width - filled

    bar = "█" * filled + "░" * empty
    percent = int(ratio * 100)

    return f"[{bar}] {percent}%"


# Validation utilities

def validate_address(address: str, chain: str = "base") -> bool:
    """
    Validate a token address for the given chain.

    EVM chains accept any well-formed 20-byte hex address (checksummed or all
    one case). Solana accepts a base58 string decoding to a 32-byte key.
    """
    if not address or not isinstance(address, str):
        return False

    address = address.strip()
    if chain in SOLANA_CHAINS:
        try:
            return len(base58.b58decode(address)) == 32
        except ValueError:
            return False

    if chain in EVM_CHAINS:
        try:
            if not Web3.is_address(address):
                return False
            Web3.to_checksum_address(address)
            return True
        except ValueError:
            return False

    raise ValueError(f"Unsupported chain: {chain}")


def sanitize_error_message(error) -> str:
    """
    Sanitize error messages before they are shown to the user.

    Args:
        error: Original error message or exception

    Returns:
        Sanitized error message safe for display
    """
    if not isinstance(error, str):
        error = str(error)

    patterns = [
        (r'0x[a-fA-F0-9]{64}\b', '[PRIVATE_KEY]'),
        (r'https?://[^\s]+', '[URL]'),
        (r'password["\']?\s*[:=]\s*\S+', 'password=[REDACTED]'),
        (r'api[_-]?key["\']?\s*[:=]\s*\S+', 'api_key=[REDACTED]'),
    ]

    sanitized = error
    for pattern, replacement in patterns:
        sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)

    return sanitized


def mask_sensitive(value: str, visible_chars: int = 4) -> str:
    """Mask sensitive data, showing only first and last few characters."""
    if len(value) <= visible_chars * 2:
        return "*" * len(value)

    return value[:visible_chars] + "***" + value[-visible_chars:]
