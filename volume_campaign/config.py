"""
Configuration Management Module

Runtime settings for the campaign runner, stored as YAML.
The trading key is kept encrypted with a password-derived Fernet key.
"""

import os
import base64
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict

import yaml
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .utils import logger

DEFAULT_CONFIG_PATH = Path("./campaign_config.yaml")

API_URL_ENV = "VOLUME_CAMPAIGN_API_URL"
BACKEND_URL_ENV = "VOLUME_CAMPAIGN_BACKEND_URL"


@dataclass
class Settings:
    """Runner configuration settings."""

    # Network
    chain: str = "base"
    rpc_url: str = "https://mainnet.base.org"
    chain_id: int = 8453

    # Remote execution service
    backend_url: str = "http://localhost:8000"
    api_base_url: str = "http://localhost:8000/api"
    request_timeout: float = 30.0
    lookup_timeout: float = 10.0
    poll_interval: float = 5.0

    # Direct execution
    zerox_api_key: Optional[str] = None
    confirm_timeout: float = 30.0
    sell_settle_seconds: float = 2.0

    # Campaign bounds
    min_trades: int = 100
    max_trades: int = 10000
    min_balance: float = 0.01
    usd_per_unit: float = 100.0

    # Campaign defaults (used when a CLI flag is omitted)
    default_trade_count: int = 100
    default_duration_minutes: int = 60
    default_trade_size: float = 0.01
    default_slippage_percent: float = 1.0
    default_mode: str = "bump"

    # Security
    encrypted_private_key: Optional[str] = None
    salt: Optional[str] = None

    # Operation
    dry_run: bool = False
    log_level: str = "INFO"
    log_file: str = "./logs/campaign.log"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        """Create Settings from dictionary, ignoring unknown keys."""
        valid_fields = {k: v for k, v in (data or {}).items() if k in cls.__dataclass_fields__}
        return cls(**valid_fields)

    def apply_env(self) -> "Settings":
        """Let environment variables override the service endpoints."""
        if os.environ.get(API_URL_ENV):
            self.api_base_url = os.environ[API_URL_ENV]
        if os.environ.get(BACKEND_URL_ENV):
            self.backend_url = os.environ[BACKEND_URL_ENV]
        return self


class ConfigManager:
    """Manages the configuration file with an encrypted trading key."""

    def __init__(self, config_path: Path = DEFAULT_CONFIG_PATH):
        self.config_path = Path(config_path)
        self._kdf_iterations = 480000

    def _derive_key(self, password: str, salt: bytes) -> bytes:
        """Derive encryption key from password using PBKDF2."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=self._kdf_iterations,
        )
        return base64.urlsafe_b64encode(kdf.derive(password.encode()))

    def _encrypt_private_key(self, private_key: str, password: str, salt: bytes) -> str:
        """Encrypt private key with password."""
        pk_clean = private_key.strip()
        if pk_clean.startswith("0x"):
            pk_clean = pk_clean[2:]

        if len(pk_clean) != 64:
            raise ValueError("Private key must be 64 hex characters")
        try:
            int(pk_clean, 16)
        except ValueError:
            raise ValueError("Private key must be valid hex")

        f = Fernet(self._derive_key(password, salt))
        encrypted = f.encrypt(pk_clean.encode())
        return base64.b64encode(encrypted).decode()

    def _decrypt_private_key(self, encrypted_key: str, password: str, salt: bytes) -> str:
        """Decrypt private key with password."""
        f = Fernet(self._derive_key(password, salt))
        try:
            decrypted = f.decrypt(base64.b64decode(encrypted_key.encode()))
        except InvalidToken:
            raise ValueError("Failed to decrypt trading key - wrong password?")
        return "0x" + decrypted.decode()

    def exists(self) -> bool:
        return self.config_path.exists()

    def create_config(
        self,
        config_data: Dict[str, Any],
        private_key: Optional[str] = None,
        password: Optional[str] = None
    ) -> Settings:
        """Create a new configuration file, encrypting the key when one is given."""
        data = dict(config_data)
        if private_key:
            if not password:
                raise ValueError("A password is required to store a private key")
            salt = os.urandom(16)
            data["encrypted_private_key"] = self._encrypt_private_key(private_key, password, salt)
            data["salt"] = base64.b64encode(salt).decode()

        settings = Settings.from_dict(data)
        self._save(settings)

        logger.info(f"Configuration created at {self.config_path}")
        return settings

    def load(self) -> Settings:
        """Load settings without touching the encrypted key."""
        settings = Settings.from_dict(self.read_raw_config())
        return settings.apply_env()

    def load_or_default(self) -> Settings:
        if not self.exists():
            logger.debug(f"No config at {self.config_path}, using defaults")
            return Settings().apply_env()
        return self.load()

    def decrypt_private_key(self, settings: Settings, password: str) -> str:
        """Return the decrypted trading key stored in ``settings``."""
        if not settings.encrypted_private_key or not settings.salt:
            raise ValueError("No trading key stored in configuration")
        return self._decrypt_private_key(
            settings.encrypted_private_key,
            password,
            base64.b64decode(settings.salt)
        )

    def read_raw_config(self) -> Dict[str, Any]:
        """Read config without decrypting."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, 'r') as f:
            return yaml.safe_load(f) or {}

    def _save(self, settings: Settings):
        """Save configuration to YAML file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, 'w') as f:
            yaml.dump(settings.to_dict(), f, default_flow_style=False, sort_keys=False)

        # Owner read/write only
        os.chmod(self.config_path, 0o600)

        logger.info(f"Configuration saved to {self.config_path}")

    def update_config(self, updates: Dict[str, Any]) -> Settings:
        """Update configuration values."""
        data = self.read_raw_config()
        data.update(updates)

        settings = Settings.from_dict(data)
        self._save(settings)

        logger.info("Configuration updated")
        return settings

    def rotate_password(self, old_password: str, new_password: str):
        """Change encryption password."""
        settings = Settings.from_dict(self.read_raw_config())
        private_key = self.decrypt_private_key(settings, old_password)

        salt = os.urandom(16)
        self.update_config({
            "encrypted_private_key": self._encrypt_private_key(private_key, new_password, salt),
            "salt": base64.b64encode(salt).decode(),
        })

        logger.info("Password rotated successfully")
