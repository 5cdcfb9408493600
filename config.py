"""
Configuration module for the PanelFlow billing service.

Loads settings from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from errors import ConfigurationError
from models.signing import SigningPolicy

# Load environment variables from .env file
load_dotenv()

DEFAULT_PROCESS_URL = "https://www.payfast.co.za/eng/process"

_TRUE_VALUES = ('1', 'true', 'yes', 'on')


def _as_bool(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUE_VALUES


@dataclass
class AppConfig:
    """Public application settings."""
    base_url: str


@dataclass
class PayFastConfig:
    """PayFast merchant and product configuration."""
    merchant_id: str
    merchant_key: str
    passphrase: str
    process_url: str
    notify_url: str
    amount: str = "99.00"
    item_name: str = "PanelFlow Pro"
    pro_duration_days: int = 30
    debug_routes: bool = False
    signing: SigningPolicy = field(default_factory=SigningPolicy)


@dataclass
class AuthConfig:
    """Identity provider configuration."""
    url: str
    service_key: str
    timeout: int = 10


@dataclass
class DatabaseConfig:
    """Database connection configuration."""
    url: str


@dataclass
class APIConfig:
    """API server configuration."""
    host: str
    port: int


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str
    file: Optional[str]


@dataclass
class ServiceConfig:
    """Service-level configuration."""
    name: str


class Config:
    """
    Main configuration class that aggregates all config sections.

    Usage:
        from config import config

        print(config.payfast.merchant_id)
        print(config.database.url)

    Tests build their own instance from a plain mapping:

        Config({'PAYFAST_MERCHANT_ID': '10000100', ...})
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._env = os.environ if environ is None else environ
        self._load_config()

    def _get(self, *names: str, default: str = '') -> str:
        """Return the first non-empty variable among ``names``."""
        for name in names:
            value = self._env.get(name)
            if value is not None and value.strip():
                return value.strip()
        return default

    def _get_int(self, name: str, default: int) -> int:
        """Return an integer variable, naming it if the value does not parse."""
        value = self._get(name, default=str(default))
        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(
                [name], f"{name} must be an integer, got {value!r}"
            ) from None

    def _load_config(self):
        """Load all configuration from environment variables."""

        # Application configuration
        self.app = AppConfig(
            base_url=self._get('APP_URL', 'NEXT_PUBLIC_APP_URL').rstrip('/')
        )

        # PayFast configuration
        notify_default = f"{self.app.base_url}/api/payfast/itn" if self.app.base_url else ''
        self.payfast = PayFastConfig(
            merchant_id=self._get('PAYFAST_MERCHANT_ID'),
            merchant_key=self._get('PAYFAST_MERCHANT_KEY'),
            passphrase=self._get('PAYFAST_PASSPHRASE'),
            process_url=self._get('PAYFAST_PROCESS_URL', default=DEFAULT_PROCESS_URL),
            notify_url=self._get('PAYFAST_NOTIFY_URL', default=notify_default),
            amount=self._get('PAYFAST_AMOUNT', default='99.00'),
            item_name=self._get('PAYFAST_ITEM_NAME', default='PanelFlow Pro'),
            pro_duration_days=self._get_int('PAYFAST_PRO_DAYS', 30),
            debug_routes=_as_bool(self._env.get('PAYFAST_DEBUG_ROUTES'), False),
            signing=SigningPolicy(
                include_merchant_key=_as_bool(
                    self._env.get('PAYFAST_SIGN_MERCHANT_KEY'), True
                ),
                encode_passphrase=_as_bool(
                    self._env.get('PAYFAST_ENCODE_PASSPHRASE'), True
                )
            )
        )

        # Identity provider configuration
        self.auth = AuthConfig(
            url=self._get('AUTH_URL', 'SUPABASE_URL', 'NEXT_PUBLIC_SUPABASE_URL').rstrip('/'),
            service_key=self._get('AUTH_SERVICE_KEY', 'SUPABASE_SERVICE_ROLE_KEY'),
            timeout=self._get_int('AUTH_TIMEOUT', 10)
        )

        # Database configuration
        self.database = DatabaseConfig(
            url=self._get('DATABASE_URL', default='sqlite:///./panelflow_billing.db')
        )

        # API configuration
        self.api = APIConfig(
            host=self._get('API_HOST', default='0.0.0.0'),
            port=self._get_int('API_PORT', 8000)
        )

        # Logging configuration
        self.logging = LoggingConfig(
            level=self._get('LOG_LEVEL', default='INFO'),
            file=self._get('LOG_FILE') or None
        )

        # Service configuration
        self.service = ServiceConfig(
            name=self._get('SERVICE_NAME', default='PanelFlowBilling')
        )

    def missing_payfast_settings(self) -> List[str]:
        """
        List the environment variables payment initiation cannot run without.

        Returns:
            Variable names, in a stable order (empty if complete)
        """
        missing = []

        if not self.app.base_url:
            missing.append('APP_URL')
        if not self.payfast.merchant_id:
            missing.append('PAYFAST_MERCHANT_ID')
        if not self.payfast.merchant_key:
            missing.append('PAYFAST_MERCHANT_KEY')
        if not amount_is_valid(self.payfast.amount):
            missing.append('PAYFAST_AMOUNT')
        if not self.auth.url:
            missing.append('AUTH_URL')
        if not self.auth.service_key:
            missing.append('AUTH_SERVICE_KEY')

        return missing

    def require_payfast(self) -> None:
        """
        Ensure payment initiation is fully configured.

        Raises:
            ConfigurationError: naming every missing variable
        """
        missing = self.missing_payfast_settings()
        if missing:
            raise ConfigurationError(missing)

    def validate(self) -> List[str]:
        """
        Validate configuration values.

        Returns:
            List of validation error messages (empty if all valid)
        """
        errors = [f"{name} is required" for name in self.missing_payfast_settings()
                  if name != 'PAYFAST_AMOUNT']

        if not amount_is_valid(self.payfast.amount):
            errors.append("PAYFAST_AMOUNT must be a decimal with two places, e.g. 99.00")

        if self.payfast.pro_duration_days <= 0:
            errors.append("PAYFAST_PRO_DAYS must be positive")

        if not self.database.url:
            errors.append("DATABASE_URL is required")

        return errors

    def is_valid(self) -> bool:
        """Check if configuration is valid."""
        return len(self.validate()) == 0


def amount_is_valid(amount: str) -> bool:
    """Check that an amount is a positive decimal with exactly two places."""
    try:
        value = Decimal(amount)
    except (InvalidOperation, TypeError):
        return False
    return value.is_finite() and value > 0 and value.as_tuple().exponent == -2


# Global configuration instance
config = Config()
