#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Shared configuration and startup validation for the commerce server.

Flags default to the process environment so the server can be configured
either on the command line or through the usual deployment variables
(`STRIPE_SECRET_KEY`, `SELLER_WALLET`, `X402_NETWORK`, ...).
"""

import os
from typing import List, Optional

from absl import flags
from enums import PaymentMode
from enums import X402Network
from exceptions import ConfigError
from pydantic import BaseModel
from web3 import Web3

FLAGS = flags.FLAGS

SERVER_VERSION = "1.0.0"

DEFAULT_FACILITATOR_URL = "https://x402.org/facilitator"

DEFAULT_RATE_LIMIT_MAX = 100
DEFAULT_RATE_LIMIT_WINDOW_MS = 60_000

STRIPE_TEST_KEY_PREFIX = "sk_test_"
STRIPE_LIVE_KEY_PREFIX = "sk_live_"


def get_server_version() -> str:
  """Returns the version advertised by the API."""
  return SERVER_VERSION


def _env_bool(name: str, default: bool) -> bool:
  raw = os.getenv(name)
  if raw is None:
    return default
  return raw.strip().lower() in {"1", "true", "yes", "on"}


# Define flags only if they haven't been defined yet (to avoid duplicates
# during tests or re-imports)
try:
  flags.DEFINE_integer("port", os.getenv("PORT", "3000"), "Port to run on")
  flags.DEFINE_string(
      "environment",
      os.getenv("ENVIRONMENT", "development"),
      "Deployment environment; 'production' hides internal error detail",
  )
  flags.DEFINE_string(
      "base_url",
      os.getenv("BASE_URL", ""),
      "Public base URL used for redirects and x402 resource URLs",
  )
  flags.DEFINE_string(
      "stripe_secret_key",
      os.getenv("STRIPE_SECRET_KEY"),
      "Stripe secret key (sk_test_... or sk_live_...)",
  )
  flags.DEFINE_string(
      "stripe_webhook_secret",
      os.getenv("STRIPE_WEBHOOK_SECRET"),
      "Signing secret for the Stripe webhook endpoint",
  )
  flags.DEFINE_string(
      "payment_mode",
      os.getenv("PAYMENT_MODE"),
      "'live' or 'test'; inferred from the Stripe key prefix when unset",
  )
  flags.DEFINE_string("currency", "usd", "Currency for card charges")
  flags.DEFINE_string(
      "x402_network",
      os.getenv("X402_NETWORK", X402Network.BASE_SEPOLIA.value),
      "x402 network: 'base-sepolia' (testnet) or 'base' (mainnet)",
  )
  flags.DEFINE_string(
      "facilitator_url",
      os.getenv("FACILITATOR_URL", DEFAULT_FACILITATOR_URL),
      "x402 facilitator endpoint",
  )
  flags.DEFINE_boolean(
      "x402_demo_mode",
      _env_bool("X402_DEMO_MODE", False),
      "Accept the 'demo' proof without settlement (testnet demos only)",
  )
  flags.DEFINE_string(
      "seller_wallet",
      os.getenv("SELLER_WALLET"),
      "Address receiving x402 payments",
  )
  flags.DEFINE_float(
      "external_call_timeout",
      30.0,
      "Seconds to wait for the payment gateway or facilitator",
  )
  flags.DEFINE_boolean(
      "allow_cancel_after_complete",
      _env_bool("ALLOW_CANCEL_AFTER_COMPLETE", False),
      "Let cancel override completed sessions instead of failing",
  )
  flags.DEFINE_boolean(
      "verbose_payment_logging",
      _env_bool("VERBOSE_PAYMENT_LOGGING", False),
      "Log x402 payload and requirement details",
  )
  flags.DEFINE_string(
      "cors_origin",
      os.getenv("CORS_ORIGIN", "*"),
      "Allowed CORS origins: '*' for any, a comma-separated list, or empty"
      " for same-origin only",
  )
  flags.DEFINE_integer(
      "rate_limit_max",
      int(os.getenv("RATE_LIMIT_MAX") or DEFAULT_RATE_LIMIT_MAX),
      "Requests allowed per client per window; 0 disables rate limiting",
  )
  flags.DEFINE_integer(
      "rate_limit_window_ms",
      int(os.getenv("RATE_LIMIT_WINDOW_MS") or DEFAULT_RATE_LIMIT_WINDOW_MS),
      "Rate limit window in milliseconds",
  )
except flags.DuplicateFlagError:
  pass


class Settings(BaseModel):
  """Validated runtime settings shared by every service."""

  seller_wallet: str
  environment: str = "development"
  base_url: str = ""
  stripe_secret_key: Optional[str] = None
  stripe_webhook_secret: Optional[str] = None
  payment_mode: PaymentMode = PaymentMode.TEST
  currency: str = "usd"
  x402_network: X402Network = X402Network.BASE_SEPOLIA
  facilitator_url: str = DEFAULT_FACILITATOR_URL
  x402_demo_mode: bool = False
  external_call_timeout: float = 30.0
  allow_cancel_after_complete: bool = False
  verbose_payment_logging: bool = False
  cors_origin: str = "*"
  rate_limit_max: int = DEFAULT_RATE_LIMIT_MAX
  rate_limit_window_ms: int = DEFAULT_RATE_LIMIT_WINDOW_MS

  @property
  def is_production(self) -> bool:
    return self.environment == "production"

  @property
  def is_live(self) -> bool:
    return self.payment_mode == PaymentMode.LIVE

  @property
  def is_x402_testnet(self) -> bool:
    return self.x402_network == X402Network.BASE_SEPOLIA

  @property
  def cors_origins(self) -> List[str]:
    """Origins allowed by CORS; empty means same-origin only."""
    return [o.strip() for o in self.cors_origin.split(",") if o.strip()]

  @property
  def rate_limit_enabled(self) -> bool:
    return self.rate_limit_max > 0


def resolve_payment_mode(
    explicit_mode: Optional[str], stripe_secret_key: Optional[str]
) -> PaymentMode:
  """Resolves the payment mode, inferring it from the key when unset."""
  if explicit_mode:
    try:
      return PaymentMode(explicit_mode.strip().lower())
    except ValueError as e:
      raise ConfigError(
          f"Invalid payment mode {explicit_mode!r}; use 'live' or 'test'"
      ) from e
  if stripe_secret_key and stripe_secret_key.startswith(
      STRIPE_LIVE_KEY_PREFIX
  ):
    return PaymentMode.LIVE
  return PaymentMode.TEST


def validate_settings(settings: Settings) -> Settings:
  """Checks cross-field constraints and normalizes the seller wallet.

  Args:
    settings: Settings assembled from flags or by a test.

  Returns:
    The settings with a checksummed seller wallet.

  Raises:
    ConfigError: If any payment configuration is missing or unsafe.
  """
  if not settings.seller_wallet:
    raise ConfigError("Missing seller wallet (set SELLER_WALLET)")
  if not Web3.is_address(settings.seller_wallet):
    raise ConfigError(f"Invalid seller wallet: {settings.seller_wallet}")

  key = settings.stripe_secret_key
  if key and not key.startswith(
      (STRIPE_TEST_KEY_PREFIX, STRIPE_LIVE_KEY_PREFIX)
  ):
    raise ConfigError(
        "Invalid STRIPE_SECRET_KEY (use sk_test_... or sk_live_...)"
    )
  if settings.is_live and not (key and key.startswith(STRIPE_LIVE_KEY_PREFIX)):
    raise ConfigError("Live payment mode requires an sk_live_ Stripe key")
  if not settings.is_live and key and key.startswith(STRIPE_LIVE_KEY_PREFIX):
    raise ConfigError("Test payment mode cannot run with an sk_live_ key")

  if settings.x402_demo_mode and (
      settings.is_live or not settings.is_x402_testnet
  ):
    raise ConfigError(
        "x402 demo mode is only allowed in test mode on base-sepolia"
    )

  if not settings.facilitator_url.startswith(("http://", "https://")):
    raise ConfigError(f"Invalid facilitator URL: {settings.facilitator_url}")
  if settings.external_call_timeout <= 0:
    raise ConfigError("external_call_timeout must be > 0")
  if settings.rate_limit_max < 0:
    raise ConfigError("rate_limit_max must be >= 0")
  if settings.rate_limit_enabled and settings.rate_limit_window_ms <= 0:
    raise ConfigError("rate_limit_window_ms must be > 0")

  return settings.model_copy(
      update={"seller_wallet": Web3.to_checksum_address(settings.seller_wallet)}
  )


def load_settings(flag_values: flags.FlagValues = FLAGS) -> Settings:
  """Builds validated settings from parsed flags.

  Raises:
    ConfigError: If the flags describe an invalid configuration.
  """
  try:
    network = X402Network(flag_values.x402_network)
  except ValueError as e:
    raise ConfigError(
        f"Unsupported x402 network: {flag_values.x402_network}"
    ) from e

  settings = Settings(
      seller_wallet=flag_values.seller_wallet or "",
      environment=flag_values.environment,
      base_url=(flag_values.base_url or "").rstrip("/"),
      stripe_secret_key=flag_values.stripe_secret_key or None,
      stripe_webhook_secret=flag_values.stripe_webhook_secret or None,
      payment_mode=resolve_payment_mode(
          flag_values.payment_mode, flag_values.stripe_secret_key
      ),
      currency=flag_values.currency,
      x402_network=network,
      facilitator_url=flag_values.facilitator_url.rstrip("/"),
      x402_demo_mode=flag_values.x402_demo_mode,
      external_call_timeout=flag_values.external_call_timeout,
      allow_cancel_after_complete=flag_values.allow_cancel_after_complete,
      verbose_payment_logging=flag_values.verbose_payment_logging,
      cors_origin=flag_values.cors_origin or "",
      rate_limit_max=flag_values.rate_limit_max,
      rate_limit_window_ms=flag_values.rate_limit_window_ms,
  )
  return validate_settings(settings)
