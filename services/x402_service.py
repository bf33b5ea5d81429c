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

"""x402 payment challenges and payment verification.

A paywalled resource answers an unpaid request with HTTP 402 and a set of
payment requirements. The client signs a transfer that satisfies one of
them and resubmits the request with the signed payload in the `X-PAYMENT`
header. `X402Service.verify_payment` then:

1. decodes the header into a payment payload,
2. rebuilds the requirements the challenge was issued with,
3. selects the requirement the payload claims to satisfy,
4. asks the facilitator to verify the payload, and
5. asks the facilitator to settle it on-chain.

Any failing stage ends the pipeline with an invalid result. Nothing is
retried; the client is expected to start a new 402 cycle.

Wire types, price conversion and the facilitator client come from the
`x402` package; this module adds the store's policy on top of them.
"""

import asyncio
import decimal
import json
import logging
from typing import Any, Dict, List, Optional, Union

from config import Settings
from enums import X402Network
from exceptions import ConfigError
from exceptions import InvalidPaymentError
from exceptions import UnsupportedPriceError
from models import VerifyPaymentResult
from web3 import Web3
from x402.http import encode_payment_response_header
from x402.http import HTTPFacilitatorClient
from x402.http import safe_base64_decode
from x402.mechanisms.evm import ExactEIP3009Payload
from x402.mechanisms.evm import get_default_asset
from x402.mechanisms.evm.exact import ExactEvmServerScheme
from x402.schemas import AssetAmount
from x402.schemas import match_payload_to_requirements
from x402.schemas import SettleResponse
from x402.schemas.helpers import parse_money
from x402.schemas.v1 import PaymentPayloadV1
from x402.schemas.v1 import PaymentRequiredV1
from x402.schemas.v1 import PaymentRequirementsV1

logger = logging.getLogger(__name__)

X402_VERSION = 1
EXACT_SCHEME = "exact"
MAX_TIMEOUT_SECONDS = 60

# Proof accepted without settlement when demo mode is enabled.
DEMO_PAYMENT_TOKEN = "demo"
DEMO_SETTLEMENT_REFERENCE = "demo"

MIN_PRICE = decimal.Decimal("0.0001")
MAX_PRICE = decimal.Decimal("999999999")

Price = Union[str, int, float]
NetworkName = Union[str, X402Network]


def _network_name(network: NetworkName) -> str:
  return network.value if isinstance(network, X402Network) else str(network)


def _same_address(a: str, b: str) -> bool:
  return str(a).lower() == str(b).lower()


def parse_price(price: Price) -> str:
  """Parses a money amount such as '$1.00', '0.5' or 2.

  Returns:
    The amount as a plain decimal string.

  Raises:
    UnsupportedPriceError: If the price is malformed or out of range.
  """
  if isinstance(price, bool):
    raise UnsupportedPriceError(f"Invalid price: {price!r}")
  try:
    amount = parse_money(price)["amount"]
  except (AttributeError, TypeError, ValueError) as e:
    raise UnsupportedPriceError(f"Invalid price: {price!r}") from e
  if not MIN_PRICE <= decimal.Decimal(amount) <= MAX_PRICE:
    raise UnsupportedPriceError(f"Price out of range: {price!r}")
  return amount


def process_price_to_atomic_amount(
    price: Price,
    network: NetworkName,
    scheme: Optional[ExactEvmServerScheme] = None,
) -> AssetAmount:
  """Converts a money price into the network asset's atomic units.

  Args:
    price: Human price, e.g. '$1.00'.
    network: x402 network name.
    scheme: Exact EVM server scheme doing the conversion; money parsers
      registered on it take precedence over the network's default USDC.

  Returns:
    The atomic amount with the asset address and its EIP-712 domain.

  Raises:
    ConfigError: If the network has no known asset.
    UnsupportedPriceError: If the price cannot be parsed.
  """
  name = _network_name(network)
  try:
    get_default_asset(name)
  except ValueError as e:
    raise ConfigError(f"Unsupported network: {name}") from e
  amount = parse_price(price)
  scheme = scheme or ExactEvmServerScheme()
  try:
    return scheme.parse_price(amount, name)
  except ValueError as e:
    raise UnsupportedPriceError(f"Invalid price: {price!r}") from e


def build_payment_requirements(
    price: Price,
    network: NetworkName,
    pay_to: str,
    resource: str,
    description: str = "",
    method: str = "GET",
    scheme: Optional[ExactEvmServerScheme] = None,
) -> List[PaymentRequirementsV1]:
  """Builds the requirement set advertised in a 402 challenge.

  Identical arguments always produce identical requirements, so the
  verifier can rebuild exactly what the client was asked to pay.

  Args:
    price: Human price, e.g. '$1.00'.
    network: x402 network name.
    pay_to: Recipient address, any case.
    resource: Absolute URL of the paywalled resource.
    description: Human description of the purchase.
    method: HTTP method of the resource.
    scheme: Exact EVM server scheme used for price conversion.

  Returns:
    A single-element list with the 'exact' scheme requirement.

  Raises:
    ConfigError: On an unknown network, an asset without an EIP-712
      domain, or an invalid recipient.
    UnsupportedPriceError: On a malformed price.
  """
  asset_amount = process_price_to_atomic_amount(price, network, scheme)
  extra = asset_amount.extra or {}
  if not extra.get("name") or not extra.get("version"):
    raise ConfigError("EVM asset with eip712 required")
  if not Web3.is_address(pay_to):
    raise ConfigError(f"Invalid payTo address: {pay_to}")

  return [
      PaymentRequirementsV1(
          scheme=EXACT_SCHEME,
          network=_network_name(network),
          max_amount_required=asset_amount.amount,
          resource=resource,
          description=description,
          mime_type="",
          pay_to=Web3.to_checksum_address(pay_to),
          max_timeout_seconds=MAX_TIMEOUT_SECONDS,
          asset=Web3.to_checksum_address(asset_amount.asset),
          output_schema={
              "input": {"type": "http", "method": method, "discoverable": True}
          },
          extra=dict(extra),
      )
  ]


def payment_required_body(
    requirements: List[PaymentRequirementsV1], error: str
) -> Dict[str, Any]:
  """Body of a 402 response: version, error and the accepted requirements."""
  return PaymentRequiredV1(error=error, accepts=requirements).model_dump(
      mode="json", by_alias=True, exclude_none=True
  )


def decode_payment(payment_proof: str) -> PaymentPayloadV1:
  """Decodes a base64 `X-PAYMENT` header into a payment payload.

  The payload is stamped with the protocol version this server speaks,
  whatever version the client wrote.

  Raises:
    InvalidPaymentError: If the header is not a base64 JSON payload.
  """
  try:
    data = json.loads(safe_base64_decode(payment_proof))
    if not isinstance(data, dict):
      raise ValueError("payment payload is not an object")
    data["x402Version"] = X402_VERSION
    payload = PaymentPayloadV1.model_validate(data)
  except ValueError as e:
    raise InvalidPaymentError(f"Malformed payment payload: {e}") from e
  if not isinstance(payload.payload.get("authorization"), dict):
    raise InvalidPaymentError("Payment payload carries no authorization")
  return payload


def exact_payload(payload: PaymentPayloadV1) -> ExactEIP3009Payload:
  """The EIP-3009 transfer authorization carried by an exact payment."""
  return ExactEIP3009Payload.from_dict(payload.payload)


def find_matching_payment_requirements(
    requirements: List[PaymentRequirementsV1], payload: PaymentPayloadV1
) -> Optional[PaymentRequirementsV1]:
  """Returns the requirement the payload satisfies, if any.

  The signed authorization must pay the advertised recipient exactly the
  advertised amount on the advertised scheme and network.
  """
  authorization = exact_payload(payload).authorization
  payload_fields = payload.model_dump(by_alias=True)
  for requirement in requirements:
    if not match_payload_to_requirements(
        X402_VERSION, payload_fields, requirement.model_dump(by_alias=True)
    ):
      continue
    if not _same_address(authorization.to, requirement.pay_to):
      continue
    try:
      if int(authorization.value) != int(requirement.max_amount_required):
        continue
    except ValueError:
      continue
    return requirement
  return None


def encode_payment_response(
    result: VerifyPaymentResult, network: NetworkName
) -> str:
  """Encodes the settlement summary for the X-PAYMENT-RESPONSE header."""
  return encode_payment_response_header(
      SettleResponse(
          success=result.valid,
          transaction=result.tx_hash or "",
          network=_network_name(network),
          payer=result.payer,
      )
  )


class X402Service:
  """Issues x402 challenges and verifies resubmitted payments."""

  def __init__(self, settings: Settings, facilitator: HTTPFacilitatorClient):
    self._settings = settings
    self._facilitator = facilitator

  def build_payment_requirements(
      self,
      price: Price,
      resource: str,
      description: str = "",
      method: str = "GET",
  ) -> List[PaymentRequirementsV1]:
    """Builds requirements for the configured network and seller wallet."""
    return build_payment_requirements(
        price,
        self._settings.x402_network,
        self._settings.seller_wallet,
        resource,
        description,
        method,
    )

  async def verify_payment(
      self,
      payment_proof: str,
      expected_amount: int,
      expected_recipient: str,
      resource: str,
      price: Price,
      network: NetworkName,
      description: str = "",
  ) -> VerifyPaymentResult:
    """Verifies and settles a payment proof through the facilitator.

    Args:
      payment_proof: Raw `X-PAYMENT` header value.
      expected_amount: Price of the resource in atomic units.
      expected_recipient: Address the payment must go to.
      resource: URL the challenge was issued for.
      price: Human price the challenge was issued with.
      network: Network the challenge was issued for.
      description: Description the challenge was issued with.

    Returns:
      `valid=True` with the settlement transaction on success, otherwise
      `valid=False`.
    """
    invalid = VerifyPaymentResult(valid=False)
    timeout = self._settings.external_call_timeout

    if (
        self._settings.x402_demo_mode
        and payment_proof == DEMO_PAYMENT_TOKEN
    ):
      logger.warning(
          "x402 demo mode: accepting demo proof for %s without settlement",
          resource,
      )
      return VerifyPaymentResult(valid=True, tx_hash=DEMO_SETTLEMENT_REFERENCE)

    try:
      payload = decode_payment(payment_proof)
    except InvalidPaymentError as e:
      logger.info("Rejected payment for %s: %s", resource, e.message)
      return invalid

    try:
      requirements = build_payment_requirements(
          price, network, expected_recipient, resource, description
      )
    except ConfigError as e:
      logger.error(
          "Cannot rebuild payment requirements for %s: %s", resource, e.message
      )
      return invalid

    if all(int(r.max_amount_required) != expected_amount for r in requirements):
      logger.error(
          "Price %s for %s does not convert to expected amount %d",
          price,
          resource,
          expected_amount,
      )
      return invalid

    if self._settings.verbose_payment_logging:
      authorization = exact_payload(payload).authorization
      logger.info(
          "x402 payload for %s: scheme=%s network=%s from=%s to=%s value=%s",
          resource,
          payload.scheme,
          payload.network,
          authorization.from_address,
          authorization.to,
          authorization.value,
      )
      for r in requirements:
        logger.info(
            "x402 requirement: network=%s amount=%s payTo=%s asset=%s",
            r.network,
            r.max_amount_required,
            r.pay_to,
            r.asset,
        )

    selected = find_matching_payment_requirements(requirements, payload)
    if selected is None:
      logger.info("Payment for %s matches no advertised requirement", resource)
      return invalid

    try:
      verify_response = await asyncio.wait_for(
          self._facilitator.verify(payload, selected), timeout
      )
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error("Facilitator verify failed for %s: %r", resource, e)
      return invalid
    if not verify_response.is_valid:
      logger.info(
          "Facilitator rejected payment for %s: %s",
          resource,
          verify_response.invalid_reason,
      )
      return invalid

    try:
      settle_response = await asyncio.wait_for(
          self._facilitator.settle(payload, selected), timeout
      )
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error("Facilitator settle failed for %s: %r", resource, e)
      return invalid
    if not settle_response.success:
      logger.info(
          "Settlement failed for %s: %s",
          resource,
          settle_response.error_reason,
      )
      return invalid

    logger.info(
        "Payment settled for %s: %s", resource, settle_response.transaction
    )
    return VerifyPaymentResult(
        valid=True,
        tx_hash=settle_response.transaction,
        payer=settle_response.payer or verify_response.payer,
    )
