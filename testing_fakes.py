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

"""In-memory doubles shared by the tests."""

import asyncio
import json
from typing import Any, Dict, List, Optional

from config import Settings
from exceptions import PaymentFailedError
import httpx
from models import ChargeResult
from services.payment_gateway import StripePaymentGateway
from x402.http import encode_payment_signature_header
from x402.mechanisms.evm import ExactEIP3009Authorization
from x402.mechanisms.evm import ExactEIP3009Payload
from x402.schemas.v1 import PaymentPayloadV1

SELLER_WALLET = "0x209693bc6afc0c5328ba36faf03c514ef312287c"
PAYER_WALLET = "0x857b06519e91e3a54538791bdbb0e22373e36b66"
SETTLEMENT_TX = "0x" + "ab" * 32


def make_settings(**overrides: Any) -> Settings:
  """Settings for tests: test mode on base-sepolia with a fixed wallet."""
  values = {
      "seller_wallet": SELLER_WALLET,
      "stripe_secret_key": "sk_test_123",
      "facilitator_url": "https://facilitator.test",
      "external_call_timeout": 5.0,
  }
  values.update(overrides)
  return Settings(**values)


class FakePaymentGateway(StripePaymentGateway):
  """Records charges instead of calling Stripe.

  Hosted checkout and webhook verification keep the Stripe behaviour for
  the configured keys, so tests can still exercise their error paths.
  """

  def __init__(
      self,
      fail_with: Optional[PaymentFailedError] = None,
      api_key: Optional[str] = None,
      webhook_secret: Optional[str] = None,
  ):
    super().__init__(api_key, webhook_secret)
    self.fail_with = fail_with
    self.charges: List[Dict[str, Any]] = []

  async def charge(
      self, amount_cents: int, currency: str, instrument: str
  ) -> ChargeResult:
    self.charges.append({
        "amount_cents": amount_cents,
        "currency": currency,
        "instrument": instrument,
    })
    if self.fail_with is not None:
      raise self.fail_with
    return ChargeResult(
        status="succeeded", reference=f"pi_test_{len(self.charges)}"
    )


class FakeFacilitator:
  """httpx transport handler answering /verify and /settle."""

  def __init__(
      self,
      is_valid: bool = True,
      settle_success: bool = True,
      status_code: int = 200,
      delay: float = 0.0,
  ):
    self.is_valid = is_valid
    self.settle_success = settle_success
    self.status_code = status_code
    self.delay = delay
    self.requests: List[Dict[str, Any]] = []

  def paths(self) -> List[str]:
    return [r["path"] for r in self.requests]

  async def __call__(self, request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    self.requests.append({"path": request.url.path, "body": body})
    if self.delay:
      await asyncio.sleep(self.delay)
    if self.status_code != 200:
      return httpx.Response(self.status_code, json={"error": "unavailable"})
    if request.url.path.endswith("/verify"):
      return httpx.Response(
          200,
          json={
              "isValid": self.is_valid,
              "invalidReason": None if self.is_valid else "invalid_signature",
              "payer": PAYER_WALLET,
          },
      )
    return httpx.Response(
        200,
        json={
            "success": self.settle_success,
            "errorReason": None if self.settle_success else "settle_failed",
            "transaction": SETTLEMENT_TX if self.settle_success else "",
            "network": "base-sepolia",
            "payer": PAYER_WALLET,
        },
    )

  def client(self) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(self))


def encode_payment(
    value: str,
    to: str = SELLER_WALLET,
    network: str = "base-sepolia",
    scheme: str = "exact",
) -> str:
  """Builds an X-PAYMENT header value for an exact EVM transfer."""
  authorization = ExactEIP3009Authorization(
      from_address=PAYER_WALLET,
      to=to,
      value=value,
      valid_after="0",
      valid_before="9999999999",
      nonce="0x" + "22" * 32,
  )
  payload = PaymentPayloadV1(
      scheme=scheme,
      network=network,
      payload=ExactEIP3009Payload(
          authorization=authorization, signature="0x" + "11" * 65
      ).to_dict(),
  )
  return encode_payment_signature_header(payload)
