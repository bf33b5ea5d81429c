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

"""Pydantic models for the yoga commerce server.

Checkout models describe ACP sessions and the views returned to callers.
x402 wire types come from the `x402` package; only the verification outcome
handed to routes is defined here.
"""

import math
from typing import Any, Dict, List, Optional

from enums import CheckoutAction
from enums import CheckoutStatus
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

MIN_QUANTITY = 1
MAX_QUANTITY = 999


def clamp_quantity(value: Any) -> int:
  """Coerces caller input into a quantity in [1, 999].

  Missing, non-numeric or NaN input becomes 1, fractional input is floored
  and infinite input saturates at the bounds.
  """
  if isinstance(value, bool):
    return MIN_QUANTITY
  try:
    number = float(value)
  except OverflowError:
    return MAX_QUANTITY if value > 0 else MIN_QUANTITY
  except (TypeError, ValueError):
    return MIN_QUANTITY
  if math.isnan(number):
    return MIN_QUANTITY
  if math.isinf(number):
    return MAX_QUANTITY if number > 0 else MIN_QUANTITY
  quantity = int(number)
  if quantity < MIN_QUANTITY:
    return MIN_QUANTITY
  return min(quantity, MAX_QUANTITY)


def format_cents(amount_cents: int) -> str:
  """Formats an amount in cents for display, e.g. 5998 -> '$59.98'."""
  return f"${amount_cents // 100}.{amount_cents % 100:02d}"


# --- ACP checkout ---


class LineItem(BaseModel):
  product_id: str
  quantity: int
  price_cents: int


class CheckoutSession(BaseModel):
  """Stored state of an ACP checkout session."""

  id: str
  status: CheckoutStatus = CheckoutStatus.OPEN
  line_items: List[LineItem]
  shipping_address: Optional[Dict[str, Any]] = None
  total_cents: int
  settlement_reference: Optional[str] = None
  order_id: Optional[str] = None

  def recalculate_total(self) -> None:
    item = self.line_items[0]
    self.total_cents = item.price_cents * item.quantity


class CheckoutView(BaseModel):
  checkout_session_id: str
  status: CheckoutStatus
  line_items: List[LineItem]
  shipping_address: Optional[Dict[str, Any]] = None
  total_cents: int
  total_display: str
  available_actions: List[CheckoutAction] = []


class CompletedCheckout(BaseModel):
  checkout_session_id: str
  status: CheckoutStatus
  order_id: str
  payment_status: str
  total_charged_cents: int
  total_display: str


class CanceledCheckout(BaseModel):
  checkout_session_id: str
  status: CheckoutStatus


class Order(BaseModel):
  order_id: str
  checkout_session_id: str
  status: CheckoutStatus
  line_items: List[LineItem]
  total_cents: int
  total_display: str
  payment_status: str = "succeeded"


class CreateCheckoutRequest(BaseModel):
  model_config = ConfigDict(populate_by_name=True)

  product_id: Optional[str] = Field(None, alias="productId")
  quantity: Any = 1


class UpdateCheckoutRequest(BaseModel):
  quantity: Any = None
  shipping_address: Optional[Dict[str, Any]] = None


class CompleteCheckoutRequest(BaseModel):
  payment_token: Optional[str] = None
  customer: Optional[str] = None


class HostedCheckoutRequest(BaseModel):
  model_config = ConfigDict(populate_by_name=True)

  product_id: Optional[str] = Field(None, alias="productId")
  quantity: Any = 1
  success_url: Optional[str] = Field(None, alias="successUrl")
  cancel_url: Optional[str] = Field(None, alias="cancelUrl")


class ChargeResult(BaseModel):
  status: str
  reference: str


# --- x402 ---


class VerifyPaymentResult(BaseModel):
  """Outcome of verifying an X-PAYMENT proof; wire types live in `x402`."""

  valid: bool
  tx_hash: Optional[str] = None
  payer: Optional[str] = None
