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

"""Checkout service for the lifecycle of ACP checkout sessions.

This module provides the `CheckoutService` class, which implements the
Agentic Commerce Protocol checkout state machine on top of the in-memory
session store:

- `open -> completed` through `complete_checkout`, which charges the card
  rail exactly once.
- `open -> canceled` through `cancel_checkout`.

Both target states are terminal. Every mutation re-reads the session under
its lock and validates before it writes.
"""

import asyncio
import logging
import re
from typing import Any, Dict, Optional
import uuid

from catalog import ProductCatalog
from config import Settings
from enums import CheckoutAction
from enums import CheckoutStatus
from exceptions import CommerceError
from exceptions import InvalidPaymentError
from exceptions import InvalidStateError
from exceptions import NotFoundError
from exceptions import PaymentFailedError
from models import CanceledCheckout
from models import ChargeResult
from models import CheckoutSession
from models import CheckoutView
from models import clamp_quantity
from models import CompletedCheckout
from models import format_cents
from models import LineItem
from models import Order
from services.payment_gateway import PaymentGateway
from store import CheckoutSessionStore

logger = logging.getLogger(__name__)

# Stripe payment_method ids are the only instruments accepted in live mode.
PAYMENT_METHOD_ID_PATTERN = re.compile(r"^pm_[a-zA-Z0-9]+$")

# Stripe's canned Visa used for any other token in test mode.
TEST_PAYMENT_METHOD = "pm_card_visa"

OPEN_ACTIONS = [
    CheckoutAction.UPDATE,
    CheckoutAction.COMPLETE,
    CheckoutAction.CANCEL,
]


def is_payment_method_id(token: str) -> bool:
  """True if the token looks like a Stripe payment_method id (pm_xxx)."""
  return bool(PAYMENT_METHOD_ID_PATTERN.match(token))


class CheckoutService:
  """Service for managing ACP checkout sessions and orders."""

  def __init__(
      self,
      settings: Settings,
      products: ProductCatalog,
      store: CheckoutSessionStore,
      gateway: PaymentGateway,
  ):
    self.settings = settings
    self.products = products
    self.store = store
    self.gateway = gateway

  def _to_view(
      self, session: CheckoutSession, include_shipping: bool = True
  ) -> CheckoutView:
    return CheckoutView(
        checkout_session_id=session.id,
        status=session.status,
        line_items=[li.model_copy() for li in session.line_items],
        shipping_address=session.shipping_address if include_shipping else None,
        total_cents=session.total_cents,
        total_display=format_cents(session.total_cents),
        available_actions=(
            list(OPEN_ACTIONS) if session.status == CheckoutStatus.OPEN else []
        ),
    )

  def _get_session(self, session_id: str) -> CheckoutSession:
    session = self.store.get(session_id)
    if session is None:
      raise NotFoundError("Checkout session not found")
    return session

  def _ensure_open(self, session: CheckoutSession, action: str) -> None:
    if session.status != CheckoutStatus.OPEN:
      raise InvalidStateError(
          f"Cannot {action} checkout in state '{session.status.value}'"
      )

  async def create_checkout(
      self, product_id: str, quantity: Any = 1
  ) -> CheckoutView:
    """Opens a single-product checkout session."""
    product = self.products.get(product_id)
    if product is None:
      raise NotFoundError(f"Product not found: {product_id}")

    qty = clamp_quantity(quantity)
    session = CheckoutSession(
        id=f"acp_{uuid.uuid4().hex}",
        status=CheckoutStatus.OPEN,
        line_items=[
            LineItem(
                product_id=product.id,
                quantity=qty,
                price_cents=product.price_cents,
            )
        ],
        total_cents=product.price_cents * qty,
    )
    self.store.add(session)
    logger.info(
        "Created checkout session %s for %d x %s", session.id, qty, product.id
    )
    return self._to_view(session, include_shipping=False)

  async def get_checkout(self, session_id: str) -> CheckoutView:
    """Retrieves a checkout session."""
    return self._to_view(self._get_session(session_id))

  async def update_checkout(
      self,
      session_id: str,
      quantity: Any = None,
      shipping_address: Optional[Dict[str, Any]] = None,
  ) -> CheckoutView:
    """Updates quantity and/or shipping address of an open session.

    Args:
      session_id: The checkout session to update.
      quantity: New quantity, clamped to [1, 999]; None leaves it unchanged.
      shipping_address: Replaces the stored address wholesale when given.

    Returns:
      The updated session view.
    """
    logger.info("Updating checkout session %s", session_id)
    self._get_session(session_id)
    async with self.store.lock(session_id):
      session = self._get_session(session_id)
      self._ensure_open(session, "update")

      if quantity is not None:
        session.line_items[0].quantity = clamp_quantity(quantity)
        session.recalculate_total()
      if shipping_address is not None:
        session.shipping_address = dict(shipping_address)

      return self._to_view(session)

  def _resolve_instrument(self, payment_token: str) -> str:
    if is_payment_method_id(payment_token):
      return payment_token
    if self.settings.is_live:
      raise InvalidPaymentError(
          "Live mode requires a Stripe payment_method id (pm_xxx) as"
          " payment_token"
      )
    return TEST_PAYMENT_METHOD

  async def _charge(self, amount_cents: int, instrument: str) -> ChargeResult:
    try:
      return await asyncio.wait_for(
          self.gateway.charge(amount_cents, self.settings.currency, instrument),
          self.settings.external_call_timeout,
      )
    except asyncio.TimeoutError as e:
      raise PaymentFailedError(
          "Payment gateway timed out", code="GATEWAY_TIMEOUT"
      ) from e
    except CommerceError:
      raise
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.exception("Payment gateway raised while charging")
      raise PaymentFailedError(
          "Payment gateway error", code="GATEWAY_ERROR"
      ) from e

  async def complete_checkout(
      self, session_id: str, payment_token: str
  ) -> CompletedCheckout:
    """Charges the session total and completes the session.

    In live mode a failed charge leaves the session open and raises
    `PaymentFailedError`. In test mode a failed charge still completes the
    session, without a settlement reference, so demos work without a
    working card setup.

    Raises:
      NotFoundError: Unknown session.
      InvalidStateError: The session is not open.
      InvalidPaymentError: Live mode and the token is not a payment_method.
      PaymentFailedError: Live mode and the charge failed, timed out or the
        gateway raised an unexpected error.
    """
    logger.info("Completing checkout session %s", session_id)
    self._get_session(session_id)
    async with self.store.lock(session_id):
      session = self._get_session(session_id)
      self._ensure_open(session, "complete")
      instrument = self._resolve_instrument(payment_token)

      settlement_reference = None
      payment_status = "succeeded"
      try:
        charge = await self._charge(session.total_cents, instrument)
        settlement_reference = charge.reference
        payment_status = charge.status
      except PaymentFailedError as e:
        if self.settings.is_live:
          logger.error(
              "Charge failed for checkout session %s: %s", session_id, e.message
          )
          raise
        # Test mode only: complete without a charge.
        logger.warning(
            "Test mode: completing checkout session %s without a charge (%s)",
            session_id,
            e.message,
        )

      order_id = f"order_{uuid.uuid4().hex}"
      session.status = CheckoutStatus.COMPLETED
      session.order_id = order_id
      session.settlement_reference = settlement_reference
      self.store.index_order(order_id, session.id)
      logger.info(
          "Checkout session %s completed as order %s", session.id, order_id
      )

      return CompletedCheckout(
          checkout_session_id=session.id,
          status=session.status,
          order_id=order_id,
          payment_status=payment_status,
          total_charged_cents=session.total_cents,
          total_display=format_cents(session.total_cents),
      )

  async def cancel_checkout(self, session_id: str) -> CanceledCheckout:
    """Cancels a checkout session.

    Only open sessions can be canceled unless `allow_cancel_after_complete`
    is set, in which case any session is forced to canceled and its order
    stops resolving.
    """
    logger.info("Canceling checkout session %s", session_id)
    self._get_session(session_id)
    async with self.store.lock(session_id):
      session = self._get_session(session_id)
      if not self.settings.allow_cancel_after_complete:
        self._ensure_open(session, "cancel")
      session.status = CheckoutStatus.CANCELED
      return CanceledCheckout(
          checkout_session_id=session.id, status=session.status
      )

  async def get_order(self, order_id: str) -> Order:
    """Retrieves a completed order."""
    session = self.store.get_by_order_id(order_id)
    if session is None or session.status != CheckoutStatus.COMPLETED:
      raise NotFoundError("Order not found")
    return Order(
        order_id=session.order_id,
        checkout_session_id=session.id,
        status=session.status,
        line_items=[li.model_copy() for li in session.line_items],
        total_cents=session.total_cents,
        total_display=format_cents(session.total_cents),
    )
