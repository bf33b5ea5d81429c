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

"""Card payment rail backed by Stripe.

`PaymentGateway` is the capability the checkout state machine charges
through; `StripePaymentGateway` implements it with PaymentIntents and also
creates hosted Stripe Checkout sessions and verifies webhook deliveries.

The Stripe SDK is synchronous, so calls run in a worker thread to keep the
event loop free.
"""

import abc
import asyncio
import logging
from typing import Any, Optional

from catalog import Product
from exceptions import ConfigError
from exceptions import InvalidRequestError
from exceptions import PaymentFailedError
from models import ChargeResult
import stripe

logger = logging.getLogger(__name__)

# PaymentIntent statuses after which the charge is considered executed.
SETTLED_INTENT_STATUSES = frozenset({"succeeded", "processing", "requires_capture"})


class PaymentGateway(abc.ABC):
  """Charges an amount against a payment instrument."""

  @abc.abstractmethod
  async def charge(
      self, amount_cents: int, currency: str, instrument: str
  ) -> ChargeResult:
    """Charges the instrument.

    Args:
      amount_cents: Amount in the currency's minor unit.
      currency: ISO currency code, lower case.
      instrument: Provider payment method reference.

    Returns:
      The provider status and settlement reference.

    Raises:
      PaymentFailedError: If the provider rejects or fails the charge.
    """


class StripePaymentGateway(PaymentGateway):
  """PaymentGateway using Stripe PaymentIntents."""

  def __init__(
      self,
      api_key: Optional[str],
      webhook_secret: Optional[str] = None,
  ):
    self._api_key = api_key
    self._webhook_secret = webhook_secret

  @property
  def configured(self) -> bool:
    return bool(self._api_key)

  async def charge(
      self, amount_cents: int, currency: str, instrument: str
  ) -> ChargeResult:
    if not self._api_key:
      raise PaymentFailedError(
          "Stripe is not configured (missing STRIPE_SECRET_KEY)",
          code="GATEWAY_NOT_CONFIGURED",
      )

    try:
      intent = await asyncio.to_thread(
          stripe.PaymentIntent.create,
          api_key=self._api_key,
          amount=amount_cents,
          currency=currency,
          confirm=True,
          payment_method=instrument,
          automatic_payment_methods={
              "enabled": True,
              "allow_redirects": "never",
          },
      )
    except stripe.CardError as e:
      logger.warning("Card declined: %s", e.user_message)
      raise PaymentFailedError(
          e.user_message or "Card declined",
          code=(e.code or "card_declined").upper(),
      ) from e
    except stripe.StripeError as e:
      logger.error("Stripe charge failed: %s", e)
      raise PaymentFailedError(f"Payment failed: {e.user_message or e}") from e

    if intent.status not in SETTLED_INTENT_STATUSES:
      raise PaymentFailedError(
          f"Payment intent {intent.id} ended in status '{intent.status}'"
      )

    logger.info("Payment intent %s %s", intent.id, intent.status)
    return ChargeResult(status=intent.status, reference=intent.id)

  async def create_hosted_checkout(
      self,
      product: Product,
      quantity: int,
      currency: str,
      success_url: str,
      cancel_url: str,
  ) -> str:
    """Creates a Stripe Checkout session and returns its redirect URL."""
    if not self._api_key:
      raise ConfigError(
          "Missing or invalid STRIPE_SECRET_KEY (use sk_test_... or"
          " sk_live_...)"
      )

    try:
      session = await asyncio.to_thread(
          stripe.checkout.Session.create,
          api_key=self._api_key,
          mode="payment",
          line_items=[{
              "price_data": {
                  "currency": currency,
                  "unit_amount": product.price_cents,
                  "product_data": {"name": product.name},
              },
              "quantity": quantity,
          }],
          success_url=success_url,
          cancel_url=cancel_url,
      )
    except stripe.StripeError as e:
      raise PaymentFailedError(
          f"Checkout failed: {e.user_message or e}",
          code="CHECKOUT_FAILED",
          status_code=502,
      ) from e

    if not session.url:
      raise PaymentFailedError(
          "Stripe did not return a checkout URL",
          code="CHECKOUT_FAILED",
          status_code=502,
      )
    return session.url

  def construct_webhook_event(self, payload: bytes, signature: str) -> Any:
    """Verifies a webhook delivery and returns the parsed event."""
    if not self._api_key or not self._webhook_secret:
      raise ConfigError(
          "Webhook not configured (STRIPE_SECRET_KEY / STRIPE_WEBHOOK_SECRET)"
      )
    try:
      return stripe.Webhook.construct_event(
          payload, signature, self._webhook_secret
      )
    except ValueError as e:
      raise InvalidRequestError("Invalid payload") from e
    except stripe.SignatureVerificationError as e:
      raise InvalidRequestError("Invalid signature") from e


def handle_webhook_event(event: Any) -> None:
  """Records the outcome of hosted checkouts and payment intents."""
  event_type = event["type"]
  obj = event["data"]["object"]
  if event_type == "checkout.session.completed":
    logger.info(
        "Checkout session %s completed (payment_status=%s)",
        obj.get("id"),
        obj.get("payment_status"),
    )
  elif event_type == "payment_intent.succeeded":
    logger.info("PaymentIntent %s succeeded", obj.get("id"))
  elif event_type == "payment_intent.payment_failed":
    error = obj.get("last_payment_error") or {}
    logger.warning(
        "PaymentIntent %s failed: %s", obj.get("id"), error.get("message")
    )
  else:
    logger.info("Unhandled Stripe event type %s", event_type)
