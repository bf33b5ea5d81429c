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

"""Tests for the ACP checkout state machine."""

import asyncio

from absl.testing import absltest
from catalog import ProductCatalog
from enums import CheckoutAction
from enums import CheckoutStatus
from enums import PaymentMode
from exceptions import InvalidPaymentError
from exceptions import InvalidStateError
from exceptions import NotFoundError
from exceptions import PaymentFailedError
from services.checkout_service import CheckoutService
from services.checkout_service import is_payment_method_id
from store import CheckoutSessionStore
from testing_fakes import FakePaymentGateway
from testing_fakes import make_settings


class SlowPaymentGateway(FakePaymentGateway):

  async def charge(self, amount_cents, currency, instrument):
    await asyncio.sleep(1)
    return await super().charge(amount_cents, currency, instrument)


class ExplodingPaymentGateway(FakePaymentGateway):

  async def charge(self, amount_cents, currency, instrument):
    raise RuntimeError("card network unreachable")


class CheckoutServiceTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.gateway = FakePaymentGateway()
    self.store = CheckoutSessionStore()
    self.service = self._make_service()

  def _make_service(self, gateway=None, **settings_overrides):
    return CheckoutService(
        make_settings(**settings_overrides),
        ProductCatalog(),
        self.store,
        gateway or self.gateway,
    )

  def _live_service(self, gateway=None):
    return self._make_service(
        gateway=gateway,
        payment_mode=PaymentMode.LIVE,
        stripe_secret_key="sk_live_123",
    )

  def test_create_checkout(self):
    view = asyncio.run(self.service.create_checkout("mat", 2))

    self.assertTrue(view.checkout_session_id.startswith("acp_"))
    self.assertEqual(view.status, CheckoutStatus.OPEN)
    self.assertEqual(view.total_cents, 5998)
    self.assertEqual(view.total_display, "$59.98")
    self.assertLen(view.line_items, 1)
    self.assertEqual(view.line_items[0].product_id, "mat")
    self.assertEqual(view.line_items[0].price_cents, 2999)
    self.assertEqual(
        view.available_actions,
        [CheckoutAction.UPDATE, CheckoutAction.COMPLETE, CheckoutAction.CANCEL],
    )

  def test_create_checkout_unknown_product(self):
    with self.assertRaises(NotFoundError):
      asyncio.run(self.service.create_checkout("towel", 1))
    self.assertEmpty(self.store)

  def test_create_checkout_clamps_quantity(self):
    cases = [
        (None, 1),
        ("abc", 1),
        (0, 1),
        (-4, 1),
        (2.7, 2),
        ("3", 3),
        (1000, 999),
    ]
    for quantity, expected in cases:
      with self.subTest(quantity=quantity):
        view = asyncio.run(self.service.create_checkout("strap", quantity))
        self.assertEqual(view.line_items[0].quantity, expected)
        self.assertEqual(view.total_cents, 1299 * expected)

  def test_session_ids_are_unique(self):
    async def create_many():
      return [await self.service.create_checkout("mat") for _ in range(5)]

    views = asyncio.run(create_many())
    self.assertLen({v.checkout_session_id for v in views}, 5)

  def test_update_quantity_recomputes_total(self):
    view = asyncio.run(self.service.create_checkout("mat", 2))
    updated = asyncio.run(
        self.service.update_checkout(view.checkout_session_id, quantity=3)
    )

    self.assertEqual(updated.total_cents, 8997)
    self.assertEqual(updated.line_items[0].quantity, 3)

  def test_update_shipping_address_replaces_whole_address(self):
    view = asyncio.run(self.service.create_checkout("mat"))
    session_id = view.checkout_session_id
    asyncio.run(
        self.service.update_checkout(
            session_id, shipping_address={"city": "Oslo", "zip": "0150"}
        )
    )
    updated = asyncio.run(
        self.service.update_checkout(
            session_id, shipping_address={"city": "Bergen"}
        )
    )

    self.assertEqual(updated.shipping_address, {"city": "Bergen"})
    self.assertEqual(updated.total_cents, 2999)

  def test_update_without_changes_keeps_session(self):
    view = asyncio.run(self.service.create_checkout("strap", 4))
    updated = asyncio.run(
        self.service.update_checkout(view.checkout_session_id)
    )
    self.assertEqual(updated.total_cents, 4 * 1299)

  def test_update_unknown_session(self):
    with self.assertRaises(NotFoundError):
      asyncio.run(self.service.update_checkout("acp_missing", quantity=2))

  def test_update_after_cancel_fails_without_mutation(self):
    view = asyncio.run(self.service.create_checkout("mat", 1))
    session_id = view.checkout_session_id
    asyncio.run(self.service.cancel_checkout(session_id))

    with self.assertRaises(InvalidStateError):
      asyncio.run(
          self.service.update_checkout(
              session_id, quantity=5, shipping_address={"city": "Oslo"}
          )
      )
    session = self.store.get(session_id)
    self.assertEqual(session.line_items[0].quantity, 1)
    self.assertIsNone(session.shipping_address)

  def test_complete_checkout(self):
    view = asyncio.run(self.service.create_checkout("mat", 2))
    session_id = view.checkout_session_id
    result = asyncio.run(
        self.service.complete_checkout(session_id, "pm_1234abc")
    )

    self.assertEqual(result.status, CheckoutStatus.COMPLETED)
    self.assertTrue(result.order_id.startswith("order_"))
    self.assertEqual(result.payment_status, "succeeded")
    self.assertEqual(result.total_charged_cents, 5998)
    self.assertEqual(result.total_display, "$59.98")
    self.assertEqual(
        self.gateway.charges,
        [{"amount_cents": 5998, "currency": "usd", "instrument": "pm_1234abc"}],
    )
    session = self.store.get(session_id)
    self.assertEqual(session.settlement_reference, "pi_test_1")
    self.assertEqual(session.order_id, result.order_id)

  def test_complete_twice_fails(self):
    view = asyncio.run(self.service.create_checkout("mat"))
    session_id = view.checkout_session_id
    first = asyncio.run(self.service.complete_checkout(session_id, "pm_abc"))
    session = self.store.get(session_id)
    reference = session.settlement_reference

    with self.assertRaises(InvalidStateError):
      asyncio.run(self.service.complete_checkout(session_id, "pm_abc"))
    self.assertLen(self.gateway.charges, 1)
    session = self.store.get(session_id)
    self.assertEqual(session.status, CheckoutStatus.COMPLETED)
    self.assertEqual(session.order_id, first.order_id)
    self.assertEqual(session.settlement_reference, reference)
    self.assertEqual(session.total_cents, first.total_charged_cents)
    order = asyncio.run(self.service.get_order(first.order_id))
    self.assertEqual(order.total_cents, 2999)

  def test_concurrent_completes_charge_once(self):
    view = asyncio.run(self.service.create_checkout("mat"))
    session_id = view.checkout_session_id

    async def complete_concurrently():
      return await asyncio.gather(
          self.service.complete_checkout(session_id, "pm_abc"),
          self.service.complete_checkout(session_id, "pm_abc"),
          return_exceptions=True,
      )

    results = asyncio.run(complete_concurrently())
    errors = [r for r in results if isinstance(r, InvalidStateError)]
    self.assertLen(errors, 1)
    self.assertLen(self.gateway.charges, 1)

  def test_test_mode_substitutes_test_card(self):
    view = asyncio.run(self.service.create_checkout("strap"))
    asyncio.run(
        self.service.complete_checkout(view.checkout_session_id, "tok_visa")
    )
    self.assertEqual(self.gateway.charges[0]["instrument"], "pm_card_visa")

  def test_live_mode_rejects_non_payment_method_token(self):
    service = self._live_service()
    view = asyncio.run(service.create_checkout("mat"))
    session_id = view.checkout_session_id

    with self.assertRaises(InvalidPaymentError):
      asyncio.run(service.complete_checkout(session_id, "tok_visa"))
    self.assertEmpty(self.gateway.charges)
    self.assertEqual(self.store.get(session_id).status, CheckoutStatus.OPEN)

  def test_live_mode_charge_failure_keeps_session_open(self):
    gateway = FakePaymentGateway(fail_with=PaymentFailedError("declined"))
    service = self._live_service(gateway)
    view = asyncio.run(service.create_checkout("mat"))
    session_id = view.checkout_session_id

    with self.assertRaises(PaymentFailedError):
      asyncio.run(service.complete_checkout(session_id, "pm_abc"))
    session = self.store.get(session_id)
    self.assertEqual(session.status, CheckoutStatus.OPEN)
    self.assertIsNone(session.order_id)

  def test_test_mode_charge_failure_completes_without_reference(self):
    gateway = FakePaymentGateway(fail_with=PaymentFailedError("declined"))
    service = self._make_service(gateway=gateway)
    view = asyncio.run(service.create_checkout("mat"))
    session_id = view.checkout_session_id

    result = asyncio.run(service.complete_checkout(session_id, "pm_abc"))
    self.assertEqual(result.status, CheckoutStatus.COMPLETED)
    self.assertIsNone(self.store.get(session_id).settlement_reference)

  def test_live_mode_gateway_timeout(self):
    gateway = SlowPaymentGateway()
    service = CheckoutService(
        make_settings(
            payment_mode=PaymentMode.LIVE,
            stripe_secret_key="sk_live_123",
            external_call_timeout=0.01,
        ),
        ProductCatalog(),
        self.store,
        gateway,
    )
    view = asyncio.run(service.create_checkout("mat"))

    with self.assertRaises(PaymentFailedError) as cm:
      asyncio.run(
          service.complete_checkout(view.checkout_session_id, "pm_abc")
      )
    self.assertEqual(cm.exception.code, "GATEWAY_TIMEOUT")
    self.assertEqual(
        self.store.get(view.checkout_session_id).status, CheckoutStatus.OPEN
    )

  def test_live_mode_unexpected_gateway_error(self):
    gateway = ExplodingPaymentGateway()
    service = self._live_service(gateway)
    view = asyncio.run(service.create_checkout("mat"))
    session_id = view.checkout_session_id

    with self.assertRaises(PaymentFailedError) as cm:
      asyncio.run(service.complete_checkout(session_id, "pm_abc"))
    self.assertEqual(cm.exception.code, "GATEWAY_ERROR")
    self.assertEqual(cm.exception.status_code, 402)
    self.assertIsInstance(cm.exception.__cause__, RuntimeError)
    session = self.store.get(session_id)
    self.assertEqual(session.status, CheckoutStatus.OPEN)
    self.assertIsNone(session.order_id)

  def test_test_mode_unexpected_gateway_error_completes(self):
    service = self._make_service(gateway=ExplodingPaymentGateway())
    view = asyncio.run(service.create_checkout("mat"))
    session_id = view.checkout_session_id

    result = asyncio.run(service.complete_checkout(session_id, "pm_abc"))
    self.assertEqual(result.status, CheckoutStatus.COMPLETED)
    self.assertIsNone(self.store.get(session_id).settlement_reference)

  def test_cancel_checkout(self):
    view = asyncio.run(self.service.create_checkout("mat"))
    result = asyncio.run(
        self.service.cancel_checkout(view.checkout_session_id)
    )
    self.assertEqual(result.status, CheckoutStatus.CANCELED)

    fetched = asyncio.run(self.service.get_checkout(view.checkout_session_id))
    self.assertEqual(fetched.available_actions, [])

  def test_cancel_unknown_session(self):
    with self.assertRaises(NotFoundError):
      asyncio.run(self.service.cancel_checkout("acp_missing"))

  def test_cancel_completed_session_fails_by_default(self):
    view = asyncio.run(self.service.create_checkout("mat"))
    session_id = view.checkout_session_id
    completed = asyncio.run(
        self.service.complete_checkout(session_id, "pm_abc")
    )

    with self.assertRaises(InvalidStateError):
      asyncio.run(self.service.cancel_checkout(session_id))
    order = asyncio.run(self.service.get_order(completed.order_id))
    self.assertEqual(order.status, CheckoutStatus.COMPLETED)

  def test_cancel_after_complete_when_allowed(self):
    service = self._make_service(allow_cancel_after_complete=True)
    view = asyncio.run(service.create_checkout("mat"))
    session_id = view.checkout_session_id
    completed = asyncio.run(service.complete_checkout(session_id, "pm_abc"))

    result = asyncio.run(service.cancel_checkout(session_id))
    self.assertEqual(result.status, CheckoutStatus.CANCELED)
    with self.assertRaises(NotFoundError):
      asyncio.run(service.get_order(completed.order_id))

  def test_get_order(self):
    view = asyncio.run(self.service.create_checkout("strap", 3))
    completed = asyncio.run(
        self.service.complete_checkout(view.checkout_session_id, "pm_abc")
    )
    order = asyncio.run(self.service.get_order(completed.order_id))

    self.assertEqual(order.order_id, completed.order_id)
    self.assertEqual(order.checkout_session_id, view.checkout_session_id)
    self.assertEqual(order.total_cents, 3897)
    self.assertEqual(order.total_display, "$38.97")
    self.assertEqual(order.payment_status, "succeeded")
    self.assertEqual(order.line_items[0].quantity, 3)

  def test_get_order_unknown(self):
    with self.assertRaises(NotFoundError):
      asyncio.run(self.service.get_order("order_missing"))

  def test_get_checkout_unknown(self):
    with self.assertRaises(NotFoundError):
      asyncio.run(self.service.get_checkout("acp_missing"))

  def test_is_payment_method_id(self):
    self.assertTrue(is_payment_method_id("pm_1NqXyZ"))
    self.assertFalse(is_payment_method_id("pm_card_visa"))
    self.assertFalse(is_payment_method_id("tok_visa"))
    self.assertFalse(is_payment_method_id("pm_"))


if __name__ == "__main__":
  absltest.main()
