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

"""Product listing, hosted Stripe Checkout and the Stripe webhook."""

import logging
from typing import Any, Optional

from catalog import ProductCatalog
from config import Settings
import dependencies
from exceptions import InvalidRequestError
from exceptions import NotFoundError
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Header
from fastapi import Request
from models import clamp_quantity
from models import HostedCheckoutRequest
from services import payment_gateway
from services.payment_gateway import StripePaymentGateway

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", operation_id="health")
async def health() -> dict[str, str]:
  return {"status": "ok"}


@router.get("/products", operation_id="browse_products")
async def list_products(
    products: ProductCatalog = Depends(dependencies.get_product_catalog),
) -> dict[str, Any]:
  """List physical products sold through Stripe."""
  return {
      "products": [
          {"id": p.id, "name": p.name, "price_display": p.price_display}
          for p in products.list()
      ]
  }


@router.post("/checkout", operation_id="create_checkout")
async def create_hosted_checkout(
    request: Request,
    checkout_req: Optional[HostedCheckoutRequest] = Body(None),
    products: ProductCatalog = Depends(dependencies.get_product_catalog),
    gateway: StripePaymentGateway = Depends(dependencies.get_gateway),
    settings: Settings = Depends(dependencies.get_settings),
) -> dict[str, str]:
  """Create a Stripe Checkout session and return its URL."""
  if checkout_req is None or not checkout_req.product_id:
    raise InvalidRequestError("productId is required")
  product = products.get(checkout_req.product_id)
  if product is None:
    raise NotFoundError(f"Product not found: {checkout_req.product_id}")

  base_url = dependencies.resolve_base_url(request, settings)
  url = await gateway.create_hosted_checkout(
      product,
      clamp_quantity(checkout_req.quantity),
      settings.currency,
      checkout_req.success_url or f"{base_url}/success",
      checkout_req.cancel_url or f"{base_url}/",
  )
  return {"url": url}


@router.post("/webhook", operation_id="stripe_webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    gateway: StripePaymentGateway = Depends(dependencies.get_gateway),
) -> dict[str, bool]:
  """Receive a signed Stripe event."""
  if not stripe_signature:
    raise InvalidRequestError("Missing Stripe-Signature")
  payload = await request.body()
  event = gateway.construct_webhook_event(payload, stripe_signature)
  payment_gateway.handle_webhook_event(event)
  return {"received": True}
