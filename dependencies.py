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

"""FastAPI dependencies for the commerce server.

All services are built once per process into an `AppContext` stored on
`app.state.context`; the providers below hand the pieces to route handlers.
Tests build their own context (fake gateway, mocked facilitator transport)
and pass it to `server.create_app`.
"""

import dataclasses

from catalog import ContentCatalog
from catalog import ProductCatalog
from config import Settings
from fastapi import Depends
from fastapi import Request
import httpx
from services.checkout_service import CheckoutService
from services.payment_gateway import StripePaymentGateway
from services.x402_service import X402Service
from store import CheckoutSessionStore
from x402.http import FacilitatorConfig
from x402.http import HTTPFacilitatorClient


@dataclasses.dataclass
class AppContext:
  """Process-wide services shared by every request."""

  settings: Settings
  products: ProductCatalog
  content: ContentCatalog
  store: CheckoutSessionStore
  gateway: StripePaymentGateway
  http_client: httpx.AsyncClient
  checkout_service: CheckoutService
  x402_service: X402Service

  async def aclose(self) -> None:
    await self.http_client.aclose()


def build_context(
    settings: Settings,
    gateway: StripePaymentGateway | None = None,
    http_client: httpx.AsyncClient | None = None,
    content: ContentCatalog | None = None,
) -> AppContext:
  """Wires the services for the given settings.

  Args:
    settings: Validated settings.
    gateway: Card rail; defaults to Stripe with the configured keys.
    http_client: Client used for facilitator calls.
    content: Class catalog; defaults to one read from the environment.

  Returns:
    A ready AppContext.
  """
  if gateway is None:
    gateway = StripePaymentGateway(
        settings.stripe_secret_key, settings.stripe_webhook_secret
    )
  if http_client is None:
    http_client = httpx.AsyncClient(timeout=settings.external_call_timeout)
  if content is None:
    content = ContentCatalog.from_environment()

  products = ProductCatalog()
  store = CheckoutSessionStore()
  facilitator = HTTPFacilitatorClient(
      FacilitatorConfig(
          url=settings.facilitator_url,
          timeout=settings.external_call_timeout,
          http_client=http_client,
      )
  )
  return AppContext(
      settings=settings,
      products=products,
      content=content,
      store=store,
      gateway=gateway,
      http_client=http_client,
      checkout_service=CheckoutService(settings, products, store, gateway),
      x402_service=X402Service(settings, facilitator),
  )


def get_context(request: Request) -> AppContext:
  """Dependency provider for the AppContext."""
  return request.app.state.context


def get_settings(context: AppContext = Depends(get_context)) -> Settings:
  """Dependency provider for Settings."""
  return context.settings


def get_checkout_service(
    context: AppContext = Depends(get_context),
) -> CheckoutService:
  """Dependency provider for CheckoutService."""
  return context.checkout_service


def get_x402_service(context: AppContext = Depends(get_context)) -> X402Service:
  """Dependency provider for X402Service."""
  return context.x402_service


def get_gateway(
    context: AppContext = Depends(get_context),
) -> StripePaymentGateway:
  """Dependency provider for the Stripe gateway."""
  return context.gateway


def get_product_catalog(
    context: AppContext = Depends(get_context),
) -> ProductCatalog:
  """Dependency provider for the product catalog."""
  return context.products


def get_content_catalog(
    context: AppContext = Depends(get_context),
) -> ContentCatalog:
  """Dependency provider for the class catalog."""
  return context.content


def resolve_base_url(request: Request, settings: Settings) -> str:
  """Public base URL: the configured one, else the request's own."""
  if settings.base_url:
    return settings.base_url.rstrip("/")
  return str(request.base_url).rstrip("/")
