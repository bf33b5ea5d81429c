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

"""Agentic Commerce Protocol (ACP) checkout routes."""

from typing import Any, Optional

import dependencies
from exceptions import InvalidRequestError
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Path
from models import CompleteCheckoutRequest
from models import CreateCheckoutRequest
from models import UpdateCheckoutRequest
from services.checkout_service import CheckoutService

router = APIRouter(prefix="/acp")


@router.post("/checkout", operation_id="acp_create_checkout")
async def create_checkout(
    checkout_req: Optional[CreateCheckoutRequest] = Body(None),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> dict[str, Any]:
  """Open a checkout session for one product."""
  if checkout_req is None or not checkout_req.product_id:
    raise InvalidRequestError("productId is required")
  result = await checkout_service.create_checkout(
      checkout_req.product_id, checkout_req.quantity
  )
  return result.model_dump(mode="json", exclude_none=True)


@router.get("/checkout/{id}", operation_id="acp_get_checkout")
async def get_checkout(
    session_id: str = Path(..., alias="id"),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> dict[str, Any]:
  """Get a checkout session."""
  result = await checkout_service.get_checkout(session_id)
  return result.model_dump(mode="json")


@router.patch("/checkout/{id}", operation_id="acp_update_checkout")
async def update_checkout(
    session_id: str = Path(..., alias="id"),
    checkout_req: UpdateCheckoutRequest = Body(...),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> dict[str, Any]:
  """Update quantity and/or shipping address."""
  result = await checkout_service.update_checkout(
      session_id, checkout_req.quantity, checkout_req.shipping_address
  )
  return result.model_dump(mode="json")


@router.post("/checkout/{id}/complete", operation_id="acp_complete_checkout")
async def complete_checkout(
    session_id: str = Path(..., alias="id"),
    checkout_req: Optional[CompleteCheckoutRequest] = Body(None),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> dict[str, Any]:
  """Charge the session total and complete the session."""
  if checkout_req is None or not checkout_req.payment_token:
    raise InvalidRequestError("payment_token is required")
  result = await checkout_service.complete_checkout(
      session_id, checkout_req.payment_token
  )
  return result.model_dump(mode="json")


@router.post("/checkout/{id}/cancel", operation_id="acp_cancel_checkout")
async def cancel_checkout(
    session_id: str = Path(..., alias="id"),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> dict[str, Any]:
  """Cancel a checkout session."""
  result = await checkout_service.cancel_checkout(session_id)
  return result.model_dump(mode="json")


@router.get("/order/{order_id}", operation_id="acp_get_order")
async def get_order(
    order_id: str,
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> dict[str, Any]:
  """Get a completed order by ID."""
  result = await checkout_service.get_order(order_id)
  return result.model_dump(mode="json")
