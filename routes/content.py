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

"""Yoga class routes; full videos are paywalled with x402."""

import logging
from typing import Any, Optional

from catalog import ContentCatalog
from config import Settings
import dependencies
from exceptions import NotFoundError
from fastapi import APIRouter
from fastapi import Depends
from fastapi import Header
from fastapi import Request
from fastapi.responses import JSONResponse
from services import x402_service
from services.x402_service import X402Service

logger = logging.getLogger(__name__)

router = APIRouter()

PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"


@router.get("/classes", operation_id="browse_classes")
async def list_classes(
    content: ContentCatalog = Depends(dependencies.get_content_catalog),
) -> dict[str, Any]:
  """List all classes with their prices."""
  return {
      "classes": [
          {"id": c.id, "title": c.title, "price": c.price}
          for c in content.list()
      ]
  }


@router.get("/class/{class_id}/preview", operation_id="get_class_preview")
async def get_class_preview(
    class_id: str,
    content: ContentCatalog = Depends(dependencies.get_content_catalog),
) -> dict[str, Any]:
  """Free preview video for a class."""
  yoga_class = content.get(class_id)
  if yoga_class is None:
    raise NotFoundError("Not found")
  return {"preview_url": yoga_class.preview_url}


@router.get("/class/{class_id}/full", operation_id="get_class_full")
async def get_class_full(
    class_id: str,
    request: Request,
    x_payment: Optional[str] = Header(None, alias="X-PAYMENT"),
    content: ContentCatalog = Depends(dependencies.get_content_catalog),
    settings: Settings = Depends(dependencies.get_settings),
    service: X402Service = Depends(dependencies.get_x402_service),
):
  """Full class video, unlocked by an x402 payment.

  Without an `X-PAYMENT` header the response is a 402 challenge listing the
  accepted payment requirements. With a header the payment is verified and
  settled through the facilitator before the video URL is returned.
  """
  yoga_class = content.get(class_id)
  if yoga_class is None:
    raise NotFoundError("Not found")

  resource = (
      f"{dependencies.resolve_base_url(request, settings)}{request.url.path}"
  )
  description = f"{yoga_class.title} - full video"
  requirements = service.build_payment_requirements(
      yoga_class.price, resource, description
  )

  if not x_payment:
    return JSONResponse(
        status_code=402,
        content=x402_service.payment_required_body(
            requirements, "X-PAYMENT header is required"
        ),
    )

  logger.info(
      "Payment received for class %s (%s, %d atomic units)",
      class_id,
      yoga_class.price,
      yoga_class.price_in_base_units,
  )
  result = await service.verify_payment(
      x_payment,
      yoga_class.price_in_base_units,
      settings.seller_wallet,
      resource,
      yoga_class.price,
      settings.x402_network,
      description,
  )
  if not result.valid:
    logger.warning("Payment verification failed for class %s", class_id)
    return JSONResponse(
        status_code=402,
        content=x402_service.payment_required_body(
            requirements, "Invalid payment"
        ),
    )

  logger.info("Class %s unlocked by %s", class_id, result.tx_hash)
  return JSONResponse(
      content={"content_url": yoga_class.full_url, "tx_hash": result.tx_hash},
      headers={
          PAYMENT_RESPONSE_HEADER: x402_service.encode_payment_response(
              result, settings.x402_network
          )
      },
  )
