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

"""MCP tool server for the yoga commerce API.

Each tool is a thin call to the HTTP API, so an agent sees exactly what an
HTTP client would. Successful responses come back as the response body;
non-2xx responses are raised as tool errors carrying the status and body.

Run with `--transport=stdio` (default) for local MCP clients or
`--transport=streamable-http` to serve MCP over HTTP. The commerce server
also mounts the same tools at `/mcp` next to its HTTP API.
"""

import json
import logging
import os
from typing import Any, Dict, Optional, Sequence

from absl import app as absl_app
from absl import flags
import httpx
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError

logger = logging.getLogger(__name__)

FLAGS = flags.FLAGS

DEFAULT_API_BASE = "http://localhost:3000"
TRANSPORTS = ("stdio", "streamable-http")

try:
  flags.DEFINE_string(
      "api_base_url",
      os.getenv("API_BASE_URL", DEFAULT_API_BASE),
      "Base URL of the yoga commerce HTTP API",
  )
  flags.DEFINE_string(
      "transport", "stdio", "MCP transport: stdio or streamable-http"
  )
  flags.DEFINE_string("mcp_host", "127.0.0.1", "Host for streamable-http")
  flags.DEFINE_integer(
      "mcp_port", int(os.getenv("MCP_PORT", "3001")), "Port for streamable-http"
  )
except flags.DuplicateFlagError:
  pass


class CommerceApiClient:
  """Issues requests against the HTTP API and returns the body text."""

  def __init__(self, http_client: httpx.AsyncClient):
    self._http_client = http_client

  async def request(
      self,
      method: str,
      path: str,
      body: Optional[Dict[str, Any]] = None,
      headers: Optional[Dict[str, str]] = None,
  ) -> str:
    """Sends one request.

    Raises:
      ToolError: If the API answers with a non-2xx status or is unreachable.
    """
    try:
      response = await self._http_client.request(
          method, path, json=body, headers=headers
      )
    except httpx.HTTPError as e:
      logger.error("%s %s failed: %s", method, path, e)
      raise ToolError(json.dumps({"error": str(e)})) from e
    if response.is_error:
      raise ToolError(
          json.dumps({"error": response.text, "status": response.status_code})
      )
    return response.text


class YogaCommerceTools:
  """Tool implementations; one method per MCP tool."""

  def __init__(self, api: CommerceApiClient):
    self._api = api

  async def browse_classes(self) -> str:
    return await self._api.request("GET", "/classes")

  async def get_class_preview(self, class_id: str) -> str:
    return await self._api.request("GET", f"/class/{class_id}/preview")

  async def get_class_full(
      self, class_id: str, x_payment: Optional[str] = None
  ) -> str:
    headers = {"X-PAYMENT": x_payment} if x_payment else None
    return await self._api.request(
        "GET", f"/class/{class_id}/full", headers=headers
    )

  async def browse_products(self) -> str:
    return await self._api.request("GET", "/products")

  async def acp_create_checkout(self, product_id: str, quantity: int = 1) -> str:
    return await self._api.request(
        "POST",
        "/acp/checkout",
        {"productId": product_id, "quantity": quantity},
    )

  async def acp_update_checkout(
      self,
      checkout_session_id: str,
      quantity: Optional[int] = None,
      shipping_address: Optional[Dict[str, Any]] = None,
  ) -> str:
    body = {}
    if quantity is not None:
      body["quantity"] = quantity
    if shipping_address is not None:
      body["shipping_address"] = shipping_address
    return await self._api.request(
        "PATCH", f"/acp/checkout/{checkout_session_id}", body
    )

  async def acp_complete_checkout(
      self, checkout_session_id: str, payment_token: str
  ) -> str:
    return await self._api.request(
        "POST",
        f"/acp/checkout/{checkout_session_id}/complete",
        {"payment_token": payment_token},
    )

  async def acp_cancel_checkout(self, checkout_session_id: str) -> str:
    return await self._api.request(
        "POST", f"/acp/checkout/{checkout_session_id}/cancel", {}
    )

  async def acp_get_order(self, order_id: str) -> str:
    return await self._api.request("GET", f"/acp/order/{order_id}")

  async def create_checkout(self, product_id: str, quantity: int = 1) -> str:
    return await self._api.request(
        "POST", "/checkout", {"productId": product_id, "quantity": quantity}
    )

  async def health(self) -> str:
    return await self._api.request("GET", "/health")


TOOL_DESCRIPTIONS = {
    "browse_classes": "List available yoga classes (id, title, price).",
    "get_class_preview": "Get the free preview URL for a yoga class.",
    "get_class_full": (
        "Get the full video URL for a class. Without x_payment returns the"
        " 402 payment requirements; with a valid x_payment returns"
        " content_url and tx_hash."
    ),
    "browse_products": (
        "List physical products (yoga mat, strap) with id and price."
    ),
    "acp_create_checkout": (
        "Create an ACP checkout session (cart). Returns checkout_session_id"
        " and total."
    ),
    "acp_update_checkout": (
        "Update an open ACP checkout (quantity or shipping_address)."
    ),
    "acp_complete_checkout": (
        "Complete an ACP checkout with a payment token. Live mode requires a"
        " Stripe payment_method id (pm_xxx); test mode accepts any token and"
        " falls back to a test card."
    ),
    "acp_cancel_checkout": "Cancel an open ACP checkout session.",
    "acp_get_order": (
        "Get order details by order_id (returned from acp_complete_checkout)."
    ),
    "create_checkout": (
        "Create a Stripe Checkout session and return its redirect URL."
    ),
    "health": "Check if the yoga commerce API is up.",
}


def create_mcp_server(
    tools: YogaCommerceTools,
    host: str = "127.0.0.1",
    port: int = 3001,
    **settings: Any,
) -> FastMCP:
  """Registers every tool on a new FastMCP server.

  Extra keyword arguments are FastMCP settings, e.g. `stateless_http` or
  `streamable_http_path` when the server is mounted inside another app.
  """
  server = FastMCP("yoga-commerce", host=host, port=port, **settings)
  for name, description in TOOL_DESCRIPTIONS.items():
    server.add_tool(getattr(tools, name), name=name, description=description)
  return server


def main(argv: Sequence[str]) -> None:
  """Main entry point for the MCP server."""
  del argv  # Unused.
  logging.basicConfig(level=logging.INFO)

  if FLAGS.transport not in TRANSPORTS:
    raise absl_app.UsageError(
        f"--transport must be one of {', '.join(TRANSPORTS)}"
    )

  http_client = httpx.AsyncClient(
      base_url=FLAGS.api_base_url.rstrip("/"), timeout=30.0
  )
  tools = YogaCommerceTools(CommerceApiClient(http_client))
  server = create_mcp_server(tools, FLAGS.mcp_host, FLAGS.mcp_port)
  logger.info(
      "Serving MCP over %s for %s", FLAGS.transport, FLAGS.api_base_url
  )
  server.run(transport=FLAGS.transport)


def run() -> None:
  absl_app.run(main)


if __name__ == "__main__":
  run()
