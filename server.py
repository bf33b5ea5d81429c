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

"""Yoga Commerce Server (Python/FastAPI)."""

import contextlib
import logging
import sys
from typing import Sequence

from absl import app as absl_app
import config
from dependencies import AppContext
from dependencies import build_context
from exceptions import CommerceError
from exceptions import ConfigError
from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
import httpx
import mcp_server
from middleware import install_middleware
from routes.acp import router as acp_router
from routes.content import router as content_router
from routes.store_front import router as store_front_router
import uvicorn

logger = logging.getLogger(__name__)

MCP_MOUNT_PATH = "/mcp"


def _mount_mcp(app: FastAPI, settings: config.Settings) -> None:
  """Serves the MCP tools at /mcp; the tools call this app in-process."""
  api_client = httpx.AsyncClient(
      transport=httpx.ASGITransport(app=app),
      base_url=settings.base_url or "http://localhost",
  )
  server = mcp_server.create_mcp_server(
      mcp_server.YogaCommerceTools(mcp_server.CommerceApiClient(api_client)),
      host="0.0.0.0",
      streamable_http_path="/",
      stateless_http=True,
      json_response=True,
  )
  app.mount(MCP_MOUNT_PATH, server.streamable_http_app())
  app.state.mcp = server
  app.state.mcp_http_client = api_client


def create_app(context: AppContext) -> FastAPI:
  """Creates the API around an already wired context."""

  @contextlib.asynccontextmanager
  async def lifespan(app: FastAPI):
    async with app.state.mcp_http_client, app.state.mcp.session_manager.run():
      yield
    await context.aclose()

  app = FastAPI(
      title="Yoga Commerce Service",
      version=config.get_server_version(),
      description=(
          "Yoga classes paywalled with x402 and products sold through Stripe"
          " and the Agentic Commerce Protocol"
      ),
      lifespan=lifespan,
  )
  app.state.context = context

  @app.exception_handler(CommerceError)
  async def commerce_exception_handler(request: Request, exc: CommerceError):
    """Converts domain exceptions to JSON responses."""
    del request  # Unused.
    if exc.status_code >= 500:
      logger.error("%s: %s", exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )

  @app.exception_handler(Exception)
  async def unexpected_exception_handler(request: Request, exc: Exception):
    """Hides internal detail from callers in production."""
    logger.exception("Unhandled error on %s", request.url.path)
    detail = (
        "Internal server error"
        if context.settings.is_production
        else f"{type(exc).__name__}: {exc}"
    )
    return JSONResponse(
        status_code=500,
        content={"detail": detail, "code": "INTERNAL_ERROR"},
    )

  app.include_router(store_front_router)
  app.include_router(content_router)
  app.include_router(acp_router)
  _mount_mcp(app, context.settings)
  install_middleware(app, context.settings)
  return app


def main(argv: Sequence[str]) -> None:
  """Main entry point for the Yoga Commerce Server."""
  del argv  # Unused.
  logging.basicConfig(level=logging.INFO)

  try:
    settings = config.load_settings()
  except ConfigError as e:
    logger.error("Invalid configuration: %s", e.message)
    print("\nUsage:")
    print(config.FLAGS.main_module_help())
    sys.exit(1)

  if settings.x402_demo_mode:
    logger.warning("x402 demo mode is on: the 'demo' proof unlocks content")
  logger.info(
      "Starting in %s payment mode on %s",
      settings.payment_mode.value,
      settings.x402_network.value,
  )
  app = create_app(build_context(settings))
  uvicorn.run(app, host="0.0.0.0", port=config.FLAGS.port)


def run() -> None:
  absl_app.run(main)


if __name__ == "__main__":
  run()
