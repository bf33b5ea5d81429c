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

"""HTTP middleware: CORS and per-client rate limiting."""

import logging
import math
import time
from typing import Callable, Dict, Tuple

from config import Settings
from fastapi import FastAPI
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)

# Windows are pruned once this many clients are being tracked.
MAX_TRACKED_CLIENTS = 10_000


class RateLimitMiddleware(BaseHTTPMiddleware):
  """Fixed-window request limit per client address.

  Every response carries `RateLimit-Limit`, `RateLimit-Remaining` and
  `RateLimit-Reset`. A client over its limit gets a 429 with `Retry-After`
  until its window ends.
  """

  def __init__(
      self,
      app,
      max_requests: int,
      window_seconds: float,
      clock: Callable[[], float] = time.monotonic,
  ):
    super().__init__(app)
    self.max_requests = max_requests
    self.window_seconds = window_seconds
    self._clock = clock
    self._windows: Dict[str, Tuple[float, int]] = {}

  def _client_key(self, request: Request) -> str:
    return request.client.host if request.client else "unknown"

  def _prune(self, now: float) -> None:
    self._windows = {
        key: window
        for key, window in self._windows.items()
        if now - window[0] < self.window_seconds
    }

  def _hit(self, key: str, now: float) -> Tuple[int, float]:
    if len(self._windows) >= MAX_TRACKED_CLIENTS:
      self._prune(now)
    start, count = self._windows.get(key, (now, 0))
    if now - start >= self.window_seconds:
      start, count = now, 0
    count += 1
    self._windows[key] = (start, count)
    return count, start + self.window_seconds - now

  async def dispatch(self, request: Request, call_next) -> Response:
    key = self._client_key(request)
    count, reset_in = self._hit(key, self._clock())
    reset_seconds = str(max(math.ceil(reset_in), 0))
    headers = {
        "RateLimit-Limit": str(self.max_requests),
        "RateLimit-Remaining": str(max(self.max_requests - count, 0)),
        "RateLimit-Reset": reset_seconds,
    }
    if count > self.max_requests:
      logger.warning("Rate limit exceeded for %s on %s", key, request.url.path)
      return JSONResponse(
          status_code=429,
          content={
              "detail": "Too many requests, please try again later.",
              "code": "RATE_LIMITED",
          },
          headers={**headers, "Retry-After": reset_seconds},
      )
    response = await call_next(request)
    response.headers.update(headers)
    return response


def install_middleware(app: FastAPI, settings: Settings) -> None:
  """Adds rate limiting and CORS as configured; CORS wraps the limiter."""
  if settings.rate_limit_enabled:
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.rate_limit_max,
        window_seconds=settings.rate_limit_window_ms / 1000,
    )
  origins = settings.cors_origins
  if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-PAYMENT-RESPONSE"],
    )
