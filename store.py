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

"""In-memory storage for ACP checkout sessions.

Sessions are keyed by id with a secondary index from settled order id back
to the session. Each session has its own lock so that concurrent mutations
of the same session are applied one at a time.
"""

import asyncio
import contextlib
from typing import AsyncIterator, Dict, Optional

from models import CheckoutSession


class CheckoutSessionStore:
  """Owns every CheckoutSession for the lifetime of the process."""

  def __init__(self) -> None:
    self._sessions: Dict[str, CheckoutSession] = {}
    self._sessions_by_order_id: Dict[str, str] = {}
    self._locks: Dict[str, asyncio.Lock] = {}

  def add(self, session: CheckoutSession) -> None:
    self._sessions[session.id] = session
    self._locks.setdefault(session.id, asyncio.Lock())

  def get(self, session_id: str) -> Optional[CheckoutSession]:
    return self._sessions.get(session_id)

  def index_order(self, order_id: str, session_id: str) -> None:
    self._sessions_by_order_id[order_id] = session_id

  def get_by_order_id(self, order_id: str) -> Optional[CheckoutSession]:
    session_id = self._sessions_by_order_id.get(order_id)
    if session_id is None:
      return None
    return self._sessions.get(session_id)

  @contextlib.asynccontextmanager
  async def lock(self, session_id: str) -> AsyncIterator[None]:
    """Serializes mutations of a single session."""
    session_lock = self._locks.setdefault(session_id, asyncio.Lock())
    async with session_lock:
      yield

  def __len__(self) -> int:
    return len(self._sessions)
