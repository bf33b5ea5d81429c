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

"""Enumerations for the yoga commerce server.

This module defines the enums used to represent checkout session state,
payment configuration and the x402 networks the server can settle on.
"""

import enum


class CheckoutStatus(str, enum.Enum):
  OPEN = "open"
  COMPLETED = "completed"
  CANCELED = "canceled"


class CheckoutAction(str, enum.Enum):
  UPDATE = "update"
  COMPLETE = "complete"
  CANCEL = "cancel"


class PaymentMode(str, enum.Enum):
  """Whether card charges move real money."""

  LIVE = "live"
  TEST = "test"


class X402Network(str, enum.Enum):
  BASE = "base"
  BASE_SEPOLIA = "base-sepolia"
