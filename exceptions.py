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

"""Custom exceptions for the yoga commerce server."""


class CommerceError(Exception):
  """Base class for all commerce exceptions."""

  def __init__(
      self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500
  ):
    self.message = message
    self.code = code
    self.status_code = status_code
    super().__init__(self.message)


class NotFoundError(CommerceError):
  """Raised when a session, product, class or order is unknown."""

  def __init__(self, message: str):
    super().__init__(message, code="RESOURCE_NOT_FOUND", status_code=404)


class InvalidStateError(CommerceError):
  """Raised when an operation is not permitted in the session's status."""

  def __init__(self, message: str):
    super().__init__(message, code="INVALID_STATE", status_code=409)


class InvalidRequestError(CommerceError):
  """Raised when the request is invalid (e.g. missing fields)."""

  def __init__(self, message: str):
    super().__init__(message, code="INVALID_REQUEST", status_code=400)


class InvalidPaymentError(CommerceError):
  """Raised when a payment token or proof is rejected before settlement."""

  def __init__(self, message: str):
    super().__init__(message, code="INVALID_PAYMENT", status_code=400)


class PaymentFailedError(CommerceError):
  """Raised when the payment provider rejects or fails a charge."""

  def __init__(
      self, message: str, code: str = "PAYMENT_FAILED", status_code: int = 402
  ):
    super().__init__(message, code=code, status_code=status_code)


class ConfigError(CommerceError):
  """Raised when payment configuration is missing or malformed."""

  def __init__(self, message: str, code: str = "SERVER_MISCONFIGURED"):
    super().__init__(message, code=code, status_code=503)


class UnsupportedPriceError(ConfigError):
  """Raised when a price cannot be converted to atomic units."""

  def __init__(self, message: str):
    super().__init__(message, code="UNSUPPORTED_PRICE")
