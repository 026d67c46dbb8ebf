"""
Exception taxonomy.

- :class:`AlarmValidationError` is raised synchronously to callers of the
  data coordinator when an alarm is rejected (empty name, invalid address,
  alarm limit reached).
- :class:`SmartAlarmError` and its subclasses are raised by the calculation
  client. The coordinator and refresh loop catch them, log, and leave the
  alarm's previous adjustment untouched.
- :class:`CalculationCancelled` is raised when a calculation observes that its
  cancellation token was cancelled.
"""

from __future__ import annotations

from typing import Optional


class AlarmValidationError(ValueError):
    """Alarm rejected before any store mutation or network call."""


class SmartAlarmError(Exception):
    """Base class for calculation client failures."""


class InvalidURLError(SmartAlarmError):
    def __init__(self, url: str):
        super().__init__(f"Invalid calculation service URL: {url!r}")
        self.url = url


class InvalidResponseError(SmartAlarmError):
    def __init__(self, detail: str = "Invalid response from server"):
        super().__init__(detail)
        self.detail = detail


class InvalidTimeRelationshipError(SmartAlarmError):
    def __init__(self, detail: str = "Invalid time relationship between wake and arrival"):
        super().__init__(detail)
        self.detail = detail


class ServerError(SmartAlarmError):
    def __init__(self, message: str):
        super().__init__(f"Server error: {message}")
        self.message = message


class HttpError(SmartAlarmError):
    def __init__(self, status_code: int, body: Optional[str] = None):
        super().__init__(f"HTTP error: {status_code}")
        self.status_code = status_code
        self.body = body


class DecodingError(SmartAlarmError):
    def __init__(self, detail: str):
        super().__init__(f"Decoding error: {detail}")
        self.detail = detail


class NetworkError(SmartAlarmError):
    def __init__(self, detail: str):
        super().__init__(f"Network error: {detail}")
        self.detail = detail


class CalculationCancelled(Exception):
    """A calculation stopped because its cancellation token was cancelled."""
