from __future__ import annotations

import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, List, Optional, Tuple
from urllib.parse import urlparse

import requests

from smartwake.domain.errors import (
    DecodingError,
    HttpError,
    InvalidResponseError,
    InvalidTimeRelationshipError,
    InvalidURLError,
    NetworkError,
    ServerError,
)
from smartwake.domain.models import Alarm, AlarmAdjustment, UserProfile
from smartwake.logging_setup import setup_logging
from smartwake.services.adjustments import SIGNIFICANT_MINUTES, adjustment_minutes, build_adjustment
from smartwake.services.cancellation import CancellationToken
from smartwake.transport.payload import Location, SmartAlarmResponse, build_request, decode_response

TAG = __name__
logger = setup_logging()

MAX_ARRIVAL_GAP = timedelta(hours=24)
HISTORY_SIZE = 10


@dataclass(frozen=True)
class CalculationServiceConfig:
    """
    Connection settings for the wake-time calculation service.

    Parameters
    ----------
    url
        HTTP(S) endpoint accepting ``POST`` requests.
    timeout_s
        Request timeout in seconds.
    verify_tls
        Whether to verify TLS certificates.
    auth_header
        Optional ``Authorization`` header value (e.g. ``Bearer <token>``).
    """

    url: str
    timeout_s: float = 30.0
    verify_tls: bool = True
    auth_header: Optional[str] = None


class SmartAlarmCalculationClient:
    """
    HTTP client for the wake-time calculation service.

    One invocation performs exactly one ``POST``; there is no retry. The
    client never touches the alarm store: callers decide what to do with the
    returned adjustment.

    Notes
    -----
    - Transport failures are mapped onto the
      :class:`~smartwake.domain.errors.SmartAlarmError` hierarchy.
    - The last few decoded responses are kept per alarm for diagnostics.
    """

    def __init__(self, cfg: CalculationServiceConfig, session: Optional[requests.Session] = None):
        self._cfg = cfg
        self._session = session or requests.Session()
        self._lock = threading.Lock()
        self._history: Deque[Tuple[uuid.UUID, SmartAlarmResponse]] = deque(maxlen=HISTORY_SIZE)

    @property
    def config(self) -> CalculationServiceConfig:
        return self._cfg

    # ---------- history ----------
    @property
    def last_response(self) -> Optional[SmartAlarmResponse]:
        with self._lock:
            return self._history[-1][1] if self._history else None

    def recent_responses(self, alarm_id: Optional[uuid.UUID] = None) -> List[SmartAlarmResponse]:
        with self._lock:
            return [r for aid, r in self._history if alarm_id is None or aid == alarm_id]

    def clear_history_for_alarm(self, alarm_id: uuid.UUID) -> int:
        with self._lock:
            kept = [(aid, r) for aid, r in self._history if aid != alarm_id]
            removed = len(self._history) - len(kept)
            self._history = deque(kept, maxlen=HISTORY_SIZE)
        return removed

    # ---------- validation ----------
    def _validate_url(self) -> str:
        url = self._cfg.url
        parsed = urlparse(url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InvalidURLError(url)
        return url

    @staticmethod
    def _resolve_times(
        alarm: Alarm,
        arrival_time: Optional[datetime],
        now: datetime,
    ) -> Tuple[datetime, datetime]:
        occurrence = alarm.next_occurrence(now)
        if occurrence is None or occurrence <= now:
            raise InvalidTimeRelationshipError("next occurrence is missing or not in the future")

        arrival = arrival_time or alarm.next_arrival(now)
        gap = arrival - occurrence
        if gap < timedelta(0):
            raise InvalidTimeRelationshipError("arrival time is before the alarm time")
        if gap > MAX_ARRIVAL_GAP:
            logger.bind(tag=TAG).warning(
                f"alarm {alarm.id}: {gap} between wake and arrival exceeds 24h"
            )
        return occurrence, arrival

    # ---------- request ----------
    def request_wake_time(
        self,
        alarm: Alarm,
        user_profile: UserProfile,
        arrival_time: Optional[datetime] = None,
        current_location: Optional[Location] = None,
        force_recalculation: bool = False,
        cancel_token: Optional[CancellationToken] = None,
        now: Optional[datetime] = None,
    ) -> SmartAlarmResponse:
        """
        Ask the service for a wake time for ``alarm``'s next occurrence.

        Raises
        ------
        InvalidTimeRelationshipError
            The occurrence is not in the future or the arrival precedes it.
        InvalidURLError
            The configured URL is not an absolute http(s) URL.
        NetworkError, InvalidResponseError, ServerError, HttpError, DecodingError
            Transport, status and body failures.
        CalculationCancelled
            ``cancel_token`` was cancelled before sending or before returning.
        """
        now = now or datetime.now(timezone.utc)
        occurrence, arrival = self._resolve_times(alarm, arrival_time, now)
        url = self._validate_url()

        body = build_request(
            alarm,
            user_profile,
            occurrence=occurrence,
            arrival=arrival,
            current_location=current_location,
            force_recalculation=force_recalculation,
        )

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        logger.bind(tag=TAG).info(
            f"requesting wake time for '{alarm.name}' ({alarm.id}) occurring {occurrence.isoformat()}"
        )
        started = time.monotonic()
        payload = self._post(url, body)
        elapsed = time.monotonic() - started

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        response = decode_response(payload)
        logger.bind(tag=TAG).info(
            f"wake time for '{alarm.name}' is {response.wake_time.isoformat()} "
            f"(confidence {response.confidence_score:.2f}, {elapsed:.2f}s)"
        )
        minutes = adjustment_minutes(occurrence, response.wake_time)
        if abs(minutes) >= SIGNIFICANT_MINUTES:
            logger.bind(tag=TAG).info(f"significant adjustment for '{alarm.name}': {minutes} min")

        with self._lock:
            self._history.append((alarm.id, response))
        return response

    def _post(self, url: str, body: dict) -> Any:
        headers = {"Content-Type": "application/json"}
        if self._cfg.auth_header:
            headers["Authorization"] = self._cfg.auth_header

        try:
            r = self._session.post(
                url,
                json=body,
                headers=headers,
                timeout=self._cfg.timeout_s,
                verify=self._cfg.verify_tls,
            )
        except (requests.exceptions.MissingSchema, requests.exceptions.InvalidURL) as e:
            raise InvalidURLError(url) from e
        except (
            requests.exceptions.InvalidSchema,
            requests.exceptions.ContentDecodingError,
            requests.exceptions.ChunkedEncodingError,
        ) as e:
            raise InvalidResponseError(repr(e)) from e
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            raise NetworkError(repr(e)) from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(repr(e)) from e

        if not 200 <= r.status_code < 300:
            raise self._status_error(r)

        try:
            return r.json()
        except ValueError as e:
            raise DecodingError(f"response body is not JSON: {e}") from e

    @staticmethod
    def _status_error(r: requests.Response) -> Exception:
        try:
            data = r.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and isinstance(data.get("error"), str):
            return ServerError(data["error"])
        return HttpError(r.status_code, body=(r.text or "")[:200])

    # ---------- adjustment ----------
    def calculate(
        self,
        alarm: Alarm,
        user_profile: UserProfile,
        arrival_time: Optional[datetime] = None,
        current_location: Optional[Location] = None,
        force_recalculation: bool = False,
        cancel_token: Optional[CancellationToken] = None,
        now: Optional[datetime] = None,
    ) -> Optional[AlarmAdjustment]:
        """
        Request a wake time and map it to an adjustment.

        Returns
        -------
        AlarmAdjustment or None
            None when the deviation from the nominal occurrence is below the
            noise floor.

        Raises
        ------
        SmartAlarmError, CalculationCancelled
            As :meth:`request_wake_time`.
        """
        now = now or datetime.now(timezone.utc)
        response = self.request_wake_time(
            alarm,
            user_profile,
            arrival_time=arrival_time,
            current_location=current_location,
            force_recalculation=force_recalculation,
            cancel_token=cancel_token,
            now=now,
        )
        adjustment = build_adjustment(response, alarm, now=now)
        if adjustment is None:
            logger.bind(tag=TAG).info(f"no adjustment for '{alarm.name}': below noise floor")
        return adjustment
