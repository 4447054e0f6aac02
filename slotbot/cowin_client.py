from __future__ import annotations

import hashlib
import logging
import time
from typing import Any, Callable, Iterable, TypeVar

import httpx
from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from slotbot.config import DEFAULT_API_BASE_URL
from slotbot.domain import ProviderBusyError, ProviderQueryError, Slot

logger = logging.getLogger(__name__)

T = TypeVar("T")

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0 Safari/537.36"
)

# Booking answers 409, or 400 with one of these messages, when somebody else
# took the slot first. Any other 400 is a real error.
_SLOT_GONE_MARKERS = ("full capacity", "fully booked", "no longer available")


def _slot_gone(response: httpx.Response) -> bool:
    if response.status_code == 409:
        return True
    if response.status_code != 400:
        return False
    text = response.text.lower()
    return any(marker in text for marker in _SLOT_GONE_MARKERS)


def _short_exc(retry_state: RetryCallState) -> str | None:
    if retry_state.outcome is None or not retry_state.outcome.failed:
        return None
    exc = retry_state.outcome.exception()
    if exc is None:
        return None
    # Type and message only: no traceback between attempts.
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _log_after_attempt(retry_state: RetryCallState) -> None:
    if retry_state.outcome is not None and retry_state.outcome.failed:
        logger.debug("Request attempt %s failed (%s)", retry_state.attempt_number, _short_exc(retry_state))


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    next_attempt = retry_state.attempt_number + 1
    reason = _short_exc(retry_state) or "unknown"

    if sleep_seconds is None:
        logger.info("Provider busy, retrying (reason: %s)", reason)
        return
    logger.info("Provider busy, request attempt %s in %.1f s (reason: %s)", next_attempt, sleep_seconds, reason)


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _time_slots(raw: Iterable[Any]) -> tuple[str, ...]:
    # Older responses list plain strings, newer ones {"time": ..., "seats": ...}.
    result: list[str] = []
    for item in raw or ():
        if isinstance(item, dict):
            if item.get("time"):
                result.append(str(item["time"]))
        elif item:
            result.append(str(item))
    return tuple(result)


def parse_calendar(payload: Any) -> list[Slot]:
    """Turn a calendarByPin/calendarByDistrict body into slots, in response order."""
    if not isinstance(payload, dict) or not isinstance(payload.get("centers"), list):
        raise ProviderQueryError("Malformed calendar response: expected an object with a 'centers' list")

    slots: list[Slot] = []
    try:
        for center in payload["centers"]:
            for session in center.get("sessions") or ():
                total = _as_int(session.get("available_capacity"))
                dose1 = session.get("available_capacity_dose1")
                dose2 = session.get("available_capacity_dose2")
                slots.append(
                    Slot(
                        date=str(session["date"]),
                        center_id=int(center["center_id"]),
                        center_name=str(center.get("name", "")),
                        pincode=str(center.get("pincode", "")),
                        session_id=str(session["session_id"]),
                        vaccine=str(session.get("vaccine", "")),
                        capacity_dose1=total if dose1 is None else _as_int(dose1),
                        capacity_dose2=total if dose2 is None else _as_int(dose2),
                        time_slots=_time_slots(session.get("slots")),
                    )
                )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise ProviderQueryError(f"Malformed calendar response ({type(e).__name__}: {e})") from e
    return slots


class CowinClient:
    """Thin CoWIN API wrapper. One instance (and one connection pool) per run."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout_seconds: float = 20.0,
        retry_attempts: int = 3,
        transport: httpx.BaseTransport | None = None,
        retry_sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._retry_attempts = retry_attempts
        self._retry_sleep = retry_sleep
        self._http = httpx.Client(
            base_url=base_url,
            timeout=timeout_seconds,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> CowinClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _with_retry(self, fn: Callable[[], T]) -> T:
        decorated = retry(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=8),
            retry=retry_if_exception_type(ProviderBusyError),
            after=_log_after_attempt,
            before_sleep=_log_before_sleep,
            sleep=self._retry_sleep,
            reraise=True,
        )(fn)
        return decorated()

    def _send(self, method: str, path: str, *, token: str | None = None, **kwargs: Any) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        try:
            response = self._http.request(method, path, headers=headers, **kwargs)
        except httpx.TransportError as e:
            # Timeouts and dropped connections.
            raise ProviderBusyError(f"{method} {path}: {type(e).__name__}: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderBusyError(f"{method} {path}: HTTP {response.status_code}")
        if response.status_code in (401, 403):
            raise ProviderQueryError(f"{method} {path}: HTTP {response.status_code}, session expired or forbidden")
        return response

    def _request(self, method: str, path: str, *, token: str | None = None, **kwargs: Any) -> httpx.Response:
        response = self._with_retry(lambda: self._send(method, path, token=token, **kwargs))
        if response.is_error:
            raise ProviderQueryError(f"{method} {path}: HTTP {response.status_code}: {response.text[:200]}")
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ProviderQueryError(f"{response.request.url.path}: response is not JSON") from e

    def generate_otp(self, mobile: str) -> str:
        data = self._json(self._request("POST", "/v2/auth/public/generateOTP", json={"mobile": mobile}))
        txn_id = data.get("txnId") if isinstance(data, dict) else None
        if not txn_id:
            raise ProviderQueryError("generateOTP: response has no txnId")
        return str(txn_id)

    def confirm_otp(self, txn_id: str, otp: str) -> str:
        response = self._request(
            "POST",
            "/v2/auth/public/confirmOTP",
            json={"otp": sha256_hex(otp), "txnId": txn_id},
        )
        data = self._json(response)
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise ProviderQueryError("confirmOTP: response has no token")
        return str(token)

    def beneficiaries(self, token: str) -> list[dict[str, Any]]:
        data = self._json(self._request("GET", "/v2/appointment/beneficiaries", token=token))
        items = data.get("beneficiaries") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise ProviderQueryError("beneficiaries: response has no 'beneficiaries' list")
        return items

    def states(self) -> list[dict[str, Any]]:
        data = self._json(self._request("GET", "/v2/admin/location/states"))
        items = data.get("states") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise ProviderQueryError("states: response has no 'states' list")
        return items

    def districts(self, state_id: int) -> list[dict[str, Any]]:
        data = self._json(self._request("GET", f"/v2/admin/location/districts/{state_id}"))
        items = data.get("districts") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise ProviderQueryError("districts: response has no 'districts' list")
        return items

    def calendar_by_pin(self, pincode: str, date: str, vaccine: str, *, token: str | None = None) -> list[Slot]:
        params = {"pincode": pincode, "date": date}
        if vaccine:
            params["vaccine"] = vaccine
        response = self._request("GET", "/v2/appointment/sessions/calendarByPin", token=token, params=params)
        return parse_calendar(self._json(response))

    def calendar_by_district(self, district_id: int, date: str, vaccine: str, *, token: str | None = None) -> list[Slot]:
        params = {"district_id": str(district_id), "date": date}
        if vaccine:
            params["vaccine"] = vaccine
        response = self._request("GET", "/v2/appointment/sessions/calendarByDistrict", token=token, params=params)
        return parse_calendar(self._json(response))

    def schedule(self, token: str, slot: Slot, *, dose: int, beneficiaries: Iterable[str]) -> str | None:
        """Book `slot` for every beneficiary. None when the slot is already gone.

        Sent exactly once: a booking whose answer was lost may have gone
        through, so a timeout or 5xx here is a hard failure, never a retry.
        """
        if not slot.time_slots:
            raise ProviderQueryError(f"schedule: session {slot.session_id} has no time slot to book")

        path = "/v2/appointment/schedule"
        payload = {
            "dose": dose,
            "session_id": slot.session_id,
            "slot": slot.time_slots[0],
            "beneficiaries": list(beneficiaries),
            "center_id": slot.center_id,
        }
        try:
            response = self._send("POST", path, token=token, json=payload)
        except ProviderBusyError as e:
            raise ProviderQueryError(
                f"Booking outcome unknown for session {slot.session_id}, check the account before retrying ({e})"
            ) from e

        if _slot_gone(response):
            logger.info("Booking rejected for session %s (HTTP %s)", slot.session_id, response.status_code)
            return None
        if response.is_error:
            raise ProviderQueryError(f"POST {path}: HTTP {response.status_code}: {response.text[:200]}")

        data = self._json(response)
        if not isinstance(data, dict):
            raise ProviderQueryError("schedule: unexpected response body")
        confirmation = data.get("appointment_confirmation_no") or data.get("appointment_id")
        if not confirmation:
            raise ProviderQueryError("schedule: response has no appointment confirmation number")
        return str(confirmation)
