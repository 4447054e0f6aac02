from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import find_dotenv, load_dotenv

from slotbot.domain import ConfigurationFormatError
from slotbot.pacing import ThrottlePolicy

APP_VERSION = "1.4.0"

DEFAULT_API_BASE_URL = "https://cdn-api.co-vin.in/api"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_csv(raw: str) -> tuple[str, ...]:
    # PINCODES=110001, 110002,,110001 -> ("110001", "110002")
    parts = [p.strip() for p in raw.split(",")]

    seen: set[str] = set()
    result: list[str] = []
    for p in parts:
        if not p or p in seen:
            continue
        seen.add(p)
        result.append(p)
    return tuple(result)


def _parse_telegram_chat_ids(raw: str) -> tuple[str, ...]:
    result = _parse_csv(raw)
    for p in result:
        # Telegram allows numeric IDs; groups/supergroups can be negative.
        try:
            int(p)
        except ValueError as e:
            raise ConfigurationFormatError(f"Invalid TELEGRAM_CHAT_ID value: {p!r}. Expected integer chat id.") from e
        if p == "0":
            raise ConfigurationFormatError("Invalid TELEGRAM_CHAT_ID value: '0' is not a valid chat id")
    return result


def _require(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ConfigurationFormatError(f"Missing required environment variable: {name}")
    return value


def _get_bool(name: str, default: str) -> bool:
    raw = os.getenv(name, default).strip().lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ConfigurationFormatError(f"{name} must be a boolean (1/0, true/false, yes/no), got {raw!r}")


def _get_int(name: str, default: str, *, minimum: int | None = None) -> int:
    raw = os.getenv(name, default).strip()
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationFormatError(f"{name} must be an integer, got {raw!r}") from e
    if minimum is not None and value < minimum:
        raise ConfigurationFormatError(f"{name} must be >= {minimum}")
    return value


def _get_float(name: str, default: str) -> float:
    raw = os.getenv(name, default).strip()
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigurationFormatError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigurationFormatError(f"{name} must be > 0")
    return value


@dataclass(frozen=True)
class Settings:
    phone_number: str
    subject_ids: tuple[str, ...]

    search_by_region_code: bool = True
    region_codes: tuple[str, ...] = ()
    search_by_district: bool = False
    districts: tuple[str, ...] = ()
    search_by_facility_name: bool = False
    facility_names: tuple[str, ...] = ()

    # Raw dd-mm-yyyy; None means "tomorrow".
    search_date: str | None = None
    resource_type: str = "COVISHIELD"
    dose: int = 1
    auto_book: bool = True

    # Polling
    max_attempts: int = 1000
    throttle: ThrottlePolicy = field(default_factory=ThrottlePolicy)

    # HTTP tuning
    api_base_url: str = DEFAULT_API_BASE_URL
    request_timeout_seconds: float = 20.0
    # How many times a single API call is tried on transient failures.
    request_retry_attempts: int = 3
    otp_prompt_attempts: int = 3

    version_check_url: str | None = None

    telegram_bot_token: str | None = None
    telegram_chat_ids: tuple[str, ...] = ()


def _resolve_dotenv(dotenv_path: str | None) -> str:
    if dotenv_path is None:
        # Nearest .env from the working directory upwards; "" when there is none.
        return find_dotenv(usecwd=True)
    if not os.path.isfile(dotenv_path) or not os.access(dotenv_path, os.R_OK):
        raise ConfigurationFormatError(f"Env file not found or not readable: {dotenv_path}")
    return dotenv_path


def load_settings(dotenv_path: str | None = None) -> Settings:
    """Read settings from the environment, filling gaps from a .env file.

    An explicit `dotenv_path` must exist. Real environment variables win.
    """
    path = _resolve_dotenv(dotenv_path)
    if path:
        load_dotenv(dotenv_path=path, override=False)

    dose = _get_int("DOSE", "1")
    if dose not in (1, 2):
        raise ConfigurationFormatError("DOSE must be 1 or 2")

    throttle = ThrottlePolicy(
        enabled=_get_bool("USE_THROTTLING", "0"),
        fixed_delay_ms=_get_int("SLEEP_INTERVAL_MS", "3000", minimum=0),
        threshold_per_window=_get_int("THROTTLING_THRESHOLD", "100", minimum=1),
        window_minutes=_get_int("THROTTLING_INTERVAL_MINUTES", "5", minimum=1),
    )

    telegram_bot_token = os.getenv("TELEGRAM_BOT_TOKEN", "").strip() or None
    telegram_chat_ids = _parse_telegram_chat_ids(os.getenv("TELEGRAM_CHAT_ID", ""))
    if telegram_bot_token and not telegram_chat_ids:
        raise ConfigurationFormatError("TELEGRAM_CHAT_ID is empty. Provide at least one chat id.")

    return Settings(
        phone_number=_require("MOBILE"),
        subject_ids=_parse_csv(_require("BENEFICIARY_IDS")),
        search_by_region_code=_get_bool("SEARCH_BY_PINCODE", "1"),
        region_codes=_parse_csv(os.getenv("PINCODES", "")),
        search_by_district=_get_bool("SEARCH_BY_DISTRICT", "0"),
        districts=_parse_csv(os.getenv("DISTRICTS", "")),
        search_by_facility_name=_get_bool("SEARCH_BY_CENTRE_NAMES", "0"),
        facility_names=_parse_csv(os.getenv("CENTRE_NAMES", "")),
        search_date=os.getenv("DATE_TO_SEARCH", "").strip() or None,
        resource_type=os.getenv("VACCINE_TYPE", "COVISHIELD").strip(),
        dose=dose,
        auto_book=_get_bool("AUTO_BOOK", "1"),
        max_attempts=_get_int("TOTAL_ITERATIONS", "1000", minimum=1),
        throttle=throttle,
        api_base_url=os.getenv("COWIN_API_BASE_URL", DEFAULT_API_BASE_URL).strip().rstrip("/"),
        request_timeout_seconds=_get_float("REQUEST_TIMEOUT_SECONDS", "20"),
        request_retry_attempts=_get_int("REQUEST_RETRY_ATTEMPTS", "3", minimum=1),
        otp_prompt_attempts=_get_int("OTP_PROMPT_ATTEMPTS", "3", minimum=1),
        version_check_url=os.getenv("VERSION_CHECK_URL", "").strip() or None,
        telegram_bot_token=telegram_bot_token,
        telegram_chat_ids=telegram_chat_ids,
    )
