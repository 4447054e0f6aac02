from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)


def parse_version(raw: str) -> tuple[int, ...]:
    # "v1.4.0" -> (1, 4, 0); anything after a non-numeric part is ignored.
    parts: list[int] = []
    for piece in raw.strip().lstrip("vV").split("."):
        if not piece.isdigit():
            break
        parts.append(int(piece))
    if not parts:
        raise ValueError(f"Not a version: {raw!r}")
    return tuple(parts)


class VersionGate:
    """One-time check against a published version manifest.

    The manifest is a JSON object with `latest_version` and
    `minimum_supported_version`. Only an explicit end-of-life answer stops the
    run; an unreachable or broken manifest does not.
    """

    def __init__(
        self,
        manifest_url: str | None,
        current_version: str,
        *,
        client: httpx.Client | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._manifest_url = manifest_url
        self._current_version = current_version
        self._client = client
        self._timeout_seconds = timeout_seconds

    def _fetch_manifest(self) -> dict:
        if self._client is not None:
            r = self._client.get(self._manifest_url)
        else:
            r = httpx.get(self._manifest_url, timeout=self._timeout_seconds)
        r.raise_for_status()
        data = r.json()
        if not isinstance(data, dict):
            raise ValueError("version manifest is not a JSON object")
        return data

    def should_run(self) -> bool:
        if not self._manifest_url:
            logger.debug("No VERSION_CHECK_URL configured, skipping version check")
            return True

        try:
            manifest = self._fetch_manifest()
            current = parse_version(self._current_version)
            minimum = manifest.get("minimum_supported_version")
            latest = manifest.get("latest_version")
            below_minimum = bool(minimum) and current < parse_version(str(minimum))
            below_latest = bool(latest) and current < parse_version(str(latest))
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Version check failed, continuing anyway (%s: %s)", type(e).__name__, e)
            return True

        if below_minimum:
            logger.error(
                "Version %s is no longer supported (minimum %s). Please update to %s.",
                self._current_version,
                minimum,
                latest or minimum,
            )
            return False

        if below_latest:
            logger.info("A newer version is available: %s (running %s)", latest, self._current_version)
        return True
