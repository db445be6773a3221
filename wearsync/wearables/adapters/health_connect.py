"""Health Connect bridge adapter.

The on-device Health Connect client is exposed to the sync service by a small
companion bridge over HTTP.  This adapter speaks to that bridge and turns its
record JSON into ``RawHealthSample`` objects.

Bridge endpoints used:
    POST /initialize      — {"initialized": bool}
    GET  /sdk-status      — {"status": 3 | "SDK_AVAILABLE" | "available" | ...}
    POST /records/read    — {"records": [...], "pageToken": str | null}

Record shape (as returned by the Health Connect client)::

    {
      "startTime": "2024-06-01T08:00:00Z",
      "endTime": "2024-06-01T08:05:00Z",
      "metadata": {"dataOrigin": "com.google.android.apps.fitness", ...},
      "count": 412
    }

Point records carry ``time`` instead of ``startTime``/``endTime``.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from wearsync.wearables.base import (
    HealthStore,
    HealthStoreError,
    MetricType,
    RawHealthSample,
    SdkStatus,
    TimeRangeFilter,
    parse_iso_datetime,
)

logger = logging.getLogger("wearsync.wearables.health_connect")

# Health Connect SDK status codes and their string forms.
_STATUS_CODES: dict[Any, SdkStatus] = {
    1: SdkStatus.UNAVAILABLE,
    2: SdkStatus.NEEDS_UPDATE,
    3: SdkStatus.AVAILABLE,
    "SDK_UNAVAILABLE": SdkStatus.UNAVAILABLE,
    "SDK_UNAVAILABLE_PROVIDER_UPDATE_REQUIRED": SdkStatus.NEEDS_UPDATE,
    "SDK_AVAILABLE": SdkStatus.AVAILABLE,
}

# Stop paging after this many pages of one record type.
_MAX_PAGES = 50


def parse_sdk_status(raw: Any) -> SdkStatus:
    """Map a bridge status value to SdkStatus; anything unknown is UNAVAILABLE."""
    if raw in _STATUS_CODES:
        return _STATUS_CODES[raw]
    try:
        return SdkStatus(str(raw).lower())
    except ValueError:
        logger.warning("Unrecognized Health Connect SDK status: %r", raw)
        return SdkStatus.UNAVAILABLE


def parse_record(metric_type: MetricType, record: dict[str, Any]) -> RawHealthSample | None:
    """Convert one Health Connect record dict to a RawHealthSample.

    Returns None when the record has no parseable timestamp.
    """
    start = parse_iso_datetime(record.get("time") or record.get("startTime"))
    if start is None:
        return None
    end = parse_iso_datetime(record.get("endTime"))
    metadata = record.get("metadata") or {}
    origin = metadata.get("dataOrigin") or ""
    if isinstance(origin, dict):
        origin = origin.get("packageName", "")
    return RawHealthSample(
        metric_type=metric_type,
        start_time=start,
        end_time=end,
        origin_id=str(origin),
        payload=record,
    )


class HealthConnectBridge(HealthStore):
    """HealthStore backed by the Health Connect HTTP bridge.

    Args:
        base_url:    Bridge root URL (e.g. http://127.0.0.1:8765).
        timeout_s:   Per-request timeout in seconds.
        http_client: Optional pre-configured httpx client (for testing).
    """

    DISPLAY_NAME = "Health Connect"

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 20.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s
        self._http_client = http_client

    # ------------------------------------------------------------------
    # HealthStore interface
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        data = await self._request("POST", "/initialize")
        initialized = bool(data.get("initialized"))
        logger.info("Health Connect initialize → %s", initialized)
        return initialized

    async def get_sdk_status(self) -> SdkStatus:
        data = await self._request("GET", "/sdk-status")
        return parse_sdk_status(data.get("status"))

    async def read_records(
        self, metric_type: MetricType, time_range: TimeRangeFilter
    ) -> list[RawHealthSample]:
        """Read every page of one record type within ``time_range``.

        Raises:
            HealthStoreError: If the bridge is unreachable or answers non-2xx.
        """
        body: dict[str, Any] = {
            "recordType": metric_type.value,
            "timeRangeFilter": {
                "operator": "between",
                "startTime": time_range.start.isoformat(),
                "endTime": time_range.end.isoformat(),
            },
        }
        samples: list[RawHealthSample] = []
        dropped = 0
        for _ in range(_MAX_PAGES):
            data = await self._request("POST", "/records/read", json=body)
            for record in data.get("records") or []:
                sample = parse_record(metric_type, record)
                if sample is None:
                    dropped += 1
                else:
                    samples.append(sample)
            page_token = data.get("pageToken")
            if not page_token:
                break
            body["pageToken"] = page_token
        else:
            logger.warning(
                "Stopped paging %s after %d pages", metric_type.value, _MAX_PAGES
            )

        if dropped:
            logger.debug("Dropped %d %s records without a timestamp", dropped, metric_type.value)
        return samples

    # ------------------------------------------------------------------
    # HTTP helper
    # ------------------------------------------------------------------

    async def _request(
        self, method: str, path: str, json: dict | None = None
    ) -> dict:
        """Call the bridge and return its JSON body.

        Raises:
            HealthStoreError: On transport errors, non-2xx responses, or a
                body that is not a JSON object.
        """
        url = f"{self._base_url}{path}"
        try:
            if self._http_client:
                response = await self._http_client.request(
                    method, url, json=json, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(method, url, json=json)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise HealthStoreError(f"Health Connect bridge {method} {path} failed: {exc}") from exc
        except ValueError as exc:
            raise HealthStoreError(f"Health Connect bridge returned invalid JSON for {path}") from exc

        if not isinstance(data, dict):
            raise HealthStoreError(f"Health Connect bridge returned non-object for {path}")
        return data
