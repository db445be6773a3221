"""Source precedence for multi-app health data.

Several installed apps can write the same physiological metric into the
platform store (two step counters, a watch and a phone).  Samples are ranked
by a fixed precedence table keyed by origin package prefix, then by recency,
so the winner for a bucket is the same on every sync.

Precedence (lower wins):
    1  native Health Connect
    2  first-party companion app (Google Fit)
    3  other apps under the platform vendor's prefix
    4  everything else
    5  known low-trust third-party wearable vendor
"""

from __future__ import annotations

from typing import Iterable

from wearsync.wearables.base import RawHealthSample

# origin_id prefix -> priority.  Longest matching prefix wins.
SOURCE_PRIORITY: dict[str, int] = {
    "com.google.android.apps.healthdata": 1,
    "com.google.android.apps.fitness": 2,
    "com.google.": 3,
    "com.xiaomi.": 5,
}

DEFAULT_PRIORITY = 4

_PREFIXES_BY_LENGTH = sorted(SOURCE_PRIORITY, key=len, reverse=True)


def source_priority(origin_id: str) -> int:
    """Return the precedence rank for an origin package name."""
    for prefix in _PREFIXES_BY_LENGTH:
        if origin_id.startswith(prefix):
            return SOURCE_PRIORITY[prefix]
    return DEFAULT_PRIORITY


def _sort_key(sample: RawHealthSample) -> tuple[int, float, str]:
    return (
        source_priority(sample.origin_id),
        -sample.timestamp.timestamp(),
        sample.origin_id,
    )


def prioritize(samples: Iterable[RawHealthSample]) -> list[RawHealthSample]:
    """Sort samples by (priority asc, timestamp desc, origin_id asc).

    Pure; the result does not depend on the input order except for samples
    that are identical in all three keys.
    """
    return sorted(samples, key=_sort_key)
