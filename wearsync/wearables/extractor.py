"""Value extraction and unit normalization for raw health samples.

Vendors write the same logical field in different shapes:

    {"count": 1200}                                    # direct scalar
    {"weight": {"inKilograms": 70.2}}                  # unit-wrapped scalar
    {"samples": [{"beatsPerMinute": 71}, {...: 74}]}   # embedded sample array

``extract()`` returns the value in the field's canonical unit, or None when no
known shape matches.  A None is never an error; the caller skips the sample.

``to_reading()`` converts a raw sample into one of the typed readings from
``base`` so the aggregator never touches vendor payloads.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from wearsync.wearables.base import (
    BloodPressure,
    Flow,
    Measurement,
    MetricType,
    RawHealthSample,
    Reading,
    Session,
    parse_iso_datetime,
)
from wearsync.wearables.config_loader import ThresholdConfig

logger = logging.getLogger("wearsync.wearables.extractor")

Converter = Callable[[float], float]

# Defaults used when no ThresholdConfig is passed.
CALORIE_SANITY_KCAL = 10_000.0
CALORIE_MISMATCH_DIVISOR = 1_000.0


def _times(factor: float) -> Converter:
    return lambda v: v * factor


def _over(divisor: float) -> Converter:
    return lambda v: v / divisor


def _identity(v: float) -> float:
    return v


# ---------------------------------------------------------------------------
# Unit normalization tables: wrapped key -> converter into the canonical unit
# ---------------------------------------------------------------------------

ENERGY_TO_KCAL: dict[str, Converter] = {
    "inKilocalories": _identity,
    "inCalories": _over(1000.0),
    "inKilojoules": _over(4.184),
    "inJoules": _over(4184.0),
}

MASS_TO_KG: dict[str, Converter] = {
    "inKilograms": _identity,
    "inGrams": _over(1000.0),
    "inPounds": _times(0.45359237),
    "inOunces": _times(0.028349523125),
}

LENGTH_TO_M: dict[str, Converter] = {
    "inMeters": _identity,
    "inKilometers": _times(1000.0),
    "inMiles": _times(1609.344),
    "inFeet": _times(0.3048),
    "inInches": _times(0.0254),
}

VOLUME_TO_L: dict[str, Converter] = {
    "inLiters": _identity,
    "inMilliliters": _over(1000.0),
    "inFluidOuncesUs": _times(0.0295735295625),
}

TEMPERATURE_TO_C: dict[str, Converter] = {
    "inCelsius": _identity,
    "inFahrenheit": lambda v: (v - 32.0) * 5.0 / 9.0,
    "inKelvin": lambda v: v - 273.15,
}

GLUCOSE_TO_MG_DL: dict[str, Converter] = {
    "inMilligramsPerDeciliter": _identity,
    "inMillimolesPerLiter": _times(18.0),
}

BMR_TO_KCAL_DAY: dict[str, Converter] = {
    "inKilocaloriesPerDay": _identity,
    # 1 W sustained for a day = 86400 J
    "inWatts": _times(86400.0 / 4184.0),
}

PRESSURE_TO_MMHG: dict[str, Converter] = {
    "inMillimetersOfMercury": _identity,
}

PERCENT: dict[str, Converter] = {
    "inPercent": _identity,
}


@dataclass(frozen=True)
class FieldSpec:
    """How to find one logical field and which unit it normalizes to."""

    aliases: tuple[str, ...]
    unit: str
    conversions: Mapping[str, Converter] = field(default_factory=dict)


FIELD_SPECS: dict[str, FieldSpec] = {
    "beatsPerMinute": FieldSpec(("beatsPerMinute", "bpm", "heartRate", "value"), "bpm"),
    "count": FieldSpec(("count", "steps", "value"), "count"),
    "distance": FieldSpec(("distance", "value"), "m", LENGTH_TO_M),
    "energy": FieldSpec(("energy", "calories", "kilocalories", "value"), "kcal", ENERGY_TO_KCAL),
    "volume": FieldSpec(("volume", "water", "value"), "L", VOLUME_TO_L),
    "weight": FieldSpec(("weight", "value"), "kg", MASS_TO_KG),
    "height": FieldSpec(("height", "value"), "m", LENGTH_TO_M),
    "percentage": FieldSpec(("percentage", "percent", "value"), "%", PERCENT),
    "level": FieldSpec(("level", "glucose", "value"), "mg/dL", GLUCOSE_TO_MG_DL),
    "basalMetabolicRate": FieldSpec(
        ("basalMetabolicRate", "bmr", "value"), "kcal/day", BMR_TO_KCAL_DAY
    ),
    "rate": FieldSpec(("rate", "breathsPerMinute", "value"), "brpm"),
    "temperature": FieldSpec(("temperature", "value"), "celsius", TEMPERATURE_TO_C),
    "systolic": FieldSpec(("systolic",), "mmHg", PRESSURE_TO_MMHG),
    "diastolic": FieldSpec(("diastolic",), "mmHg", PRESSURE_TO_MMHG),
    "flow": FieldSpec(("flow", "value"), "level"),
}

# Record type -> logical field holding its value.
METRIC_FIELDS: dict[MetricType, str] = {
    MetricType.HEART_RATE: "beatsPerMinute",
    MetricType.RESTING_HEART_RATE: "beatsPerMinute",
    MetricType.STEPS: "count",
    MetricType.DISTANCE: "distance",
    MetricType.ACTIVE_CALORIES: "energy",
    MetricType.NUTRITION: "energy",
    MetricType.HYDRATION: "volume",
    MetricType.WEIGHT: "weight",
    MetricType.HEIGHT: "height",
    MetricType.BODY_FAT: "percentage",
    MetricType.OXYGEN_SATURATION: "percentage",
    MetricType.BLOOD_GLUCOSE: "level",
    MetricType.BASAL_METABOLIC_RATE: "basalMetabolicRate",
    MetricType.RESPIRATORY_RATE: "rate",
    MetricType.BODY_TEMPERATURE: "temperature",
    MetricType.MENSTRUATION_FLOW: "flow",
}

SESSION_TYPES = frozenset({MetricType.EXERCISE_SESSION, MetricType.SLEEP_SESSION})

# Health Connect sleep stage codes.
SLEEP_STAGE_NAMES: dict[int, str] = {
    0: "unknown",
    1: "awake",
    2: "sleeping",
    3: "out_of_bed",
    4: "light",
    5: "deep",
    6: "rem",
    7: "awake_in_bed",
}


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _find(container: Mapping[str, Any], aliases: tuple[str, ...]) -> Any:
    for key in aliases:
        if container.get(key) is not None:
            return container[key]
    return None


def _resolve(raw: Any, spec: FieldSpec) -> tuple[float | None, str | None]:
    """Return the normalized value and the unit key it was wrapped in (None if bare)."""
    if isinstance(raw, Mapping):
        for key, convert in spec.conversions.items():
            number = _to_number(raw.get(key))
            if number is not None:
                return convert(number), key
        return None, None
    return _to_number(raw), None


def _sanity_check_energy(value: float, thresholds: ThresholdConfig | None) -> float:
    limit = thresholds.calorie_sanity_kcal if thresholds else CALORIE_SANITY_KCAL
    divisor = thresholds.calorie_mismatch_divisor if thresholds else CALORIE_MISMATCH_DIVISOR
    if value > limit:
        logger.debug("Energy value %.1f above %.0f kcal, treating as calories", value, limit)
        return value / divisor
    return value


def extract(
    sample: RawHealthSample,
    target_field: str,
    thresholds: ThresholdConfig | None = None,
) -> float | None:
    """Return ``target_field`` from a raw sample in its canonical unit.

    Lookup order: direct/unit-wrapped field on the payload, then the last
    element of an embedded ``samples`` array.

    Args:
        sample:       Raw platform sample.
        target_field: Logical field name (a key of FIELD_SPECS).
        thresholds:   Energy sanity thresholds; module defaults if None.

    Returns:
        The normalized value, or None if no known representation matched.
    """
    spec = FIELD_SPECS.get(target_field) or FieldSpec((target_field,), "")
    payload = sample.payload

    raw = _find(payload, spec.aliases)
    if raw is None:
        samples = payload.get("samples")
        if isinstance(samples, (list, tuple)) and samples and isinstance(samples[-1], Mapping):
            raw = _find(samples[-1], spec.aliases)

    value, unit_key = _resolve(raw, spec)
    if value is None:
        return None
    # only unlabelled or kcal-labelled values can be calories in disguise
    if spec.unit == "kcal" and unit_key in (None, "inKilocalories"):
        value = _sanity_check_energy(value, thresholds)
    return value


# ---------------------------------------------------------------------------
# Typed conversion
# ---------------------------------------------------------------------------


def _stage_minutes(stages: Any) -> dict[str, float]:
    """Sum minutes per sleep stage name from a Health Connect ``stages`` list."""
    totals: dict[str, float] = {}
    if not isinstance(stages, (list, tuple)):
        return totals
    for stage in stages:
        if not isinstance(stage, Mapping):
            continue
        start = parse_iso_datetime(stage.get("startTime"))
        end = parse_iso_datetime(stage.get("endTime"))
        if start is None or end is None or end <= start:
            continue
        code = stage.get("stage")
        if isinstance(code, str) and not code.isdigit():
            name = code.lower()
        else:
            number = _to_number(code)
            name = SLEEP_STAGE_NAMES.get(int(number), "unknown") if number is not None else "unknown"
        minutes = (end - start).total_seconds() / 60.0
        totals[name] = totals.get(name, 0.0) + minutes
    return totals


def to_reading(
    sample: RawHealthSample, thresholds: ThresholdConfig | None = None
) -> Reading | None:
    """Convert a raw sample to a typed reading, or None to skip it."""
    metric_type = sample.metric_type

    if metric_type in SESSION_TYPES:
        if sample.end_time is None or sample.end_time <= sample.start_time:
            return None
        title = sample.payload.get("title")
        return Session(
            metric_type=metric_type,
            origin_id=sample.origin_id,
            start=sample.start_time,
            end=sample.end_time,
            title=title if isinstance(title, str) else None,
            stages=_stage_minutes(sample.payload.get("stages")),
        )

    if metric_type is MetricType.BLOOD_PRESSURE:
        systolic = extract(sample, "systolic", thresholds)
        diastolic = extract(sample, "diastolic", thresholds)
        if systolic is None or diastolic is None:
            return None
        return BloodPressure(
            origin_id=sample.origin_id,
            time=sample.timestamp,
            systolic=systolic,
            diastolic=diastolic,
        )

    if metric_type is MetricType.MENSTRUATION_FLOW:
        level = extract(sample, "flow", thresholds)
        if level is None:
            return None
        return Flow(origin_id=sample.origin_id, time=sample.timestamp, level=int(level))

    target = METRIC_FIELDS.get(metric_type)
    if target is None:
        return None
    value = extract(sample, target, thresholds)
    if value is None:
        return None
    return Measurement(
        metric_type=metric_type,
        origin_id=sample.origin_id,
        time=sample.timestamp,
        value=value,
        unit=FIELD_SPECS[target].unit,
    )
