"""
Chart creation library.
Turns a civil birth time into a complete BaZi analysis.

Usage from Python:
    from bazi_engine.create_chart import analyze
    result = analyze("1983-11-19 08:15", "female", "Europe/Moscow", longitude=37.62)
    result.pillars.day.chinese     # Day pillar
    result.strength.score          # 1-5
    result.to_dict()               # JSON-ready

Pipeline: parse input → resolve UTC offset / DST → true solar time →
calendar date (day boundary) → calendar source at local noon → hour pillar
override → balance, strength, interactions, luck, structure, features.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from timezonefinder import TimezoneFinder

from bazi_engine import astro_calendar
from bazi_engine.bazi import (
    Chart,
    Element,
    Gender,
    HeavenlyStem,
    Interaction,
    LuckDirection,
    LuckPeriod,
    Pillar,
    StemStrength,
    StrengthScore,
    day_master_strength,
    element_balance,
    find_branch_interactions,
    find_stem_combinations,
    find_triple_combinations,
    hour_pillar,
    is_late_zi_hour,
    luck_direction,
    luck_pillars,
    make_pillar,
    stem_strengths,
    stems_for_elements,
    strength_useful_elements,
)
from bazi_engine.calendar_source import CalendarSource, RawPillars, get_calendar_source
from bazi_engine.config import AnalysisConfig, DayBoundary, HourSource
from bazi_engine.errors import CalendarResolutionError, InvalidBirthInput
from bazi_engine.features import chart_features
from bazi_engine.structures import SpecialStructure, classify_structure

logger = logging.getLogger(__name__)

_tf = TimezoneFinder()

# Diagnostic flag codes
MISSING_LONGITUDE = "missing_longitude"
LONGITUDE_SIGN_MISMATCH = "longitude_sign_mismatch"
LUCK_CYCLE_START_DEFAULT = "luck_cycle_start_default"


# ============================================================
# INPUT
# ============================================================

@dataclass(frozen=True)
class BirthInput:
    raw: str
    local_time: datetime  # naive civil wall-clock time
    timezone_id: str
    gender: Gender
    longitude: Optional[float]


def parse_birth_datetime(value: Union[str, datetime]) -> datetime:
    """
    Parse a civil birth time ("YYYY-MM-DD HH:MM", ISO 8601, or a naive datetime).

    Offsets are rejected: the timezone id alone decides the UTC offset.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            raise InvalidBirthInput(f"Unparseable birth datetime: {value!r}") from None
    else:
        raise InvalidBirthInput(f"Birth datetime must be a string, got {type(value).__name__}")

    if parsed.tzinfo is not None:
        raise InvalidBirthInput(
            f"Birth datetime must be local civil time without an offset: {value!r}")
    return parsed


def load_timezone(timezone_id: str) -> ZoneInfo:
    if not isinstance(timezone_id, str) or not timezone_id.strip():
        raise InvalidBirthInput(f"Unknown timezone: {timezone_id!r}")
    try:
        return ZoneInfo(timezone_id.strip())
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidBirthInput(f"Unknown timezone: {timezone_id!r}") from exc


def parse_longitude(value) -> Optional[float]:
    """None or NaN means missing; anything else must be a number in [-180, 180]."""
    if value is None:
        return None
    try:
        longitude = float(value)
    except (TypeError, ValueError):
        raise InvalidBirthInput(f"Longitude must be a number: {value!r}") from None
    if math.isnan(longitude):
        return None
    if not -180.0 <= longitude <= 180.0:
        raise InvalidBirthInput(f"Longitude out of range [-180, 180]: {longitude}")
    return longitude


def parse_birth_input(birth_datetime, gender, timezone_id: str,
                      longitude=None) -> BirthInput:
    try:
        parsed_gender = Gender.parse(gender)
    except ValueError as exc:
        raise InvalidBirthInput(str(exc)) from None

    return BirthInput(
        raw=str(birth_datetime),
        local_time=parse_birth_datetime(birth_datetime),
        timezone_id=timezone_id,
        gender=parsed_gender,
        longitude=parse_longitude(longitude),
    )


# ============================================================
# TIMEZONE HELPERS
# ============================================================

def resolve_timezone(latitude: float, longitude: float) -> str:
    """IANA timezone id for coordinates."""
    tz_name = _tf.timezone_at(lat=latitude, lng=longitude)
    if tz_name is None:
        raise InvalidBirthInput(f"Could not determine timezone for ({latitude}, {longitude})")
    return tz_name


def utc_offset_for(local_time: datetime, tz: ZoneInfo) -> tuple[float, float, bool]:
    """
    UTC offset of a civil time in a zone, in minutes.

    Returns:
        (clock_offset, standard_offset, dst_detected)

        clock_offset:    what the clock was actually set to (includes DST if active)
        standard_offset: the zone's standard (non-DST) offset
    """
    aware = local_time.replace(tzinfo=tz)
    clock_offset = aware.utcoffset().total_seconds() / 60

    dst = aware.dst()
    dst_detected = dst is not None and dst.total_seconds() > 0
    standard_offset = clock_offset - dst.total_seconds() / 60 if dst_detected else clock_offset

    return clock_offset, standard_offset, dst_detected


# ============================================================
# RESULT TYPES
# ============================================================

@dataclass(frozen=True)
class Diagnostics:
    input: str
    timezone: str
    local_time: datetime
    civil_time_used: datetime
    utc_time: datetime
    utc_offset_minutes: float
    standard_offset_minutes: float
    is_dst: bool
    longitude: float
    longitude_source: str  # "input" | "timezone"
    low_confidence: bool
    central_meridian: float
    longitude_correction_minutes: float
    local_mean_time: datetime
    equation_of_time_minutes: float
    true_solar_time: datetime
    total_correction_minutes: float
    hour_source: HourSource
    hour_time_used: datetime
    day_boundary: DayBoundary
    calendar_date: date
    calendar_query: datetime
    calendar_source: str
    calendar_pillars: RawPillars
    late_zi_hour: bool
    luck_start_term: str
    luck_start_days: int
    flags: tuple[str, ...]

    def to_dict(self):
        return {
            "input": self.input,
            "timezone": self.timezone,
            "local_time": self.local_time.isoformat(),
            "civil_time_used": self.civil_time_used.isoformat(),
            "utc_time": self.utc_time.isoformat(),
            "utc_offset_minutes": self.utc_offset_minutes,
            "standard_offset_minutes": self.standard_offset_minutes,
            "is_dst": self.is_dst,
            "longitude": self.longitude,
            "longitude_source": self.longitude_source,
            "low_confidence": self.low_confidence,
            "central_meridian": self.central_meridian,
            "longitude_correction_minutes": round(self.longitude_correction_minutes, 2),
            "local_mean_time": self.local_mean_time.isoformat(timespec="seconds"),
            "equation_of_time_minutes": round(self.equation_of_time_minutes, 2),
            "true_solar_time": self.true_solar_time.isoformat(timespec="seconds"),
            "total_correction_minutes": round(self.total_correction_minutes, 2),
            "hour_source": self.hour_source.value,
            "hour_time_used": self.hour_time_used.isoformat(timespec="seconds"),
            "day_boundary": self.day_boundary.value,
            "calendar_date": self.calendar_date.isoformat(),
            "calendar_query": self.calendar_query.isoformat(),
            "calendar_source": self.calendar_source,
            "calendar_hour_pillar_ignored": "".join(self.calendar_pillars.hour),
            "late_zi_hour": self.late_zi_hour,
            "luck_start_term": self.luck_start_term,
            "luck_start_days": self.luck_start_days,
            "flags": list(self.flags),
        }


@dataclass(frozen=True)
class ChartAnalysis:
    gender: Gender
    pillars: Chart
    element_balance: dict[Element, float]
    strength: StrengthScore
    useful_elements: tuple[Element, ...]
    harmful_elements: tuple[Element, ...]
    useful_stems: tuple[HeavenlyStem, ...]
    harmful_stems: tuple[HeavenlyStem, ...]
    luck_direction: LuckDirection
    luck_pillars: tuple[LuckPeriod, ...]
    interactions: tuple[Interaction, ...]
    stem_combinations: tuple[Interaction, ...]
    triple_combinations: tuple[Interaction, ...]
    stem_strengths: dict[str, StemStrength]
    structure: SpecialStructure
    special_structure: Optional[SpecialStructure]
    features: dict
    diagnostics: Diagnostics

    @property
    def day_master(self) -> HeavenlyStem:
        return self.pillars.day_master

    def to_dict(self):
        dm = self.day_master
        return {
            "gender": self.gender.value,
            "day_master": {
                "stem": dm.chinese,
                "pinyin": dm.pinyin,
                "element": dm.element.value,
                "polarity": dm.polarity.value,
                "description": str(dm),
            },
            "pillars": self.pillars.to_dict(),
            "element_balance": {e.value: round(v, 3) for e, v in self.element_balance.items()},
            "strength": self.strength.to_dict(),
            "useful_elements": [e.value for e in self.useful_elements],
            "harmful_elements": [e.value for e in self.harmful_elements],
            "useful_stems": [s.chinese for s in self.useful_stems],
            "harmful_stems": [s.chinese for s in self.harmful_stems],
            "luck_direction": self.luck_direction.value,
            "luck_pillars": [lp.to_dict() for lp in self.luck_pillars],
            "interactions": [i.to_dict() for i in self.interactions],
            "stem_combinations": [i.to_dict() for i in self.stem_combinations],
            "triple_combinations": [i.to_dict() for i in self.triple_combinations],
            "stem_strengths": {k: v.to_dict() for k, v in self.stem_strengths.items()},
            "structure": self.structure.to_dict(),
            "special_structure": self.special_structure.to_dict() if self.special_structure else None,
            "features": self.features,
            "diagnostics": self.diagnostics.to_dict(),
        }


# ============================================================
# CHART COMPUTATION
# ============================================================

def _chart_from_raw(raw: RawPillars) -> tuple[Pillar, Pillar, Pillar]:
    try:
        return (
            make_pillar(*raw.year, "year"),
            make_pillar(*raw.month, "month"),
            make_pillar(*raw.day, "day"),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise CalendarResolutionError(f"Calendar returned unrecognized pillars: {raw.to_dict()}") from exc


def analyze(birth_datetime: Union[str, datetime],
            gender: Union[str, Gender],
            timezone_id: str,
            longitude: Optional[float] = None,
            use_true_solar_time_for_hour: Optional[bool] = None,
            config: Optional[AnalysisConfig] = None,
            calendar: Optional[CalendarSource] = None) -> ChartAnalysis:
    """
    Compute a full BaZi analysis from a civil birth time.

    Args:
        birth_datetime: local civil time, "YYYY-MM-DD HH:MM" or ISO 8601 without offset
        gender: "male" or "female"
        timezone_id: IANA zone id, e.g. "Europe/Moscow"
        longitude: degrees east positive; missing → approximated from the UTC offset
        use_true_solar_time_for_hour: overrides the config's hour source
        config: conventions; defaults to AnalysisConfig.from_env()
        calendar: calendar collaborator; defaults to the one named in config

    Raises:
        InvalidBirthInput: bad datetime, timezone, gender or longitude
        CalendarResolutionError: the calendar could not resolve the date
    """
    config = (config or AnalysisConfig.from_env()).with_overrides(
        use_true_solar_time_for_hour=use_true_solar_time_for_hour)
    birth = parse_birth_input(birth_datetime, gender, timezone_id, longitude)
    tz = load_timezone(timezone_id)
    if calendar is None:
        calendar = get_calendar_source(config.calendar)
    flags = []

    # UTC offset / DST
    clock_offset, standard_offset, dst_detected = utc_offset_for(birth.local_time, tz)
    civil_time = birth.local_time
    offset_used = clock_offset
    if config.use_standard_time and dst_detected:
        civil_time = birth.local_time - timedelta(minutes=clock_offset - standard_offset)
        offset_used = standard_offset
        logger.debug("DST stripped: %s → %s", birth.local_time, civil_time)

    # Longitude
    if birth.longitude is None:
        longitude_used = astro_calendar.longitude_from_utc_offset(offset_used)
        longitude_source = "timezone"
        flags.append(MISSING_LONGITUDE)
        logger.warning("No longitude for %s; approximating %.1f° from UTC offset %+.0f min "
                       "(reduced confidence)", birth.raw, longitude_used, offset_used)
    else:
        longitude_used = birth.longitude
        longitude_source = "input"
        if astro_calendar.longitude_sign_mismatch(longitude_used, offset_used,
                                                  config.sign_mismatch_threshold):
            flags.append(LONGITUDE_SIGN_MISMATCH)
            logger.warning("Longitude %.2f disagrees in sign with %s (UTC offset %+.0f min)",
                           longitude_used, timezone_id, offset_used)

    # True solar time
    correction = astro_calendar.true_solar_time(civil_time, longitude_used)
    hour_time = correction.true_solar_time if config.use_true_solar_time_for_hour else civil_time
    logger.debug("Hour source %s: %s", config.hour_source.value, hour_time.isoformat())

    # Calendar date and nominal pillars
    calendar_date = astro_calendar.resolve_calendar_date(civil_time, config.day_boundary)
    query = astro_calendar.calendar_query_instant(calendar_date, tz)
    raw = calendar.resolve_pillars(query)
    year, month, day = _chart_from_raw(raw)

    # Hour pillar override. The next-stem row applies only under the midnight
    # boundary; the 23:00 boundary has already moved the date.
    late_zi_next_stem = config.late_zi_uses_next_stem and config.day_boundary == DayBoundary.MIDNIGHT
    hour = hour_pillar(day.stem, hour_time.hour, hour_time.minute, late_zi_next_stem)
    chart = Chart(year=year, month=month, day=day, hour=hour)

    # Balance and strength
    balance = element_balance(chart)
    strength = day_master_strength(chart, birth.gender)

    # Luck pillars
    direction = luck_direction(chart.year.stem, birth.gender)
    luck_start = astro_calendar.luck_start_age(
        calendar_date, tz, forward=direction == LuckDirection.FORWARD)
    luck = luck_pillars(chart.month, direction, luck_start.age, config.luck_period_count)
    if luck.start_index_defaulted:
        flags.append(LUCK_CYCLE_START_DEFAULT)
        logger.debug("Month pillar %s not in the %s luck sequence; starting at index 0",
                     chart.month.chinese, direction.value)

    # Structure and useful elements
    structure = classify_structure(chart)
    if structure.is_special:
        useful = list(structure.useful_elements)
        harmful = [e for e in Element if e not in useful]
    else:
        useful, harmful = strength_useful_elements(chart.day_master.element, strength.score)

    diagnostics = Diagnostics(
        input=birth.raw,
        timezone=timezone_id,
        local_time=birth.local_time,
        civil_time_used=civil_time,
        utc_time=birth.local_time.replace(tzinfo=tz).astimezone(timezone.utc),
        utc_offset_minutes=clock_offset,
        standard_offset_minutes=standard_offset,
        is_dst=dst_detected,
        longitude=longitude_used,
        longitude_source=longitude_source,
        low_confidence=MISSING_LONGITUDE in flags,
        central_meridian=correction.central_meridian,
        longitude_correction_minutes=correction.longitude_correction_minutes,
        local_mean_time=correction.local_mean_time,
        equation_of_time_minutes=correction.equation_of_time_minutes,
        true_solar_time=correction.true_solar_time,
        total_correction_minutes=correction.total_correction_minutes,
        hour_source=config.hour_source,
        hour_time_used=hour_time,
        day_boundary=config.day_boundary,
        calendar_date=calendar_date,
        calendar_query=query,
        calendar_source=getattr(calendar, "name", type(calendar).__name__),
        calendar_pillars=raw,
        late_zi_hour=is_late_zi_hour(hour_time.hour),
        luck_start_term=luck_start.term.chinese,
        luck_start_days=luck_start.days,
        flags=tuple(flags),
    )

    return ChartAnalysis(
        gender=birth.gender,
        pillars=chart,
        element_balance=balance,
        strength=strength,
        useful_elements=tuple(useful),
        harmful_elements=tuple(harmful),
        useful_stems=tuple(stems_for_elements(useful)),
        harmful_stems=tuple(stems_for_elements(harmful)),
        luck_direction=direction,
        luck_pillars=luck.periods,
        interactions=tuple(find_branch_interactions(chart)),
        stem_combinations=tuple(find_stem_combinations(chart)),
        triple_combinations=tuple(find_triple_combinations(chart)),
        stem_strengths=stem_strengths(chart),
        structure=structure,
        special_structure=structure if structure.is_special else None,
        features=chart_features(chart, balance, strength.score),
        diagnostics=diagnostics,
    )
