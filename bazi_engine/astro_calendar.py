"""
Calendar utilities for the BaZi chart.
Handles true solar time correction, the day boundary, the approximate
solar-term table used for the luck start age, and ephemeris lookups for
the Jie solar terms.
"""

import logging
import math
import os
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import swisseph as swe

from bazi_engine.config import DayBoundary

logger = logging.getLogger(__name__)

# Point Swiss Ephemeris to data files when provided; the built-in Moshier
# ephemeris is used otherwise.
_ephe_path = os.environ.get("SE_EPHE_PATH")
if _ephe_path:
    swe.set_ephe_path(_ephe_path)


# ============================================================
# TRUE SOLAR TIME
# ============================================================

@dataclass(frozen=True)
class TimeCorrection:
    central_meridian: float
    longitude_correction_minutes: float
    local_mean_time: datetime
    equation_of_time_minutes: float
    true_solar_time: datetime

    @property
    def total_correction_minutes(self) -> float:
        return self.equation_of_time_minutes - self.longitude_correction_minutes


def central_meridian(longitude: float) -> float:
    """
    Timezone meridian nearest to a longitude.

    East longitudes round to the nearest 15°; west longitudes round toward
    zero (ceil), so a negative longitude takes the meridian to its east.
    Example: 37.6 → 45, 116.4 → 120, -122.4 → -120, -7.5 → 0.
    """
    if longitude >= 0:
        return math.floor(longitude / 15 + 0.5) * 15.0
    return math.ceil(longitude / 15) * 15.0


def longitude_correction(longitude: float) -> float:
    """
    Minutes between clock time and Local Mean Time.

    Positive when the meridian lies east of the location, i.e. local mean
    time runs behind the clock.

    Example:
        Moscow (37.62°E, meridian 45°): (45 - 37.62) * 4 = 29.52 min
        So 08:15 clock time → ~07:45 LMT
    """
    return (central_meridian(longitude) - longitude) * 4.0


def equation_of_time(moment: datetime) -> float:
    """Equation of Time in minutes (Spencer's series) for the day of year of `moment`."""
    day_of_year = moment.timetuple().tm_yday
    b = 2 * math.pi * (day_of_year - 1) / 365
    return 229.18 * (
        0.000075
        + 0.001868 * math.cos(b)
        - 0.032077 * math.sin(b)
        - 0.014615 * math.cos(2 * b)
        - 0.040849 * math.sin(2 * b)
    )


def true_solar_time(local_time: datetime, longitude: float) -> TimeCorrection:
    """
    Convert civil wall-clock time to True Solar Time.

    LMT = civil - longitude correction; TST = LMT + EoT, with EoT taken on
    the LMT day of year.
    """
    meridian = central_meridian(longitude)
    correction = longitude_correction(longitude)
    lmt = local_time - timedelta(minutes=correction)
    eot = equation_of_time(lmt)
    tst = lmt + timedelta(minutes=eot)

    logger.debug("True solar time: meridian=%s lon_corr=%.2f eot=%.2f lmt=%s tst=%s",
                 meridian, correction, eot, lmt.isoformat(), tst.isoformat())

    return TimeCorrection(
        central_meridian=meridian,
        longitude_correction_minutes=correction,
        local_mean_time=lmt,
        equation_of_time_minutes=eot,
        true_solar_time=tst,
    )


def longitude_from_utc_offset(offset_minutes: float) -> float:
    """Approximate longitude from a UTC offset (15° per hour), clamped to [-180, 180]."""
    return max(-180.0, min(180.0, offset_minutes / 60 * 15))


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


def longitude_sign_mismatch(longitude: float, offset_minutes: float,
                            threshold: float = 60.0) -> bool:
    """
    True when a longitude points the other way from its timezone.

    Only flagged beyond `threshold` degrees, so locations near the prime
    meridian with a shifted zone (e.g. Spain on CET) pass quietly.
    """
    return _sign(longitude) != _sign(offset_minutes / 60 * 15) and abs(longitude) > threshold


# ============================================================
# DAY BOUNDARY
# ============================================================

def resolve_calendar_date(local_time: datetime,
                          boundary: DayBoundary = DayBoundary.MIDNIGHT) -> date:
    """
    Calendar date owning the Day pillar.

    MIDNIGHT: the civil date; 23:55 on day N stays on day N.
    ZI_HOUR: 23:00 and later moves to the next day.
    """
    if boundary == DayBoundary.ZI_HOUR and local_time.hour >= 23:
        return local_time.date() + timedelta(days=1)
    return local_time.date()


def calendar_query_instant(calendar_date: date, tz: ZoneInfo) -> datetime:
    """Local noon of the resolved date, clear of any library day-boundary logic."""
    return datetime.combine(calendar_date, time(12, 0), tzinfo=tz)


# ============================================================
# APPROXIMATE SOLAR TERMS (luck start age)
# ============================================================

@dataclass(frozen=True)
class SolarTerm:
    month: int
    day: int
    chinese: str
    name: str

    def in_year(self, year: int) -> date:
        return date(year, self.month, self.day)


# Fixed calendar offsets, not computed from the Sun's position.
SOLAR_TERMS = (
    SolarTerm(1, 5, "小寒", "Xiao Han"),
    SolarTerm(1, 20, "大寒", "Da Han"),
    SolarTerm(2, 4, "立春", "Li Chun"),
    SolarTerm(2, 19, "雨水", "Yu Shui"),
    SolarTerm(3, 6, "惊蛰", "Jing Zhe"),
    SolarTerm(3, 21, "春分", "Chun Fen"),
    SolarTerm(4, 5, "清明", "Qing Ming"),
    SolarTerm(4, 20, "谷雨", "Gu Yu"),
    SolarTerm(5, 6, "立夏", "Li Xia"),
    SolarTerm(5, 21, "小满", "Xiao Man"),
    SolarTerm(6, 6, "芒种", "Mang Zhong"),
    SolarTerm(6, 21, "夏至", "Xia Zhi"),
    SolarTerm(7, 7, "小暑", "Xiao Shu"),
    SolarTerm(7, 23, "大暑", "Da Shu"),
    SolarTerm(8, 7, "立秋", "Li Qiu"),
    SolarTerm(8, 23, "处暑", "Chu Shu"),
    SolarTerm(9, 8, "白露", "Bai Lu"),
    SolarTerm(9, 23, "秋分", "Qiu Fen"),
    SolarTerm(10, 8, "寒露", "Han Lu"),
    SolarTerm(10, 23, "霜降", "Shuang Jiang"),
    SolarTerm(11, 7, "立冬", "Li Dong"),
    SolarTerm(11, 22, "小雪", "Xiao Xue"),
    SolarTerm(12, 7, "大雪", "Da Xue"),
    SolarTerm(12, 22, "冬至", "Dong Zhi"),
)


def nearest_solar_term(birth_date: date, forward: bool) -> tuple[date, SolarTerm]:
    """
    Nearest approximate solar term strictly after (forward) or strictly
    before (backward) the birth date.
    """
    candidates = sorted(
        (term.in_year(year), term)
        for year in (birth_date.year - 1, birth_date.year, birth_date.year + 1)
        for term in SOLAR_TERMS
    )

    if forward:
        for term_date, term in candidates:
            if term_date > birth_date:
                return term_date, term
    else:
        for term_date, term in reversed(candidates):
            if term_date < birth_date:
                return term_date, term

    # Unreachable with 72 candidates spanning three years
    raise ValueError(f"Could not find {'next' if forward else 'previous'} solar term from {birth_date}")


@dataclass(frozen=True)
class LuckStart:
    age: float
    days: int
    term: SolarTerm
    term_date: date


def luck_start_age(birth_date: date, tz: ZoneInfo, forward: bool) -> LuckStart:
    """
    Starting age of the first luck period.

    Whole days (truncated) from local noon of the birth date to local
    midnight of the target term, at 3 days per year, one decimal.
    """
    term_date, term = nearest_solar_term(birth_date, forward)
    birth_instant = calendar_query_instant(birth_date, tz).astimezone(timezone.utc)
    term_instant = datetime.combine(term_date, time(0, 0), tzinfo=tz).astimezone(timezone.utc)

    days = abs(int((term_instant - birth_instant).total_seconds() / 86400))
    age = round(days * 3 / 30, 1)

    logger.debug("Luck start: %s term %s (%s), %d days → age %.1f",
                 "next" if forward else "previous", term.chinese, term_date, days, age)
    return LuckStart(age=age, days=days, term=term, term_date=term_date)


# ============================================================
# EPHEMERIS SOLAR TERMS
# ============================================================
#
# The 12 Jie (节) solar terms mark BaZi month boundaries.
# Each Jie is defined by the Sun reaching a specific ecliptic longitude.
# Swiss Ephemeris swe.solcross_ut() finds the exact crossing moment.

LI_CHUN_LONGITUDE = 315.0

# Month branch index for each 30° sector starting at Li Chun (315°)
_SECTOR_BRANCHES = [2, 3, 4, 5, 6, 7, 8, 9, 10, 11, 0, 1]


def julian_day(moment: datetime) -> float:
    """Julian Day (UT) of an aware datetime."""
    utc = moment.astimezone(timezone.utc)
    hours = utc.hour + utc.minute / 60 + utc.second / 3600
    return swe.julday(utc.year, utc.month, utc.day, hours)


def sun_longitude(jd_ut: float) -> float:
    position, _ = swe.calc_ut(jd_ut, swe.SUN, swe.FLG_SWIEPH)
    return position[0]


def month_branch_index(sun_lon: float) -> int:
    """
    Map the Sun's ecliptic longitude to the BaZi month branch index.

      315° (Li Chun)  → Yin (Tiger, 2)
      345° (Jing Zhe) → Mao (Rabbit, 3)
      ...
      285° (Xiao Han) → Chou (Ox, 1)
    """
    sector = int(((sun_lon - LI_CHUN_LONGITUDE) % 360) / 30)
    return _SECTOR_BRANCHES[sector]


def li_chun(year: int) -> float:
    """Julian Day (UT) of Li Chun in a Gregorian year."""
    return swe.solcross_ut(LI_CHUN_LONGITUDE, swe.julday(year, 1, 1, 0), 0)


def day_number(day: date) -> int:
    """Integer day count used for the sexagenary day cycle."""
    return int(swe.julday(day.year, day.month, day.day, 0))
