"""
Calendar collaborators: resolve the nominal year / month / day / hour
pillars for a local instant.

The chart builder always queries at local noon of the resolved calendar
date and replaces the hour pillar, so implementations only need to be
right about year, month and day.

Two sources:
- LunarCalendarSource: the lunar_python lunisolar calendar (default)
- EphemerisCalendarSource: Swiss Ephemeris solar longitude, Five Tigers
  month stems and the Julian Day sexagenary cycle
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from lunar_python import Solar

from bazi_engine import astro_calendar
from bazi_engine.errors import CalendarResolutionError

logger = logging.getLogger(__name__)

STEM_GLYPHS = "甲乙丙丁戊己庚辛壬癸"
BRANCH_GLYPHS = "子丑寅卯辰巳午未申酉戌亥"


@dataclass(frozen=True)
class RawPillars:
    """Stem / branch glyph pairs as reported by a calendar source."""
    year: tuple[str, str]
    month: tuple[str, str]
    day: tuple[str, str]
    hour: tuple[str, str]

    def to_dict(self):
        return {
            "year": "".join(self.year),
            "month": "".join(self.month),
            "day": "".join(self.day),
            "hour": "".join(self.hour),
        }


class CalendarSource(Protocol):
    name: str

    def resolve_pillars(self, local_noon: datetime) -> RawPillars:
        ...


class LunarCalendarSource:
    name = "lunar"

    def resolve_pillars(self, local_noon: datetime) -> RawPillars:
        try:
            solar = Solar.fromYmdHms(local_noon.year, local_noon.month, local_noon.day,
                                     local_noon.hour, local_noon.minute, local_noon.second)
            eight_char = solar.getLunar().getEightChar()
            pillars = RawPillars(
                year=(eight_char.getYearGan(), eight_char.getYearZhi()),
                month=(eight_char.getMonthGan(), eight_char.getMonthZhi()),
                day=(eight_char.getDayGan(), eight_char.getDayZhi()),
                hour=(eight_char.getTimeGan(), eight_char.getTimeZhi()),
            )
        except Exception as exc:
            raise CalendarResolutionError(
                f"lunar calendar could not resolve {local_noon.isoformat()}: {exc}") from exc

        logger.debug("lunar_python pillars for %s: %s", local_noon.isoformat(), pillars.to_dict())
        return pillars


# ============================================================
# EPHEMERIS SOURCE
# ============================================================

# Five Tigers Escape (五虎遁): year stem → stem of the Tiger month
_TIGER_START_STEMS = {
    0: 2, 5: 2,   # Jia/Ji year → Bing Tiger
    1: 4, 6: 4,   # Yi/Geng year → Wu Tiger
    2: 6, 7: 6,   # Bing/Xin year → Geng Tiger
    3: 8, 8: 8,   # Ding/Ren year → Ren Tiger
    4: 0, 9: 0,   # Wu/Gui year → Jia Tiger
}

# Five Rats Escape (五鼠遁): day stem → stem of the Zi hour
_RAT_START_STEMS = {
    0: 0, 5: 0,   # Jia/Ji day → Jia Zi hour
    1: 2, 6: 2,   # Yi/Geng day → Bing Zi hour
    2: 4, 7: 4,   # Bing/Xin day → Wu Zi hour
    3: 6, 8: 6,   # Ding/Ren day → Geng Zi hour
    4: 8, 9: 8,   # Wu/Gui day → Ren Zi hour
}

# (int(jdn) + 20) % 60 gives the sexagenary day index
_JDN_SEXAGENARY_OFFSET = 20


def _glyphs(stem_index: int, branch_index: int) -> tuple[str, str]:
    return STEM_GLYPHS[stem_index % 10], BRANCH_GLYPHS[branch_index % 12]


class EphemerisCalendarSource:
    """
    Astronomical pillars.

    The BaZi year starts at Li Chun (Sun at 315°); months follow the Jie
    terms at every 30° of solar longitude from there.
    """
    name = "ephemeris"

    def resolve_pillars(self, local_noon: datetime) -> RawPillars:
        if local_noon.tzinfo is None:
            raise CalendarResolutionError("ephemeris calendar needs a timezone-aware instant")

        try:
            jd = astro_calendar.julian_day(local_noon)
            sun_lon = astro_calendar.sun_longitude(jd)
            effective_year = local_noon.year
            if jd < astro_calendar.li_chun(local_noon.year):
                effective_year -= 1
            day_number = astro_calendar.day_number(local_noon.date())
        except Exception as exc:
            raise CalendarResolutionError(
                f"ephemeris could not resolve {local_noon.isoformat()}: {exc}") from exc

        # Year 4 CE was Jia Zi, the start of the cycle
        year_stem = (effective_year - 4) % 10
        year_branch = (effective_year - 4) % 12

        month_branch = astro_calendar.month_branch_index(sun_lon)
        month_stem = _TIGER_START_STEMS[year_stem] + (month_branch - 2) % 12

        sexagenary = (day_number + _JDN_SEXAGENARY_OFFSET) % 60
        day_stem = sexagenary % 10

        hour_branch = ((local_noon.hour + 1) // 2) % 12
        hour_stem = _RAT_START_STEMS[day_stem] + hour_branch

        pillars = RawPillars(
            year=_glyphs(year_stem, year_branch),
            month=_glyphs(month_stem, month_branch),
            day=_glyphs(day_stem, sexagenary % 12),
            hour=_glyphs(hour_stem, hour_branch),
        )
        logger.debug("ephemeris pillars for %s (sun %.2f°): %s",
                     local_noon.isoformat(), sun_lon, pillars.to_dict())
        return pillars


CALENDAR_SOURCES = {
    LunarCalendarSource.name: LunarCalendarSource,
    EphemerisCalendarSource.name: EphemerisCalendarSource,
}


def get_calendar_source(name: str) -> CalendarSource:
    try:
        return CALENDAR_SOURCES[name]()
    except KeyError:
        raise ValueError(
            f"Unknown calendar source {name!r}; choose from {sorted(CALENDAR_SOURCES)}") from None
