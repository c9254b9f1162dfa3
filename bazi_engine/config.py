"""
Analysis configuration.

Conventions that differ between schools are switches here rather than
hardcoded branches. Defaults: midnight day boundary, civil time for the
hour pillar, late Zi hour read from the next day's stem row.

Environment overrides (all optional):
    BAZI_DAY_BOUNDARY          midnight | zi_hour
    BAZI_TRUE_SOLAR_HOUR       1/true/yes to feed true solar time into the hour lookup
    BAZI_STANDARD_TIME         1/true/yes to strip DST before resolving the chart
    BAZI_LATE_ZI_NEXT_STEM     0/false/no to read the late Zi hour from the current day
    BAZI_SIGN_MISMATCH_DEGREES longitude threshold for the sign mismatch warning
    BAZI_LUCK_PERIODS          number of luck periods to produce
    BAZI_CALENDAR              lunar | ephemeris
"""

import os
from dataclasses import dataclass, replace
from enum import Enum
from typing import Mapping, Optional


class DayBoundary(Enum):
    MIDNIGHT = "midnight"  # 23:55 on day N belongs to day N
    ZI_HOUR = "zi_hour"    # 23:00 starts the next day


class HourSource(Enum):
    CIVIL = "civil"
    TRUE_SOLAR = "true_solar"


_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    lowered = value.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError(f"Not a boolean setting: {value!r}")


@dataclass(frozen=True)
class AnalysisConfig:
    day_boundary: DayBoundary = DayBoundary.MIDNIGHT
    use_true_solar_time_for_hour: bool = False
    use_standard_time: bool = False
    late_zi_uses_next_stem: bool = True
    sign_mismatch_threshold: float = 60.0
    luck_period_count: int = 6
    calendar: str = "lunar"

    @property
    def hour_source(self) -> HourSource:
        return HourSource.TRUE_SOLAR if self.use_true_solar_time_for_hour else HourSource.CIVIL

    def with_overrides(self, **changes) -> "AnalysisConfig":
        """Copy with the given fields replaced; None values are ignored."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes) if changes else self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AnalysisConfig":
        env = os.environ if environ is None else environ
        default = cls()

        boundary = env.get("BAZI_DAY_BOUNDARY")
        periods = env.get("BAZI_LUCK_PERIODS")
        threshold = env.get("BAZI_SIGN_MISMATCH_DEGREES")

        return cls(
            day_boundary=DayBoundary(boundary.strip().lower()) if boundary else default.day_boundary,
            use_true_solar_time_for_hour=_env_bool(
                env.get("BAZI_TRUE_SOLAR_HOUR"), default.use_true_solar_time_for_hour),
            use_standard_time=_env_bool(env.get("BAZI_STANDARD_TIME"), default.use_standard_time),
            late_zi_uses_next_stem=_env_bool(
                env.get("BAZI_LATE_ZI_NEXT_STEM"), default.late_zi_uses_next_stem),
            sign_mismatch_threshold=float(threshold) if threshold else default.sign_mismatch_threshold,
            luck_period_count=int(periods) if periods else default.luck_period_count,
            calendar=(env.get("BAZI_CALENDAR") or default.calendar).strip().lower(),
        )
