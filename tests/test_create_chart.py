import json
import logging
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from bazi_engine.bazi import Element, LuckDirection
from bazi_engine.config import AnalysisConfig, DayBoundary, HourSource
from bazi_engine.create_chart import (
    LONGITUDE_SIGN_MISMATCH,
    LUCK_CYCLE_START_DEFAULT,
    MISSING_LONGITUDE,
    analyze,
    parse_birth_datetime,
    resolve_timezone,
    utc_offset_for,
)
from bazi_engine.errors import CalendarResolutionError, InvalidBirthInput
from bazi_engine.structures import StructureKind

from conftest import FakeCalendarSource

SHANGHAI = "Asia/Shanghai"


# ============================================================
# INPUT HANDLING
# ============================================================

def test_parse_birth_datetime_formats():
    assert parse_birth_datetime("1990-03-15 10:00") == datetime(1990, 3, 15, 10, 0)
    assert parse_birth_datetime("1990-03-15T10:00:30") == datetime(1990, 3, 15, 10, 0, 30)
    assert parse_birth_datetime(datetime(1990, 3, 15, 10)) == datetime(1990, 3, 15, 10)


@pytest.mark.parametrize("kwargs", [
    {"birth_datetime": "not a date"},
    {"birth_datetime": "1990-03-15T10:00+08:00"},
    {"birth_datetime": "1990-02-30 10:00"},
    {"timezone_id": "Mars/Olympus_Mons"},
    {"timezone_id": ""},
    {"gender": "other"},
    {"longitude": 200.0},
    {"longitude": -180.5},
    {"longitude": "east"},
])
def test_invalid_input_raises(kwargs, config, fake_calendar):
    arguments = {
        "birth_datetime": "1990-03-15 10:00",
        "gender": "male",
        "timezone_id": SHANGHAI,
        "longitude": 116.4,
    }
    arguments.update(kwargs)
    with pytest.raises(InvalidBirthInput):
        analyze(**arguments, config=config, calendar=fake_calendar)
    assert fake_calendar.queries == []


def test_invalid_input_is_a_value_error(config, fake_calendar):
    with pytest.raises(ValueError):
        analyze("1990-03-15 10:00", "male", "Nowhere/Special", config=config, calendar=fake_calendar)


# ============================================================
# CHART BUILDING
# ============================================================

def test_calendar_queried_at_local_noon_and_hour_replaced(config, fake_calendar):
    result = analyze("1990-03-15 10:00", "male", SHANGHAI, longitude=116.4,
                     config=config, calendar=fake_calendar)

    assert fake_calendar.queries == [datetime(1990, 3, 15, 12, tzinfo=ZoneInfo(SHANGHAI))]
    assert [p.chinese for p in result.pillars.pillars] == ["庚午", "己卯", "己酉", "己巳"]
    assert result.diagnostics.calendar_pillars.hour == ("甲", "子")
    assert result.to_dict()["diagnostics"]["calendar_hour_pillar_ignored"] == "甲子"


def test_normal_structure_keeps_strength_useful_elements(config, fake_calendar):
    result = analyze("1990-03-15 10:00", "male", SHANGHAI, longitude=116.4,
                     config=config, calendar=fake_calendar)

    assert result.strength.score == 3
    assert result.structure.kind == StructureKind.NORMAL
    assert result.special_structure is None
    assert result.useful_elements == (Element.FIRE, Element.WOOD)
    assert result.harmful_elements == (Element.METAL,)
    assert [s.chinese for s in result.useful_stems] == ["丙", "丁", "甲", "乙"]
    assert [s.chinese for s in result.harmful_stems] == ["庚", "辛"]


def test_special_structure_overrides_useful_elements(config):
    calendar = FakeCalendarSource(year="庚午", month="辛午", day="甲午")
    result = analyze("2000-06-01 12:00", "female", SHANGHAI, longitude=120.0,
                     config=config, calendar=calendar)

    assert result.pillars.hour.chinese == "庚午"
    assert result.special_structure is result.structure
    assert result.structure.kind == StructureKind.FOLLOW
    assert result.useful_elements == (Element.METAL, Element.FIRE)
    assert result.harmful_elements == (Element.WOOD, Element.EARTH, Element.WATER)
    assert [s.chinese for s in result.useful_stems] == ["庚", "辛", "丙", "丁"]


def test_true_solar_hour_before_midnight_shifts_civil_day_stem(config, fake_calendar):
    # 00:30 civil at 112.6E corrects to about 23:51 on the previous day
    result = analyze("1990-03-15 00:30", "male", SHANGHAI, longitude=112.6,
                     use_true_solar_time_for_hour=True, config=config, calendar=fake_calendar)
    diagnostics = result.diagnostics

    assert diagnostics.true_solar_time.date() == date(1990, 3, 14)
    assert diagnostics.true_solar_time.hour == 23
    assert diagnostics.calendar_date == date(1990, 3, 15)
    # late Zi row of the civil day stem 己, i.e. the 庚 row
    assert result.pillars.hour.chinese == "丙子"


def test_balance_and_interactions_flow_through(config, fake_calendar):
    result = analyze("1990-03-15 10:00", "male", SHANGHAI, longitude=116.4,
                     config=config, calendar=fake_calendar)

    assert sum(result.element_balance.values()) == pytest.approx(12.0)
    assert [i.name for i in result.interactions] == ["卯酉冲"]
    assert result.stem_combinations == ()
    assert [t.name for t in result.triple_combinations] == ["巳酉丑三合金", "巳午未三会火"]
    assert set(result.stem_strengths) == {"year", "month", "day", "hour"}
    assert result.features["balance_analysis"]["weak"] == ["water"]


def test_calendar_failure_propagates(config):
    calendar = FakeCalendarSource(error=CalendarResolutionError("lookup failed"))
    with pytest.raises(CalendarResolutionError):
        analyze("1990-03-15 10:00", "male", SHANGHAI, longitude=116.4, config=config, calendar=calendar)


def test_unrecognized_glyphs_raise_calendar_error(config):
    calendar = FakeCalendarSource(year="XY")
    with pytest.raises(CalendarResolutionError):
        analyze("1990-03-15 10:00", "male", SHANGHAI, longitude=116.4, config=config, calendar=calendar)


# ============================================================
# DAY BOUNDARY AND LATE ZI HOUR
# ============================================================

def test_midnight_boundary_late_zi_uses_next_stem(config):
    calendar = FakeCalendarSource(day="甲子")
    result = analyze("2000-06-01 23:30", "male", SHANGHAI, longitude=120.0,
                     config=config, calendar=calendar)

    assert calendar.queries[0].date() == date(2000, 6, 1)
    assert result.diagnostics.calendar_date == date(2000, 6, 1)
    assert result.diagnostics.late_zi_hour
    assert result.pillars.hour.chinese == "丙子"


def test_midnight_boundary_without_next_stem_rule(config):
    calendar = FakeCalendarSource(day="甲子")
    result = analyze("2000-06-01 23:30", "male", SHANGHAI, longitude=120.0,
                     config=config.with_overrides(late_zi_uses_next_stem=False), calendar=calendar)
    assert result.pillars.hour.chinese == "甲子"


def test_zi_hour_boundary_moves_date_without_shifting_stem_again(config):
    calendar = FakeCalendarSource(day="甲子")
    result = analyze("2000-06-01 23:30", "male", SHANGHAI, longitude=120.0,
                     config=config.with_overrides(day_boundary=DayBoundary.ZI_HOUR), calendar=calendar)

    assert calendar.queries[0].date() == date(2000, 6, 2)
    assert result.diagnostics.calendar_date == date(2000, 6, 2)
    assert result.diagnostics.day_boundary == DayBoundary.ZI_HOUR
    assert result.pillars.hour.chinese == "甲子"


def test_early_zi_hour_stays_on_civil_date(config):
    calendar = FakeCalendarSource(day="甲子")
    result = analyze("2000-06-02 00:30", "male", SHANGHAI, longitude=120.0,
                     config=config, calendar=calendar)
    assert result.diagnostics.calendar_date == date(2000, 6, 2)
    assert not result.diagnostics.late_zi_hour
    assert result.pillars.hour.chinese == "甲子"


# ============================================================
# TIME CORRECTION AND LONGITUDE
# ============================================================

def test_civil_time_feeds_hour_by_default(config, fake_calendar):
    result = analyze("1990-03-15 13:05", "male", SHANGHAI, longitude=87.6,
                     config=config, calendar=fake_calendar)
    assert result.diagnostics.hour_source == HourSource.CIVIL
    assert result.diagnostics.hour_time_used == datetime(1990, 3, 15, 13, 5)
    assert result.pillars.hour.chinese == "辛未"


def test_true_solar_time_feeds_hour_when_requested(config, fake_calendar):
    result = analyze("1990-03-15 13:05", "male", SHANGHAI, longitude=87.6,
                     use_true_solar_time_for_hour=True, config=config, calendar=fake_calendar)
    diagnostics = result.diagnostics

    assert diagnostics.hour_source == HourSource.TRUE_SOLAR
    assert diagnostics.hour_time_used == diagnostics.true_solar_time
    assert diagnostics.central_meridian == 90.0
    assert diagnostics.longitude_correction_minutes == pytest.approx(9.6)
    assert diagnostics.equation_of_time_minutes == pytest.approx(-9.0, abs=1.0)
    assert result.pillars.hour.chinese == "庚午"


def test_missing_longitude_is_flagged(config, fake_calendar, caplog):
    with caplog.at_level(logging.WARNING, logger="bazi_engine.create_chart"):
        result = analyze("1990-03-15 10:00", "male", SHANGHAI, config=config, calendar=fake_calendar)
    diagnostics = result.diagnostics

    assert MISSING_LONGITUDE in diagnostics.flags
    assert diagnostics.low_confidence
    assert diagnostics.longitude == 120.0
    assert diagnostics.longitude_source == "timezone"
    assert diagnostics.longitude_correction_minutes == 0.0
    assert any("longitude" in r.getMessage().lower() for r in caplog.records)


def test_nan_longitude_counts_as_missing(config, fake_calendar):
    result = analyze("1990-03-15 10:00", "male", SHANGHAI, longitude=float("nan"),
                     config=config, calendar=fake_calendar)
    assert MISSING_LONGITUDE in result.diagnostics.flags


def test_longitude_sign_mismatch_is_flagged(config, fake_calendar, caplog):
    with caplog.at_level(logging.WARNING, logger="bazi_engine.create_chart"):
        result = analyze("1990-03-15 10:00", "male", SHANGHAI, longitude=-116.4,
                         config=config, calendar=fake_calendar)
    assert LONGITUDE_SIGN_MISMATCH in result.diagnostics.flags
    assert MISSING_LONGITUDE not in result.diagnostics.flags
    assert not result.diagnostics.low_confidence
    assert caplog.records


def test_dst_detected(config, fake_calendar):
    result = analyze("1990-07-01 12:00", "male", "America/New_York", longitude=-74.0,
                     config=config, calendar=fake_calendar)
    diagnostics = result.diagnostics

    assert diagnostics.is_dst
    assert diagnostics.utc_offset_minutes == -240
    assert diagnostics.standard_offset_minutes == -300
    assert diagnostics.utc_time == datetime(1990, 7, 1, 16, tzinfo=timezone.utc)
    assert diagnostics.civil_time_used == datetime(1990, 7, 1, 12)
    assert diagnostics.flags == (LUCK_CYCLE_START_DEFAULT,)


def test_standard_time_strips_dst(config, fake_calendar):
    result = analyze("1990-07-01 12:00", "male", "America/New_York", longitude=-74.0,
                     config=config.with_overrides(use_standard_time=True), calendar=fake_calendar)
    assert result.diagnostics.civil_time_used == datetime(1990, 7, 1, 11)


def test_utc_offset_for_winter_and_summer():
    tz = ZoneInfo("Europe/Berlin")
    assert utc_offset_for(datetime(2020, 1, 15, 12), tz) == (60, 60, False)
    assert utc_offset_for(datetime(2020, 7, 15, 12), tz) == (120, 60, True)


def test_resolve_timezone():
    assert resolve_timezone(55.75, 37.62) == "Europe/Moscow"


# ============================================================
# LUCK PILLARS
# ============================================================

def test_luck_pillars_and_default_start_flag(config, fake_calendar):
    result = analyze("1990-03-15 10:00", "male", SHANGHAI, longitude=116.4,
                     config=config, calendar=fake_calendar)

    # 庚 year, male: forward; 己卯 is not in the forward sequence
    assert result.luck_direction == LuckDirection.FORWARD
    assert LUCK_CYCLE_START_DEFAULT in result.diagnostics.flags
    assert result.luck_pillars[0].pillar.chinese == "甲子"
    # noon 15 March to midnight 21 March (春分): 5 whole days
    assert result.diagnostics.luck_start_term == "春分"
    assert result.diagnostics.luck_start_days == 5
    assert [p.start_age for p in result.luck_pillars] == [0.5, 10.5, 20.5, 30.5, 40.5, 50.5]


def test_luck_pillars_from_month_in_sequence(config):
    calendar = FakeCalendarSource(year="庚午", month="丙寅", day="己酉")
    result = analyze("1990-03-15 10:00", "male", SHANGHAI, longitude=116.4,
                     config=config, calendar=calendar)
    assert [p.pillar.chinese for p in result.luck_pillars][:3] == ["丙寅", "丁卯", "戊辰"]
    assert result.diagnostics.flags == ()


def test_luck_period_count_configurable(config, fake_calendar):
    result = analyze("1990-03-15 10:00", "female", SHANGHAI, longitude=116.4,
                     config=config.with_overrides(luck_period_count=8), calendar=fake_calendar)
    assert result.luck_direction == LuckDirection.BACKWARD
    assert len(result.luck_pillars) == 8


# ============================================================
# SERIALIZATION AND END TO END
# ============================================================

def test_to_dict_is_json_serializable(config, fake_calendar):
    result = analyze("1990-03-15 10:00", "male", SHANGHAI, longitude=116.4,
                     config=config, calendar=fake_calendar)
    data = json.loads(json.dumps(result.to_dict(), ensure_ascii=False))

    assert data["day_master"]["stem"] == "己"
    assert data["pillars"]["hour"]["chinese"] == "己巳"
    assert data["useful_elements"] == ["fire", "wood"]
    assert data["special_structure"] is None
    assert data["diagnostics"]["calendar_date"] == "1990-03-15"
    assert data["diagnostics"]["hour_source"] == "civil"
    assert len(data["luck_pillars"]) == 6


def test_moscow_end_to_end_with_lunar_calendar():
    result = analyze("1983-11-19 08:15", "female", "Europe/Moscow", config=AnalysisConfig())

    assert all(p.chinese for p in result.pillars.pillars)
    assert result.pillars.year.chinese == "癸亥"
    assert result.pillars.month.chinese == "癸亥"
    assert 1 <= result.strength.score <= 5
    assert len(result.luck_pillars) == 6
    ages = [p.start_age for p in result.luck_pillars]
    assert all(a < b for a, b in zip(ages, ages[1:]))
    assert result.luck_direction == LuckDirection.FORWARD
    assert ages[0] == 0.2

    diagnostics = result.diagnostics
    assert diagnostics.utc_offset_minutes == 180
    assert diagnostics.longitude == 45.0
    assert MISSING_LONGITUDE in diagnostics.flags
    assert diagnostics.local_time == datetime(1983, 11, 19, 8, 15)


def test_calendar_sources_agree_on_pillars():
    lunar = analyze("1983-11-19 08:15", "female", "Europe/Moscow", longitude=37.62,
                    config=AnalysisConfig(calendar="lunar"))
    ephemeris = analyze("1983-11-19 08:15", "female", "Europe/Moscow", longitude=37.62,
                        config=AnalysisConfig(calendar="ephemeris"))
    assert lunar.pillars == ephemeris.pillars
    assert ephemeris.diagnostics.calendar_source == "ephemeris"
