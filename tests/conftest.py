import pytest

from bazi_engine.bazi import make_chart
from bazi_engine.calendar_source import RawPillars
from bazi_engine.config import AnalysisConfig


class FakeCalendarSource:
    """Returns fixed pillars and records every query."""
    name = "fake"

    def __init__(self, year="庚午", month="己卯", day="己酉", hour="甲子", error=None):
        self.pillars = RawPillars(
            year=tuple(year), month=tuple(month), day=tuple(day), hour=tuple(hour))
        self.error = error
        self.queries = []

    def resolve_pillars(self, local_noon):
        self.queries.append(local_noon)
        if self.error is not None:
            raise self.error
        return self.pillars


@pytest.fixture
def fake_calendar():
    return FakeCalendarSource()


@pytest.fixture
def config():
    return AnalysisConfig()


@pytest.fixture
def normal_chart():
    # 1990-03-15 10:00
    return make_chart("庚午", "己卯", "己酉", "己巳")


@pytest.fixture
def follow_wealth_chart():
    return make_chart("庚午", "辛午", "甲午", "庚午")
