from bazi_engine.bazi import Element, element_balance, make_chart
from bazi_engine.features import (
    balance_analysis,
    castle_pillars,
    chart_features,
    is_pure_month,
    noble_people,
    sandwich_branches,
    temperature_balance,
)


def test_pure_month():
    assert is_pure_month(make_chart("庚午", "甲寅", "丙午", "己亥"))
    assert not is_pure_month(make_chart("庚午", "己卯", "己酉", "己巳"))


def test_castle_pillars(follow_wealth_chart):
    castles = castle_pillars(follow_wealth_chart)
    assert castles == [{
        "branch": "午",
        "element": "fire",
        "count": 4,
        "pillars": ["year", "month", "day", "hour"],
    }]


def test_no_castle_without_repeats(normal_chart):
    assert castle_pillars(normal_chart) == []


def test_sandwich_branches():
    chart = make_chart("壬子", "甲寅", "丙午", "戊申")
    sandwiched = {s["branch"]: s["between"] for s in sandwich_branches(chart)}
    assert sandwiched == {"丑": ["子", "寅"], "未": ["午", "申"]}


def test_sandwich_wraps_around_the_cycle():
    chart = make_chart("辛亥", "庚丑", "丙午", "戊申")
    sandwiched = [s["branch"] for s in sandwich_branches(chart)]
    assert "子" in sandwiched


def test_noble_people_for_jia_day():
    chart = make_chart("壬子", "甲寅", "甲午", "戊辰")
    nobles = noble_people(chart)
    assert [n["branch"] for n in nobles] == ["子", "申"]
    assert nobles[0]["present"] and nobles[0]["pillar"] == "year"
    assert not nobles[1]["present"] and nobles[1]["pillar"] is None


def test_temperature_fire_in_winter_is_balanced():
    chart = make_chart("壬子", "壬子", "丙午", "戊子")
    result = temperature_balance(chart)
    assert result["season"] == "winter"
    assert result["temperature"] == "cold"
    assert result["balance"] == "balanced"


def test_temperature_water_in_winter_is_too_cold():
    chart = make_chart("壬子", "壬子", "壬子", "戊子")
    assert temperature_balance(chart)["balance"] == "too cold"


def test_balance_analysis(normal_chart):
    result = balance_analysis(element_balance(normal_chart))
    assert result["average"] == 2.4
    assert result["dominant"] == []
    assert result["weak"] == ["water"]
    assert set(result["balanced"]) == {"wood", "fire", "earth", "metal"}


def test_balance_analysis_dominant():
    balance = {e: 0.0 for e in Element}
    balance[Element.WATER] = 10.0
    balance[Element.WOOD] = 2.0
    result = balance_analysis(balance)
    assert result["dominant"] == ["water"]
    assert result["balanced"] == ["wood"]
    assert result["weak"] == ["fire", "earth", "metal"]


def _wood_drained_balance():
    return {
        Element.WOOD: 3.0, Element.FIRE: 4.0, Element.EARTH: 3.0,
        Element.METAL: 1.0, Element.WATER: 1.0,
    }


def test_weak_day_master_imbalance_flags():
    result = balance_analysis(_wood_drained_balance(), Element.WOOD, 2)
    imbalance = result["imbalance"]
    assert imbalance["drain_element"] == "fire"
    assert imbalance["support_element"] == "water"
    # 4.0 > 1.3 * 2.4 and 1.0 < 0.8 * 2.4
    assert imbalance["excess_drain"]
    assert imbalance["lacking_support"]
    assert not imbalance["excess_control"]
    assert not imbalance["lacking_help"]


def test_imbalance_only_read_for_weak_day_master():
    assert balance_analysis(_wood_drained_balance(), Element.WOOD, 3)["imbalance"] is None
    assert balance_analysis(_wood_drained_balance())["imbalance"] is None
    even = {e: 2.4 for e in Element}
    assert balance_analysis(even, Element.WOOD, 1)["imbalance"] is None


def test_chart_features_keys(normal_chart):
    features = chart_features(normal_chart, element_balance(normal_chart))
    assert set(features) == {
        "pure_month", "castle_pillars", "sandwich_branches",
        "noble_people", "temperature", "balance_analysis",
    }
