"""
Notable chart features flagged alongside the main analysis.

Pure month Qi, castle pillars, sandwiched (missing) branches, noble
people, seasonal temperature and qualitative element balance. Each
function takes a finished Chart and returns plain data.
"""

from typing import Optional

from bazi_engine.bazi import (
    BRANCH_BY_CHINESE,
    EARTHLY_BRANCHES,
    Chart,
    Element,
    controller_element,
    output_element,
    resource_element,
)

# Month pillars whose stem and branch carry the same pure Qi
PURE_MONTH_PILLARS = frozenset({
    "甲寅", "乙卯", "丙午", "丁巳", "戊辰", "戊戌",
    "己未", "己丑", "庚申", "辛酉", "壬亥", "癸子",
})

# 天乙贵人 by Day stem
NOBLE_PEOPLE = {
    "甲": "子申", "乙": "子申",
    "丙": "亥酉", "丁": "亥酉",
    "戊": "丑未", "己": "子申",
    "庚": "丑未", "辛": "午寅",
    "壬": "卯巳", "癸": "卯巳",
}

SEASONS = {
    "spring": ("寅卯辰", "mildly warm"),
    "summer": ("巳午未", "hot"),
    "autumn": ("申酉戌", "mildly cool"),
    "winter": ("亥子丑", "cold"),
}

DOMINANT_FACTOR = 1.5
WEAK_FACTOR = 0.7

# Weak Day Master reading
EXCESS_FACTOR = 1.3
SHORTAGE_FACTOR = 0.8
WEAK_DAY_MASTER_SCORE = 2


def is_pure_month(chart: Chart) -> bool:
    return chart.month.chinese in PURE_MONTH_PILLARS


def castle_pillars(chart: Chart) -> list[dict]:
    """Branches appearing in two or more pillars."""
    castles = []
    seen = set()
    for branch in chart.branches:
        if branch in seen:
            continue
        seen.add(branch)
        positions = [p.position for p in chart.pillars if p.branch == branch]
        if len(positions) >= 2:
            castles.append({
                "branch": branch.chinese,
                "element": branch.element.value,
                "count": len(positions),
                "pillars": positions,
            })
    return castles


def sandwich_branches(chart: Chart) -> list[dict]:
    """Missing branches whose two neighbours in the cycle are both present."""
    present = set(chart.branches)
    sandwiched = []
    for branch in EARTHLY_BRANCHES:
        if branch in present:
            continue
        before = EARTHLY_BRANCHES[(branch.index - 1) % 12]
        after = EARTHLY_BRANCHES[(branch.index + 1) % 12]
        if before in present and after in present:
            sandwiched.append({
                "branch": branch.chinese,
                "element": branch.element.value,
                "between": [before.chinese, after.chinese],
            })
    return sandwiched


def noble_people(chart: Chart) -> list[dict]:
    """Noble branches for the Day stem, each marked present (with its first pillar) or absent."""
    result = []
    for glyph in NOBLE_PEOPLE[chart.day_master.chinese]:
        branch = BRANCH_BY_CHINESE[glyph]
        pillar = next((p.position for p in chart.pillars if p.branch == branch), None)
        result.append({
            "branch": glyph,
            "animal": branch.animal,
            "element": branch.element.value,
            "pillar": pillar,
            "present": pillar is not None,
        })
    return result


def _season(month_glyph: str) -> tuple[Optional[str], str]:
    for season, (branches, temperature) in SEASONS.items():
        if month_glyph in branches:
            return season, temperature
    return None, "neutral"


def temperature_balance(chart: Chart) -> dict:
    """
    Seasonal temperature of the birth month against the Day Master.

    Fire prefers cold months, Water hot ones, Earth the mild seasons,
    Metal the cool ones and Wood the warm ones.
    """
    season, temperature = _season(chart.month.branch.chinese)
    element = chart.day_master.element

    if element == Element.FIRE:
        balance = {"hot": "too hot", "cold": "balanced"}.get(temperature, "moderate")
    elif element == Element.WATER:
        balance = {"cold": "too cold", "hot": "balanced"}.get(temperature, "moderate")
    elif element == Element.EARTH:
        balance = "balanced" if temperature in ("mildly warm", "mildly cool") else "neutral"
    elif element == Element.METAL:
        balance = "balanced" if temperature in ("mildly cool", "cold") else "neutral"
    else:
        balance = "balanced" if temperature in ("mildly warm", "hot") else "neutral"

    return {
        "season": season,
        "temperature": temperature,
        "balance": balance,
        "description": f"{element.value.capitalize()} Day Master born in a {temperature} month: {balance}",
    }


def balance_analysis(balance: dict[Element, float], day_master: Optional[Element] = None,
                     strength_score: Optional[int] = None) -> dict:
    """
    Split elements into dominant (> 1.5x mean), weak (< 0.7x mean) and balanced.

    For a weak Day Master (score <= 2) also flag a qualitative imbalance:
    draining or controlling elements above 1.3x the mean, supporting or
    helping elements below 0.8x the mean.
    """
    average = sum(balance.values()) / len(balance)
    dominant = [e.value for e, v in balance.items() if v > average * DOMINANT_FACTOR]
    weak = [e.value for e, v in balance.items() if v < average * WEAK_FACTOR]
    balanced = [e.value for e in balance if e.value not in dominant and e.value not in weak]
    result = {
        "average": round(average, 3),
        "dominant": dominant,
        "weak": weak,
        "balanced": balanced,
        "imbalance": None,
    }
    if day_master is None or strength_score is None or strength_score > WEAK_DAY_MASTER_SCORE:
        return result

    drain = output_element(day_master)
    control = controller_element(day_master)
    support = resource_element(day_master)
    excess = average * EXCESS_FACTOR
    shortage = average * SHORTAGE_FACTOR
    flags = {
        "excess_drain": balance[drain] > excess,
        "excess_control": balance[control] > excess,
        "lacking_support": balance[support] < shortage,
        "lacking_help": balance[day_master] < shortage,
    }
    if any(flags.values()):
        result["imbalance"] = {
            "drain_element": drain.value,
            "control_element": control.value,
            "support_element": support.value,
            "help_element": day_master.value,
            **flags,
        }
    return result


def chart_features(chart: Chart, balance: dict[Element, float],
                   strength_score: Optional[int] = None) -> dict:
    return {
        "pure_month": is_pure_month(chart),
        "castle_pillars": castle_pillars(chart),
        "sandwich_branches": sandwich_branches(chart),
        "noble_people": noble_people(chart),
        "temperature": temperature_balance(chart),
        "balance_analysis": balance_analysis(balance, chart.day_master.element, strength_score),
    }
