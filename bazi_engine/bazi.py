"""
BaZi (Four Pillars of Destiny) computation engine.

Handles:
- Stem / branch model with weighted hidden stems
- Hour pillar resolution (fixed hour-stem table, late Zi hour rule)
- Element balance and Day Master strength scoring
- Per-pillar seasonal stem strength
- Strength-derived useful / harmful elements
- Branch interaction detection (merges, clashes, punishments, harms)
- Stem combinations and triple merge / gathering detection
- Luck Pillar sequencing

Design principle: This module COMPUTES and FLAGS. It does not interpret.
Every table below is data; lookups go through objects, never ad hoc
string comparisons.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional


# ============================================================
# FUNDAMENTAL DATA STRUCTURES
# ============================================================

class Polarity(Enum):
    YANG = "yang"
    YIN = "yin"


class Element(Enum):
    WOOD = "wood"
    FIRE = "fire"
    EARTH = "earth"
    METAL = "metal"
    WATER = "water"

    @property
    def chinese(self) -> str:
        return ELEMENT_CHINESE[self]


ELEMENT_CHINESE = {
    Element.WOOD: "木",
    Element.FIRE: "火",
    Element.EARTH: "土",
    Element.METAL: "金",
    Element.WATER: "水",
}


class Gender(Enum):
    MALE = "male"
    FEMALE = "female"

    @classmethod
    def parse(cls, value) -> "Gender":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown gender: {value!r} (expected 'male' or 'female')") from None


@dataclass(frozen=True)
class HeavenlyStem:
    chinese: str
    pinyin: str
    element: Element
    polarity: Polarity
    index: int  # 0-9 in the cycle

    def __str__(self):
        return f"{self.pinyin} ({self.polarity.value} {self.element.value})"


@dataclass(frozen=True)
class HiddenStem:
    stem: HeavenlyStem
    weight: float


@dataclass(frozen=True)
class EarthlyBranch:
    chinese: str
    pinyin: str
    animal: str
    element: Element  # primary/season element
    polarity: Polarity
    index: int  # 0-11 in the cycle
    hidden_stems: tuple[HiddenStem, ...] = ()  # main qi first

    def __str__(self):
        return f"{self.pinyin} ({self.animal})"


@dataclass(frozen=True)
class Pillar:
    stem: HeavenlyStem
    branch: EarthlyBranch
    position: str  # "year", "month", "day", "hour", "luck"

    @property
    def chinese(self) -> str:
        return self.stem.chinese + self.branch.chinese

    def __str__(self):
        return f"{self.stem.pinyin} {self.branch.pinyin} ({self.stem.polarity.value} {self.stem.element.value} {self.branch.animal})"

    def to_dict(self):
        return {
            "position": self.position,
            "chinese": self.chinese,
            "stem": {
                "chinese": self.stem.chinese,
                "pinyin": self.stem.pinyin,
                "element": self.stem.element.value,
                "polarity": self.stem.polarity.value,
            },
            "branch": {
                "chinese": self.branch.chinese,
                "pinyin": self.branch.pinyin,
                "animal": self.branch.animal,
                "element": self.branch.element.value,
                "polarity": self.branch.polarity.value,
                "hidden_stems": [
                    {"stem": h.stem.chinese, "element": h.stem.element.value, "weight": h.weight}
                    for h in self.branch.hidden_stems
                ],
            },
            "description": str(self),
        }


PILLAR_POSITIONS = ("year", "month", "day", "hour")


@dataclass(frozen=True)
class Chart:
    year: Pillar
    month: Pillar
    day: Pillar
    hour: Pillar

    @property
    def pillars(self) -> tuple[Pillar, ...]:
        return (self.year, self.month, self.day, self.hour)

    @property
    def day_master(self) -> HeavenlyStem:
        return self.day.stem

    @property
    def stems(self) -> tuple[HeavenlyStem, ...]:
        return tuple(p.stem for p in self.pillars)

    @property
    def branches(self) -> tuple[EarthlyBranch, ...]:
        return tuple(p.branch for p in self.pillars)

    def hidden_stems(self) -> list[HiddenStem]:
        return [h for p in self.pillars for h in p.branch.hidden_stems]

    def to_dict(self):
        return {p.position: p.to_dict() for p in self.pillars}


# ============================================================
# STEM AND BRANCH DEFINITIONS
# ============================================================

HEAVENLY_STEMS = [
    HeavenlyStem("甲", "Jia", Element.WOOD, Polarity.YANG, 0),
    HeavenlyStem("乙", "Yi", Element.WOOD, Polarity.YIN, 1),
    HeavenlyStem("丙", "Bing", Element.FIRE, Polarity.YANG, 2),
    HeavenlyStem("丁", "Ding", Element.FIRE, Polarity.YIN, 3),
    HeavenlyStem("戊", "Wu", Element.EARTH, Polarity.YANG, 4),
    HeavenlyStem("己", "Ji", Element.EARTH, Polarity.YIN, 5),
    HeavenlyStem("庚", "Geng", Element.METAL, Polarity.YANG, 6),
    HeavenlyStem("辛", "Xin", Element.METAL, Polarity.YIN, 7),
    HeavenlyStem("壬", "Ren", Element.WATER, Polarity.YANG, 8),
    HeavenlyStem("癸", "Gui", Element.WATER, Polarity.YIN, 9),
]

STEM_BY_CHINESE = {s.chinese: s for s in HEAVENLY_STEMS}


def _hidden(*entries: tuple[str, float]) -> tuple[HiddenStem, ...]:
    return tuple(HiddenStem(STEM_BY_CHINESE[glyph], weight) for glyph, weight in entries)


EARTHLY_BRANCHES = [
    EarthlyBranch("子", "Zi", "Rat", Element.WATER, Polarity.YANG, 0,
                  _hidden(("癸", 1.0))),
    EarthlyBranch("丑", "Chou", "Ox", Element.EARTH, Polarity.YIN, 1,
                  _hidden(("己", 0.6), ("癸", 0.3), ("辛", 0.1))),
    EarthlyBranch("寅", "Yin", "Tiger", Element.WOOD, Polarity.YANG, 2,
                  _hidden(("甲", 0.7), ("丙", 0.2), ("戊", 0.1))),
    EarthlyBranch("卯", "Mao", "Rabbit", Element.WOOD, Polarity.YIN, 3,
                  _hidden(("乙", 1.0))),
    EarthlyBranch("辰", "Chen", "Dragon", Element.EARTH, Polarity.YANG, 4,
                  _hidden(("戊", 0.6), ("乙", 0.3), ("癸", 0.1))),
    EarthlyBranch("巳", "Si", "Snake", Element.FIRE, Polarity.YIN, 5,
                  _hidden(("丙", 0.7), ("戊", 0.2), ("庚", 0.1))),
    EarthlyBranch("午", "Wu", "Horse", Element.FIRE, Polarity.YANG, 6,
                  _hidden(("丁", 0.7), ("己", 0.3))),
    EarthlyBranch("未", "Wei", "Goat", Element.EARTH, Polarity.YIN, 7,
                  _hidden(("己", 0.6), ("丁", 0.3), ("乙", 0.1))),
    EarthlyBranch("申", "Shen", "Monkey", Element.METAL, Polarity.YANG, 8,
                  _hidden(("庚", 0.7), ("壬", 0.2), ("戊", 0.1))),
    EarthlyBranch("酉", "You", "Rooster", Element.METAL, Polarity.YIN, 9,
                  _hidden(("辛", 1.0))),
    EarthlyBranch("戌", "Xu", "Dog", Element.EARTH, Polarity.YANG, 10,
                  _hidden(("戊", 0.6), ("辛", 0.3), ("丁", 0.1))),
    EarthlyBranch("亥", "Hai", "Pig", Element.WATER, Polarity.YIN, 11,
                  _hidden(("壬", 0.7), ("甲", 0.3))),
]

# Lookup helpers
BRANCH_BY_CHINESE = {b.chinese: b for b in EARTHLY_BRANCHES}


def next_stem(stem: HeavenlyStem) -> HeavenlyStem:
    """Cyclic successor in the ten-stem cycle (癸 wraps to 甲)."""
    return HEAVENLY_STEMS[(stem.index + 1) % 10]


def make_pillar(stem_glyph: str, branch_glyph: str, position: str) -> Pillar:
    """Build a pillar from glyphs. Raises KeyError for unknown glyphs."""
    return Pillar(STEM_BY_CHINESE[stem_glyph], BRANCH_BY_CHINESE[branch_glyph], position)


def make_chart(year: str, month: str, day: str, hour: str) -> Chart:
    """Build a chart from four two-glyph strings, e.g. make_chart("庚午", "己卯", "己酉", "己巳")."""
    return Chart(*(make_pillar(text[0], text[1], position)
                   for text, position in zip((year, month, day, hour), PILLAR_POSITIONS)))


# ============================================================
# ELEMENT CYCLES
# ============================================================

# Production cycle: Wood → Fire → Earth → Metal → Water → Wood
PRODUCTION_CYCLE = {
    Element.WOOD: Element.FIRE,
    Element.FIRE: Element.EARTH,
    Element.EARTH: Element.METAL,
    Element.METAL: Element.WATER,
    Element.WATER: Element.WOOD,
}

# Control cycle: Wood → Earth → Water → Fire → Metal → Wood
CONTROL_CYCLE = {
    Element.WOOD: Element.EARTH,
    Element.EARTH: Element.WATER,
    Element.WATER: Element.FIRE,
    Element.FIRE: Element.METAL,
    Element.METAL: Element.WOOD,
}

_PRODUCED_BY = {child: parent for parent, child in PRODUCTION_CYCLE.items()}
_CONTROLLED_BY = {target: source for source, target in CONTROL_CYCLE.items()}


def resource_element(element: Element) -> Element:
    """The element that produces `element`."""
    return _PRODUCED_BY[element]


def output_element(element: Element) -> Element:
    """The element that `element` produces."""
    return PRODUCTION_CYCLE[element]


def wealth_element(element: Element) -> Element:
    """The element that `element` controls."""
    return CONTROL_CYCLE[element]


def controller_element(element: Element) -> Element:
    """The element that controls `element`."""
    return _CONTROLLED_BY[element]


# Yang stem first
STEMS_BY_ELEMENT = {
    element: tuple(s for s in HEAVENLY_STEMS if s.element == element)
    for element in Element
}


def stems_for_elements(elements) -> list[HeavenlyStem]:
    return [stem for element in elements for stem in STEMS_BY_ELEMENT[element]]


# ============================================================
# HOUR PILLAR
# ============================================================

# Hour stem per (day stem, hour branch index). Data, not arithmetic: the
# calendar library's own hour stem is never trusted. The 辛 row carries
# 壬癸 at 午/未 where the Five Rats rule would give 甲乙; kept as published.
_HOUR_STEM_ROWS = {
    "甲": "甲乙丙丁戊己庚辛壬癸甲乙",
    "乙": "丙丁戊己庚辛壬癸甲乙丙丁",
    "丙": "戊己庚辛壬癸甲乙丙丁戊己",
    "丁": "庚辛壬癸甲乙丙丁戊己庚辛",
    "戊": "壬癸甲乙丙丁戊己庚辛壬癸",
    "己": "甲乙丙丁戊己庚辛壬癸甲乙",
    "庚": "丙丁戊己庚辛壬癸甲乙丙丁",
    "辛": "戊己庚辛壬癸壬癸甲乙丙丁",
    "壬": "庚辛壬癸甲乙丙丁戊己庚辛",
    "癸": "壬癸甲乙丙丁戊己庚辛壬癸",
}

HOUR_STEM_TABLE = {
    STEM_BY_CHINESE[day]: tuple(STEM_BY_CHINESE[glyph] for glyph in row)
    for day, row in _HOUR_STEM_ROWS.items()
}

LATE_ZI_HOUR = 23


def hour_branch_index(hour: int, minute: int = 0) -> int:
    """
    Map a time of day to the hour branch index.

    23:00-00:59 = Zi (0), 01:00-02:59 = Chou (1), ... 21:00-22:59 = Hai (11).
    """
    total_minutes = hour * 60 + minute
    if total_minutes >= 23 * 60 or total_minutes < 60:
        return 0
    return ((total_minutes + 60) // 120) % 12


def is_late_zi_hour(hour: int) -> bool:
    """23:00-23:59, the first half of the Zi hour, before the civil date rolls over."""
    return hour == LATE_ZI_HOUR


def hour_pillar(day_stem: HeavenlyStem, hour: int, minute: int = 0,
                late_zi_next_stem: bool = True) -> Pillar:
    """
    Compute the Hour Pillar from the hour-stem table.

    Args:
        day_stem: the Day pillar stem of the resolved calendar date
        hour, minute: time of day feeding the branch lookup (civil or true solar)
        late_zi_next_stem: read 23:00-23:59 from the next day's stem row

    The Day pillar does not roll over until midnight, yet the late Zi hour
    already takes the next day's stem row.
    """
    branch_index = hour_branch_index(hour, minute)
    row_stem = day_stem
    if branch_index == 0 and late_zi_next_stem and is_late_zi_hour(hour):
        row_stem = next_stem(day_stem)

    return Pillar(
        stem=HOUR_STEM_TABLE[row_stem][branch_index],
        branch=EARTHLY_BRANCHES[branch_index],
        position="hour",
    )


# ============================================================
# ELEMENT BALANCE
# ============================================================

def element_balance(chart: Chart) -> dict[Element, float]:
    """
    Weighted five-element vector.

    Each stem and each branch adds 1.0 to its element; each hidden stem adds
    its weight. The vector is never renormalized.
    """
    balance = {e: 0.0 for e in Element}
    for pillar in chart.pillars:
        balance[pillar.stem.element] += 1.0
        balance[pillar.branch.element] += 1.0
        for hidden in pillar.branch.hidden_stems:
            balance[hidden.stem.element] += hidden.weight
    return balance


def element_weight(chart: Chart, element: Element) -> float:
    """Stems and branches of `element` count 1.0, hidden stems their weight."""
    return element_balance(chart)[element]


# ============================================================
# DAY MASTER STRENGTH
# ============================================================

# Seasonal state → score and label
SEASON_STATES = {
    "旺": (5, "very strong"),
    "相": (4, "strong"),
    "休": (3, "average"),
    "囚": (2, "weak"),
    "死": (1, "very weak"),
}

# Per element, month branches for each state. Checked in order; first match wins.
SEASON_TABLE = {
    Element.WOOD: (("旺", "寅卯辰"), ("相", "亥子丑"), ("休", "申酉戌"), ("囚", "巳午未"), ("死", "辰戌丑未")),
    Element.FIRE: (("旺", "巳午未"), ("相", "寅卯辰"), ("休", "亥子丑"), ("囚", "申酉戌"), ("死", "辰戌丑未")),
    Element.EARTH: (("旺", "辰戌丑未"), ("相", "巳午未"), ("休", "寅卯辰"), ("囚", "亥子丑"), ("死", "申酉戌")),
    Element.METAL: (("旺", "申酉戌"), ("相", "辰戌丑未"), ("休", "巳午未"), ("囚", "寅卯辰"), ("死", "亥子丑")),
    Element.WATER: (("旺", "亥子丑"), ("相", "申酉戌"), ("休", "辰戌丑未"), ("囚", "巳午未"), ("死", "寅卯辰")),
}

# Used for the per-pillar stem reading: Wood and Fire have no 死 months here.
STEM_SEASON_TABLE = {
    **SEASON_TABLE,
    Element.WOOD: SEASON_TABLE[Element.WOOD][:4] + (("死", ""),),
    Element.FIRE: SEASON_TABLE[Element.FIRE][:4] + (("死", ""),),
}

DEFAULT_SEASON_STATE = "休"

# Branches that root a Day Master of each element
ROOT_BRANCHES = {
    Element.WOOD: "寅卯辰",
    Element.FIRE: "巳午未",
    Element.EARTH: "辰戌丑未",
    Element.METAL: "申酉戌",
    Element.WATER: "亥子丑",
}

STRENGTH_WEIGHTS = {"season": 0.4, "root": 0.3, "support": 0.2, "control": 0.1}

STRENGTH_LABELS = {5: "very strong", 4: "strong", 3: "average", 2: "weak", 1: "very weak"}

# Qualitative annotation only; never changes the score.
GENDER_ANNOTATIONS = {
    (5, Gender.MALE): "Peak activity and expansion",
    (5, Gender.FEMALE): "Peak inner strength and steadiness",
    (4, Gender.MALE): "Active influence and leadership",
    (4, Gender.FEMALE): "Inner power and fertility",
    (3, Gender.MALE): "Balance of forces",
    (3, Gender.FEMALE): "Balance of forces",
    (2, Gender.MALE): "Energy must be accumulated before acting",
    (2, Gender.FEMALE): "Resources call for careful handling",
    (1, Gender.MALE): "Protection and recovery needed before activity",
    (1, Gender.FEMALE): "Care and support needed for growth",
}


@dataclass(frozen=True)
class StrengthScore:
    score: int
    label: str
    annotation: str
    season: int
    root: int
    support: int
    control: int
    root_count: float
    support_count: float
    control_count: float

    def to_dict(self):
        return {
            "score": self.score,
            "label": self.label,
            "annotation": self.annotation,
            "sub_scores": {
                "season": self.season,
                "root": self.root,
                "support": self.support,
                "control": self.control,
            },
            "counts": {
                "root": round(self.root_count, 3),
                "support": round(self.support_count, 3),
                "control": round(self.control_count, 3),
            },
        }


@dataclass(frozen=True)
class StemStrength:
    position: str
    stem: HeavenlyStem
    state: str
    score: int
    label: str

    def to_dict(self):
        return {
            "position": self.position,
            "stem": self.stem.chinese,
            "element": self.stem.element.value,
            "state": self.state,
            "score": self.score,
            "label": self.label,
        }


def _season_state(table, element: Element, month_branch: EarthlyBranch) -> str:
    for state, branches in table[element]:
        if month_branch.chinese in branches:
            return state
    return DEFAULT_SEASON_STATE


def season_score(element: Element, month_branch: EarthlyBranch) -> int:
    return SEASON_STATES[_season_state(SEASON_TABLE, element, month_branch)][0]


def root_count(chart: Chart, element: Element) -> float:
    """Same-element root branches count 1.0; same-element hidden stems half their weight."""
    count = 0.0
    for branch in chart.branches:
        if branch.chinese in ROOT_BRANCHES[element]:
            count += 1.0
        for hidden in branch.hidden_stems:
            if hidden.stem.element == element:
                count += hidden.weight * 0.5
    return count


def _root_score(count: float) -> int:
    if count == 0:
        return 1
    if count < 1:
        return 2
    if count < 2:
        return 3
    if count < 3:
        return 4
    return 5


def _support_score(count: float) -> int:
    if count == 0:
        return 1
    if count < 2:
        return 3
    if count < 4:
        return 4
    return 5


def _control_score(count: float) -> int:
    if count == 0:
        return 5
    if count < 2:
        return 3
    if count < 4:
        return 2
    return 1


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def day_master_strength(chart: Chart, gender: Gender) -> StrengthScore:
    """
    Score the Day Master 1-5 from season, root, support and control.

    final = round(0.4*season + 0.3*root + 0.2*support + 0.1*control),
    rounded half up and clamped to [1, 5].
    """
    element = chart.day_master.element
    roots = root_count(chart, element)
    support = element_weight(chart, resource_element(element))
    control = element_weight(chart, controller_element(element))

    sub_scores = {
        "season": season_score(element, chart.month.branch),
        "root": _root_score(roots),
        "support": _support_score(support),
        "control": _control_score(control),
    }
    weighted = sum(sub_scores[key] * weight for key, weight in STRENGTH_WEIGHTS.items())
    score = max(1, min(5, round_half_up(weighted)))

    return StrengthScore(
        score=score,
        label=STRENGTH_LABELS[score],
        annotation=GENDER_ANNOTATIONS[(score, gender)],
        root_count=roots,
        support_count=support,
        control_count=control,
        **sub_scores,
    )


def stem_seasonal_strength(pillar: Pillar, month_branch: EarthlyBranch) -> StemStrength:
    """Seasonal state (旺 相 休 囚 死) of a pillar's stem in the birth month."""
    state = _season_state(STEM_SEASON_TABLE, pillar.stem.element, month_branch)
    score, label = SEASON_STATES[state]
    return StemStrength(pillar.position, pillar.stem, state, score, label)


def stem_strengths(chart: Chart) -> dict[str, StemStrength]:
    return {p.position: stem_seasonal_strength(p, chart.month.branch) for p in chart.pillars}


def strength_useful_elements(day_master_element: Element,
                             score: int) -> tuple[list[Element], list[Element]]:
    """
    Default useful / harmful elements from the strength score.

    Weak (<= 2): lean on resource and peers; output and controller hurt.
    Strong (>= 4): controller and wealth drain the excess; resource and peers hurt.
    Average: resource and controller help; output hurts.
    """
    resource = resource_element(day_master_element)
    output = output_element(day_master_element)
    controller = controller_element(day_master_element)
    wealth = wealth_element(day_master_element)

    if score <= 2:
        return [resource, day_master_element], [output, controller]
    if score >= 4:
        return [controller, wealth], [resource, day_master_element]
    return [resource, controller], [output]


# ============================================================
# BRANCH AND STEM INTERACTIONS
# ============================================================

class InteractionKind(Enum):
    MERGE = "merge"
    CLASH = "clash"
    PUNISHMENT = "punishment"
    HARM = "harm"
    STEM_COMBINATION = "stem_combination"
    TRIPLE_MERGE = "triple_merge"
    TRIPLE_GATHERING = "triple_gathering"


class Impact(Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


@dataclass(frozen=True)
class Interaction:
    kind: InteractionKind
    name: str
    pillars: tuple[str, ...]
    description: str
    impact: Impact
    element: Optional[Element] = None
    completeness: Optional[str] = None  # "complete" | "partial" for triples
    branches: tuple[str, ...] = ()
    season: Optional[str] = None
    self_punishment: bool = False

    def to_dict(self):
        data = {
            "kind": self.kind.value,
            "name": self.name,
            "pillars": list(self.pillars),
            "description": self.description,
            "impact": self.impact.value,
        }
        if self.element is not None:
            data["element"] = self.element.value
        if self.completeness is not None:
            data["completeness"] = self.completeness
        if self.branches:
            data["branches"] = list(self.branches)
        if self.season is not None:
            data["season"] = self.season
        if self.self_punishment:
            data["self_punishment"] = True
        return data


# Six Merges (六合)
_MERGE_ROWS = [
    ("子", "丑", Element.EARTH, "Water meets Earth: harmony in relationships"),
    ("寅", "亥", Element.WOOD, "Wood meets Water: growth and development"),
    ("卯", "戌", Element.FIRE, "Wood meets Earth: creative energy"),
    ("辰", "酉", Element.METAL, "Earth meets Metal: strengthened resolve"),
    ("巳", "申", Element.WATER, "Fire meets Metal: balance and wisdom"),
    ("午", "未", Element.EARTH, "Fire meets Earth: stability"),
]

# Six Clashes (六冲)
_CLASH_ROWS = [
    ("子", "午", "Water against Fire: inner conflict and change"),
    ("丑", "未", "Earth against Earth: tension in material matters"),
    ("寅", "申", "Wood against Metal: abrupt change"),
    ("卯", "酉", "Wood against Metal: friction in relationships"),
    ("辰", "戌", "Earth against Earth: instability in career"),
    ("巳", "亥", "Fire against Water: emotional swings"),
]

# Punishments (刑). Matched in either pillar order. The 子卯 entry is carried
# in one direction only, so the table is not symmetric across all entries.
_PUNISHMENT_ROWS = [
    ("寅", "巳", "寅刑巳", "Wood and Fire: hidden tension"),
    ("巳", "申", "巳刑申", "Fire and Metal: inner obstacles"),
    ("申", "寅", "申刑寅", "Metal and Wood: caution required"),
    ("丑", "戌", "丑刑戌", "Earth and Earth: difficulty in material affairs"),
    ("戌", "未", "戌刑未", "Earth and Earth: obstacles to stability"),
    ("未", "丑", "未刑丑", "Earth and Earth: patience required"),
    ("辰", "辰", "辰自刑", "Dragon self-punishment: inner contradiction"),
    ("午", "午", "午自刑", "Horse self-punishment: excessive self-criticism"),
    ("酉", "酉", "酉自刑", "Rooster self-punishment: perfectionism"),
    ("亥", "亥", "亥自刑", "Pig self-punishment: brooding"),
    ("子", "卯", "子刑卯 (无礼之刑)", "Water and Wood: punishment of discourtesy, friction between wants and means"),
]

# Six Harms (六害), twelve entries covering each pair in both directions.
# Every entry is matched in either pillar order, so a harmful pair reports
# under both of its names.
_HARM_ROWS = [
    ("子", "未", "子害未", "Water and Earth: hidden obstacles"),
    ("未", "子", "未害子", "Earth and Water: material contradictions"),
    ("丑", "午", "丑害午", "Earth and Fire: inner contradictions"),
    ("午", "丑", "午害丑", "Fire and Earth: passion against stability"),
    ("寅", "巳", "寅害巳", "Wood and Fire: balance required"),
    ("巳", "寅", "巳害寅", "Fire and Wood: impulses need control"),
    ("卯", "辰", "卯害辰", "Wood and Earth: strained relationships"),
    ("辰", "卯", "辰害卯", "Earth and Wood: obstacles to growth"),
    ("申", "亥", "申害亥", "Metal and Water: hidden conflicts"),
    ("亥", "申", "亥害申", "Water and Metal: flexibility in decisions"),
    ("酉", "戌", "酉害戌", "Metal and Earth: career obstacles"),
    ("戌", "酉", "戌害酉", "Earth and Metal: goals hard to reach"),
]

SELF_PUNISHMENT_BRANCHES = "辰午酉亥"

# Stem Combinations (合化)
_STEM_COMBINATION_ROWS = [
    ("甲", "己", Element.EARTH, "Yang Wood with Yin Earth: stability and practicality"),
    ("乙", "庚", Element.METAL, "Yin Wood with Yang Metal: resolve and clarity"),
    ("丙", "辛", Element.WATER, "Yang Fire with Yin Metal: wisdom and flexibility"),
    ("丁", "壬", Element.WOOD, "Yin Fire with Yang Water: growth and development"),
    ("戊", "癸", Element.FIRE, "Yang Earth with Yin Water: enthusiasm and creativity"),
]

# Triple Merges (三合)
_TRIPLE_MERGE_ROWS = [
    ("申子辰", Element.WATER, "Monkey, Rat and Dragon build Water: adaptability and depth"),
    ("亥卯未", Element.WOOD, "Pig, Rabbit and Goat build Wood: growth and creativity"),
    ("寅午戌", Element.FIRE, "Tiger, Horse and Dog build Fire: passion and influence"),
    ("巳酉丑", Element.METAL, "Snake, Rooster and Ox build Metal: discipline and clarity"),
]

# Triple Gatherings (三会), one per season
_TRIPLE_GATHERING_ROWS = [
    ("寅卯辰", Element.WOOD, "spring", "Spring branches gather Wood: beginnings and new openings"),
    ("巳午未", Element.FIRE, "summer", "Summer branches gather Fire: activity and recognition"),
    ("申酉戌", Element.METAL, "autumn", "Autumn branches gather Metal: order and completion"),
    ("亥子丑", Element.WATER, "winter", "Winter branches gather Water: depth and accumulation"),
]


def _branch_pair(a: str, b: str) -> frozenset:
    return frozenset((BRANCH_BY_CHINESE[a], BRANCH_BY_CHINESE[b]))


MERGES = {_branch_pair(a, b): (element, meaning) for a, b, element, meaning in _MERGE_ROWS}

CLASH_PARTNER = {
    **{BRANCH_BY_CHINESE[a]: BRANCH_BY_CHINESE[b] for a, b, _ in _CLASH_ROWS},
    **{BRANCH_BY_CHINESE[b]: BRANCH_BY_CHINESE[a] for a, b, _ in _CLASH_ROWS},
}

CLASH_MEANINGS = {_branch_pair(a, b): meaning for a, b, meaning in _CLASH_ROWS}

PUNISHMENTS = tuple(
    (BRANCH_BY_CHINESE[a], BRANCH_BY_CHINESE[b], name, meaning)
    for a, b, name, meaning in _PUNISHMENT_ROWS
)

HARMS = tuple(
    (BRANCH_BY_CHINESE[a], BRANCH_BY_CHINESE[b], name, meaning)
    for a, b, name, meaning in _HARM_ROWS
)

STEM_COMBINATIONS = {
    frozenset((STEM_BY_CHINESE[a], STEM_BY_CHINESE[b])): (element, meaning)
    for a, b, element, meaning in _STEM_COMBINATION_ROWS
}


def merge_element(a: EarthlyBranch, b: EarthlyBranch) -> Optional[Element]:
    entry = MERGES.get(frozenset((a, b)))
    return entry[0] if entry else None


def clash_partner(branch: EarthlyBranch) -> EarthlyBranch:
    return CLASH_PARTNER[branch]


def stem_combination_element(a: HeavenlyStem, b: HeavenlyStem) -> Optional[Element]:
    """Transformed element of a stem combination, or None."""
    entry = STEM_COMBINATIONS.get(frozenset((a, b)))
    return entry[0] if entry else None


def find_branch_interactions(chart: Chart) -> list[Interaction]:
    """
    Pairwise branch interactions across the four pillars, then the
    self-punishment scan.

    A pair may match several tables; nothing is deduplicated.
    """
    interactions = []
    pillars = chart.pillars

    for i in range(len(pillars)):
        for j in range(i + 1, len(pillars)):
            p1, p2 = pillars[i], pillars[j]
            b1, b2 = p1.branch, p2.branch
            names = (p1.position, p2.position)
            pair = frozenset((b1, b2))

            if pair in MERGES:
                element, meaning = MERGES[pair]
                interactions.append(Interaction(
                    kind=InteractionKind.MERGE,
                    name=f"{b1.chinese}{b2.chinese}合",
                    pillars=names,
                    description=f"{meaning}. Touches the life areas of these pillars.",
                    impact=Impact.POSITIVE,
                    element=element,
                ))

            if CLASH_PARTNER[b1] == b2:
                interactions.append(Interaction(
                    kind=InteractionKind.CLASH,
                    name=f"{b1.chinese}{b2.chinese}冲",
                    pillars=names,
                    description=f"{CLASH_MEANINGS[pair]}. Expect change and a need to adapt.",
                    impact=Impact.NEUTRAL,
                ))

            for first, second, name, meaning in PUNISHMENTS:
                if (b1, b2) == (first, second) or (b2, b1) == (first, second):
                    interactions.append(Interaction(
                        kind=InteractionKind.PUNISHMENT,
                        name=name,
                        pillars=names,
                        description=f"{meaning}. Caution and patience required.",
                        impact=Impact.NEGATIVE,
                    ))

            for first, second, name, meaning in HARMS:
                if (b1, b2) == (first, second) or (b2, b1) == (first, second):
                    interactions.append(Interaction(
                        kind=InteractionKind.HARM,
                        name=name,
                        pillars=names,
                        description=f"{meaning}. Watch for hidden obstacles.",
                        impact=Impact.NEGATIVE,
                    ))

    # Self-punishment: the same branch in two or more pillars
    for glyph in SELF_PUNISHMENT_BRANCHES:
        affected = tuple(p.position for p in pillars if p.branch.chinese == glyph)
        if len(affected) >= 2:
            interactions.append(Interaction(
                kind=InteractionKind.PUNISHMENT,
                name=f"{glyph}自刑",
                pillars=affected,
                description=f"Self-punishment of {BRANCH_BY_CHINESE[glyph].animal}: inner contradiction turned on oneself.",
                impact=Impact.NEGATIVE,
                self_punishment=True,
            ))

    return interactions


def find_stem_combinations(chart: Chart) -> list[Interaction]:
    combinations = []
    pillars = chart.pillars
    for i in range(len(pillars)):
        for j in range(i + 1, len(pillars)):
            s1, s2 = pillars[i].stem, pillars[j].stem
            entry = STEM_COMBINATIONS.get(frozenset((s1, s2)))
            if entry is None:
                continue
            element, meaning = entry
            combinations.append(Interaction(
                kind=InteractionKind.STEM_COMBINATION,
                name=f"{s1.chinese}{s2.chinese}合化{element.chinese}",
                pillars=(pillars[i].position, pillars[j].position),
                description=f"{meaning}. Transforms toward {element.value}.",
                impact=Impact.POSITIVE,
                element=element,
            ))
    return combinations


def _triple(kind: InteractionKind, chart: Chart, triad: str, element: Element,
            meaning: str, suffix: str, season: Optional[str] = None) -> Optional[Interaction]:
    present = {b.chinese for b in chart.branches}
    found = tuple(glyph for glyph in triad if glyph in present)
    if len(found) < 2:
        return None
    complete = len(found) == 3
    detail = " Complete triad, very strong influence." if complete else " Partial triad, moderate influence."
    return Interaction(
        kind=kind,
        name=f"{triad}{suffix}{element.chinese}",
        pillars=tuple(p.position for p in chart.pillars if p.branch.chinese in triad),
        description=meaning + "." + detail,
        impact=Impact.POSITIVE,
        element=element,
        completeness="complete" if complete else "partial",
        branches=found,
        season=season,
    )


def find_triple_combinations(chart: Chart) -> list[Interaction]:
    """Triple Merges (三合) then Triple Gatherings (三会); two of three is partial."""
    combinations = []
    for triad, element, meaning in _TRIPLE_MERGE_ROWS:
        found = _triple(InteractionKind.TRIPLE_MERGE, chart, triad, element, meaning, "三合")
        if found:
            combinations.append(found)
    for triad, element, season, meaning in _TRIPLE_GATHERING_ROWS:
        found = _triple(InteractionKind.TRIPLE_GATHERING, chart, triad, element, meaning, "三会", season)
        if found:
            combinations.append(found)
    return combinations


def clashes_with_branch(chart: Chart, branch: EarthlyBranch) -> list[dict]:
    """Natal pillars clashed by an incoming branch (e.g. the current month's)."""
    partner = CLASH_PARTNER[branch]
    return [
        {
            "pillar": p.position,
            "natal_branch": p.branch.chinese,
            "incoming_branch": branch.chinese,
            "name": f"{p.branch.chinese}{branch.chinese}冲",
        }
        for p in chart.pillars if p.branch == partner
    ]


# ============================================================
# LUCK PILLAR COMPUTATION
# ============================================================

class LuckDirection(Enum):
    FORWARD = "forward"
    BACKWARD = "backward"


FORWARD_LUCK_SEQUENCE = ("甲子", "乙丑", "丙寅", "丁卯", "戊辰", "己巳", "庚午", "辛未", "壬申", "癸酉")
BACKWARD_LUCK_SEQUENCE = ("癸亥", "壬戌", "辛酉", "庚申", "己未", "戊午", "丁巳", "丙辰", "乙卯", "甲寅")


@dataclass(frozen=True)
class LuckPeriod:
    number: int
    start_age: float
    pillar: Pillar
    direction: LuckDirection

    @property
    def age_range(self) -> str:
        start = math.floor(self.start_age)
        return f"{start}-{start + 9}"

    def to_dict(self):
        return {
            "number": self.number,
            "start_age": self.start_age,
            "age_range": self.age_range,
            "pillar": self.pillar.chinese,
            "stem_element": self.pillar.stem.element.value,
            "branch_element": self.pillar.branch.element.value,
            "branch_animal": self.pillar.branch.animal,
            "direction": self.direction.value,
        }


@dataclass(frozen=True)
class LuckSequence:
    direction: LuckDirection
    start_age: float
    periods: tuple[LuckPeriod, ...]
    start_index_defaulted: bool = False


def luck_direction(year_stem: HeavenlyStem, gender: Gender) -> LuckDirection:
    """
    Yang stem year + Male OR Yin stem year + Female → count FORWARD.
    Yang stem year + Female OR Yin stem year + Male → count BACKWARD.
    """
    yang = year_stem.polarity == Polarity.YANG
    if (gender == Gender.MALE and yang) or (gender == Gender.FEMALE and not yang):
        return LuckDirection.FORWARD
    return LuckDirection.BACKWARD


def luck_pillars(month_pillar: Pillar, direction: LuckDirection, start_age: float,
                 count: int = 6) -> LuckSequence:
    """
    Luck Pillars (大运 Da Yun) from the fixed ten-entry sequence.

    The sequence starts at the month pillar's position; a month pillar that
    does not appear in the sequence starts at index 0 and is flagged.
    """
    sequence = FORWARD_LUCK_SEQUENCE if direction == LuckDirection.FORWARD else BACKWARD_LUCK_SEQUENCE
    defaulted = month_pillar.chinese not in sequence
    start_index = 0 if defaulted else sequence.index(month_pillar.chinese)

    periods = []
    for i in range(count):
        text = sequence[(start_index + i) % len(sequence)]
        periods.append(LuckPeriod(
            number=i + 1,
            start_age=round(start_age + i * 10, 1),
            pillar=make_pillar(text[0], text[1], "luck"),
            direction=direction,
        ))

    return LuckSequence(direction, start_age, tuple(periods), defaulted)
