"""
Special structure classification.

A strict funnel; the first matching rule wins and later rules are never
evaluated:

1. Transformation (化格) - Day stem combines with the month or hour stem,
   the month branch carries the transformed element, the Day Master has no
   support and nothing strongly controls the transformed element.
2. Follow (从格) - unsupported Day Master surrendering to a dominant element.
3. Vibrational - exactly two elements carry the chart.
4. Rare - one branch three times or more with its clash partner absent.
5. Normal - strong or weak by peer + resource weight.

Element weights here count visible stems and branches as 1.0 and every
hidden stem as 0.3, regardless of its balance weight.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from bazi_engine.bazi import (
    Chart,
    Element,
    clash_partner,
    controller_element,
    output_element,
    resource_element,
    stem_combination_element,
)

logger = logging.getLogger(__name__)

STRUCTURE_HIDDEN_WEIGHT = 0.3
TRANSFORMATION_DESTROYER_LIMIT = 1.5
FOLLOW_DOMINANCE = 2.5
FOLLOW_WEALTH_OUTPUT_MINIMUM = 1.0
VIBRATIONAL_PRESENCE = 0.5
VIBRATIONAL_SHARE = 0.7
RARE_REPEAT = 3
NORMAL_STRONG_SUPPORT = 2.0


class StructureKind(Enum):
    TRANSFORMATION = "transformation"
    FOLLOW = "follow"
    VIBRATIONAL = "vibrational"
    RARE = "rare"
    NORMAL = "normal"


@dataclass(frozen=True)
class SpecialStructure:
    kind: StructureKind
    name: str
    useful_elements: tuple[Element, ...]
    subtype: Optional[str] = None  # follow: wealth/power/output; normal: strong/weak
    details: dict = field(default_factory=dict, compare=False)

    @property
    def is_special(self) -> bool:
        return self.kind != StructureKind.NORMAL

    def to_dict(self):
        return {
            "kind": self.kind.value,
            "name": self.name,
            "subtype": self.subtype,
            "useful_elements": [e.value for e in self.useful_elements],
            "details": {k: _plain(v) for k, v in self.details.items()},
        }


def _plain(value):
    if isinstance(value, Element):
        return value.value
    if isinstance(value, float):
        return round(value, 3)
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


# ============================================================
# SUPPORT CHECKS
# ============================================================

def element_count(chart: Chart, element: Element) -> float:
    count = 0.0
    for pillar in chart.pillars:
        if pillar.stem.element == element:
            count += 1.0
        if pillar.branch.element == element:
            count += 1.0
        for hidden in pillar.branch.hidden_stems:
            if hidden.stem.element == element:
                count += STRUCTURE_HIDDEN_WEIGHT
    return count


def element_counts(chart: Chart) -> dict[Element, float]:
    return {element: element_count(chart, element) for element in Element}


def has_resource_support(chart: Chart) -> bool:
    """Any stem, branch or hidden stem of the element producing the Day Master."""
    resource = resource_element(chart.day_master.element)
    return (
        any(s.element == resource for s in chart.stems)
        or any(b.element == resource for b in chart.branches)
        or any(h.stem.element == resource for h in chart.hidden_stems())
    )


def has_peer_support(chart: Chart) -> bool:
    """
    Another stem of the Day Master's element (the Day Master's own glyph
    does not count), a branch of that element, or such a hidden stem.
    """
    day_master = chart.day_master
    element = day_master.element
    other_stems = (chart.year.stem, chart.month.stem, chart.hour.stem)

    if any(s.element == element and s != day_master for s in other_stems):
        return True
    for branch in chart.branches:
        if branch.element == element:
            return True
        if any(h.stem.element == element and h.stem != day_master for h in branch.hidden_stems):
            return True
    return False


def has_root_support(chart: Chart) -> bool:
    """A branch of the Day Master's element hiding the Day Master stem itself."""
    day_master = chart.day_master
    return any(
        branch.element == day_master.element
        and any(h.stem == day_master for h in branch.hidden_stems)
        for branch in chart.branches
    )


def is_unsupported(chart: Chart) -> bool:
    return not (has_resource_support(chart) or has_peer_support(chart) or has_root_support(chart))


# ============================================================
# FUNNEL STAGES
# ============================================================

def transformation_structure(chart: Chart) -> Optional[SpecialStructure]:
    day_stem = chart.day_master
    partner_position = None
    transformed = None
    for pillar in (chart.month, chart.hour):
        transformed = stem_combination_element(day_stem, pillar.stem)
        if transformed is not None:
            partner_position = pillar.position
            break

    if transformed is None:
        return None
    if chart.month.branch.element != transformed:
        return None
    if not is_unsupported(chart):
        return None

    destroyer = controller_element(transformed)
    destroyer_count = element_count(chart, destroyer)
    if destroyer_count >= TRANSFORMATION_DESTROYER_LIMIT:
        return None

    generator = resource_element(transformed)
    partner = getattr(chart, partner_position).stem
    return SpecialStructure(
        kind=StructureKind.TRANSFORMATION,
        name=f"Transformation Structure (化格): {day_stem.chinese}{partner.chinese} → {transformed.value}",
        useful_elements=(transformed, generator),
        details={
            "combination": f"{day_stem.chinese}{partner.chinese}",
            "partner_pillar": partner_position,
            "transformed_element": transformed,
            "generating_element": generator,
            "destroyer_element": destroyer,
            "destroyer_count": destroyer_count,
        },
    )


def follow_structure(chart: Chart) -> Optional[SpecialStructure]:
    if not is_unsupported(chart):
        return None

    element = chart.day_master.element
    # The element pressing on the Day Master stands in for both wealth and power.
    pressure = controller_element(element)
    output = output_element(element)
    pressure_count = element_count(chart, pressure)
    output_count = element_count(chart, output)

    if pressure_count >= FOLLOW_DOMINANCE and output_count >= FOLLOW_WEALTH_OUTPUT_MINIMUM:
        return SpecialStructure(
            kind=StructureKind.FOLLOW,
            name="Follow Wealth (从财格)",
            subtype="wealth",
            useful_elements=(pressure, output),
            details={"dominant_element": pressure, "supporting_element": output,
                     "wealth_count": pressure_count, "output_count": output_count},
        )

    if pressure_count >= FOLLOW_DOMINANCE:
        feeder = resource_element(pressure)
        return SpecialStructure(
            kind=StructureKind.FOLLOW,
            name="Follow Power (从杀格)",
            subtype="power",
            useful_elements=(pressure, feeder),
            details={"dominant_element": pressure, "supporting_element": feeder,
                     "power_count": pressure_count},
        )

    if output_count >= FOLLOW_DOMINANCE:
        generator = resource_element(output)
        return SpecialStructure(
            kind=StructureKind.FOLLOW,
            name="Follow Output (从儿格)",
            subtype="output",
            useful_elements=(output, generator),
            details={"dominant_element": output, "generating_element": generator,
                     "output_count": output_count},
        )

    return None


def vibrational_structure(chart: Chart) -> Optional[SpecialStructure]:
    counts = element_counts(chart)
    present = sorted(
        ((element, count) for element, count in counts.items() if count > VIBRATIONAL_PRESENCE),
        key=lambda item: -item[1],
    )
    if len(present) != 2:
        return None

    total = sum(counts.values())
    share = (present[0][1] + present[1][1]) / total
    if share < VIBRATIONAL_SHARE:
        return None

    return SpecialStructure(
        kind=StructureKind.VIBRATIONAL,
        name=f"Vibrational Structure: {present[0][0].value} and {present[1][0].value}",
        useful_elements=tuple(element for element, _ in present),
        details={
            "dominant_elements": [{"element": e, "count": c} for e, c in present],
            "share": share,
        },
    )


def rare_structure(chart: Chart) -> Optional[SpecialStructure]:
    branches = chart.branches
    seen = []
    for branch in branches:
        if branch in seen:
            continue
        seen.append(branch)
        repeats = branches.count(branch)
        if repeats < RARE_REPEAT:
            continue
        partner = clash_partner(branch)
        if partner in branches:
            continue

        generator = resource_element(partner.element)
        return SpecialStructure(
            kind=StructureKind.RARE,
            name=f"Rare Structure: {repeats} {branch.animal} branches with the {partner.animal} absent",
            useful_elements=(partner.element, generator),
            details={
                "repeated_branch": branch.chinese,
                "repeated_count": repeats,
                "clashing_branch": partner.chinese,
                "clashing_element": partner.element,
            },
        )
    return None


def normal_structure(chart: Chart) -> SpecialStructure:
    element = chart.day_master.element
    resource = resource_element(element)
    peer_count = element_count(chart, element) - 1  # minus the Day Master itself
    resource_count = element_count(chart, resource)
    support = peer_count + resource_count
    strong = support >= NORMAL_STRONG_SUPPORT

    if strong:
        useful = (controller_element(element), output_element(element))
    else:
        useful = (element, resource)

    return SpecialStructure(
        kind=StructureKind.NORMAL,
        name="Strong Structure" if strong else "Weak Structure",
        subtype="strong" if strong else "weak",
        useful_elements=useful,
        details={
            "peer_count": peer_count,
            "resource_count": resource_count,
            "total_support": support,
        },
    )


FUNNEL = (
    transformation_structure,
    follow_structure,
    vibrational_structure,
    rare_structure,
)


def classify_structure(chart: Chart) -> SpecialStructure:
    for stage in FUNNEL:
        structure = stage(chart)
        if structure is not None:
            logger.debug("Structure: %s", structure.name)
            return structure
    return normal_structure(chart)
