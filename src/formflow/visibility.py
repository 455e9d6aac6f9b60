"""Visibility resolution for sections and fields.

All functions are pure and recompute from the answers they are given.
Callers must invoke them again after every answer change instead of
holding on to an earlier result.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Tuple

from .consts import SUBMIT_SENTINEL, WALK_CAP_FACTOR
from .definition import Field, FormDefinition, Section, VisibilityRule
from .enums import Condition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VisibleSet:
    """Result of walking a definition from its first section.

    ``section_ids`` is in walk order. ``terminated`` is set when a selected
    option mapped to the submit sentinel ended the walk; ``steps`` counts the
    loop iterations taken.
    """

    section_ids: Tuple[str, ...]
    terminated: bool = False
    steps: int = 0

    def __contains__(self, section_id: object) -> bool:
        return section_id in self.section_ids

    def __len__(self) -> int:
        return len(self.section_ids)

    @property
    def last(self) -> Optional[str]:
        return self.section_ids[-1] if self.section_ids else None


def _stringify(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


def evaluate_rule(rule: Optional[VisibilityRule], answers: Mapping[str, Any]) -> bool:
    """Evaluate a section-level rule. Disabled or absent rules always pass."""
    if rule is None or not rule.enabled or not rule.field_id:
        return True

    answer = answers.get(rule.field_id)
    if answer in (None, "") or answer == []:
        return False

    actual = _stringify(answer)
    expected = _stringify(rule.value)

    if rule.condition == Condition.EQUALS:
        return actual == expected
    if rule.condition == Condition.NOT_EQUALS:
        return actual != expected
    if rule.condition == Condition.CONTAINS:
        if isinstance(answer, (list, tuple)) and expected in [str(v) for v in answer]:
            return True
        return expected in actual
    return True


def _next_target(section: Section, answers: Mapping[str, Any]) -> Tuple[bool, Optional[str]]:
    """Submit flag and jump target for one section.

    Each matched target list contributes its first section id; a later field
    (or a later selected value) overrides an earlier one.
    """
    terminate = False
    jump: Optional[str] = None

    for field in section.fields:
        if not field.conditional_mapping:
            continue
        answer = answers.get(field.id)
        values = answer if isinstance(answer, (list, tuple)) else [answer]
        for value in values:
            if value in (None, ""):
                continue
            targets = field.conditional_mapping.get(str(value), [])
            if SUBMIT_SENTINEL in targets:
                terminate = True
            first = next((t for t in targets if t != SUBMIT_SENTINEL), None)
            if first is not None:
                jump = first

    return terminate, jump


def resolve_visibility(definition: FormDefinition, answers: Mapping[str, Any]) -> VisibleSet:
    """Walk the sections reachable from section 0 under the current answers.

    At each section the fields' conditional mappings decide the next hop: a
    submit mapping ends the walk, a section id jumps forward, and otherwise
    the walk falls through to the next index. A jump that points backwards,
    sideways or at an unknown id ends the walk. The loop is capped at
    ``2 * len(sections)`` iterations so malformed definitions terminate.
    """
    sections = definition.sections
    if not sections:
        return VisibleSet(section_ids=())

    visible: List[str] = [sections[0].id]
    cursor = 0
    steps = 0
    max_steps = WALK_CAP_FACTOR * len(sections)

    while 0 <= cursor < len(sections) and steps < max_steps:
        steps += 1
        terminate, jump = _next_target(sections[cursor], answers)

        if terminate:
            return VisibleSet(section_ids=tuple(visible), terminated=True, steps=steps)

        if jump is not None:
            next_index = definition.section_index(jump)
            if next_index <= cursor:
                logger.debug(
                    f"Ignoring jump from section {sections[cursor].id!r} to {jump!r} "
                    f"(index {next_index})"
                )
                break
        else:
            next_index = cursor + 1

        if next_index >= len(sections):
            break

        if sections[next_index].id not in visible:
            visible.append(sections[next_index].id)
        cursor = next_index

    return VisibleSet(section_ids=tuple(visible), steps=steps)


def is_section_visible(
    definition: FormDefinition,
    index: int,
    answers: Mapping[str, Any],
    visible: Optional[VisibleSet] = None,
) -> bool:
    if index == 0:
        return True
    if not 0 < index < len(definition.sections):
        return False

    section = definition.sections[index]
    if visible is None:
        visible = resolve_visibility(definition, answers)
    return section.id in visible and evaluate_rule(section.conditional, answers)


def visible_section_indexes(definition: FormDefinition, answers: Mapping[str, Any]) -> List[int]:
    visible = resolve_visibility(definition, answers)
    return [
        i
        for i in range(len(definition.sections))
        if is_section_visible(definition, i, answers, visible)
    ]


def visible_sections(definition: FormDefinition, answers: Mapping[str, Any]) -> List[Section]:
    return [definition.sections[i] for i in visible_section_indexes(definition, answers)]


def is_field_visible(field: Field, section: Section, answers: Mapping[str, Any]) -> bool:
    """Single-hop field rule: shown only while the sibling holds the exact value."""
    rule = field.conditional
    if rule is None or not rule.enabled or not rule.field_id:
        return True

    if section.get_field(rule.field_id) is None:
        return True

    return answers.get(rule.field_id) == rule.value


def visible_fields(section: Section, answers: Mapping[str, Any]) -> List[Field]:
    return [f for f in section.fields if is_field_visible(f, section, answers)]
