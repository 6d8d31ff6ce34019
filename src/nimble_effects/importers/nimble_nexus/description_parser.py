"""
Effect tree extraction from Nimble Nexus action text.

Monster actions on Nimble Nexus carry a free-text description and an
optional damage roll. This module pulls the mechanical parts out of that
text (saving throws, damage types, conditions, range and area) and builds
a nested effect tree from them.

Every sub-parser returns an empty result when nothing matches. The
patterns are heuristic and their order matters: the first match wins.

Key functions:
- extract_dice_formula / parse_damage_type / parse_damage
- parse_saving_throw
- parse_conditions
- parse_range_reach
- build_effect_tree / parse_action: assemble the nested tree
"""

from __future__ import annotations

import logging
import re
from typing import Any, Literal

from pydantic import BaseModel, Field

from ...models import (
    ActionConsequence,
    ConditionNode,
    DamageNode,
    DamageOutcomeNode,
    EffectNode,
    SavingThrowNode,
)
from .schema import (
    CONDITION_MAP,
    DAMAGE_TYPE_MAP,
    DEFAULT_DAMAGE_TYPE,
    SAVE_STAT_PATTERN,
    SAVE_TYPE_ABBREVIATION_MAP,
)

logger = logging.getLogger("nimble-effects")

ConditionContext = Literal["hit", "criticalHit", "failedSave"]

# ---------------------------------------------------------------------------
# Action input and parse results
# ---------------------------------------------------------------------------


class NimbleNexusDamage(BaseModel):
    roll: str = ""


class NimbleNexusTarget(BaseModel):
    reach: int | None = None
    range: int | None = None


class NimbleNexusAction(BaseModel):
    """One monster action as returned by the Nimble Nexus API."""

    name: str = ""
    description: str | None = None
    damage: NimbleNexusDamage | None = None
    target: NimbleNexusTarget | None = None


class ParsedSavingThrow(BaseModel):
    dc: int = Field(description="Difficulty class of the save")
    save_type: str = Field(description="Canonical saving throw type")
    consequence: str | None = Field(default=None, description="Free text of what a failed save does")
    half_on_save: bool = Field(default=False, description="Whether a passed save takes half damage")


class ParsedCondition(BaseModel):
    condition: str
    context: ConditionContext = "hit"
    escape_dc: int | None = None
    escape_type: str | None = None


class ParsedRangeReach(BaseModel):
    type: Literal["range", "reach", "cone", "line", "burst"]
    distance: int
    width: int | None = None


class ParsedDamage(BaseModel):
    formula: str
    damage_type: str


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_STAT = f"({SAVE_STAT_PATTERN})"
_SAVE_WORD = r"(?:saving\s+throw|save)"

# (pattern, stat comes before the DC)
_SAVE_PATTERNS: list[tuple[re.Pattern, bool]] = [
    (re.compile(rf"DC\s*(\d+)\s+{_STAT}\s+{_SAVE_WORD}", re.IGNORECASE), False),
    (re.compile(rf"make\s+a\s+DC\s*(\d+)\s+{_STAT}\s+{_SAVE_WORD}", re.IGNORECASE), False),
    (re.compile(rf"{_STAT}\s+DC\s*(\d+)\s+{_SAVE_WORD}", re.IGNORECASE), True),
    (re.compile(rf"DC\s*(\d+)\s+{_STAT}\s+or\b", re.IGNORECASE), False),
    (re.compile(rf"{_STAT}\s+DC\s*(\d+)\s+or\b", re.IGNORECASE), True),
    (re.compile(rf"{_STAT}\s+DC\s*(\d+)\s+for\s+half", re.IGNORECASE), True),
    (re.compile(rf"{_STAT}\s+Save\s+DC\s*(\d+)", re.IGNORECASE), True),
    (re.compile(rf"{_STAT}\s+saving\s+throw\s+(\d+)\s+or\b", re.IGNORECASE), True),
    (re.compile(rf"{_STAT}\s+saving\s+throw\s+(\d+)", re.IGNORECASE), True),
]

_HALF_ON_SAVE_PATTERNS = [
    re.compile(r"(?:for\s+)?half\s+damage", re.IGNORECASE),
    re.compile(r"half\s+(?:as\s+much\s+)?damage\s+on\s+(?:a\s+)?(?:successful|success|passed?)\b", re.IGNORECASE),
    re.compile(r"(?:successful|success|passed?)\s+save\s+(?:takes?\s+)?half", re.IGNORECASE),
    re.compile(r"\bhalf\s+on\s+save\b", re.IGNORECASE),
]

_CONSEQUENCE_RE = re.compile(r"save\s+(?:or\s+)?(.+?)(?:\.|$)", re.IGNORECASE)

_LEADING_FORMULA_RE = re.compile(r"^(\d+d\d+(?:[+-]\d+)?)", re.IGNORECASE)
_FORMULA_TYPE_RE = re.compile(r"\d+d\d+(?:[+-]\d+)?\s+(\w+)", re.IGNORECASE)
_DAMAGE_PHRASE_PATTERNS = [
    re.compile(r"(\w+)\s+damage"),
    re.compile(r"deals?\s+(\w+)"),
    re.compile(r"inflicts?\s+(\w+)"),
]
_STANDALONE_TYPE_RE = re.compile(r"[.,]\s*(\w+)[,.\s]")
_LEADING_WORD_RE = re.compile(r"^(\w+)[.,\s]")

_BRACKET_CONDITION_RE = re.compile(r"\[\[(\w+)\]\]")
_ESCAPE_RE = re.compile(rf"escape\s+DC\s*(\d+)\s*{_STAT}?", re.IGNORECASE)
_CONTEXT_CONDITION_PATTERNS: list[tuple[re.Pattern, ConditionContext]] = [
    (re.compile(r"on\s+hit[:\s]+(\w+)", re.IGNORECASE), "hit"),
    (re.compile(r"on\s+crit(?:ical)?(?:\s+hit)?[:\s]+(\w+)", re.IGNORECASE), "criticalHit"),
    (re.compile(r"on\s+(?:failed\s+)?save[:\s]+(\w+)", re.IGNORECASE), "failedSave"),
]
_TARGET_CONDITION_RE = re.compile(r"target\s+(?:is|becomes?)\s+(\w+)", re.IGNORECASE)

_RANGE_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\(?\s*range[:\s]+(\d+)\s*\)?", re.IGNORECASE), "range"),
    (re.compile(r"reach[:\s]+(\d+)", re.IGNORECASE), "reach"),
    (re.compile(r"cone[:\s]+(\d+)", re.IGNORECASE), "cone"),
    (re.compile(r"line[:\s]+(\d+)(?:x(\d+))?", re.IGNORECASE), "line"),
    (re.compile(r"burst[:\s]+(\d+)", re.IGNORECASE), "burst"),
]


# ---------------------------------------------------------------------------
# Damage
# ---------------------------------------------------------------------------

def extract_dice_formula(roll: str | None) -> str:
    """Return the leading dice formula of a roll string.

    ``"5d8+13 Radiant"`` gives ``"5d8+13"``. A string that does not start
    with dice is returned stripped.
    """
    if not roll:
        return ""
    match = _LEADING_FORMULA_RE.match(roll)
    return match.group(1) if match else roll.strip()


def _damage_type_from(matches) -> str | None:
    for match in matches:
        damage_type = DAMAGE_TYPE_MAP.get(match.group(1).lower())
        if damage_type:
            return damage_type
    return None


def parse_damage_type(formula: str | None = None, description: str | None = None) -> str:
    """Work out the damage type of an action.

    The word after the dice in the formula is checked first, then these
    description patterns in order: "<type> damage", "deals <type>",
    "inflicts <type>", a word following dice, a word following punctuation,
    and the description's first word. Defaults to bludgeoning.
    """
    if formula:
        match = _FORMULA_TYPE_RE.search(formula)
        if match and match.group(1).lower() in DAMAGE_TYPE_MAP:
            return DAMAGE_TYPE_MAP[match.group(1).lower()]

    if description:
        text = description.lower()
        for pattern in _DAMAGE_PHRASE_PATTERNS:
            damage_type = _damage_type_from(pattern.finditer(text))
            if damage_type:
                return damage_type

        for pattern in (_FORMULA_TYPE_RE, _STANDALONE_TYPE_RE):
            damage_type = _damage_type_from(pattern.finditer(text))
            if damage_type:
                return damage_type

        match = _LEADING_WORD_RE.match(text)
        if match and match.group(1) in DAMAGE_TYPE_MAP:
            return DAMAGE_TYPE_MAP[match.group(1)]

    return DEFAULT_DAMAGE_TYPE


def parse_damage(action: NimbleNexusAction) -> ParsedDamage | None:
    """Formula and damage type of an action's damage roll, if it has one."""
    if action.damage is None or not action.damage.roll:
        return None
    return ParsedDamage(
        formula=extract_dice_formula(action.damage.roll),
        damage_type=parse_damage_type(action.damage.roll, action.description),
    )


# ---------------------------------------------------------------------------
# Saving throws
# ---------------------------------------------------------------------------

def _is_half_on_save(description: str) -> bool:
    return any(pattern.search(description) for pattern in _HALF_ON_SAVE_PATTERNS)


def parse_saving_throw(description: str | None) -> ParsedSavingThrow | None:
    """Find the first saving throw mentioned in an action description.

    Recognizes "DC 15 DEX save", "make a DC 10 STR saving throw",
    "Dex DC 20 save", "DC 10 WIL or ...", "Dex DC 15 for half",
    "DEX Save DC 15" and "Dex saving throw 13". WIS is read as WIL.
    When the save does not halve damage, the text after "save" up to the
    next period is kept as the consequence.
    """
    if not description:
        return None

    for pattern, stat_first in _SAVE_PATTERNS:
        match = pattern.search(description)
        if not match:
            continue

        stat, dc = (match.group(1), match.group(2)) if stat_first else (match.group(2), match.group(1))
        save_type = SAVE_TYPE_ABBREVIATION_MAP.get(stat.lower())
        if not save_type:
            continue

        half_on_save = _is_half_on_save(description)
        consequence = None
        if not half_on_save:
            consequence_match = _CONSEQUENCE_RE.search(description)
            if consequence_match:
                consequence = consequence_match.group(1).strip()

        return ParsedSavingThrow(
            dc=int(dc),
            save_type=save_type,
            consequence=consequence,
            half_on_save=half_on_save,
        )

    return None


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------

def _bracket_context(preceding: str) -> ConditionContext:
    if "on crit" in preceding or "critical hit" in preceding:
        return "criticalHit"
    if any(phrase in preceding for phrase in ("failed save", "fails the save", "fail the save", "save or")):
        return "failedSave"
    return "hit"


def _target_context(preceding: str) -> ConditionContext:
    if "failed save" in preceding or "fails" in preceding:
        return "failedSave"
    if "crit" in preceding:
        return "criticalHit"
    return "hit"


def parse_conditions(description: str | None) -> list[ParsedCondition]:
    """Collect the conditions an action description applies.

    Three notations are read, in this order:

    - ``[[Condition]]`` brackets; the context comes from the text before
      the bracket, and an "escape DC N STAT" clause is attached.
    - "On hit: X", "On crit: X", "On failed save: X" prefixes.
    - "target is X" / "target becomes X".

    Each (condition, context) pair is reported once.
    """
    if not description:
        return []

    conditions: list[ParsedCondition] = []
    seen: set[tuple[str, str]] = set()

    def add(condition: str, context: ConditionContext, **extra: Any) -> None:
        if (condition, context) in seen:
            return
        seen.add((condition, context))
        conditions.append(ParsedCondition(condition=condition, context=context, **extra))

    escape_dc = escape_type = None
    escape = _ESCAPE_RE.search(description)
    if escape:
        escape_dc = int(escape.group(1))
        if escape.group(2):
            escape_type = SAVE_TYPE_ABBREVIATION_MAP.get(escape.group(2).lower())

    for match in _BRACKET_CONDITION_RE.finditer(description):
        condition = CONDITION_MAP.get(match.group(1).lower())
        if condition:
            context = _bracket_context(description[: match.start()].lower())
            add(condition, context, escape_dc=escape_dc, escape_type=escape_type)

    for pattern, context in _CONTEXT_CONDITION_PATTERNS:
        for match in pattern.finditer(description):
            condition = CONDITION_MAP.get(match.group(1).lower())
            if condition:
                add(condition, context)

    for match in _TARGET_CONDITION_RE.finditer(description):
        condition = CONDITION_MAP.get(match.group(1).lower())
        if condition:
            add(condition, _target_context(description[: match.start()].lower()))

    return conditions


# ---------------------------------------------------------------------------
# Range, reach and areas
# ---------------------------------------------------------------------------

def parse_range_reach(
    description: str | None,
    existing_target: NimbleNexusTarget | None = None,
) -> ParsedRangeReach | None:
    """Range, reach or area of an action.

    A range or reach already given on the action's target wins. Otherwise
    the description is searched for "Range N", "Reach N", "Cone N",
    "Line NxW" and "Burst N", in that order.
    """
    if existing_target is not None:
        if existing_target.range:
            return ParsedRangeReach(type="range", distance=existing_target.range)
        if existing_target.reach:
            return ParsedRangeReach(type="reach", distance=existing_target.reach)

    if not description:
        return None

    for pattern, kind in _RANGE_PATTERNS:
        match = pattern.search(description)
        if match:
            width = match.group(2) if match.re.groups > 1 else None
            return ParsedRangeReach(
                type=kind,
                distance=int(match.group(1)),
                width=int(width) if width else None,
            )
    return None


# ---------------------------------------------------------------------------
# Tree building
# ---------------------------------------------------------------------------

def _outcome(parent_id: str, context: str, outcome: str = "fullDamage") -> DamageOutcomeNode:
    return DamageOutcomeNode(outcome=outcome, parent_node=parent_id, parent_context=context)


def _condition(condition: str, parent_id: str | None, context: str | None) -> ConditionNode:
    return ConditionNode(condition=condition, parent_node=parent_id, parent_context=context)


def _build_saving_throw_tree(
    save: ParsedSavingThrow,
    damage: ParsedDamage | None,
    conditions: list[ParsedCondition],
) -> SavingThrowNode:
    node = SavingThrowNode(
        saving_throw_type=save.save_type,
        save_dc=save.dc,
        shared_rolls=[],
        on=ActionConsequence(),
    )

    if damage is not None:
        roll = DamageNode(
            damage_type=damage.damage_type,
            formula=damage.formula,
            parent_node=node.id,
            parent_context="sharedRolls",
        )
        roll.on = ActionConsequence(failed_save=[_outcome(roll.id, "failedSave")])
        if save.half_on_save:
            roll.on.passed_save = [_outcome(roll.id, "passedSave", "halfDamage")]
        node.shared_rolls.append(roll)

    failed = [c for c in conditions if c.context == "failedSave"]
    if failed:
        node.on.failed_save = [_condition(c.condition, node.id, "failedSave") for c in failed]

    return node


def _build_damage_tree(damage: ParsedDamage, conditions: list[ParsedCondition]) -> DamageNode:
    node = DamageNode(
        damage_type=damage.damage_type,
        formula=damage.formula,
        can_crit=True,
        can_miss=True,
    )
    hit: list[EffectNode] = [_outcome(node.id, "hit")]
    hit.extend(_condition(c.condition, node.id, "hit") for c in conditions if c.context == "hit")
    node.on = ActionConsequence(hit=hit)

    crit = [_condition(c.condition, node.id, "criticalHit") for c in conditions if c.context == "criticalHit"]
    if crit:
        node.on.critical_hit = crit

    return node


def build_effect_tree(action: NimbleNexusAction | dict) -> list[EffectNode]:
    """Build the nested effect tree for one Nimble Nexus action.

    - A saving throw gives a save root. Parsed damage becomes its shared
      roll, with full damage on a failed save (and half on a passed one
      when the text says so). Failed-save conditions hang off the save.
    - Damage without a save gives a damage root that can crit and miss,
      with full damage and hit conditions on hit and crit conditions on
      a critical hit.
    - Conditions alone give root condition nodes for the hit context.

    Any error while parsing yields an empty list, so one bad action never
    stops the rest of a monster from importing.
    """
    try:
        if not isinstance(action, NimbleNexusAction):
            action = NimbleNexusAction.model_validate(action)

        save = parse_saving_throw(action.description)
        damage = parse_damage(action)
        conditions = parse_conditions(action.description)

        if save is not None:
            return [_build_saving_throw_tree(save, damage, conditions)]
        if damage is not None:
            return [_build_damage_tree(damage, conditions)]
        return [_condition(c.condition, None, None) for c in conditions if c.context == "hit"]

    except Exception as e:
        name = action.get("name") if isinstance(action, dict) else getattr(action, "name", "")
        logger.warning(f"Could not parse effects for action '{name}': {e}")
        return []


def parse_action(
    description: str | None,
    damage_roll: str | None = None,
    target: NimbleNexusTarget | dict | None = None,
) -> list[EffectNode]:
    """Parse free action text (plus an optional damage roll) into an effect tree."""
    return build_effect_tree(
        {
            "description": description,
            "damage": {"roll": damage_roll} if damage_roll else None,
            "target": target,
        }
    )


__all__ = [
    "NimbleNexusAction",
    "NimbleNexusDamage",
    "NimbleNexusTarget",
    "ParsedSavingThrow",
    "ParsedCondition",
    "ParsedRangeReach",
    "ParsedDamage",
    "extract_dice_formula",
    "parse_damage_type",
    "parse_damage",
    "parse_saving_throw",
    "parse_conditions",
    "parse_range_reach",
    "build_effect_tree",
    "parse_action",
]
