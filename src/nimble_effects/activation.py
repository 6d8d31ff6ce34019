"""
Activation evaluator: turns an ability's effect tree into dice rolls.

When an ability fires, its effect tree is walked in flat (pre-order) form.
The first damage node becomes a :class:`~nimble_effects.dice.DamageRoll`
that can crit and miss; later damage nodes and every healing node become
plain rolls. Saving throws are rolled later by their targets, and
conditions, notes and damage outcomes carry no roll. Each roll is awaited
in node order and its serialized result is stored on the node, so the
returned tree can be flattened straight back into storage.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable

from pydantic import BaseModel, Field

from .dice import DamageRoll, Roll
from .models import ActivationData, DamageNode, EffectNode, HealingNode
from .tree.codec import flatten_effects_tree, reconstruct_effects_tree

logger = logging.getLogger("nimble-effects")

# Item types that only grant other items and never roll
NON_ROLLING_ITEM_TYPES = {"ancestry", "background", "boon", "class", "subclass"}

_DICE_FACES_RE = re.compile(r"\b(\d*)d([0-9oO|Il]+)\b")
_SEGMENT_SPLIT_RE = re.compile(r"\s*(?:,|;|\bor\b)\s*", re.IGNORECASE)
_FIRST_DICE_RE = re.compile(r"\b\d*d\d+(?:\s*[+-]\s*\d+)?\b", re.IGNORECASE)


class ActorContext(BaseModel):
    """The activating actor, as far as rolling is concerned."""

    actor_type: str = Field(default="character", description="Actor type, e.g. character, npc, minion, soloMonster")
    tags: set[str] = Field(default_factory=set, description="Actor tags; 'minion' marks a minion")
    roll_data: dict[str, Any] = Field(default_factory=dict, description="Values for @references in formulas")

    @property
    def is_minion(self) -> bool:
        return "minion" in self.tags or self.actor_type == "minion"


class ActivationOptions(BaseModel):
    """Per-activation choices made by the player or the calling flow."""

    roll_mode: int = Field(default=0, description="Positive for advantage, negative for disadvantage")
    roll_formula: str | None = Field(default=None, description="Replacement formula for the primary damage roll")
    primary_die_value: int | None = Field(default=None, description="Pinned primary die result")
    primary_die_modifier: int | None = Field(default=None, description="Flat bonus added to the primary die")
    fast_forward: bool = Field(default=False, description="Skip the configuration dialog")


class ActivationResult(BaseModel):
    """Evaluated rolls and the tree annotated with their results."""

    rolls: list[Any] = Field(default_factory=list, description="Evaluated rolls in node order")
    effects: list[EffectNode] = Field(default_factory=list, description="Nested tree with roll results merged in")


def _fix_dice_faces(match: re.Match) -> str:
    count = re.sub(r"[^0-9]", "", match.group(1) or "") or "1"
    faces = re.sub(r"[^0-9]", "", re.sub(r"[oO]", "0", match.group(2) or "")) or "0"
    return f"{count}d{faces}"


def normalize_damage_formula(formula: Any) -> str:
    """Clean up a hand-typed damage formula so it can be rolled.

    Collapses whitespace, repairs dice faces typed with letters (``1dlO``
    -> ``1d10``), and falls back to the first comma/semicolon/"or"
    separated segment, then to the first dice expression, then to ``"0"``.
    """
    normalized = re.sub(r"\s+", " ", formula).strip() if isinstance(formula, str) else ""
    if not normalized:
        return "0"

    normalized = _DICE_FACES_RE.sub(_fix_dice_faces, normalized)
    if Roll.validate(normalized):
        return normalized

    segment = next((s.strip() for s in _SEGMENT_SPLIT_RE.split(normalized) if s.strip()), "")
    if segment and Roll.validate(segment):
        return segment

    match = _FIRST_DICE_RE.search(normalized)
    if match:
        extracted = re.sub(r"\s+", "", match.group(0))
        if Roll.validate(extracted):
            return extracted

    logger.warning(f"Could not make a rollable formula from {formula!r}; rolling 0")
    return "0"


class ActivationEvaluator:
    """Produces and evaluates the rolls for one activation at a time.

    Roll classes and the random source are injectable so tests and
    alternative hosts can observe or replace dice evaluation.

    Attributes:
        damage_roll_cls: Factory for the crit/miss-capable primary roll.
        roll_cls: Factory for plain additive rolls.
        rng: Random source handed to every roll.
    """

    def __init__(
        self,
        damage_roll_cls: type = DamageRoll,
        roll_cls: type = Roll,
        rng: Any = None,
    ):
        self.damage_roll_cls = damage_roll_cls
        self.roll_cls = roll_cls
        self.rng = rng

    def _damage_roll(self, node: DamageNode, actor: ActorContext, options: ActivationOptions) -> Any:
        if actor.is_minion:
            can_crit, can_miss = False, True
        else:
            can_crit = True if node.can_crit is None else node.can_crit
            can_miss = True if node.can_miss is None else node.can_miss

        node.roll_mode = options.roll_mode
        formula = normalize_damage_formula(options.roll_formula or node.formula)
        return self.damage_roll_cls(
            formula,
            actor.roll_data,
            can_crit=can_crit,
            can_miss=can_miss,
            roll_mode=node.roll_mode,
            primary_die_value=options.primary_die_value,
            primary_die_modifier=options.primary_die_modifier,
            rng=self.rng,
        )

    async def evaluate(
        self,
        effects: ActivationData | Iterable[Any],
        actor: ActorContext | None = None,
        options: ActivationOptions | None = None,
        item_type: str | None = None,
    ) -> ActivationResult:
        """Roll everything an activation's effect tree calls for.

        Args:
            effects: Activation data, or the nested effect tree itself.
            actor: The activating actor; defaults to a plain character.
            options: Roll mode, formula override and primary die settings.
            item_type: Type of the activated item; grant-only types roll
                nothing.

        Returns:
            The evaluated rolls and the annotated nested tree. The input
            tree is not modified.

        Raises:
            FormulaError: If a healing or secondary damage formula cannot
                be parsed.
        """
        actor = actor or ActorContext()
        options = options or ActivationOptions()
        tree = effects.effects if isinstance(effects, ActivationData) else list(effects or [])

        if item_type in NON_ROLLING_ITEM_TYPES:
            return ActivationResult(rolls=[], effects=reconstruct_effects_tree(flatten_effects_tree(tree)))

        rolls: list[Any] = []
        updated: list[EffectNode] = []
        found_damage_roll = False

        for node in flatten_effects_tree(tree):
            if isinstance(node, (DamageNode, HealingNode)):
                if isinstance(node, DamageNode) and not found_damage_roll:
                    roll = self._damage_roll(node, actor, options)
                    found_damage_roll = True
                else:
                    roll = self.roll_cls(node.formula or "0", actor.roll_data, rng=self.rng)

                await roll.evaluate()
                node.roll = roll.to_dict()
                rolls.append(roll)
            updated.append(node)

        logger.debug(f"Evaluated {len(rolls)} roll(s) for activation")
        return ActivationResult(rolls=rolls, effects=reconstruct_effects_tree(updated))


async def evaluate_activation(
    effects: ActivationData | Iterable[Any],
    actor: ActorContext | None = None,
    options: ActivationOptions | None = None,
    item_type: str | None = None,
) -> ActivationResult:
    """Evaluate an activation with the default dice."""
    return await ActivationEvaluator().evaluate(effects, actor, options, item_type)


__all__ = [
    "NON_ROLLING_ITEM_TYPES",
    "ActorContext",
    "ActivationOptions",
    "ActivationResult",
    "normalize_damage_formula",
    "ActivationEvaluator",
    "evaluate_activation",
]
