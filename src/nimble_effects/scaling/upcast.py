"""
Spell upcasting: validation and scaling delta application.

Casting a tiered spell with more mana than its tier upcasts it. Each mana
point above the tier is one upcast step, and the spell's scaling deltas are
applied once per step to a copy of its activation data.

The work is split in two phases:
    validate_upcast: Check the mana spend against the spell and caster.
        Failures are returned as an ``UpcastValidation`` with an error
        message, never raised.
    apply_scaling / apply_upcast: Apply the deltas to a deep copy of the
        activation data. Structural problems (invalid validation, missing
        or bad choice index) raise ``UpcastError``.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel, Field
from shortuuid import uuid

from ..models import (
    ActivationData,
    CasterResources,
    ConditionNode,
    DamageNode,
    EffectNode,
    HealingNode,
    SavingThrowNode,
    ScalingDelta,
    SpellInfo,
    SpellScaling,
)
from ..tree.manipulation import find_node, iter_nodes

logger = logging.getLogger("nimble-effects")

# Character level at which each spell tier unlocks
SPELL_TIER_LEVELS = [1, 4, 6, 8, 10, 12, 14, 16, 18]

UpcastErrorCode = Literal["cantrip", "noScaling", "belowBaseCost", "aboveCeiling", "insufficientMana"]


class UpcastError(ValueError):
    """Raised when an upcast cannot be applied at all."""


class UpcastValidation(BaseModel):
    """Outcome of checking a mana spend against a spell and caster."""

    is_valid: bool = Field(description="Whether the spend is allowed")
    error: str | None = Field(default=None, description="User-facing reason the spend was rejected")
    error_code: UpcastErrorCode | None = Field(default=None, description="Machine-readable rejection reason")
    steps: int = Field(default=0, description="Number of upcast steps (mana above the base cost)")
    base_cost: int = Field(default=0, description="Mana cost of the spell's own tier")
    total_cost: int = Field(default=0, description="Mana that will be spent")
    choice_index: int | None = Field(default=None, description="Selected option for upcastChoice scaling")


class UpcastResult(BaseModel):
    """Activation data after scaling, plus a summary for display."""

    activation: ActivationData = Field(description="Scaled copy of the activation data")
    is_upcast: bool = Field(description="Whether any upcast steps were applied")
    mana_spent: int = Field(default=0, description="Total mana spent on the cast")
    upcast_steps: int = Field(default=0, description="Number of upcast steps applied")
    choice_index: int | None = Field(default=None, description="Selected option for upcastChoice scaling")
    choice_label: str | None = Field(default=None, description="Label of the selected option")
    applied_deltas: list[ScalingDelta] = Field(default_factory=list, description="Deltas that were applied")


def get_highest_spell_tier(level: int) -> int:
    """Return the highest spell tier unlocked at a character level.

    Tier N unlocks at the Nth entry of ``SPELL_TIER_LEVELS``, so a level 5
    caster has tier 2 and a level 20 caster has tier 9.
    """
    return sum(1 for threshold in SPELL_TIER_LEVELS if level >= threshold)


def _invalid(code: UpcastErrorCode, message: str, **fields: Any) -> UpcastValidation:
    return UpcastValidation(is_valid=False, error=message, error_code=code, **fields)


def validate_upcast(
    spell: SpellInfo,
    resources: CasterResources,
    mana_to_spend: int,
    choice_index: int | None = None,
) -> UpcastValidation:
    """Check whether a spell may be cast with ``mana_to_spend`` mana.

    Rejections are checked in this order: cantrips, spells without
    scaling, spending less than the tier, spending above the caster's
    highest unlocked tier, spending more mana than the caster has.

    Args:
        spell: The spell's tier and scaling.
        resources: The caster's current mana and unlocked tier ceiling.
        mana_to_spend: Mana the caster wants to spend.
        choice_index: Selected option for ``upcastChoice`` scaling.

    Returns:
        Validation result; on success ``steps = mana_to_spend - tier``.
    """
    base_cost = spell.tier
    scaling = spell.scaling
    common = {"base_cost": base_cost, "total_cost": mana_to_spend, "choice_index": choice_index}

    if spell.tier == 0:
        return _invalid("cantrip", "Cantrips cannot be upcast", **common)
    if scaling is None or scaling.mode == "none":
        return _invalid("noScaling", "This spell cannot be upcast", **common)
    if mana_to_spend < base_cost:
        return _invalid("belowBaseCost", f"Must spend at least {base_cost} mana", **common)
    if mana_to_spend > resources.highest_unlocked_tier:
        return _invalid(
            "aboveCeiling",
            f"Cannot spend more than {resources.highest_unlocked_tier} mana (highest unlocked tier)",
            **common,
        )
    if mana_to_spend > resources.mana_current:
        return _invalid("insufficientMana", "Insufficient mana", **common)

    return UpcastValidation(is_valid=True, steps=mana_to_spend - base_cost, **common)


# ---------------------------------------------------------------------------
# Delta application
# ---------------------------------------------------------------------------

def _find_target(
    effects: list[EffectNode],
    node_cls: type,
    target_id: str | None,
) -> Any:
    """First node of ``node_cls`` in pre-order, or the one with ``target_id``."""
    if target_id:
        node = find_node(effects, target_id)
        return node if isinstance(node, node_cls) else None
    return next((node for node in iter_nodes(effects) if isinstance(node, node_cls)), None)


def _condition_node_id(activation: ActivationData, position: int, condition: str) -> str:
    """Stable id for a condition added by a delta, so re-applying is reproducible."""
    roots = ",".join(node.id for node in activation.effects)
    return uuid(name=f"upcast:{roots}:{position}:{condition}")


def _apply_delta(activation: ActivationData, delta: ScalingDelta, steps: int, position: int) -> None:
    amount = (delta.value or 0) * steps
    op = delta.operation

    if op == "addFlatDamage":
        node = _find_target(activation.effects, DamageNode, delta.target_effect_id)
        if node is not None:
            node.formula = f"{node.formula}+{amount}"

    elif op == "addDice":
        node = _find_target(activation.effects, DamageNode, delta.target_effect_id)
        if node is None:
            node = _find_target(activation.effects, HealingNode, delta.target_effect_id)
        if node is not None and delta.dice is not None:
            node.formula = f"{node.formula}+{delta.dice.count * steps}d{delta.dice.faces}"

    elif op in ("addReach", "addRange"):
        if activation.targets is not None and delta.value:
            activation.targets.distance = (activation.targets.distance or 0) + amount

    elif op == "addTargets":
        if activation.targets is not None and delta.value:
            activation.targets.count += amount

    elif op == "addAreaSize":
        template = activation.template
        if template is not None and delta.value:
            if template.radius is not None:
                template.radius += amount
            if template.length is not None:
                template.length += amount

    elif op == "addDC":
        node = _find_target(activation.effects, SavingThrowNode, delta.target_effect_id)
        if node is not None and delta.value:
            node.save_dc = (node.save_dc or 0) + amount

    elif op == "addCondition":
        if delta.condition:
            activation.effects.append(
                ConditionNode(
                    id=_condition_node_id(activation, position, delta.condition),
                    condition=delta.condition,
                )
            )

    elif op == "addDuration":
        if activation.duration is not None and delta.value:
            activation.duration.quantity += amount

    elif op == "addArmor":
        # Armor changes the caster, not the activation
        pass

    else:
        logger.warning(f"Unknown scaling operation: {op}")


def apply_scaling(
    activation: ActivationData | dict,
    scaling: SpellScaling,
    steps: int,
    choice_index: int | None = None,
    mana_spent: int = 0,
) -> UpcastResult:
    """Apply a spell's scaling deltas ``steps`` times to a copy of its activation.

    In ``upcast`` mode the fixed delta list is applied; in ``upcastChoice``
    mode the option at ``choice_index`` is. The input is never modified,
    and applying the same steps to the same input always gives the same
    result. With ``steps == 0`` nothing is applied.

    Args:
        activation: Activation data holding the nested effect tree.
        scaling: The spell's scaling definition.
        steps: Number of upcast steps.
        choice_index: Selected option, required for ``upcastChoice``.
        mana_spent: Total mana spent, reported back in the result.

    Returns:
        The scaled activation and an upcast summary.

    Raises:
        UpcastError: If the choice index is missing or out of range.
    """
    if isinstance(activation, dict):
        scaled = ActivationData.model_validate(activation)
    else:
        scaled = activation.model_copy(deep=True)

    choice_label = None
    if scaling.mode == "upcastChoice":
        if choice_index is None or not scaling.choices:
            raise UpcastError("Choice index required for upcastChoice mode")
        if not 0 <= choice_index < len(scaling.choices):
            raise UpcastError(f"Invalid choice index: {choice_index}")
        choice = scaling.choices[choice_index]
        deltas = choice.deltas
        choice_label = choice.label
    elif scaling.mode == "upcast":
        deltas = scaling.deltas
    else:
        deltas = []

    applied: list[ScalingDelta] = []
    if steps > 0:
        for position, delta in enumerate(deltas):
            _apply_delta(scaled, delta, steps, position)
            applied.append(delta.model_copy(deep=True))
        logger.debug(f"Applied {len(applied)} scaling delta(s) over {steps} upcast step(s)")

    return UpcastResult(
        activation=scaled,
        is_upcast=steps > 0,
        mana_spent=mana_spent,
        upcast_steps=steps,
        choice_index=choice_index,
        choice_label=choice_label,
        applied_deltas=applied,
    )


def apply_upcast(
    activation: ActivationData | dict,
    spell: SpellInfo,
    validation: UpcastValidation,
) -> UpcastResult:
    """Apply a validated upcast to a spell's activation data.

    Raises:
        UpcastError: If ``validation`` is not valid, the spell has no
            scaling, or the choice index is missing or out of range.
    """
    if not validation.is_valid:
        raise UpcastError(validation.error or "Invalid upcast configuration")
    if spell.scaling is None:
        raise UpcastError("This spell cannot be upcast")
    return apply_scaling(
        activation,
        spell.scaling,
        validation.steps,
        choice_index=validation.choice_index,
        mana_spent=validation.total_cost,
    )


__all__ = [
    "SPELL_TIER_LEVELS",
    "UpcastError",
    "UpcastValidation",
    "UpcastResult",
    "get_highest_spell_tier",
    "validate_upcast",
    "apply_scaling",
    "apply_upcast",
]
