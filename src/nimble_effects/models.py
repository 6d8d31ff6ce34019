"""
Data models for the Nimble effect engine.

Effect nodes form a tagged union discriminated on ``type``. Attributes are
snake_case in Python while the stored form uses the camelCase names the
host documents were authored with (``parentNode``, ``damageType``,
``saveDC``...). Every model accepts either spelling and dumps by alias.

Key classes:
- ConditionNode, DamageNode, DamageOutcomeNode, HealingNode,
  SavingThrowNode, TextNode: the node variants.
- ActionConsequence: the outcome edges owned by damage and save nodes.
- ActivationData: the activation block of an ability (effects, targets,
  template, duration).
- SpellScaling, ScalingDelta, ScalingChoice: upcast scaling input.
- SpellInfo, CasterResources: what the upcast validator checks against.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel
from shortuuid import random

ID_LENGTH = 16

SaveType = Literal["strength", "dexterity", "intelligence", "will"]


def generate_id() -> str:
    """Return a fresh random node id."""
    return random(length=ID_LENGTH)


class NimbleModel(BaseModel):
    """Base for every model stored on host documents."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


# ---------------------------------------------------------------------------
# Effect nodes
# ---------------------------------------------------------------------------

class EffectNodeBase(NimbleModel):
    """Fields shared by every effect node variant."""
    id: str = Field(default_factory=generate_id, description="Unique node id within one tree")
    parent_node: str | None = Field(default=None, description="Id of the owning node, None for roots")
    parent_context: str | None = Field(
        default=None,
        description="Outcome edge this node lives under (hit, failedSave, sharedRolls...)",
    )


class ConditionNode(EffectNodeBase):
    """Applies a status condition to the affected target."""
    type: Literal["condition"] = "condition"
    condition: str = Field(default="", description="Canonical condition id")


class HealingNode(EffectNodeBase):
    """Restores hit points or grants temporary hit points."""
    type: Literal["healing"] = "healing"
    healing_type: Literal["healing", "temporaryHealing"] = "healing"
    formula: str = ""
    roll: dict[str, Any] | None = None


class TextNode(EffectNodeBase):
    """Flavor or rules text with no mechanical payload."""
    type: Literal["note"] = "note"
    note_type: Literal["general", "flavor", "reminder", "warning"] = "general"
    text: str = ""


class DamageOutcomeNode(EffectNodeBase):
    """Marks how much of the parent damage roll applies on an edge."""
    type: Literal["damageOutcome"] = "damageOutcome"
    outcome: Literal["fullDamage", "halfDamage"] = "fullDamage"
    damage_type: str | None = None
    ignore_armor: bool | None = None
    ignore_allies: bool | None = None
    roll: dict[str, Any] | None = None


class DamageNode(EffectNodeBase):
    """A damage roll, optionally with children triggered per outcome."""
    type: Literal["damage"] = "damage"
    damage_type: str = "bludgeoning"
    formula: str = ""
    can_crit: bool | None = None
    can_miss: bool | None = None
    roll_mode: int | None = None
    roll: dict[str, Any] | None = None
    on: "ActionConsequence | None" = None


class SavingThrowNode(EffectNodeBase):
    """A saving throw forced on each affected target.

    ``shared_rolls`` holds damage rolled once by the source and shared by
    every target; ``on`` holds what happens per save outcome.
    """
    type: Literal["savingThrow"] = "savingThrow"
    saving_throw_type: SaveType = "strength"
    save_dc: int | None = Field(default=None, alias="saveDC")
    shared_rolls: list[DamageNode] | None = None
    on: "ActionConsequence | None" = None


EffectNode = Annotated[
    Union[
        ConditionNode,
        DamageNode,
        DamageOutcomeNode,
        HealingNode,
        SavingThrowNode,
        TextNode,
    ],
    Field(discriminator="type"),
]

NODE_TYPES: dict[str, type[EffectNodeBase]] = {
    "condition": ConditionNode,
    "damage": DamageNode,
    "damageOutcome": DamageOutcomeNode,
    "healing": HealingNode,
    "savingThrow": SavingThrowNode,
    "note": TextNode,
}

# Variants allowed to own an ``on`` mapping
BRANCHING_NODES = (DamageNode, SavingThrowNode)


class ActionConsequence(NimbleModel):
    """Outcome edges of a damage or saving throw node.

    ``failed_save_by`` maps a margin of failure to the nodes triggered when
    the target misses the DC by at least that much.
    """
    hit: list[EffectNode] | None = None
    miss: list[EffectNode] | None = None
    critical_hit: list[EffectNode] | None = None
    failed_save: list[EffectNode] | None = None
    passed_save: list[EffectNode] | None = None
    failed_save_by: dict[int, list[EffectNode]] | None = None


ActionConsequence.model_rebuild()
DamageNode.model_rebuild()
SavingThrowNode.model_rebuild()

# Named edges in traversal order, as (attribute, stored name)
CONSEQUENCE_EDGES: tuple[tuple[str, str], ...] = (
    ("hit", "hit"),
    ("miss", "miss"),
    ("critical_hit", "criticalHit"),
    ("failed_save", "failedSave"),
    ("passed_save", "passedSave"),
)

EFFECT_NODE_ADAPTER: TypeAdapter = TypeAdapter(EffectNode)
EFFECT_LIST_ADAPTER: TypeAdapter = TypeAdapter(list[EffectNode])


# ---------------------------------------------------------------------------
# Activation data
# ---------------------------------------------------------------------------

class Targets(NimbleModel):
    """Who an activation can affect."""
    count: int = 1
    restrictions: str = ""
    attack_type: str | None = None
    distance: int | None = None


class Template(NimbleModel):
    """Area template placed by an activation."""
    shape: str = ""
    radius: int | None = None
    length: int | None = None
    width: int | None = None


class Duration(NimbleModel):
    """How long an activation lasts."""
    details: str = ""
    quantity: int = 1
    type: str = "none"


class ActivationData(NimbleModel):
    """Activation block of an ability with its (nested) effect tree."""
    effects: list[EffectNode] = Field(default_factory=list)
    targets: Targets | None = None
    template: Template | None = None
    duration: Duration | None = None


# ---------------------------------------------------------------------------
# Spell scaling
# ---------------------------------------------------------------------------

class DiceSpec(NimbleModel):
    """Dice added per upcast step."""
    count: int = 1
    faces: int = 6


class ScalingDelta(NimbleModel):
    """One declarative scaling operation applied per upcast step."""
    operation: str = Field(description="Delta operation, e.g. addFlatDamage, addDice, addDC")
    value: int | None = None
    dice: DiceSpec | None = None
    condition: str | None = None
    target_effect_id: str | None = None
    duration_type: str | None = None


class ScalingChoice(NimbleModel):
    """A named option list offered by ``upcastChoice`` scaling."""
    label: str
    deltas: list[ScalingDelta] = Field(default_factory=list)


class SpellScaling(NimbleModel):
    """How a spell scales when more mana than its tier is spent."""
    mode: Literal["none", "upcast", "upcastChoice"] = "none"
    deltas: list[ScalingDelta] = Field(default_factory=list)
    choices: list[ScalingChoice] | None = None


class SpellInfo(NimbleModel):
    """The parts of a spell the upcast validator reads."""
    tier: int = 0
    scaling: SpellScaling | None = None


class CasterResources(NimbleModel):
    """Mana pool and unlocked tier ceiling of the caster."""
    mana_current: int = 0
    highest_unlocked_tier: int = 0


__all__ = [
    "ID_LENGTH",
    "SaveType",
    "generate_id",
    "NimbleModel",
    "EffectNodeBase",
    "ConditionNode",
    "HealingNode",
    "TextNode",
    "DamageOutcomeNode",
    "DamageNode",
    "SavingThrowNode",
    "EffectNode",
    "NODE_TYPES",
    "BRANCHING_NODES",
    "ActionConsequence",
    "CONSEQUENCE_EDGES",
    "EFFECT_NODE_ADAPTER",
    "EFFECT_LIST_ADAPTER",
    "Targets",
    "Template",
    "Duration",
    "ActivationData",
    "DiceSpec",
    "ScalingDelta",
    "ScalingChoice",
    "SpellScaling",
    "SpellInfo",
    "CasterResources",
]
