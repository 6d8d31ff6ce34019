"""
Mapper functions for translating Nimble Nexus monsters to Nimble actor data.

The API returns JSON:API documents whose ``attributes`` hold the monster's
stat block. These functions turn that stat block into actor creation data:
system fields, a prototype token, and one embedded feature item per
ability, action and legendary phase. Action text runs through the
description parser so the feature items carry real effect trees.

Functions that can degrade return a (result, warnings) tuple.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from ...models import ActionConsequence, DamageNode, DamageOutcomeNode, EffectNode, generate_id
from ...tree.codec import dump_flat, flatten_effects_tree
from ..base import ImportResult, ImportWarning
from .description_parser import NimbleNexusAction, NimbleNexusTarget, build_effect_tree, parse_range_reach
from .schema import (
    DEFAULT_ACTOR_IMAGE,
    DEFAULT_FEATURE_ICONS,
    MOVEMENT_MODES,
    NIMBLE_NEXUS_STORAGE_URL,
    SAVE_STAT_MAP,
    SIZE_TO_TOKEN_DIMENSIONS,
    TOKEN_DISPLAY_OWNER,
    TOKEN_DISPLAY_OWNER_HOVER,
    TOKEN_DISPOSITION_HOSTILE,
)

logger = logging.getLogger("nimble-effects")


# ---------------------------------------------------------------------------
# Actor fields
# ---------------------------------------------------------------------------

def determine_actor_type(attributes: dict) -> str:
    """Legendary monsters are solo monsters, minions are minions, the rest NPCs."""
    if attributes.get("legendary"):
        return "soloMonster"
    if attributes.get("minion"):
        return "minion"
    return "npc"


def parse_movement(movement: list[dict] | None) -> dict[str, int]:
    """Map the API movement list to speeds per mode.

    An entry without a mode is the walking speed. Unknown modes
    (e.g. teleport) are ignored.
    """
    result = {mode: 0 for mode in MOVEMENT_MODES}
    for entry in movement or []:
        mode = entry.get("mode")
        speed = entry.get("speed", 0)
        if not mode:
            result["walk"] = speed
        elif mode in result:
            result[mode] = speed
    return result


def save_value_to_roll_mode(value: int | float) -> int:
    if value < 0:
        return -1
    if value > 0:
        return 1
    return 0


def parse_saves(saves: dict | None) -> dict[str, dict[str, int]]:
    """Map API save modifiers to saving throw roll modes.

    A negative save value means disadvantage, a positive one advantage.
    """
    result = {stat: {"defaultRollMode": 0, "mod": 0} for stat in SAVE_STAT_MAP.values()}
    for api_stat, value in (saves or {}).items():
        stat = SAVE_STAT_MAP.get(api_stat)
        if stat and isinstance(value, (int, float)) and not isinstance(value, bool):
            result[stat]["defaultRollMode"] = save_value_to_roll_mode(value)
    return result


def level_to_string(level: int | float | str) -> str:
    return level if isinstance(level, str) else str(level)


def get_monster_image_url(paperforge_image_url: str | None) -> str:
    """Portrait URL for a monster, or the default actor image."""
    if not paperforge_image_url:
        return DEFAULT_ACTOR_IMAGE
    # Storage holds the 100px render under 100.png
    return f"{NIMBLE_NEXUS_STORAGE_URL}{paperforge_image_url.replace('portrait.png', '100.png', 1)}"


# ---------------------------------------------------------------------------
# Feature items
# ---------------------------------------------------------------------------

def _feature_item(
    name: str,
    subtype: str,
    description: str,
    item_id: str | None = None,
    activation: dict | None = None,
    **system: Any,
) -> dict:
    """Build a monsterFeature item with a default, effect-less activation."""
    base_activation = {
        "acquireTargetsFromTemplate": False,
        "cost": {"details": "", "quantity": 1, "type": "none", "isReaction": False},
        "duration": {"details": "", "quantity": 1, "type": "none"},
        "effects": [],
        "showDescription": True,
        "targets": {"count": 1, "restrictions": ""},
        "template": {"length": 1, "radius": 1, "shape": "", "width": 1},
    }
    base_activation.update(activation or {})
    return {
        "_id": item_id or generate_id(),
        "name": name,
        "type": "monsterFeature",
        "img": DEFAULT_FEATURE_ICONS[subtype],
        "system": {
            "macro": "",
            "identifier": "",
            "rules": [],
            "activation": base_activation,
            "description": f"<p>{description}</p>" if description else "",
            "subtype": subtype,
            **system,
        },
        "effects": [],
        "folder": None,
        "sort": 0,
        "flags": {},
    }


def create_ability_item(ability: dict) -> dict:
    """Passive monster ability as a feature item."""
    return _feature_item(ability.get("name", "Ability"), "feature", ability.get("description", ""))


def _fallback_damage_tree(roll: str) -> list[EffectNode]:
    node = DamageNode(damage_type="bludgeoning", formula=roll, can_crit=True, can_miss=True)
    node.on = ActionConsequence(
        hit=[DamageOutcomeNode(outcome="fullDamage", parent_node=node.id, parent_context="hit")]
    )
    return [node]


def _attack_targeting(target: NimbleNexusTarget | None) -> tuple[str, int]:
    if target is None:
        return "", 1
    if target.range:
        attack_type = "range"
    elif target.reach and target.reach > 1:
        attack_type = "reach"
    else:
        attack_type = ""
    return attack_type, target.range or target.reach or 1


def create_action_item(action: dict, parent_item_id: str | None = None) -> tuple[dict, list[ImportWarning]]:
    """Monster action as a feature item with a parsed effect tree.

    When the action text yields no effects but the action has a damage
    roll, a plain bludgeoning damage root is used instead. Range, reach
    and area templates are taken from the action target or its text.

    Returns:
        Tuple of (item, warnings).
    """
    warnings: list[ImportWarning] = []
    parsed = NimbleNexusAction.model_validate(action)
    name = parsed.name or "Action"

    effects = build_effect_tree(parsed)
    if not effects and parsed.description:
        logger.info(f"No effects parsed from the text of action '{name}'")
        warnings.append(ImportWarning(
            field=name,
            message="No effects could be parsed from the action text",
            suggestion="Add the effects to the feature by hand",
        ))
    if not effects and parsed.damage and parsed.damage.roll:
        effects = _fallback_damage_tree(parsed.damage.roll)

    attack_type, distance = _attack_targeting(parsed.target)
    range_reach = parse_range_reach(parsed.description, parsed.target)
    has_target_distance = parsed.target is not None and (parsed.target.reach or parsed.target.range)

    if range_reach and not has_target_distance:
        if range_reach.type == "range":
            attack_type, distance = "range", range_reach.distance
        elif range_reach.type == "reach":
            attack_type = "reach" if range_reach.distance > 1 else ""
            distance = range_reach.distance

    template = {"length": 1, "radius": 1, "shape": "", "width": 1}
    acquire_from_template = False
    if range_reach and range_reach.type in ("cone", "line", "burst"):
        template["shape"] = range_reach.type
        acquire_from_template = True
        if range_reach.type == "burst":
            template["radius"] = range_reach.distance
        else:
            template["length"] = range_reach.distance
            template["width"] = range_reach.width or 1

    item = _feature_item(
        name,
        "action",
        parsed.description or "",
        activation={
            "acquireTargetsFromTemplate": acquire_from_template,
            "duration": {"details": "", "quantity": 1, "type": "action"},
            "effects": dump_flat(flatten_effects_tree(effects)),
            "targets": {"count": 1, "restrictions": "", "attackType": attack_type, "distance": distance},
            "template": template,
        },
        parentItemId=parent_item_id or "",
    )
    return item, warnings


def create_attack_sequence_item(description: str) -> tuple[dict, str]:
    """Parent item for the monster's action instructions.

    Returns:
        Tuple of (item, item_id); actions reference the id as their parent.
    """
    item_id = generate_id()
    item = _feature_item(
        "Attack Sequence",
        "attackSequence",
        description,
        item_id=item_id,
        identifier="attack-sequence",
        parentItemId="",
    )
    return item, item_id


def create_bloodied_item(description: str) -> dict:
    return _feature_item("Bloodied", "bloodied", description)


def create_last_stand_item(description: str) -> dict:
    return _feature_item("Last Stand", "lastStand", description)


def create_monster_features(attributes: dict) -> tuple[list[dict], list[ImportWarning]]:
    """All feature items of a monster, in sheet order.

    Abilities come first, then the attack sequence (if the monster has
    action instructions), then actions, then the bloodied and last stand
    phases of legendary monsters.
    """
    items: list[dict] = []
    warnings: list[ImportWarning] = []

    for ability in attributes.get("abilities") or []:
        items.append(create_ability_item(ability))

    sequence_id = None
    if attributes.get("actionsInstructions"):
        item, sequence_id = create_attack_sequence_item(attributes["actionsInstructions"])
        items.append(item)

    for action in attributes.get("actions") or []:
        try:
            item, action_warnings = create_action_item(action, sequence_id)
        except ValidationError as e:
            name = (action.get("name") if isinstance(action, dict) else None) or "Action"
            logger.warning(f"Skipping malformed action '{name}': {e}")
            warnings.append(ImportWarning(
                field=name,
                message=f"Malformed action skipped: {e.error_count()} invalid field(s)",
                suggestion="Recreate the action by hand",
            ))
            continue
        items.append(item)
        warnings.extend(action_warnings)

    bloodied = (attributes.get("bloodied") or {}).get("description")
    if bloodied:
        items.append(create_bloodied_item(bloodied))

    last_stand = (attributes.get("lastStand") or {}).get("description")
    if last_stand:
        items.append(create_last_stand_item(last_stand))

    return items, warnings


# ---------------------------------------------------------------------------
# Actor
# ---------------------------------------------------------------------------

def to_actor_data(monster: dict) -> ImportResult:
    """Convert one Nimble Nexus monster resource to actor creation data.

    Args:
        monster: A monster resource (``{"type": "monsters", "id": ...,
            "attributes": {...}}``) or its bare attributes.

    Returns:
        ImportResult with the actor data, counts and import warnings.
    """
    attributes = monster.get("attributes", monster)
    actor_type = determine_actor_type(attributes)
    items, warnings = create_monster_features(attributes)
    width, height = SIZE_TO_TOKEN_DIMENSIONS.get(attributes.get("size", ""), (1, 1))
    image = get_monster_image_url(attributes.get("paperforgeImageUrl"))
    name = attributes.get("name", "Unknown Monster")
    hp = attributes.get("hp", 1)

    details: dict[str, Any] = {
        "creatureType": attributes.get("kind") or "",
        "level": level_to_string(attributes.get("level", 1)),
    }
    if actor_type == "npc":
        details["isFlunky"] = False

    actor = {
        "name": name,
        "type": actor_type,
        "img": image,
        "system": {
            "attributes": {
                "armor": attributes.get("armor", "none"),
                "damageResistances": [],
                "damageVulnerabilities": [],
                "damageImmunities": [],
                "hp": {"max": hp, "temp": 0, "value": hp},
                "sizeCategory": attributes.get("size", "medium"),
                "movement": parse_movement(attributes.get("movement")),
            },
            "description": attributes.get("description") or "",
            "details": details,
            "savingThrows": parse_saves(attributes.get("saves")),
        },
        "prototypeToken": {
            "name": name,
            "displayName": TOKEN_DISPLAY_OWNER_HOVER,
            "actorLink": False,
            "width": width,
            "height": height,
            "texture": {"src": image},
            "lockRotation": True,
            "disposition": TOKEN_DISPOSITION_HOSTILE,
            "displayBars": TOKEN_DISPLAY_OWNER if actor_type == "soloMonster" else 0,
            "bar1": {"attribute": "attributes.hp"},
        },
        "items": items,
    }

    actions_parsed = sum(
        1 for item in items
        if item["system"]["subtype"] == "action" and item["system"]["activation"]["effects"]
    )
    logger.debug(f"Mapped monster '{name}' as {actor_type} with {len(items)} feature(s)")

    return ImportResult(
        actor=actor,
        actor_type=actor_type,
        source_id=monster.get("id") if "attributes" in monster else None,
        features_created=len(items),
        actions_parsed=actions_parsed,
        warnings=warnings,
    )


__all__ = [
    "determine_actor_type",
    "parse_movement",
    "parse_saves",
    "save_value_to_roll_mode",
    "level_to_string",
    "get_monster_image_url",
    "create_ability_item",
    "create_action_item",
    "create_attack_sequence_item",
    "create_bloodied_item",
    "create_last_stand_item",
    "create_monster_features",
    "to_actor_data",
]
