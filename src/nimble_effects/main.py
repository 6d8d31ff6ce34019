"""
Nimble Effects MCP Server
Effect tree tooling for the Nimble RPG, built with the FastMCP framework.
"""

import json
import logging
from typing import Annotated, Any, Literal

from fastmcp import FastMCP
from pydantic import Field, ValidationError

from .activation import ActivationOptions, ActorContext, evaluate_activation
from .compendium import CompendiumError, load_compendium_effects, resolve_compendium_path
from .config import load_settings
from .dice import FormulaError
from .importers.base import ImportError
from .importers.nimble_nexus.description_parser import parse_action
from .importers.nimble_nexus.fetcher import NimbleNexusApiError, NimbleNexusClient, read_monster_file
from .importers.nimble_nexus.mapper import to_actor_data
from .models import ActivationData, CasterResources, SpellInfo
from .scaling.upcast import UpcastError, apply_upcast, get_highest_spell_tier, validate_upcast
from .tree.codec import EffectTreeError, dump_flat, dump_node, flatten_effects_tree, reconstruct_effects_tree

logger = logging.getLogger("nimble-effects")

settings = load_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
)

mcp = FastMCP(
    name="nimble-effects"
)

nexus_client = NimbleNexusClient(
    base_url=settings.nimble_nexus_api_url,
    timeout=settings.nimble_nexus_timeout,
)

logger.debug("✅ Server initialized, registering tools")


def _load_json(raw: str, what: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"{what} is not valid JSON: {e}") from None


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2)


# ----------------------------------------------------------------------
# Tools
# ----------------------------------------------------------------------

# Effect tree tools
@mcp.tool
def flatten_effects(
    tree: Annotated[str, Field(description="JSON list of nested effect nodes (objects or @{...} references)")],
) -> str:
    """Flatten a nested effect tree into the stored flat record list."""
    try:
        nodes = _load_json(tree, "Effect tree")
        if not isinstance(nodes, list):
            return "❌ Effect tree must be a JSON list"
        return _dump(dump_flat(flatten_effects_tree(nodes)))
    except ValueError as e:
        return f"❌ {e}"


@mcp.tool
def reconstruct_effects(
    records: Annotated[str, Field(description="JSON list of flat effect records with parentNode/parentContext")],
) -> str:
    """Rebuild the nested effect tree from flat stored records."""
    try:
        flat = _load_json(records, "Effect records")
        if not isinstance(flat, list):
            return "❌ Effect records must be a JSON list"
        return _dump([dump_node(node) for node in reconstruct_effects_tree(flat)])
    except EffectTreeError as e:
        return f"❌ Invalid effect tree: {e}"
    except ValueError as e:
        return f"❌ {e}"


@mcp.tool
def parse_action_description(
    description: Annotated[str, Field(description="Action text, e.g. 'DC 15 DEX save or take damage'")],
    damage_roll: Annotated[str | None, Field(description="Damage roll of the action, e.g. '2d6+4 Slashing'")] = None,
) -> str:
    """Parse monster action text into a nested effect tree."""
    effects = parse_action(description, damage_roll)
    if not effects:
        return "No effects could be parsed from this action."
    return _dump([dump_node(node) for node in effects])


# Spell upcasting tools
def _caster_resources(mana_current: int, highest_unlocked_tier: int | None, character_level: int | None) -> CasterResources:
    if highest_unlocked_tier is None:
        highest_unlocked_tier = get_highest_spell_tier(character_level or 0)
    return CasterResources(mana_current=mana_current, highest_unlocked_tier=highest_unlocked_tier)


@mcp.tool
def validate_spell_upcast(
    spell: Annotated[str, Field(description="JSON spell: {tier, scaling: {mode, deltas, choices}}")],
    mana_to_spend: Annotated[int, Field(description="Mana the caster wants to spend", ge=0)],
    mana_current: Annotated[int, Field(description="Caster's current mana", ge=0)],
    highest_unlocked_tier: Annotated[int | None, Field(description="Highest spell tier the caster has unlocked")] = None,
    character_level: Annotated[int | None, Field(description="Caster level, used when the tier is not given")] = None,
    choice_index: Annotated[int | None, Field(description="Selected option for upcastChoice spells")] = None,
) -> str:
    """Check whether a spell can be cast with the given amount of mana."""
    try:
        spell_info = SpellInfo.model_validate(_load_json(spell, "Spell"))
    except (ValueError, ValidationError) as e:
        return f"❌ {e}"

    resources = _caster_resources(mana_current, highest_unlocked_tier, character_level)
    validation = validate_upcast(spell_info, resources, mana_to_spend, choice_index)
    if not validation.is_valid:
        return f"❌ {validation.error}"
    return _dump(validation.model_dump())


@mcp.tool
def upcast_spell(
    activation: Annotated[str, Field(description="JSON activation data: {effects, targets, template, duration}")],
    spell: Annotated[str, Field(description="JSON spell: {tier, scaling: {mode, deltas, choices}}")],
    mana_to_spend: Annotated[int, Field(description="Mana the caster wants to spend", ge=0)],
    mana_current: Annotated[int, Field(description="Caster's current mana", ge=0)],
    highest_unlocked_tier: Annotated[int | None, Field(description="Highest spell tier the caster has unlocked")] = None,
    character_level: Annotated[int | None, Field(description="Caster level, used when the tier is not given")] = None,
    choice_index: Annotated[int | None, Field(description="Selected option for upcastChoice spells")] = None,
) -> str:
    """Validate an upcast and return the spell's scaled activation data."""
    try:
        spell_info = SpellInfo.model_validate(_load_json(spell, "Spell"))
        activation_data = ActivationData.model_validate(_load_json(activation, "Activation"))
    except (ValueError, ValidationError) as e:
        return f"❌ {e}"

    resources = _caster_resources(mana_current, highest_unlocked_tier, character_level)
    validation = validate_upcast(spell_info, resources, mana_to_spend, choice_index)
    if not validation.is_valid:
        return f"❌ {validation.error}"

    try:
        result = apply_upcast(activation_data, spell_info, validation)
    except UpcastError as e:
        return f"❌ {e}"
    return _dump(result.model_dump(by_alias=True, exclude_none=True))


# Activation tools
@mcp.tool
async def roll_activation(
    effects: Annotated[str, Field(description="JSON list of effect nodes (nested or flat records)")],
    actor_type: Annotated[str, Field(description="Actor type: character, npc, minion or soloMonster")] = "character",
    roll_mode: Annotated[int, Field(description="Positive for advantage, negative for disadvantage")] = 0,
    roll_data: Annotated[str | None, Field(description="JSON object of values for @references in formulas")] = None,
    primary_die_value: Annotated[int | None, Field(description="Pin the primary die to this face")] = None,
    primary_die_modifier: Annotated[int | None, Field(description="Flat bonus added to the primary die")] = None,
    roll_formula: Annotated[str | None, Field(description="Replacement formula for the primary damage roll")] = None,
    item_type: Annotated[str | None, Field(description="Type of the activated item, e.g. spell or monsterFeature")] = None,
) -> str:
    """Roll the dice an ability's effect tree calls for."""
    try:
        nodes = _load_json(effects, "Effects")
        data = _load_json(roll_data, "Roll data") if roll_data else {}
        if not isinstance(nodes, list):
            return "❌ Effects must be a JSON list"
        # Flat records carry parent pointers; rebuild them first
        if any(isinstance(n, dict) and n.get("parentNode") for n in nodes):
            nodes = reconstruct_effects_tree(nodes)

        result = await evaluate_activation(
            nodes,
            ActorContext(actor_type=actor_type, roll_data=data),
            ActivationOptions(
                roll_mode=roll_mode,
                roll_formula=roll_formula,
                primary_die_value=primary_die_value,
                primary_die_modifier=primary_die_modifier,
            ),
            item_type=item_type,
        )
    except (FormulaError, EffectTreeError) as e:
        return f"❌ Could not roll activation: {e}"
    except (ValueError, ValidationError) as e:
        return f"❌ {e}"

    return _dump({
        "rolls": [roll.to_dict() for roll in result.rolls],
        "effects": [dump_node(node) for node in result.effects],
    })


# Nimble Nexus tools
@mcp.tool
async def search_nimble_nexus_monsters(
    search: Annotated[str | None, Field(description="Monster name search")] = None,
    level: Annotated[str | None, Field(description="Level filter, e.g. '3' or '1/2'")] = None,
    monster_type: Annotated[Literal["all", "standard", "legendary", "minion"], Field(description="Monster type filter")] = "all",
    role: Annotated[str, Field(description="Role filter, e.g. striker, controller, or 'all'")] = "all",
    limit: Annotated[int, Field(description="Maximum results (1-100)", ge=1, le=100)] = 20,
    cursor: Annotated[str | None, Field(description="Pagination cursor from a previous search")] = None,
) -> str:
    """Search the Nimble Nexus monster database."""
    try:
        response = await nexus_client.search(
            search=search,
            level=level,
            limit=limit,
            cursor=cursor,
            monster_type=monster_type,
            role=role,
        )
    except NimbleNexusApiError as e:
        return f"❌ Nimble Nexus search failed ({e.status} {e.status_text}): {e}"

    monsters = response.get("data") or []
    if not monsters:
        return "No monsters found."

    lines = [f"**Nimble Nexus Monsters ({len(monsters)}):**"]
    for monster in monsters:
        attrs = monster.get("attributes", {})
        tags = []
        if attrs.get("legendary"):
            tags.append("legendary")
        if attrs.get("minion"):
            tags.append("minion")
        suffix = f" [{', '.join(tags)}]" if tags else ""
        lines.append(f"• {attrs.get('name', '?')} (level {attrs.get('level', '?')}, id: {monster.get('id')}){suffix}")

    next_cursor = nexus_client.get_next_cursor(response)
    if next_cursor:
        lines.append(f"\nMore results available. Next cursor: {next_cursor}")
    return "\n".join(lines)


@mcp.tool
async def import_nimble_nexus_monster(
    url_or_id: Annotated[str, Field(description="Nimble Nexus monster URL or ID")],
) -> str:
    """Import a Nimble Nexus monster as actor data with parsed effect trees."""
    try:
        monster = await nexus_client.get_by_id(url_or_id)
    except NimbleNexusApiError as e:
        return f"❌ Nimble Nexus request failed ({e.status} {e.status_text}): {e}"
    except ImportError as e:
        return f"❌ {e}"

    result = to_actor_data(monster)
    return f"{result.format()}\n\n```json\n{_dump(result.actor)}\n```"


@mcp.tool
def import_nimble_nexus_monster_file(
    file_path: Annotated[str, Field(description="Path to a monster JSON file saved from the Nimble Nexus API")],
) -> str:
    """Import a monster from a saved Nimble Nexus API response."""
    try:
        monster = read_monster_file(file_path)
    except ImportError as e:
        return f"❌ {e}"

    result = to_actor_data(monster)
    return f"{result.format()}\n\n```json\n{_dump(result.actor)}\n```"


# Compendium tools
@mcp.tool
def load_compendium_file(
    path: Annotated[str, Field(description="Compendium file path or name (YAML or JSON)")],
) -> str:
    """Load compendium effects from a YAML or JSON file as flat records."""
    try:
        flat = load_compendium_effects(resolve_compendium_path(path, settings.compendium_dir))
    except CompendiumError as e:
        return f"❌ {e}"
    return _dump(dump_flat(flat))


def main() -> None:
    """Main entry point for the Nimble Effects MCP Server."""
    mcp.run()

if __name__ == "__main__":
    main()
