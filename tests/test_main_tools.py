"""
Unit tests for the MCP tools in main.py.

Tools are called through their underlying functions (``.fn``); Nimble
Nexus requests are replaced by mocks on the module-level client.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

from nimble_effects import main as m
from nimble_effects.importers.nimble_nexus.fetcher import NimbleNexusApiError


NESTED_TREE = [
    {
        "id": "dmg",
        "type": "damage",
        "formula": "1d6+1",
        "damageType": "fire",
        "on": {"hit": [{"id": "out", "type": "damageOutcome", "outcome": "fullDamage"}]},
    }
]

SPELL = {
    "tier": 1,
    "scaling": {"mode": "upcast", "deltas": [{"operation": "addFlatDamage", "value": 2}]},
}

MONSTER = {
    "type": "monsters",
    "id": "abc123",
    "attributes": {
        "name": "Goblin",
        "level": 1,
        "hp": 9,
        "actions": [{"name": "Stab", "damage": {"roll": "1d6+2 piercing"}}],
    },
}


# ─── Effect tree tools ─────────────────────────────────────────────────


class TestEffectTreeTools:
    """Test flatten_effects / reconstruct_effects / parse_action_description."""

    def test_flatten(self):
        result = json.loads(m.flatten_effects.fn(json.dumps(NESTED_TREE)))

        assert [r["id"] for r in result] == ["dmg", "out"]
        assert result[1]["parentNode"] == "dmg"
        assert result[1]["parentContext"] == "hit"
        assert "on" not in result[0]

    def test_flatten_rejects_bad_input(self):
        assert m.flatten_effects.fn("not json").startswith("❌")
        assert m.flatten_effects.fn('{"id": "x"}') == "❌ Effect tree must be a JSON list"

    def test_reconstruct(self):
        flat = m.flatten_effects.fn(json.dumps(NESTED_TREE))
        result = json.loads(m.reconstruct_effects.fn(flat))

        assert len(result) == 1
        assert result[0]["on"]["hit"][0]["id"] == "out"

    def test_reconstruct_invalid_tree(self):
        records = [{"id": "a", "type": "note"}, {"id": "a", "type": "note"}]
        result = m.reconstruct_effects.fn(json.dumps(records))

        assert result.startswith("❌ Invalid effect tree")

    def test_parse_action_description(self):
        result = json.loads(m.parse_action_description.fn("DC 15 DEX save or take damage", "3d6"))

        assert result[0]["type"] == "savingThrow"
        assert result[0]["saveDC"] == 15
        assert result[0]["sharedRolls"][0]["formula"] == "3d6"

    def test_parse_action_description_nothing(self):
        assert m.parse_action_description.fn("It looks at you.") == "No effects could be parsed from this action."


# ─── Upcast tools ──────────────────────────────────────────────────────


class TestUpcastTools:
    """Test validate_spell_upcast / upcast_spell."""

    def test_validate(self):
        result = json.loads(m.validate_spell_upcast.fn(json.dumps(SPELL), 3, 5, highest_unlocked_tier=3))

        assert result["is_valid"] is True
        assert result["steps"] == 2

    def test_validate_uses_character_level(self):
        result = m.validate_spell_upcast.fn(json.dumps(SPELL), 3, 5, character_level=1)
        assert result == "❌ Cannot spend more than 1 mana (highest unlocked tier)"

    def test_validate_bad_spell(self):
        assert m.validate_spell_upcast.fn("{", 1, 1, highest_unlocked_tier=1).startswith("❌")

    def test_upcast(self):
        activation = {"effects": [{"id": "d", "type": "damage", "formula": "2d6"}]}
        result = json.loads(
            m.upcast_spell.fn(json.dumps(activation), json.dumps(SPELL), 4, 9, highest_unlocked_tier=5)
        )

        assert result["activation"]["effects"][0]["formula"] == "2d6+6"
        assert result["upcast_steps"] == 3
        assert result["mana_spent"] == 4

    def test_upcast_insufficient_mana(self):
        activation = {"effects": []}
        result = m.upcast_spell.fn(json.dumps(activation), json.dumps(SPELL), 4, 2, highest_unlocked_tier=5)

        assert result == "❌ Insufficient mana"


# ─── Activation tool ───────────────────────────────────────────────────


class TestRollActivation:
    """Test roll_activation."""

    @pytest.mark.anyio
    async def test_nested_tree(self):
        result = json.loads(await m.roll_activation.fn(json.dumps(NESTED_TREE), primary_die_value=3))

        assert result["rolls"][0]["total"] == 4
        assert result["rolls"][0]["class"] == "DamageRoll"
        assert result["effects"][0]["roll"]["total"] == 4

    @pytest.mark.anyio
    async def test_flat_records(self):
        flat = m.flatten_effects.fn(json.dumps(NESTED_TREE))
        result = json.loads(await m.roll_activation.fn(flat, primary_die_value=2))

        assert result["rolls"][0]["total"] == 3
        assert result["effects"][0]["on"]["hit"][0]["id"] == "out"

    @pytest.mark.anyio
    async def test_roll_data(self):
        tree = [{"id": "h", "type": "healing", "formula": "@key"}]
        result = json.loads(await m.roll_activation.fn(json.dumps(tree), roll_data='{"key": 4}'))

        assert result["rolls"][0]["total"] == 4

    @pytest.mark.anyio
    async def test_non_rolling_item(self):
        result = json.loads(await m.roll_activation.fn(json.dumps(NESTED_TREE), item_type="ancestry"))
        assert result["rolls"] == []

    @pytest.mark.anyio
    async def test_bad_formula(self):
        tree = [{"id": "h", "type": "healing", "formula": "lots"}]
        result = await m.roll_activation.fn(json.dumps(tree))

        assert result.startswith("❌ Could not roll activation")

    @pytest.mark.anyio
    async def test_bad_json(self):
        assert (await m.roll_activation.fn("[")).startswith("❌")


# ─── Nimble Nexus tools ────────────────────────────────────────────────


class TestNimbleNexusTools:
    """Test search_nimble_nexus_monsters / import tools."""

    @pytest.mark.anyio
    async def test_search(self):
        response = {
            "data": [
                {"id": "g1", "attributes": {"name": "Goblin", "level": "1/2"}},
                {"id": "w1", "attributes": {"name": "Wyrm", "level": 12, "legendary": True}},
            ],
            "links": {"next": "/api/monsters?cursor=c2"},
        }
        with patch.object(m.nexus_client, "search", AsyncMock(return_value=response)) as search:
            result = await m.search_nimble_nexus_monsters.fn(search="g")

        assert "**Nimble Nexus Monsters (2):**" in result
        assert "• Goblin (level 1/2, id: g1)" in result
        assert "• Wyrm (level 12, id: w1) [legendary]" in result
        assert "Next cursor: c2" in result
        assert search.call_args.kwargs["search"] == "g"

    @pytest.mark.anyio
    async def test_search_empty(self):
        with patch.object(m.nexus_client, "search", AsyncMock(return_value={"data": []})):
            assert await m.search_nimble_nexus_monsters.fn() == "No monsters found."

    @pytest.mark.anyio
    async def test_search_error(self):
        error = NimbleNexusApiError("API request failed: Bad Gateway", 502, "Bad Gateway")
        with patch.object(m.nexus_client, "search", AsyncMock(side_effect=error)):
            result = await m.search_nimble_nexus_monsters.fn()

        assert result.startswith("❌ Nimble Nexus search failed (502 Bad Gateway)")

    @pytest.mark.anyio
    async def test_import(self):
        with patch.object(m.nexus_client, "get_by_id", AsyncMock(return_value=MONSTER)):
            result = await m.import_nimble_nexus_monster.fn("abc123")

        assert result.startswith("Nimble Nexus Import - Goblin")
        assert '"name": "Goblin"' in result

    @pytest.mark.anyio
    async def test_import_not_found(self):
        error = NimbleNexusApiError("API request failed: Not Found", 404, "Not Found")
        with patch.object(m.nexus_client, "get_by_id", AsyncMock(side_effect=error)):
            result = await m.import_nimble_nexus_monster.fn("missing")

        assert result.startswith("❌ Nimble Nexus request failed (404 Not Found)")

    def test_import_file(self, tmp_path):
        path = tmp_path / "goblin.json"
        path.write_text(json.dumps({"data": MONSTER}))

        result = m.import_nimble_nexus_monster_file.fn(str(path))
        assert "Features: 1 (1 action(s) with parsed effects)" in result

    def test_import_file_missing(self, tmp_path):
        result = m.import_nimble_nexus_monster_file.fn(str(tmp_path / "nope.json"))
        assert result.startswith("❌ Monster file not found")


# ─── Compendium tool ───────────────────────────────────────────────────


class TestLoadCompendiumFile:
    """Test load_compendium_file."""

    def test_load(self, tmp_path):
        path = tmp_path / "bite.json"
        path.write_text(json.dumps(NESTED_TREE))

        result = json.loads(m.load_compendium_file.fn(str(path)))
        assert [r["id"] for r in result] == ["dmg", "out"]

    def test_missing(self, tmp_path):
        result = m.load_compendium_file.fn(str(tmp_path / "missing.yaml"))
        assert result.startswith("❌ Compendium file not found")
