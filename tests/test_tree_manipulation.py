"""Tests for effect tree editing operations."""

import pytest

from nimble_effects.models import (
    ActionConsequence,
    ConditionNode,
    DamageNode,
    DamageOutcomeNode,
    SavingThrowNode,
    TextNode,
)
from nimble_effects.tree.codec import EffectTreeError, dump_node, flatten_effects_tree
from nimble_effects.tree.manipulation import (
    collect_descendants,
    create_effect_node,
    delete_effect_node,
    find_node,
    find_nodes_by_contexts,
    insert_effect_node,
    iter_nodes,
    update_effect_node,
)


def make_tree() -> list:
    damage = DamageNode(id="dmg", formula="1d6", parent_node=None)
    damage.on = ActionConsequence(
        hit=[
            DamageOutcomeNode(id="out", outcome="fullDamage", parent_node="dmg", parent_context="hit"),
            ConditionNode(id="prone", condition="prone", parent_node="dmg", parent_context="hit"),
        ],
        critical_hit=[ConditionNode(id="stun", condition="stunned", parent_node="dmg", parent_context="criticalHit")],
    )
    return [damage, TextNode(id="flavor", text="A savage bite.")]


class TestCreateEffectNode:
    """Test node construction by type name."""

    def test_create_condition(self):
        node = create_effect_node("condition", condition="dazed")

        assert isinstance(node, ConditionNode)
        assert node.condition == "dazed"
        assert len(node.id) == 16

    def test_saving_throw_starts_with_shared_rolls(self):
        node = create_effect_node("savingThrow", parent_node="p", parent_context="hit")

        assert isinstance(node, SavingThrowNode)
        assert node.shared_rolls == []
        assert node.parent_node == "p"

    def test_invalid_type(self):
        with pytest.raises(EffectTreeError, match="Invalid node type"):
            create_effect_node("fireball")


class TestInsertEffectNode:
    """Test adding nodes to a tree."""

    def test_insert_root(self):
        tree = make_tree()
        new = insert_effect_node(tree, ConditionNode(id="c", condition="dazed"))

        assert [n.id for n in new] == ["dmg", "flavor", "c"]
        assert len(tree) == 2

    def test_insert_under_edge(self):
        tree = make_tree()
        new = insert_effect_node(tree, ConditionNode(id="c", condition="dazed"), "dmg", "miss")

        assert [n.id for n in new[0].on.miss] == ["c"]
        assert new[0].on.miss[0].parent_context == "miss"
        assert tree[0].on.miss is None

    def test_insert_shared_roll(self):
        save = SavingThrowNode(id="s", shared_rolls=[])
        new = insert_effect_node([save], DamageNode(id="d", formula="2d6"), "s", "sharedRolls")

        assert [n.id for n in new[0].shared_rolls] == ["d"]

    def test_insert_subtree(self):
        """Inserted nodes keep their own edges."""
        child = DamageNode(id="d2", formula="1d4")
        child.on = ActionConsequence(hit=[TextNode(id="t", text="ouch")])
        new = insert_effect_node(make_tree(), child, "dmg", "hit")

        inserted = find_node(new, "d2")
        assert inserted.parent_node == "dmg"
        assert [n.id for n in inserted.on.hit] == ["t"]

    def test_missing_parent(self):
        with pytest.raises(EffectTreeError, match="not found"):
            insert_effect_node(make_tree(), TextNode(), "nope", "hit")

    def test_leaf_parent(self):
        with pytest.raises(EffectTreeError):
            insert_effect_node(make_tree(), TextNode(), "flavor", "hit")

    def test_shared_roll_must_be_damage(self):
        save = SavingThrowNode(id="s")
        with pytest.raises(EffectTreeError):
            insert_effect_node([save], TextNode(), "s", "sharedRolls")


class TestUpdateEffectNode:
    """Test replacing one field on one node."""

    def test_update_by_stored_name(self):
        tree = make_tree()
        new = update_effect_node(tree, "dmg", "damageType", "fire")

        assert new[0].damage_type == "fire"
        assert tree[0].damage_type == "bludgeoning"

    def test_update_by_attribute_name(self):
        new = update_effect_node(make_tree(), "stun", "condition", "dazed")
        assert find_node(new, "stun").condition == "dazed"

    def test_update_keeps_structure(self):
        new = update_effect_node(make_tree(), "dmg", "formula", "2d6")

        assert [n.id for n in new[0].on.hit] == ["out", "prone"]
        assert new[0].formula == "2d6"

    def test_unknown_id_leaves_tree_unchanged(self):
        tree = make_tree()
        new = update_effect_node(tree, "missing", "formula", "2d6")

        assert [dump_node(n) for n in new] == [dump_node(n) for n in tree]

    def test_structural_field_rejected(self):
        with pytest.raises(EffectTreeError, match="structure"):
            update_effect_node(make_tree(), "dmg", "parentNode", "x")

    def test_invalid_value_rejected(self):
        with pytest.raises(EffectTreeError, match="Invalid value"):
            update_effect_node(make_tree(), "out", "outcome", "tripleDamage")


class TestDeleteEffectNode:
    """Test removing nodes together with their subtrees."""

    def test_delete_subtree(self):
        tree = make_tree()
        new = delete_effect_node(tree, "dmg")

        assert [n.id for n in new] == ["flavor"]
        assert len(tree) == 2

    def test_delete_leaf(self):
        new = delete_effect_node(make_tree(), "prone")
        assert [n.id for n in new[0].on.hit] == ["out"]

    def test_collect_descendants(self):
        flat = flatten_effects_tree(make_tree())
        assert collect_descendants("dmg", flat) == {"dmg", "out", "prone", "stun"}
        assert collect_descendants("flavor", flat) == {"flavor"}


class TestQueries:
    """Test traversal helpers."""

    def test_iter_nodes_matches_flatten_order(self):
        tree = make_tree()
        assert [n.id for n in iter_nodes(tree)] == [n.id for n in flatten_effects_tree(tree)]

    def test_find_node(self):
        assert find_node(make_tree(), "stun").condition == "stunned"
        assert find_node(make_tree(), "nope") is None

    def test_find_nodes_by_contexts_hit(self):
        """Hit children plus non-damage roots."""
        found = find_nodes_by_contexts(make_tree(), ["hit"])
        assert [n.id for n in found] == ["out", "prone", "flavor"]

    def test_find_nodes_by_contexts_without_base_nodes(self):
        found = find_nodes_by_contexts(make_tree(), ["criticalHit"], include_base_nodes=True)
        assert [n.id for n in found] == ["stun"]

    def test_find_nodes_by_contexts_with_damage_roots(self):
        found = find_nodes_by_contexts(make_tree(), ["hit"], include_base_nodes=True, include_base_damage_nodes=True)
        assert [n.id for n in found] == ["dmg", "out", "prone"]

    def test_find_nodes_through_shared_rolls(self):
        shared = DamageNode(id="d", parent_node="s", parent_context="sharedRolls")
        shared.on = ActionConsequence(
            failed_save=[DamageOutcomeNode(id="full", parent_node="d", parent_context="failedSave")]
        )
        save = SavingThrowNode(id="s", shared_rolls=[shared])
        save.on = ActionConsequence(
            failed_save=[ConditionNode(id="c", condition="prone", parent_node="s", parent_context="failedSave")]
        )

        found = find_nodes_by_contexts([save], ["failedSave"], include_base_nodes=True)
        assert [n.id for n in found] == ["c", "full"]
