"""
Editing operations on effect trees.

Every operation takes a nested tree and returns a new one; inputs are never
modified. Edits go through the flat form: the tree is flattened, the flat
records are changed, and the result is reconstructed. A parent does not
track its descendants except through its own edges, so deletion discovers
a subtree by following ``parentNode`` pointers in the flat list.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Iterator

from pydantic import ValidationError

from ..models import (
    BRANCHING_NODES,
    CONSEQUENCE_EDGES,
    EFFECT_NODE_ADAPTER,
    NODE_TYPES,
    DamageNode,
    EffectNode,
    SavingThrowNode,
)
from .codec import (
    SHARED_ROLLS,
    EffectTreeError,
    flatten_effects_tree,
    reconstruct_effects_tree,
)

logger = logging.getLogger("nimble-effects")

# Fields that define tree structure and cannot be edited directly
_STRUCTURAL_FIELDS = {"id", "type", "on", "sharedRolls", "shared_rolls", "parentNode", "parent_node",
                      "parentContext", "parent_context"}


def iter_nodes(tree: Iterable[EffectNode]) -> Iterator[EffectNode]:
    """Yield every node of a nested tree in pre-order.

    Children are visited in the same edge order the flat codec uses, so
    the sequence matches ``flatten_effects_tree(tree)`` node for node.
    """
    for node in tree:
        yield node
        if isinstance(node, BRANCHING_NODES) and node.on is not None:
            for children in (node.on.failed_save_by or {}).values():
                yield from iter_nodes(children)
            for attr, _ in CONSEQUENCE_EDGES:
                yield from iter_nodes(getattr(node.on, attr) or [])
        if isinstance(node, SavingThrowNode) and node.shared_rolls:
            yield from iter_nodes(node.shared_rolls)


def find_node(tree: Iterable[EffectNode], node_id: str) -> EffectNode | None:
    """Return the node with ``node_id``, or None."""
    for node in iter_nodes(tree):
        if node.id == node_id:
            return node
    return None


def create_effect_node(
    node_type: str,
    parent_node: str | None = None,
    parent_context: str | None = None,
    **fields: Any,
) -> EffectNode:
    """Build a new node of the given type with default field values.

    Saving throws start with an empty ``sharedRolls`` list; everything
    else starts with no edges.

    Raises:
        EffectTreeError: If ``node_type`` is not a known node type.
    """
    node_cls = NODE_TYPES.get(node_type)
    if node_cls is None:
        raise EffectTreeError(f"Invalid node type: '{node_type}'")
    node = node_cls(parent_node=parent_node, parent_context=parent_context, **fields)
    if isinstance(node, SavingThrowNode) and node.shared_rolls is None:
        node.shared_rolls = []
    return node


def _check_edge(parent: EffectNode, child: EffectNode, context: str | None) -> None:
    if context == SHARED_ROLLS:
        if not isinstance(parent, SavingThrowNode) or not isinstance(child, DamageNode):
            raise EffectTreeError("Only damage nodes can be added as shared rolls of a saving throw")
    elif not isinstance(parent, BRANCHING_NODES):
        raise EffectTreeError(f"Cannot add children to a {parent.type} node")
    elif not context:
        raise EffectTreeError("An outcome edge is required when adding a child node")


def insert_effect_node(
    tree: Iterable[EffectNode],
    node: EffectNode,
    parent_id: str | None = None,
    context: str | None = None,
) -> list[EffectNode]:
    """Return a new tree with ``node`` appended under a parent's edge.

    Args:
        tree: The current tree.
        node: The node to add (copied, with any edges it already has).
        parent_id: Owning node id, or None to add a root.
        context: Edge name under the parent (``hit``, ``failedSave``,
            ``sharedRolls``...). Ignored for roots.

    Raises:
        EffectTreeError: If the parent does not exist or cannot own
            the requested edge.
    """
    flat = flatten_effects_tree(tree)
    if parent_id is not None:
        parent = next((n for n in flat if n.id == parent_id), None)
        if parent is None:
            raise EffectTreeError(f"Parent node '{parent_id}' not found")
        _check_edge(parent, node, context)
    else:
        context = None

    flat.extend(flatten_effects_tree([node], parent_id, context))
    return reconstruct_effects_tree(flat)


def update_effect_node(
    tree: Iterable[EffectNode],
    node_id: str,
    field: str,
    value: Any,
) -> list[EffectNode]:
    """Return a new tree with one field of one node replaced.

    ``field`` may be the stored camelCase name or the attribute name.
    Unknown ids leave the tree unchanged.

    Raises:
        EffectTreeError: If the field is structural or the new value is
            not valid for the node type.
    """
    if not field:
        raise EffectTreeError("A field name is required")
    if field in _STRUCTURAL_FIELDS:
        raise EffectTreeError(f"Field '{field}' defines tree structure and cannot be edited directly")

    flat = flatten_effects_tree(tree)
    for index, node in enumerate(flat):
        if node.id != node_id:
            continue
        data = node.model_dump(by_alias=True)
        attr_field = type(node).model_fields.get(field)
        key = (attr_field.alias or field) if attr_field is not None else field
        data[key] = value
        try:
            flat[index] = EFFECT_NODE_ADAPTER.validate_python(data)
        except ValidationError as e:
            raise EffectTreeError(f"Invalid value for '{field}' on node '{node_id}': {e}") from e
        break
    else:
        logger.debug(f"update_effect_node: node '{node_id}' not found, tree unchanged")
    return reconstruct_effects_tree(flat)


def collect_descendants(node_id: str, flat: Iterable[EffectNode]) -> set[str]:
    """Ids of ``node_id`` and every node below it, found via parent pointers."""
    children_of: dict[str, list[str]] = {}
    for node in flat:
        if node.parent_node is not None:
            children_of.setdefault(node.parent_node, []).append(node.id)

    marked = {node_id}
    pending = [node_id]
    while pending:
        current = pending.pop()
        for child_id in children_of.get(current, []):
            if child_id not in marked:
                marked.add(child_id)
                pending.append(child_id)
    return marked


def delete_effect_node(tree: Iterable[EffectNode], node_id: str) -> list[EffectNode]:
    """Return a new tree without ``node_id`` and all of its descendants."""
    flat = flatten_effects_tree(tree)
    doomed = collect_descendants(node_id, flat)
    return reconstruct_effects_tree([node for node in flat if node.id not in doomed])


def find_nodes_by_contexts(
    tree: Iterable[EffectNode],
    contexts: Iterable[str],
    include_base_nodes: bool = False,
    include_base_damage_nodes: bool = False,
) -> list[EffectNode]:
    """Collect the nodes a chat card shows for the given outcome edges.

    Roots that are not damage nodes are always included unless
    ``include_base_nodes`` is set; root damage nodes are included only
    with ``include_base_damage_nodes``. Below that, the children of every
    damage or saving throw node on any of ``contexts`` are collected,
    descending through shared rolls and damage outcome edges.

    Args:
        tree: Nested effect tree.
        contexts: Stored edge names such as ``hit`` or ``criticalHit``.
        include_base_nodes: Skip non-damage roots.
        include_base_damage_nodes: Include damage roots.

    Returns:
        Matching nodes (not copies) in traversal order.
    """
    wanted = list(contexts)
    attrs = {stored: attr for attr, stored in CONSEQUENCE_EDGES}
    result: list[EffectNode] = []

    def traverse(node: EffectNode) -> None:
        if node.parent_node is None:
            if include_base_damage_nodes and isinstance(node, DamageNode):
                result.append(node)
            elif not include_base_nodes and not isinstance(node, DamageNode):
                result.append(node)

        if isinstance(node, BRANCHING_NODES) and node.on is not None:
            for context in wanted:
                if context in attrs:
                    result.extend(getattr(node.on, attrs[context]) or [])

        if isinstance(node, SavingThrowNode):
            for shared in node.shared_rolls or []:
                traverse(shared)

        if isinstance(node, DamageNode) and node.on is not None:
            for children in (node.on.failed_save_by or {}).values():
                for child in children:
                    traverse(child)
            for attr, _ in CONSEQUENCE_EDGES:
                for child in getattr(node.on, attr) or []:
                    traverse(child)

    for root in tree:
        traverse(root)
    return result


__all__ = [
    "iter_nodes",
    "find_node",
    "create_effect_node",
    "insert_effect_node",
    "update_effect_node",
    "collect_descendants",
    "delete_effect_node",
    "find_nodes_by_contexts",
]
