"""
Flat storage codec for effect trees.

Host documents cannot store recursive heterogeneous lists, so effect trees
are persisted as a flat, pre-order list of node records where each record
points at its owner through ``parentNode`` and names the owning edge in
``parentContext``. This module converts between the nested tree and that
flat form, and normalizes the compact ``@{key=value; ...}`` references
that compendium content uses in place of full node objects.

Functions:
    parse_string_reference: Decode a compact ``@{...}`` reference.
    normalize_node: Coerce a model, dict or string reference to a node.
    flatten_effects_tree: Nested tree -> flat record list.
    reconstruct_effects_tree: Flat record list -> nested tree.
    dump_flat / load_flat: Flat node models <-> persisted dicts.
"""

from __future__ import annotations

import logging
import re
from copy import deepcopy
from typing import Any, Iterable

from pydantic import ValidationError

from ..models import (
    BRANCHING_NODES,
    CONSEQUENCE_EDGES,
    EFFECT_NODE_ADAPTER,
    ActionConsequence,
    DamageNode,
    EffectNode,
    EffectNodeBase,
    SavingThrowNode,
)

logger = logging.getLogger("nimble-effects")

SHARED_ROLLS = "sharedRolls"
FAILED_SAVE_BY = "failedSaveBy"

_FAILED_SAVE_BY_RE = re.compile(r"failedSaveBy(\d+)")
_NUMBER_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

# stored edge name -> ActionConsequence attribute
_EDGE_ATTRIBUTES = {stored: attr for attr, stored in CONSEQUENCE_EDGES}
# either spelling of an edge name -> stored edge name
_EDGE_NAMES = {name: stored for attr, stored in CONSEQUENCE_EDGES for name in (attr, stored)}


class EffectTreeError(ValueError):
    """Raised when a flat list cannot form a valid effect tree."""


# ---------------------------------------------------------------------------
# Compact string references
# ---------------------------------------------------------------------------

def _coerce_reference_value(value: str) -> Any:
    if value == "null":
        return None
    if value == "true":
        return True
    if value == "false":
        return False
    if _NUMBER_RE.fullmatch(value):
        if re.fullmatch(r"[+-]?\d+", value):
            return int(value)
        return float(value)
    return value


def parse_string_reference(ref: str) -> dict[str, Any] | None:
    """Decode a compact ``@{key=value; key2=value2}`` node reference.

    Pairs are separated by ``;`` and split on the first ``=``; keys and
    values are trimmed and pairs with an empty key or value are skipped.
    Values are coerced: ``null`` -> None, ``true``/``false`` -> bool,
    numeric tokens -> int or float, anything else stays a string.

    Args:
        ref: The encoded reference.

    Returns:
        The decoded key/value mapping, or None if ``ref`` is not wrapped
        in ``@{`` ... ``}``.
    """
    if not isinstance(ref, str) or not ref.startswith("@{") or not ref.endswith("}"):
        return None

    data: dict[str, Any] = {}
    for pair in ref[2:-1].split(";"):
        key, sep, value = pair.partition("=")
        key = key.strip()
        value = value.split("=", 1)[0].strip()
        if not sep or not key or not value:
            continue
        data[key] = _coerce_reference_value(value)
    return data


def _validate_record(data: dict[str, Any]) -> EffectNode | None:
    try:
        return EFFECT_NODE_ADAPTER.validate_python(data)
    except ValidationError as e:
        logger.warning(f"Dropping effect node that is not a valid node record: {e.error_count()} error(s) in {data!r}")
        return None


def normalize_node(entry: Any) -> EffectNode | None:
    """Coerce one node-like value into an effect node model.

    Accepts an existing node model (deep-copied), a plain dict in either
    camelCase or snake_case, or a compact string reference.

    Returns:
        The node, or None if the value cannot be read as a node.
    """
    if isinstance(entry, EffectNodeBase):
        return entry.model_copy(deep=True)
    if isinstance(entry, str):
        data = parse_string_reference(entry)
        if data is None:
            logger.debug(f"Skipping malformed effect reference: {entry!r}")
            return None
        return _validate_record(data)
    if isinstance(entry, dict):
        return _validate_record(deepcopy(entry))
    logger.warning(f"Skipping effect entry of unsupported type {type(entry).__name__}")
    return None


# ---------------------------------------------------------------------------
# Flatten
# ---------------------------------------------------------------------------

def _model_edges(node: EffectNodeBase) -> list[tuple[str, list]]:
    """Outgoing edges of a node model, in traversal order."""
    edges: list[tuple[str, list]] = []
    if not isinstance(node, BRANCHING_NODES):
        return edges

    on = node.on
    if on is not None:
        for margin, children in (on.failed_save_by or {}).items():
            if children:
                edges.append((f"{FAILED_SAVE_BY}{margin}", children))
        for attr, stored in CONSEQUENCE_EDGES:
            children = getattr(on, attr)
            if children:
                edges.append((stored, children))

    if isinstance(node, SavingThrowNode) and node.shared_rolls:
        edges.append((SHARED_ROLLS, node.shared_rolls))
    return edges


def _raw_edges(node_type: Any, raw_on: Any, raw_shared: Any) -> list[tuple[str, list]]:
    """Outgoing edges of a plain dict node, in traversal order."""
    edges: list[tuple[str, list]] = []

    if isinstance(raw_on, dict):
        graduated = raw_on.get(FAILED_SAVE_BY, raw_on.get("failed_save_by"))
        if isinstance(graduated, dict):
            for margin, children in graduated.items():
                if isinstance(children, list) and children:
                    edges.append((f"{FAILED_SAVE_BY}{margin}", children))

        for key, children in raw_on.items():
            if key in (FAILED_SAVE_BY, "failed_save_by"):
                continue
            if not isinstance(children, list):
                continue
            context = _EDGE_NAMES.get(key)
            if context is None:
                logger.warning(f"Ignoring unknown outcome edge '{key}'")
                continue
            if children:
                edges.append((context, children))

    if node_type == "savingThrow" and isinstance(raw_shared, list) and raw_shared:
        edges.append((SHARED_ROLLS, raw_shared))
    return edges


def _split_node(entry: Any) -> tuple[EffectNode | None, list[tuple[str, list]]]:
    """Separate a node-like value into an edge-free record and its edges."""
    if isinstance(entry, EffectNodeBase):
        edges = _model_edges(entry)
        record = entry.model_copy(deep=True)
        if isinstance(record, BRANCHING_NODES):
            record.on = None
        if isinstance(record, SavingThrowNode):
            record.shared_rolls = None
        return record, edges

    if isinstance(entry, str):
        data = parse_string_reference(entry)
        if data is None:
            logger.debug(f"Skipping malformed effect reference: {entry!r}")
            return None, []
    elif isinstance(entry, dict):
        data = dict(entry)
    else:
        logger.warning(f"Skipping effect entry of unsupported type {type(entry).__name__}")
        return None, []

    node_type = data.get("type")
    raw_on = raw_shared = None
    if node_type in ("damage", "savingThrow"):
        raw_on = data.pop("on", None)
    if node_type == "savingThrow":
        raw_shared = data.pop(SHARED_ROLLS, data.pop("shared_rolls", None))

    record = _validate_record(deepcopy(data))
    if record is None:
        return None, []
    return record, _raw_edges(node_type, raw_on, raw_shared)


def _flatten_node(entry: Any, parent_node: str | None, parent_context: str | None) -> list[EffectNode]:
    record, edges = _split_node(entry)
    if record is None:
        return []

    record.parent_node = parent_node
    record.parent_context = parent_context

    flat: list[EffectNode] = [record]
    for context, children in edges:
        for child in children:
            flat.extend(_flatten_node(child, record.id, context))
    return flat


def flatten_effects_tree(
    tree: Iterable[Any] | None,
    parent_node: str | None = None,
    parent_context: str | None = None,
) -> list[EffectNode]:
    """Flatten a nested effect tree into pre-order storage records.

    Every emitted record is a copy stamped with ``parentNode`` and
    ``parentContext`` and stripped of its ``on`` and ``sharedRolls``
    edges. Graduated failed-save edges become ``failedSaveBy<N>``
    contexts. Entries may be node models, dicts or ``@{...}`` references;
    unreadable entries are skipped.

    Args:
        tree: Root nodes of the tree (or of a subtree).
        parent_node: Id stamped on the top-level entries.
        parent_context: Edge name stamped on the top-level entries.

    Returns:
        Flat list of edge-free node records in pre-order.
    """
    flat: list[EffectNode] = []
    if not tree:
        return flat
    for entry in tree:
        flat.extend(_flatten_node(entry, parent_node, parent_context))
    return flat


# ---------------------------------------------------------------------------
# Reconstruct
# ---------------------------------------------------------------------------

def _check_acyclic(by_id: dict[str, EffectNode]) -> None:
    for node in by_id.values():
        seen = {node.id}
        parent_id = node.parent_node
        while parent_id is not None and parent_id in by_id:
            if parent_id in seen:
                raise EffectTreeError(f"Effect node '{node.id}' is its own ancestor")
            seen.add(parent_id)
            parent_id = by_id[parent_id].parent_node


def _attach(parent: EffectNode, child: EffectNode) -> None:
    context = child.parent_context

    if context == SHARED_ROLLS:
        if not isinstance(parent, SavingThrowNode):
            raise EffectTreeError(
                f"Node '{child.id}' is a shared roll of '{parent.id}', which is not a saving throw"
            )
        if not isinstance(child, DamageNode):
            raise EffectTreeError(f"Shared roll '{child.id}' must be a damage node, got '{child.type}'")
        if parent.shared_rolls is None:
            parent.shared_rolls = []
        parent.shared_rolls.append(child)
        return

    if not isinstance(parent, BRANCHING_NODES):
        raise EffectTreeError(
            f"Node '{child.id}' is attached to '{parent.id}', but {parent.type} nodes have no outcome edges"
        )
    if parent.on is None:
        parent.on = ActionConsequence()

    graduated = _FAILED_SAVE_BY_RE.fullmatch(context or "")
    if graduated:
        if parent.on.failed_save_by is None:
            parent.on.failed_save_by = {}
        parent.on.failed_save_by.setdefault(int(graduated.group(1)), []).append(child)
        return

    attr = _EDGE_ATTRIBUTES.get(context or "")
    if attr is None:
        raise EffectTreeError(f"Node '{child.id}' uses unknown outcome edge '{context}'")
    children = getattr(parent.on, attr)
    if children is None:
        children = []
        setattr(parent.on, attr, children)
    children.append(child)


def reconstruct_effects_tree(flat: Iterable[Any] | None) -> list[EffectNode]:
    """Rebuild the nested effect tree from flat storage records.

    Children are appended to their parent's edge in list order, so the
    pre-order output of :func:`flatten_effects_tree` round-trips exactly.
    Roots keep their first-seen order. Records pointing at a parent that
    is not in the list are promoted to roots. The input is not modified.

    Args:
        flat: Flat node records (models, dicts or ``@{...}`` references).

    Returns:
        Root nodes of the rebuilt tree.

    Raises:
        EffectTreeError: On duplicate ids, cycles, or a child placed on an
            edge its parent cannot own.
    """
    nodes: list[EffectNode] = []
    for entry in flat or []:
        node = normalize_node(entry)
        if node is None:
            continue
        if isinstance(node, BRANCHING_NODES):
            node.on = None
        if isinstance(node, SavingThrowNode):
            node.shared_rolls = None
        nodes.append(node)

    by_id: dict[str, EffectNode] = {}
    for node in nodes:
        if node.id in by_id:
            raise EffectTreeError(f"Duplicate effect node id '{node.id}'")
        by_id[node.id] = node
    _check_acyclic(by_id)

    roots: list[EffectNode] = []
    for node in nodes:
        if node.parent_node is None:
            roots.append(node)
            continue
        parent = by_id.get(node.parent_node)
        if parent is None:
            logger.warning(
                f"Effect node '{node.id}' references missing parent '{node.parent_node}'; promoting to root"
            )
            node.parent_node = None
            node.parent_context = None
            roots.append(node)
            continue
        _attach(parent, node)
    return roots


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------

def dump_node(node: EffectNode) -> dict[str, Any]:
    """Serialize one node (with its subtree) to a camelCase dict."""
    data = node.model_dump(by_alias=True, exclude_none=True)
    data["parentNode"] = node.parent_node
    data["parentContext"] = node.parent_context
    return data


def dump_flat(flat: Iterable[EffectNode]) -> list[dict[str, Any]]:
    """Serialize flat node records to the persisted dict form."""
    records = []
    for node in flat:
        data = node.model_dump(by_alias=True, exclude_none=True, exclude={"on", "shared_rolls"})
        data["parentNode"] = node.parent_node
        data["parentContext"] = node.parent_context
        records.append(data)
    return records


def load_flat(records: Iterable[Any] | None) -> list[EffectNode]:
    """Read persisted flat records back into node models, skipping unreadable ones."""
    flat: list[EffectNode] = []
    for entry in records or []:
        node = normalize_node(entry)
        if node is not None:
            flat.append(node)
    return flat


__all__ = [
    "SHARED_ROLLS",
    "FAILED_SAVE_BY",
    "EffectTreeError",
    "parse_string_reference",
    "normalize_node",
    "flatten_effects_tree",
    "reconstruct_effects_tree",
    "dump_node",
    "dump_flat",
    "load_flat",
]
