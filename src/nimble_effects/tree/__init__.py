"""
Effect tree storage codec and editing operations.
"""

from .codec import (
    FAILED_SAVE_BY,
    SHARED_ROLLS,
    EffectTreeError,
    dump_flat,
    dump_node,
    flatten_effects_tree,
    load_flat,
    normalize_node,
    parse_string_reference,
    reconstruct_effects_tree,
)
from .manipulation import (
    collect_descendants,
    create_effect_node,
    delete_effect_node,
    find_node,
    find_nodes_by_contexts,
    insert_effect_node,
    iter_nodes,
    update_effect_node,
)

__all__ = [
    "FAILED_SAVE_BY",
    "SHARED_ROLLS",
    "EffectTreeError",
    "dump_flat",
    "dump_node",
    "flatten_effects_tree",
    "load_flat",
    "normalize_node",
    "parse_string_reference",
    "reconstruct_effects_tree",
    "collect_descendants",
    "create_effect_node",
    "delete_effect_node",
    "find_node",
    "find_nodes_by_contexts",
    "insert_effect_node",
    "iter_nodes",
    "update_effect_node",
]
