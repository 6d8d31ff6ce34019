"""
Compendium effect files.

Compendium authors write effect lists by hand in YAML or JSON, either as
a top-level list or under an ``effects`` key. Entries may be nested node
objects, flat records with parent pointers, or compact ``@{...}`` string
references; all of them load into the same flat node list.

Key functions:
- load_compendium_effects: Read one file into flat effect nodes.
- resolve_compendium_path: Find a file by name in the compendium directory.
"""

import json
import logging
import re
from pathlib import Path

import yaml

from .models import EffectNode
from .tree.codec import EffectTreeError, flatten_effects_tree, parse_string_reference, reconstruct_effects_tree

logger = logging.getLogger("nimble-effects")

SUPPORTED_EXTENSIONS = {".json", ".yaml", ".yml"}

_BOOL_TAG = "tag:yaml.org,2002:bool"


class CompendiumLoader(yaml.SafeLoader):
    """Safe loader that reads only true/false as booleans.

    YAML 1.1 also resolves on/off/yes/no, which would turn the ``on`` edge
    key of every branching node into ``True``.
    """


CompendiumLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != _BOOL_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
CompendiumLoader.add_implicit_resolver(
    _BOOL_TAG,
    re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$"),
    list("tTfF"),
)


class CompendiumError(Exception):
    """Raised when a compendium effect file cannot be loaded."""


def resolve_compendium_path(name: str, directory: str | Path | None = None) -> Path:
    """Resolve a compendium file name against the compendium directory.

    Absolute paths and paths that exist as given are returned unchanged.
    A bare name without extension is tried with each supported extension.
    """
    path = Path(name).expanduser()
    if path.is_absolute() or path.exists() or directory is None:
        return path

    base = Path(directory).expanduser()
    candidate = base / path
    if candidate.suffix.lower() in SUPPORTED_EXTENSIONS or candidate.exists():
        return candidate
    for ext in sorted(SUPPORTED_EXTENSIONS):
        with_ext = candidate.with_name(candidate.name + ext)
        if with_ext.exists():
            return with_ext
    return candidate


def _has_parent_pointers(entries: list) -> bool:
    for entry in entries:
        if isinstance(entry, str):
            entry = parse_string_reference(entry) or {}
        if isinstance(entry, dict) and (entry.get("parentNode") or entry.get("parent_node")):
            return True
    return False


def load_compendium_effects(path: str | Path) -> list[EffectNode]:
    """Load an effect list from a YAML or JSON compendium file.

    Args:
        path: File path with a .json, .yaml or .yml extension.

    Returns:
        The effects in flat form, ready to store.

    Raises:
        CompendiumError: If the file is missing, unreadable, malformed, or
            describes an invalid tree.
    """
    path = Path(path)
    if not path.exists():
        raise CompendiumError(f"Compendium file not found: {path}")

    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        raise CompendiumError(
            f"Unsupported file format: {suffix}. "
            f"Supported: {', '.join(sorted(SUPPORTED_EXTENSIONS))}"
        )

    try:
        raw_content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise CompendiumError(f"Failed to read file: {e}") from e

    try:
        if suffix == ".json":
            data = json.loads(raw_content)
        else:
            data = yaml.load(raw_content, Loader=CompendiumLoader)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise CompendiumError(f"Failed to parse {suffix} file: {e}") from e

    if isinstance(data, dict):
        data = data.get("effects")
    if data is None:
        data = []
    if not isinstance(data, list):
        raise CompendiumError("Compendium file must hold a list of effects or an 'effects' list")

    try:
        if _has_parent_pointers(data):
            # Flat records: rebuild first so children follow their parents
            flat = flatten_effects_tree(reconstruct_effects_tree(data))
        else:
            flat = flatten_effects_tree(data)
    except EffectTreeError as e:
        raise CompendiumError(f"Invalid effect tree in {path.name}: {e}") from e

    logger.info(f"Loaded {len(flat)} effect node(s) from {path}")
    return flat


__all__ = [
    "SUPPORTED_EXTENSIONS",
    "CompendiumError",
    "CompendiumLoader",
    "resolve_compendium_path",
    "load_compendium_effects",
]
