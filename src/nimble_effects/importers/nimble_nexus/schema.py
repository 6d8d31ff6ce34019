"""
Nimble Nexus API constants and lookup tables.

These map the API's field values and free-text vocabulary to the canonical
names used by Nimble actors and effect nodes.
"""

import re

# ---------------------------------------------------------------------------
# API endpoint
# ---------------------------------------------------------------------------

NIMBLE_NEXUS_BASE_URL = "https://nimble.nexus"
NIMBLE_NEXUS_API_URL = f"{NIMBLE_NEXUS_BASE_URL}/api"

# Bucket holding monster portraits referenced by relative paperforge paths
NIMBLE_NEXUS_STORAGE_URL = "https://nimble-nexus.fly.storage.tigris.dev"

DEFAULT_PAGE_LIMIT = 100
MAX_PAGE_LIMIT = 100

# ---------------------------------------------------------------------------
# Saving throws
# ---------------------------------------------------------------------------

# API save keys -> actor saving throw names
SAVE_STAT_MAP: dict[str, str] = {
    "str": "strength",
    "dex": "dexterity",
    "int": "intelligence",
    "wil": "will",
}

# Save names as written in action text -> saving throw type
SAVE_TYPE_ABBREVIATION_MAP: dict[str, str] = {
    "str": "strength",
    "strength": "strength",
    "dex": "dexterity",
    "dexterity": "dexterity",
    "int": "intelligence",
    "intelligence": "intelligence",
    "wil": "will",
    "will": "will",
    # Nimble has no Wisdom; content written for other systems means Will
    "wis": "will",
    "wisdom": "will",
}

# Alternation of every save name accepted in action text
SAVE_STAT_PATTERN = "STR|DEX|INT|WIL|WIS|strength|dexterity|intelligence|will|wisdom"

# ---------------------------------------------------------------------------
# Damage types
# ---------------------------------------------------------------------------

DAMAGE_TYPE_MAP: dict[str, str] = {
    "acid": "acid",
    "bludgeoning": "bludgeoning",
    "cold": "cold",
    "fire": "fire",
    "force": "force",
    "lightning": "lightning",
    "necrotic": "necrotic",
    "piercing": "piercing",
    "poison": "poison",
    "psychic": "psychic",
    "radiant": "radiant",
    "slashing": "slashing",
    "thunder": "thunder",
    # Variations seen in community content
    "blunt": "bludgeoning",
    "electric": "lightning",
    "holy": "radiant",
    "unholy": "necrotic",
    "magic": "force",
    "physical": "bludgeoning",
}

DEFAULT_DAMAGE_TYPE = "bludgeoning"

# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------

CANONICAL_CONDITIONS = (
    "blinded", "bloodied", "charged", "charmed", "concentration", "confused",
    "dazed", "dead", "despair", "distracted", "dying", "frightened",
    "grappled", "hampered", "incapacitated", "invisible", "paralyzed",
    "petrified", "poisoned", "prone", "restrained", "riding", "silenced",
    "slowed", "stunned", "smoldering", "taunted", "unconscious", "wounded",
)

CONDITION_MAP: dict[str, str] = {
    **{name: name for name in CANONICAL_CONDITIONS},
    "blind": "blinded",
    "charm": "charmed",
    "confuse": "confused",
    "daze": "dazed",
    "fear": "frightened",
    "feared": "frightened",
    "frighten": "frightened",
    "grapple": "grappled",
    "grabbed": "grappled",
    "grab": "grappled",
    "paralyze": "paralyzed",
    "paralyses": "paralyzed",
    "paralysis": "paralyzed",
    "petrify": "petrified",
    "petrifies": "petrified",
    "petrification": "petrified",
    "poison": "poisoned",
    "restrain": "restrained",
    "silence": "silenced",
    "slow": "slowed",
    "stun": "stunned",
    "stuns": "stunned",
    "taunt": "taunted",
}

# ---------------------------------------------------------------------------
# Actors and items
# ---------------------------------------------------------------------------

SIZE_TO_TOKEN_DIMENSIONS: dict[str, tuple[float, float]] = {
    "tiny": (0.5, 0.5),
    "small": (0.5, 0.5),
    "medium": (1, 1),
    "large": (2, 2),
    "huge": (3, 3),
    "gargantuan": (4, 4),
}

MOVEMENT_MODES = ("walk", "fly", "swim", "climb", "burrow")

FEATURE_SUBTYPES = ("feature", "action", "attackSequence", "bloodied", "lastStand")

DEFAULT_FEATURE_ICONS: dict[str, str] = {
    "feature": "icons/svg/item-bag.svg",
    "action": "icons/svg/sword.svg",
    "attackSequence": "icons/svg/sword.svg",
    "bloodied": "icons/svg/blood.svg",
    "lastStand": "icons/svg/skull.svg",
}

DEFAULT_ACTOR_IMAGE = "icons/svg/mystery-man.svg"

# Token display settings for imported monsters
TOKEN_DISPLAY_OWNER_HOVER = 50
TOKEN_DISPLAY_OWNER = 40
TOKEN_DISPOSITION_HOSTILE = -1

# Matches: https://nimble.nexus/monsters/<id>[/anything] or a bare id
NIMBLE_NEXUS_MONSTER_URL_PATTERN = re.compile(
    r"(?:https?://)?(?:www\.)?nimble\.nexus/(?:api/)?monsters/([\w-]+)"
)
