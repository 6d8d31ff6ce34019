"""
Dice rolls for effect activation.

Formulas are additive: dice terms (``2d6``, ``d8``), flat numbers and
``@path`` references into the roller's data, joined by ``+`` and ``-``.

Classes:
    Roll: Plain additive roll used for healing and secondary damage.
    DamageRoll: Roll whose first die is split off as a primary die that
        explodes on its highest face (a critical) and registers a miss on
        a natural 1.
    DiceTerm / PrimaryDie / NumericTerm: Formula terms.

Evaluation is a coroutine so callers can await every roll of an
activation in order; the dice themselves come from ``random`` (or an
injected ``random.Random``).
"""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger("nimble-effects")

# Safety cap on chained explosions of one die
MAX_EXPLOSIONS = 100

_TERM_RE = re.compile(
    r"\s*([+-])?\s*(?:(\d*)d(\d+)|(\d+(?:\.\d+)?)|@([A-Za-z_][\w.]*))",
    re.IGNORECASE,
)


class FormulaError(ValueError):
    """Raised when a roll formula cannot be parsed."""


# ---------------------------------------------------------------------------
# Terms
# ---------------------------------------------------------------------------

@dataclass
class DieResult:
    """One rolled die face."""
    result: int
    active: bool = True
    discarded: bool = False
    exploded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "result": self.result,
            "active": self.active,
            "discarded": self.discarded,
            "exploded": self.exploded,
        }


@dataclass
class NumericTerm:
    """A flat number in a formula."""
    number: float
    flavor: str | None = None

    @property
    def formula(self) -> str:
        number = int(self.number) if float(self.number).is_integer() else self.number
        return str(number)

    @property
    def total(self) -> float:
        return self.number

    def evaluate(self, rng: Any) -> None:
        pass

    def to_dict(self) -> dict[str, Any]:
        return {"class": "NumericTerm", "number": self.number, "flavor": self.flavor}


@dataclass
class DiceTerm:
    """``NdM`` with optional ``kh``/``kl`` keep and ``x`` explode modifiers.

    Keep modifiers keep a single die. Results may be preset before
    evaluation to pin the outcome; preset results skip the initial roll
    but still explode.
    """
    number: int
    faces: int
    modifiers: list[str] = field(default_factory=list)
    results: list[DieResult] = field(default_factory=list)
    flavor: str | None = None

    @property
    def formula(self) -> str:
        return f"{self.number}d{self.faces}{''.join(self.modifiers)}"

    @property
    def total(self) -> int:
        return sum(r.result for r in self.results if r.active)

    def _roll_one(self, rng: Any) -> int:
        return rng.randint(1, self.faces)

    def _keep(self, highest: bool) -> None:
        active = [r for r in self.results if r.active]
        if len(active) <= 1:
            return
        kept = max(active, key=lambda r: r.result) if highest else min(active, key=lambda r: r.result)
        for r in active:
            if r is not kept:
                r.active = False
                r.discarded = True

    def _explode(self, rng: Any) -> None:
        explosions = 0
        index = 0
        while index < len(self.results) and explosions < MAX_EXPLOSIONS:
            r = self.results[index]
            if r.active and not r.exploded and r.result >= self.faces:
                r.exploded = True
                self.results.append(DieResult(self._roll_one(rng)))
                explosions += 1
            index += 1

    def evaluate(self, rng: Any) -> None:
        if not self.results:
            self.results = [DieResult(self._roll_one(rng)) for _ in range(self.number)]
        for modifier in self.modifiers:
            if modifier == "kh":
                self._keep(highest=True)
            elif modifier == "kl":
                self._keep(highest=False)
            elif modifier == "x":
                self._explode(rng)

    def to_dict(self) -> dict[str, Any]:
        return {
            "class": type(self).__name__,
            "number": self.number,
            "faces": self.faces,
            "modifiers": list(self.modifiers),
            "results": [r.to_dict() for r in self.results],
            "flavor": self.flavor,
        }


class PrimaryDie(DiceTerm):
    """The die of a damage roll that decides criticals and misses."""

    @property
    def kept(self) -> DieResult | None:
        """The die kept after advantage/disadvantage, before explosions."""
        return next((r for r in self.results if r.active), None)

    @property
    def exploded(self) -> bool:
        return any(r.exploded for r in self.results)

    @property
    def is_miss(self) -> bool:
        kept = self.kept
        return kept is not None and kept.result == 1 and not kept.exploded


# ---------------------------------------------------------------------------
# Formula parsing
# ---------------------------------------------------------------------------

def _resolve_reference(path: str, data: dict[str, Any]) -> float:
    value: Any = data
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            logger.warning(f"Roll data has no value for @{path}; using 0")
            return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning(f"Roll data value for @{path} is not numeric ({value!r}); using 0")
            return 0
    return value


def parse_formula(
    formula: str,
    data: dict[str, Any] | None = None,
    resolve_references: bool = True,
) -> list[tuple[str, Any]]:
    """Split a formula into ``(operator, term)`` pairs.

    Args:
        formula: Additive roll formula, e.g. ``"2d6+@key-1"``.
        data: Values for ``@path`` references.
        resolve_references: When False, references become 0 without
            consulting ``data``.

    Returns:
        Terms in formula order, each with ``"+"`` or ``"-"``.

    Raises:
        FormulaError: If the formula is empty or has unparseable parts.
    """
    data = data or {}
    text = (formula or "").strip()
    if not text:
        raise FormulaError("Empty roll formula")

    terms: list[tuple[str, Any]] = []
    pos = 0
    while pos < len(text):
        m = _TERM_RE.match(text, pos)
        if not m or m.end() == pos:
            raise FormulaError(f"Invalid roll formula: {formula!r}")
        operator, count, faces, number, reference = m.groups()
        if operator is None and terms:
            raise FormulaError(f"Missing operator in roll formula: {formula!r}")
        operator = operator or "+"

        if faces is not None:
            if int(faces) < 1:
                raise FormulaError(f"Dice need at least one face: {formula!r}")
            term: Any = DiceTerm(number=int(count) if count else 1, faces=int(faces))
        elif number is not None:
            term = NumericTerm(float(number) if "." in number else int(number))
        else:
            value = _resolve_reference(reference, data) if resolve_references else 0
            term = NumericTerm(value, flavor=f"@{reference}")
        terms.append((operator, term))
        pos = m.end()
        while pos < len(text) and text[pos].isspace():
            pos += 1
    return terms


# ---------------------------------------------------------------------------
# Rolls
# ---------------------------------------------------------------------------

class Roll:
    """A plain additive roll."""

    def __init__(self, formula: str, data: dict[str, Any] | None = None, rng: Any = None):
        self.original_formula = formula
        self.data = dict(data or {})
        self.terms = parse_formula(formula, self.data)
        self._rng = rng or random
        self._total: float | None = None

    @classmethod
    def validate(cls, formula: str) -> bool:
        """Whether ``formula`` parses (references are not resolved)."""
        try:
            parse_formula(formula, resolve_references=False)
        except FormulaError:
            return False
        return True

    @property
    def formula(self) -> str:
        parts = []
        for index, (operator, term) in enumerate(self.terms):
            if index == 0:
                parts.append(term.formula if operator == "+" else f"-{term.formula}")
            else:
                parts.append(f"{operator} {term.formula}")
        return " ".join(parts)

    @property
    def evaluated(self) -> bool:
        return self._total is not None

    @property
    def total(self) -> float | None:
        return self._total

    @property
    def dice(self) -> list[DiceTerm]:
        return [term for _, term in self.terms if isinstance(term, DiceTerm)]

    async def evaluate(self) -> "Roll":
        """Roll every term in order and compute the total."""
        for _, term in self.terms:
            term.evaluate(self._rng)
        total = sum(term.total if op == "+" else -term.total for op, term in self.terms)
        self._total = int(total) if float(total).is_integer() else total
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialized roll payload attached to evaluated effect nodes."""
        return {
            "class": type(self).__name__,
            "formula": self.formula,
            "originalFormula": self.original_formula,
            "total": self._total,
            "evaluated": self.evaluated,
            "terms": [{"operator": op, **term.to_dict()} for op, term in self.terms],
            "data": self.data,
        }


class DamageRoll(Roll):
    """A damage roll with a primary die deciding criticals and misses.

    When crits or misses are possible, one die is split off the first dice
    term into a :class:`PrimaryDie` placed at the front of the roll. The
    primary die rolls ``1 + abs(roll_mode)`` dice, keeping the highest on
    advantage and the lowest on disadvantage, and explodes on its highest
    face when crits are allowed.

    Args:
        formula: Damage formula.
        data: Values for ``@path`` references.
        can_crit: Whether the primary die can explode into a critical.
        can_miss: Whether a natural 1 on the primary die is a miss.
        roll_mode: Positive for advantage, negative for disadvantage.
        primary_die_value: Pins the kept primary face.
        primary_die_modifier: Added to the primary face; anything above
            the highest face becomes a flat bonus term.
        rng: Random source (defaults to the ``random`` module).
    """

    def __init__(
        self,
        formula: str,
        data: dict[str, Any] | None = None,
        can_crit: bool = True,
        can_miss: bool = True,
        roll_mode: int = 0,
        primary_die_value: int | None = None,
        primary_die_modifier: int | None = None,
        rng: Any = None,
    ):
        super().__init__(formula, data, rng)
        self.can_crit = can_crit
        self.can_miss = can_miss
        self.roll_mode = roll_mode or 0
        self.primary_die_value = primary_die_value
        self.primary_die_modifier = primary_die_modifier
        self.primary_die: PrimaryDie | None = None
        self.is_critical: bool | None = None if can_crit else False
        self.is_miss: bool | None = None if can_miss else False

        if can_crit or can_miss:
            self._split_primary_die()

    def _split_primary_die(self) -> None:
        index = next((i for i, (_, t) in enumerate(self.terms) if isinstance(t, DiceTerm)), None)
        if index is None:
            return

        operator, first = self.terms[index]
        modifiers = []
        if self.roll_mode > 0:
            modifiers.append("kh")
        elif self.roll_mode < 0:
            modifiers.append("kl")
        if self.can_crit:
            modifiers.append("x")

        primary = PrimaryDie(
            number=1 + abs(self.roll_mode),
            faces=first.faces,
            modifiers=modifiers,
            flavor="Primary Die",
        )
        if first.number > 1:
            first.number -= 1
            self.terms.insert(0, ("+", primary))
        else:
            self.terms[index] = (operator, primary)
        self.primary_die = primary

    def _preset_primary(self) -> None:
        primary = self.primary_die
        if primary is None:
            return

        value = self.primary_die_value or None
        if self.primary_die_modifier:
            base = value if value is not None else self._rng.randint(1, primary.faces)
            value = max(1, base + self.primary_die_modifier)
            if value > primary.faces:
                excess = value - primary.faces
                value = primary.faces
                position = next(i for i, (_, t) in enumerate(self.terms) if t is primary)
                self.terms.insert(position + 1, ("+", NumericTerm(excess, flavor="Primary Die Overflow")))
        if value is not None:
            primary.results = [DieResult(int(value))]

    async def evaluate(self) -> "DamageRoll":
        """Roll the damage and record whether it was a critical or a miss."""
        self._preset_primary()
        await super().evaluate()

        primary = self.primary_die
        if self.can_crit:
            self.is_critical = bool(primary and primary.exploded)
        if self.can_miss:
            self.is_miss = bool(primary and primary.is_miss)
        return self

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload.update({
            "isCritical": self.is_critical,
            "isMiss": self.is_miss,
            "options": {
                "canCrit": self.can_crit,
                "canMiss": self.can_miss,
                "rollMode": self.roll_mode,
                "primaryDieValue": self.primary_die_value,
                "primaryDieModifier": self.primary_die_modifier,
            },
        })
        return payload


__all__ = [
    "MAX_EXPLOSIONS",
    "FormulaError",
    "DieResult",
    "NumericTerm",
    "DiceTerm",
    "PrimaryDie",
    "parse_formula",
    "Roll",
    "DamageRoll",
]
