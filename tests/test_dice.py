"""Tests for roll formulas, plain rolls and damage rolls."""

import pytest

from nimble_effects.dice import DamageRoll, FormulaError, NumericTerm, PrimaryDie, Roll, parse_formula


class ScriptedRng:
    """Random source returning preset die faces in order."""

    def __init__(self, *faces: int):
        self.faces = list(faces)
        self.calls: list[tuple[int, int]] = []

    def randint(self, low: int, high: int) -> int:
        self.calls.append((low, high))
        return self.faces.pop(0)


class TestParseFormula:
    """Test formula tokenizing."""

    def test_dice_numbers_and_operators(self):
        terms = parse_formula("2d6 + 3 - d4")

        assert [op for op, _ in terms] == ["+", "+", "-"]
        assert (terms[0][1].number, terms[0][1].faces) == (2, 6)
        assert terms[1][1].number == 3
        assert (terms[2][1].number, terms[2][1].faces) == (1, 4)

    def test_reference_resolution(self):
        terms = parse_formula("1d6+@abilities.strength.mod", {"abilities": {"strength": {"mod": 3}}})

        ref = terms[1][1]
        assert isinstance(ref, NumericTerm)
        assert ref.number == 3
        assert ref.flavor == "@abilities.strength.mod"

    def test_missing_reference_is_zero(self):
        terms = parse_formula("1d6+@level", {})
        assert terms[1][1].number == 0

    @pytest.mark.parametrize("formula", ["", "   ", "2d6 banana", "2d0", "3 4", "1d6+", "2d6*2"])
    def test_invalid(self, formula):
        with pytest.raises(FormulaError):
            parse_formula(formula)


class TestRoll:
    """Test plain additive rolls."""

    @pytest.mark.anyio
    async def test_total(self):
        roll = await Roll("2d6+3", rng=ScriptedRng(4, 5)).evaluate()

        assert roll.evaluated
        assert roll.total == 12

    @pytest.mark.anyio
    async def test_subtraction_and_reference(self):
        roll = Roll("1d8-@penalty", {"penalty": 2}, rng=ScriptedRng(7))
        await roll.evaluate()
        assert roll.total == 5

    def test_unevaluated(self):
        roll = Roll("1d6")
        assert not roll.evaluated
        assert roll.total is None

    def test_validate(self):
        assert Roll.validate("1d6+2")
        assert Roll.validate("1d6+@missing")
        assert not Roll.validate("fire")

    @pytest.mark.anyio
    async def test_to_dict(self):
        roll = await Roll("1d4+1", rng=ScriptedRng(2)).evaluate()
        data = roll.to_dict()

        assert data["class"] == "Roll"
        assert data["originalFormula"] == "1d4+1"
        assert data["total"] == 3
        assert data["terms"][0]["results"][0]["result"] == 2


class TestDamageRoll:
    """Test primary die splitting, crits and misses."""

    def test_primary_die_split_from_first_dice_term(self):
        roll = DamageRoll("2d6+1")

        assert isinstance(roll.terms[0][1], PrimaryDie)
        assert roll.terms[0][1].formula == "1d6x"
        assert roll.terms[1][1].number == 1
        assert roll.formula == "1d6x + 1d6 + 1"

    def test_single_die_replaced_by_primary(self):
        roll = DamageRoll("3+1d8")
        assert roll.formula == "3 + 1d8x"

    @pytest.mark.anyio
    async def test_critical_explodes(self):
        roll = await DamageRoll("2d6", rng=ScriptedRng(6, 3, 2)).evaluate()

        assert roll.is_critical
        assert not roll.is_miss
        assert roll.total == 11

    @pytest.mark.anyio
    async def test_miss_on_natural_one(self):
        roll = await DamageRoll("1d8+2", rng=ScriptedRng(1)).evaluate()

        assert roll.is_miss
        assert not roll.is_critical
        assert roll.total == 3

    @pytest.mark.anyio
    async def test_cannot_miss(self):
        roll = await DamageRoll("1d8", can_miss=False, rng=ScriptedRng(1)).evaluate()
        assert roll.is_miss is False

    @pytest.mark.anyio
    async def test_cannot_crit_does_not_explode(self):
        rng = ScriptedRng(8)
        roll = await DamageRoll("1d8", can_crit=False, rng=rng).evaluate()

        assert roll.is_critical is False
        assert roll.total == 8
        assert len(rng.calls) == 1

    @pytest.mark.anyio
    async def test_advantage_keeps_highest(self):
        roll = await DamageRoll("1d8", roll_mode=1, rng=ScriptedRng(2, 7)).evaluate()

        assert roll.terms[0][1].formula == "2d8khx"
        assert roll.total == 7
        assert not roll.is_miss

    @pytest.mark.anyio
    async def test_disadvantage_keeps_lowest(self):
        roll = await DamageRoll("1d8", roll_mode=-1, rng=ScriptedRng(1, 5)).evaluate()

        assert roll.total == 1
        assert roll.is_miss

    @pytest.mark.anyio
    async def test_pinned_primary_die_value(self):
        rng = ScriptedRng(5)
        roll = await DamageRoll("1d8", primary_die_value=8, rng=rng).evaluate()

        assert roll.is_critical
        assert roll.total == 13
        assert len(rng.calls) == 1

    @pytest.mark.anyio
    async def test_pinned_value_without_modifier_has_no_overflow(self):
        roll = await DamageRoll("1d8", can_crit=False, primary_die_value=11).evaluate()

        assert len(roll.terms) == 1
        assert roll.terms[0][1].results[0].result == 11
        assert roll.total == 11

    @pytest.mark.anyio
    async def test_primary_die_modifier_overflow(self):
        """Anything past the highest face becomes a flat bonus."""
        roll = DamageRoll("1d6", can_crit=False, primary_die_value=5, primary_die_modifier=3)
        await roll.evaluate()

        assert roll.terms[0][1].results[0].result == 6
        assert isinstance(roll.terms[1][1], NumericTerm)
        assert roll.terms[1][1].number == 2
        assert roll.total == 8

    @pytest.mark.anyio
    async def test_primary_die_modifier_floor(self):
        roll = DamageRoll("1d6", primary_die_value=2, primary_die_modifier=-5)
        await roll.evaluate()

        assert roll.terms[0][1].results[0].result == 1
        assert roll.is_miss

    @pytest.mark.anyio
    async def test_no_dice(self):
        roll = await DamageRoll("5").evaluate()

        assert roll.total == 5
        assert roll.primary_die is None
        assert roll.is_critical is False
        assert roll.is_miss is False

    @pytest.mark.anyio
    async def test_to_dict_flags(self):
        roll = await DamageRoll("1d6", can_crit=False, rng=ScriptedRng(3)).evaluate()
        data = roll.to_dict()

        assert data["class"] == "DamageRoll"
        assert data["isCritical"] is False
        assert data["isMiss"] is False
        assert data["options"]["canCrit"] is False
