"""
Tests for the builtin operation table
"""

import pytest

from operations import OPERATIONS
from values import (
    FALSE,
    TRUE,
    TYPE_BLOCK,
    UNIT,
    BlockRef,
    DivisionByZero,
    MachinaRuntimeError,
    NoMatchingCase,
    TypeMismatch,
    Value,
    make_int,
    make_str,
    render,
)


def invoke(name, *args):
    return OPERATIONS.invoke(name, list(args))


def block(label, index=0):
    return Value(TYPE_BLOCK, BlockRef(label, index, "main", "f_0000"))


class TestArithmetic:
    def test_add_sub_mul(self):
        assert invoke("add", make_int(2), make_int(3)) == make_int(5)
        assert invoke("sub", make_int(2), make_int(3)) == make_int(-1)
        assert invoke("mul", make_int(-4), make_int(3)) == make_int(-12)

    def test_mod(self):
        assert invoke("mod", make_int(15), make_int(4)) == make_int(3)

    def test_division_truncates_toward_zero(self):
        assert invoke("div", make_int(-7), make_int(2)) == make_int(-3)
        assert invoke("mod", make_int(-7), make_int(2)) == make_int(-1)
        assert invoke("mod", make_int(7), make_int(-2)) == make_int(1)

    @pytest.mark.parametrize("name", ["mod", "div"])
    def test_zero_divisor(self, name):
        with pytest.raises(DivisionByZero):
            invoke(name, make_int(1), make_int(0))

    def test_string_arithmetic_is_a_type_mismatch(self):
        with pytest.raises(TypeMismatch):
            invoke("add", make_str("1"), make_int(1))

    def test_boolean_arithmetic_is_a_type_mismatch(self):
        with pytest.raises(TypeMismatch):
            invoke("sub", TRUE, make_int(1))


class TestComparisons:
    def test_ordering(self):
        assert invoke("lt", make_int(1), make_int(2)) == TRUE
        assert invoke("lte", make_int(2), make_int(2)) == TRUE
        assert invoke("gt", make_int(1), make_int(2)) == FALSE
        assert invoke("gte", make_int(1), make_int(2)) == FALSE

    def test_equality(self):
        assert invoke("eq", make_int(0), make_int(0)) == TRUE
        assert invoke("neq", make_int(0), make_int(0)) == FALSE
        assert invoke("eq", make_str("a"), make_str("a")) == TRUE
        assert invoke("eq", TRUE, make_int(1)) == TRUE

    def test_mixed_equality_is_a_type_mismatch(self):
        with pytest.raises(TypeMismatch):
            invoke("eq", make_str("1"), make_int(1))

    def test_ordering_rejects_strings(self):
        with pytest.raises(TypeMismatch):
            invoke("lt", make_str("a"), make_str("b"))


class TestLogic:
    def test_and_coerces_integers(self):
        assert invoke("and", TRUE, make_int(5)) == TRUE
        assert invoke("and", TRUE, make_int(0)) == FALSE

    def test_or_xor_not(self):
        assert invoke("or", FALSE, make_int(0)) == FALSE
        assert invoke("xor", TRUE, FALSE) == TRUE
        assert invoke("not", make_int(0)) == TRUE

    def test_and_rejects_strings(self):
        with pytest.raises(TypeMismatch):
            invoke("and", make_str("yes"), TRUE)


class TestCase:
    def test_first_true_condition_wins(self):
        result = invoke("case", FALSE, block("L0"), TRUE, block("L1"), TRUE, block("L2"))
        assert result.value.label == "L1"

    def test_switch_is_the_same_construct(self):
        result = invoke("switch", make_int(0), block("A"), make_int(3), block("B"))
        assert result.value.label == "B"

    def test_no_match(self):
        with pytest.raises(NoMatchingCase):
            invoke("case", FALSE, block("L0"), make_int(0), block("L1"))

    def test_condition_must_be_boolean_like(self):
        with pytest.raises(TypeMismatch):
            invoke("case", make_str("x"), block("L0"))


class TestRendering:
    def test_render(self):
        assert render(make_int(-12)) == "-12"
        assert render(make_str("Fizz")) == "Fizz"
        assert render(TRUE) == "1"
        assert render(FALSE) == "0"
        assert render(UNIT) == ""
        assert render(block("L1")) == "<block L1>"

    def test_operation_arity_is_checked(self):
        with pytest.raises(MachinaRuntimeError) as info:
            invoke("add", make_int(1))
        assert "expects 2 operands" in str(info.value)
