"""Tests for variables_math.py."""

import pytest

from variables_math import (
    evaluate,
    format_number,
    js_round,
    sign,
    signed,
    to_char,
    to_char_lower,
    to_char_upper,
    to_romans,
    to_romans_upper,
    to_words,
    to_words_caps,
    to_words_upper,
)


# ===========================================================================
# 1. Expressions
# ===========================================================================


class TestEvaluate:
    @pytest.mark.parametrize(
        "expression, expected",
        [
            ("1 + 3 * 5 - (1 / 4)", "15.75"),
            ("4 / 2", "2"),
            ("2 + 3 ^ 2", "11"),
            ("(2 + 3) ^ 2", "25"),
            ("-(2)", "-2"),
            ("+3", "3"),
            ("  7  ", "7"),
            ("round(1/4)", "0"),
            ("round(2.5)", "3"),
            ("round(-2.5)", "-2"),
            ("floor(-0.5)", "-1"),
            ("ceil(0.2)", "1"),
            ("abs(-3.5)", "3.5"),
            ("ceil(floor(round(0.6)))", "1"),
        ],
    )
    def test_arithmetic(self, expression, expected):
        assert evaluate(expression) == expected

    @pytest.mark.parametrize(
        "expression",
        [
            "",
            "1 +",
            "min(1, 4)",
            "max(1, 4)",
            "sin(1)",
            "1 < 2",
            "1 == 1",
            "1 and 0",
            "1 if 1 else 0",
            "'text'",
            "True",
            "x + 1",
            "abs",
            "round(x=1)",
            "5 % 2",
            "5 // 2",
            "(1).real",
            "__import__('os')",
        ],
    )
    def test_disabled_or_invalid(self, expression):
        assert evaluate(expression) is None

    def test_division_by_zero(self):
        assert evaluate("1 / 0") is None

    def test_huge_power(self):
        assert evaluate("2 ^ 100000000") is None

    def test_custom_functions(self):
        assert evaluate("toRomans(18)") == "xviii"
        assert evaluate("toRomansUpper(18)") == "XVIII"
        assert evaluate("toChar(27)") == "AA"
        assert evaluate("toWordsCaps(21)") == "Twenty-One"
        assert evaluate("signed(-0.5)") == "-0.5"

    def test_custom_function_failure(self):
        assert evaluate("toRomans(0)") is None
        assert evaluate("toWords(4.5)") is None

    def test_non_positive_char_passes_through(self):
        assert evaluate("toChar(0)") == "0"


# ===========================================================================
# 2. Number formatting
# ===========================================================================


class TestFormatNumber:
    def test_integers(self):
        assert format_number(42) == "42"
        assert format_number(-3) == "-3"

    def test_whole_floats_drop_fraction(self):
        assert format_number(4.0) == "4"

    def test_fractions(self):
        assert format_number(15.75) == "15.75"

    def test_rejects_non_numbers(self):
        with pytest.raises(TypeError):
            format_number("4")
        with pytest.raises(TypeError):
            format_number(True)

    def test_rejects_non_finite(self):
        with pytest.raises(ValueError):
            format_number(float("inf"))
        with pytest.raises(ValueError):
            format_number(float("nan"))


# ===========================================================================
# 3. Formatting functions
# ===========================================================================


class TestRounding:
    def test_halves_round_up(self):
        assert js_round(0.5) == 1
        assert js_round(1.5) == 2
        assert js_round(-0.5) == 0
        assert js_round(-1.5) == -1

    def test_sign(self):
        assert sign(0) == "+"
        assert sign(5) == "+"
        assert sign(-0.1) == "-"

    def test_signed(self):
        assert signed(13) == "+13"
        assert signed(2.5) == "+2.5"
        assert signed(0) == "+0"
        assert signed(-11) == "-11"


class TestRomans:
    @pytest.mark.parametrize(
        "value, expected",
        [(1, "i"), (4, "iv"), (9, "ix"), (14, "xiv"), (18, "xviii"), (40, "xl"), (3999, "mmmcmxcix")],
    )
    def test_lowercase_by_default(self, value, expected):
        assert to_romans(value) == expected

    def test_upper(self):
        assert to_romans_upper(1994) == "MCMXCIV"

    def test_whole_float_accepted(self):
        assert to_romans(18.0) == "xviii"

    @pytest.mark.parametrize("value", [0, -1, 4000, 2.5])
    def test_out_of_range(self, value):
        with pytest.raises(ValueError):
            to_romans(value)


class TestChar:
    @pytest.mark.parametrize(
        "value, expected",
        [(1, "A"), (18, "R"), (26, "Z"), (27, "AA"), (39, "AM"), (702, "ZZ"), (703, "AAA")],
    )
    def test_labels(self, value, expected):
        assert to_char(value) == expected

    def test_non_positive_unchanged(self):
        assert to_char(0) == 0
        assert to_char(-3) == -3
        assert to_char_upper(0) == 0

    def test_case_variants(self):
        assert to_char_lower(28) == "ab"
        assert to_char_upper(28) == "AB"

    def test_largest_label(self):
        assert to_char(26 ** 20) == "Y" + "Z" * 19

    def test_too_large(self):
        with pytest.raises(ValueError):
            to_char(26 ** 20 + 1)

    def test_huge_power_fails_fast(self):
        assert evaluate("toChar(10 ^ 100000)") is None


class TestWords:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (0, "zero"),
            (7, "seven"),
            (13, "thirteen"),
            (40, "forty"),
            (101, "one hundred and one"),
            (1234, "one thousand two hundred and thirty-four"),
            (80085, "eighty thousand eighty-five"),
            (1000000, "one million"),
            (1000001, "one million one"),
            (-5, "minus five"),
        ],
    )
    def test_words(self, value, expected):
        assert to_words(value) == expected

    def test_upper(self):
        assert to_words_upper(80085) == "EIGHTY THOUSAND EIGHTY-FIVE"

    def test_caps_each_word_and_hyphen_half(self):
        assert to_words_caps(80085) == "Eighty Thousand Eighty-Five"

    def test_fraction_rejected(self):
        with pytest.raises(ValueError):
            to_words(2.5)

    def test_too_large(self):
        with pytest.raises(ValueError):
            to_words(10 ** 21)
