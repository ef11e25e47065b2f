import ast
import functools
import logging
import math
import operator
import re

import roman
from num2words import num2words
from simpleeval import FeatureNotAvailable, SimpleEval, safe_power

log = logging.getLogger("mkdocs.hooks")

# ---------------------------------------------------------------------------
# Restricted math for $[...] calls
# ---------------------------------------------------------------------------
#
#   $[1 + 3 * 5 - (1 / 4)]     -> 15.75
#   $[round(1/4)]              -> 0
#   $[2 ^ 3]                   -> 8
#   $[toRomansUpper(14)]       -> XIV
#   $[toWordsCaps(21)]         -> Twenty-One
#
# Only numbers, + - * / ^, unary signs, parentheses and the whitelisted
# functions below are accepted.  Names, strings, comparisons, boolean logic,
# conditionals, subscripts, attribute access and keyword arguments are all
# rejected by the evaluator, and any failure simply means "no result".
# ---------------------------------------------------------------------------

_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"

# toChar labels stop at twenty letters
_MAX_CHAR_INPUT = 26 ** 20

_MAX_ROMAN = 3999
_MAX_WORDS = 10 ** 21

# num2words puts "and" before any trailing group below a hundred
_STRAY_AND_RE = re.compile(r"(?<!hundred) and ")


def _numeric(func):
    """Reject anything that is not a plain int or float before calling func."""

    @functools.wraps(func)
    def wrapper(*args):
        for arg in args:
            if isinstance(arg, bool) or not isinstance(arg, (int, float)):
                raise TypeError(f"{func.__name__}() expects numbers, got {arg!r}")
        return func(*args)

    return wrapper


def _whole_number(value):
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{value} is not a whole number")
        return int(value)
    return value


def format_number(value):
    """
    Render a math result the way it is written in a document: whole floats
    drop their trailing ``.0``, everything else uses its shortest repr.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{value!r} is not a number")
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"{value} is not a finite number")
        if value.is_integer():
            return str(int(value))
    return str(value)


# ---------------------------------------------------------------------------
# Built-in functions
# ---------------------------------------------------------------------------


def js_round(value):
    # Halves round up, towards positive infinity.
    return math.floor(value + 0.5)


def sign(value):
    return "+" if value >= 0 else "-"


def signed(value):
    if value >= 0:
        return f"+{format_number(value)}"
    return format_number(value)


def to_romans(value):
    """Roman numerals for 1..3999, lowercase by default."""
    number = _whole_number(value)
    if number <= 0 or number > _MAX_ROMAN:
        raise ValueError(f"{value} has no Roman numeral form")
    return roman.toRoman(number).lower()


def to_romans_upper(value):
    return to_romans(value).upper()


def to_romans_lower(value):
    return to_romans(value).lower()


def to_char(value):
    """
    Alphabetic label for a positive integer: 1 -> A, 26 -> Z, 27 -> AA.
    Non-positive input is returned unchanged.
    """
    if value <= 0:
        return value
    number = _whole_number(value)
    if number > _MAX_CHAR_INPUT:
        raise ValueError(f"{value} is too large for a letter label")

    letters = []
    while number > 0:
        number, remainder = divmod(number - 1, 26)
        letters.append(_ALPHABET[remainder])
    letters.reverse()
    return "".join(letters)


def to_char_upper(value):
    label = to_char(value)
    return label.upper() if isinstance(label, str) else label


def to_char_lower(value):
    label = to_char(value)
    return label.lower() if isinstance(label, str) else label


def to_words(value):
    """Spell out a whole number in English: 80085 -> eighty thousand eighty-five."""
    number = _whole_number(value)
    if number < 0:
        return f"minus {to_words(-number)}"
    if number >= _MAX_WORDS:
        raise ValueError(f"{value} is too large to spell out")

    words = num2words(number).replace(",", "")
    return _STRAY_AND_RE.sub(" ", words)


def to_words_upper(value):
    return to_words(value).upper()


def to_words_lower(value):
    return to_words(value).lower()


def to_words_caps(value):
    # Hyphenated halves are capitalised too: Eighty-Five
    return re.sub(r"\b(\w)", lambda m: m.group(1).upper(), to_words(value))


OPERATORS = {
    ast.Add: _numeric(operator.add),
    ast.Sub: _numeric(operator.sub),
    ast.Mult: _numeric(operator.mul),
    ast.Div: _numeric(operator.truediv),
    ast.Pow: _numeric(safe_power),
    ast.USub: _numeric(operator.neg),
    ast.UAdd: _numeric(operator.pos),
}

FUNCTIONS = {
    "round": _numeric(js_round),
    "floor": _numeric(math.floor),
    "ceil": _numeric(math.ceil),
    "abs": _numeric(abs),
    "sign": _numeric(sign),
    "signed": _numeric(signed),
    "toRomans": _numeric(to_romans),
    "toRomansUpper": _numeric(to_romans_upper),
    "toRomansLower": _numeric(to_romans_lower),
    "toChar": _numeric(to_char),
    "toCharUpper": _numeric(to_char_upper),
    "toCharLower": _numeric(to_char_lower),
    "toWords": _numeric(to_words),
    "toWordsUpper": _numeric(to_words_upper),
    "toWordsLower": _numeric(to_words_lower),
    "toWordsCaps": _numeric(to_words_caps),
}

# Everything else (Compare, BoolOp, IfExp, Subscript, Attribute, keyword,
# f-strings, comprehensions) raises FeatureNotAvailable.
_ALLOWED_NODES = (ast.Name, ast.UnaryOp, ast.BinOp, ast.Call, ast.Constant)


class MathEvaluator(SimpleEval):
    """SimpleEval limited to numeric constants and the whitelisted nodes."""

    def __init__(self):
        super().__init__(operators=OPERATORS, functions=FUNCTIONS, names={})
        self.nodes = {
            node: handler
            for node, handler in self.nodes.items()
            if node in _ALLOWED_NODES
        }

    def _eval_constant(self, node):
        value = node.value
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise FeatureNotAvailable(f"Constant {value!r} is not a number")
        return value

    def evaluate(self, expression):
        # ^ is power, with power's precedence
        expression = expression.strip().replace("^", "**")
        tree = ast.parse(expression, mode="eval")
        return self.eval(expression, previously_parsed=tree.body)


_evaluator = MathEvaluator()


def evaluate(expression):
    """
    Evaluate a restricted math expression.

    Returns the result as a string (numbers rendered by format_number), or
    None when the expression cannot be evaluated for any reason.
    """
    try:
        result = _evaluator.evaluate(expression)
        if isinstance(result, str):
            return result
        return format_number(result)
    except Exception as e:
        log.debug(f"[variables] Math expression {expression!r} not evaluated: {e}")
        return None
