"""
Outcome values and wheel categories.

An outcome is one of the integers 0-36 or the double-zero sentinel "00"
(American wheel). Outcomes are used both as data and as map keys; the key
form is always ``str(value)``.
"""

from typing import Literal, Union

DOUBLE_ZERO = "00"

OutcomeValue = Union[int, Literal["00"]]

# Natural enumeration order: 0, 1..36, "00"
ALL_OUTCOMES: tuple[OutcomeValue, ...] = (0, *range(1, 37), DOUBLE_ZERO)

OUTCOME_KEYS: tuple[str, ...] = tuple(str(v) for v in ALL_OUTCOMES)

NATURAL_ORDER: dict[str, int] = {key: i for i, key in enumerate(OUTCOME_KEYS)}

RED_NUMBERS = frozenset({1, 3, 5, 7, 9, 12, 14, 16, 18, 19, 21, 23, 25, 27, 30, 32, 34, 36})
BLACK_NUMBERS = frozenset({2, 4, 6, 8, 10, 11, 13, 15, 17, 20, 22, 24, 26, 28, 29, 31, 33, 35})

ZERO_GROUP = "zero"

# Bet groups shown on the board. Zeros belong to none of them.
BET_GROUPS: dict[str, tuple[int, ...]] = {
    "1st 12": tuple(range(1, 13)),
    "2nd 12": tuple(range(13, 25)),
    "3rd 12": tuple(range(25, 37)),
    "1-18": tuple(range(1, 19)),
    "19-36": tuple(range(19, 37)),
    "EVEN": tuple(range(2, 37, 2)),
    "ODD": tuple(range(1, 37, 2)),
    "RED": tuple(sorted(RED_NUMBERS)),
    "BLACK": tuple(sorted(BLACK_NUMBERS)),
}


class InvalidOutcomeError(ValueError):
    """Raised when a value is not a valid roulette outcome."""


def parse_outcome(raw) -> OutcomeValue:
    """
    Coerce a raw value into an OutcomeValue.

    Accepts ints 0-36, integral floats (JSON numbers round-tripped through a
    dynamically typed server), numeric strings and "00".

    Raises:
        InvalidOutcomeError: If the value is not a roulette outcome
    """
    if isinstance(raw, bool):
        raise InvalidOutcomeError(f"Not a roulette outcome: {raw!r}")

    if isinstance(raw, str):
        text = raw.strip()
        if text == DOUBLE_ZERO:
            return DOUBLE_ZERO
        # Canonical decimal only: "000" or "07" are not outcome keys
        if not (text.isascii() and text.isdigit()) or (len(text) > 1 and text[0] == "0"):
            raise InvalidOutcomeError(f"Not a roulette outcome: {raw!r}")
        raw = int(text)
    elif isinstance(raw, float):
        if not raw.is_integer():
            raise InvalidOutcomeError(f"Not a roulette outcome: {raw!r}")
        raw = int(raw)

    if isinstance(raw, int) and 0 <= raw <= 36:
        return raw

    raise InvalidOutcomeError(f"Not a roulette outcome: {raw!r}")


def is_outcome(raw) -> bool:
    """Check whether a raw value parses as an outcome."""
    try:
        parse_outcome(raw)
    except InvalidOutcomeError:
        return False
    return True


def outcome_key(value: OutcomeValue) -> str:
    """Map key for an outcome."""
    return str(value)


def is_zero(value: OutcomeValue) -> bool:
    """0 and "00" are the green pockets."""
    return value == 0 or value == DOUBLE_ZERO


def color_of(value: OutcomeValue) -> str:
    """red / black / zero"""
    if is_zero(value):
        return ZERO_GROUP
    return "red" if value in RED_NUMBERS else "black"


def column_of(value: OutcomeValue) -> str:
    """column1 / column2 / column3 / zero"""
    if is_zero(value):
        return ZERO_GROUP
    return f"column{(value - 1) % 3 + 1}"


def dozen_of(value: OutcomeValue) -> str:
    """dozen1 / dozen2 / dozen3 / zero"""
    if is_zero(value):
        return ZERO_GROUP
    return f"dozen{(value - 1) // 12 + 1}"


def groups_of(value: OutcomeValue) -> tuple[str, str, str]:
    """
    Category memberships of an outcome, one per dimension.

    Group names are qualified by their dimension so the zero pseudo-group of
    each dimension is accumulated separately.

    Returns:
        (color group, column group, dozen group)
    """
    return (
        f"color:{color_of(value)}",
        f"column:{column_of(value)}",
        f"dozen:{dozen_of(value)}",
    )
