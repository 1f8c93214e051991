"""Exact token amount arithmetic.

ERC-20 balances are integers in the smallest unit of a token ("raw units").
Humans think in decimal units, e.g. ``1.5 USDC`` is ``1_500_000`` raw units
because USDC has 6 decimals.

- Never use float for token amounts: conversion goes through :py:class:`decimal.Decimal`

- A human amount that cannot be represented exactly in raw units is an error, not rounded

Example:

.. code-block:: python

    amount = TokenAmount.from_human("1.5", 6)
    assert amount.raw == 1_500_000
    assert amount.to_human() == Decimal("1.5")
"""

from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import TypeAlias

#: Human amount inputs we accept.
#: Float is deliberately not here.
HumanAmount: TypeAlias = Decimal | int | str

#: ERC-20 tokens use uint8 for decimals
MAX_DECIMALS = 255

#: ERC-20 balances are uint256
MAX_RAW_AMOUNT = 2**256 - 1

#: Digits in MAX_RAW_AMOUNT
_MAX_RAW_DIGITS = len(str(MAX_RAW_AMOUNT))


def _validate_decimals(decimals: int):
    assert type(decimals) == int, f"Decimals must be int, got {type(decimals)}: {decimals}"
    assert 0 <= decimals <= MAX_DECIMALS, f"Bad decimals: {decimals}"


def to_raw(value: HumanAmount, decimals: int) -> int:
    """Convert a human-readable token amount to raw units.

    :param value:
        Decimal, int or a decimal string like ``"10.25"``

    :param decimals:
        Token decimals

    :raise ValueError:
        If the value is negative, not a number, does not fit uint256 in raw units,
        or has more fractional digits than the token has decimals.
    """
    _validate_decimals(decimals)

    if isinstance(value, float):
        raise TypeError(f"Float amounts are not accepted, got {value}. Use Decimal or a string.")

    if isinstance(value, bool):
        raise TypeError(f"Not an amount: {value}")

    try:
        decimal_value = Decimal(value)
    except ArithmeticError as e:
        raise ValueError(f"Not a decimal amount: {value!r}") from e

    if not decimal_value.is_finite():
        raise ValueError(f"Not a finite amount: {value!r}")

    if decimal_value < 0:
        raise ValueError(f"Token amounts cannot be negative: {value}")

    if decimal_value == 0:
        return 0

    # Refuse before scaling, 1e999999999 would build a billion digit integer
    if decimal_value.adjusted() + decimals >= _MAX_RAW_DIGITS:
        raise ValueError(f"Amount {value} does not fit uint256 with {decimals} decimals")

    # Scaling must not lose digits to the context precision
    with localcontext() as ctx:
        ctx.prec = max(len(decimal_value.as_tuple().digits) + decimals + 2, 28)
        scaled = decimal_value.scaleb(decimals)

    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {value} has more than {decimals} fractional digits")

    raw = int(scaled)
    if raw > MAX_RAW_AMOUNT:
        raise ValueError(f"Amount {value} does not fit uint256 with {decimals} decimals")

    return raw


def to_human(raw: int, decimals: int) -> Decimal:
    """Convert raw token units to an exact decimal amount.

    Trailing zeros are stripped, so ``to_human(1_500_000, 6) == Decimal("1.5")``.
    """
    _validate_decimals(decimals)
    assert type(raw) == int, f"Raw amount must be int, got {type(raw)}: {raw}"

    with localcontext() as ctx:
        ctx.prec = max(len(str(abs(raw))) + decimals + 2, 28)
        value = Decimal(raw).scaleb(-decimals)
        if value == 0:
            return Decimal(0)
        return value.normalize()


def format_amount(raw: int, decimals: int) -> str:
    """Format raw units as a plain decimal string without exponent notation.

    Display only.
    """
    return f"{to_human(raw, decimals):f}"


@dataclass(frozen=True, slots=True)
class TokenAmount:
    """An exact non-negative token amount.

    The raw integer is the source of truth. Human-readable forms are derived for display.
    """

    #: Amount in the token smallest unit
    raw: int

    #: The token decimals this amount is denominated with
    decimals: int

    def __post_init__(self):
        _validate_decimals(self.decimals)
        assert type(self.raw) == int, f"Raw amount must be int, got {type(self.raw)}: {self.raw}"
        if self.raw < 0:
            raise ValueError(f"Token amounts cannot be negative: {self.raw}")

    def __str__(self):
        return format_amount(self.raw, self.decimals)

    @classmethod
    def from_human(cls, value: HumanAmount, decimals: int) -> "TokenAmount":
        """Construct from a human-readable amount.

        ``raw = value * 10**decimals``, exactly.
        """
        return cls(to_raw(value, decimals), decimals)

    def to_human(self) -> Decimal:
        """Exact decimal value in token units."""
        return to_human(self.raw, self.decimals)

    def __add__(self, other: "TokenAmount") -> "TokenAmount":
        self._check_compatible(other)
        return TokenAmount(self.raw + other.raw, self.decimals)

    def __sub__(self, other: "TokenAmount") -> "TokenAmount":
        """Difference of two amounts.

        :raise ValueError:
            If the result would be negative
        """
        self._check_compatible(other)
        return TokenAmount(self.raw - other.raw, self.decimals)

    def __lt__(self, other: "TokenAmount") -> bool:
        self._check_compatible(other)
        return self.raw < other.raw

    def __le__(self, other: "TokenAmount") -> bool:
        self._check_compatible(other)
        return self.raw <= other.raw

    def _check_compatible(self, other: "TokenAmount"):
        assert isinstance(other, TokenAmount), f"Expected TokenAmount, got {type(other)}"
        assert other.decimals == self.decimals, f"Decimal mismatch: {self.decimals} vs. {other.decimals}"
