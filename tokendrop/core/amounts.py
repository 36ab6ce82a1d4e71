# tokendrop/core/amounts.py
"""Fixed-point token amounts: integer smallest units tagged with their decimals."""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Union

MAX_UINT256 = 2 ** 256 - 1


@dataclass(frozen=True)
class TokenAmount:
    """
    An on-chain token quantity.

    Attributes:
        units: Amount in the token's smallest unit (arbitrary precision int)
        decimals: Number of decimals of the token (6 for USDC, 18 for most ERC20s)
    """
    units: int
    decimals: int

    def __post_init__(self):
        if isinstance(self.units, bool) or not isinstance(self.units, int):
            raise TypeError(f"units must be an int, got {type(self.units).__name__}")
        if self.units < 0:
            raise ValueError("units must be non-negative")
        if self.decimals < 0:
            raise ValueError("decimals must be non-negative")

    @classmethod
    def from_decimal(cls, value: Union[str, int, Decimal], decimals: int) -> "TokenAmount":
        """
        Build an amount from a human readable value, e.g. ("2", 6) -> 2000000.

        Floats are rejected; pass a string instead.

        Raises:
            TypeError: If value is a float
            ValueError: If value is not a number or has more decimals than the token
        """
        if isinstance(value, float):
            raise TypeError("float amounts are not accepted, use a string or Decimal")
        try:
            scaled = Decimal(value).scaleb(decimals)
        except InvalidOperation as e:
            raise ValueError(f"not a decimal amount: {value!r}") from e
        if scaled != scaled.to_integral_value():
            raise ValueError(f"{value} has more than {decimals} decimal places")
        return cls(units=int(scaled), decimals=decimals)

    def to_decimal(self) -> Decimal:
        return Decimal(self.units).scaleb(-self.decimals)

    def __str__(self) -> str:
        return format(self.to_decimal().normalize(), "f")
