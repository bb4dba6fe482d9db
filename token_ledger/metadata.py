"""
Token Metadata

Name, symbol and decimals are stored for display only; the ledger itself
works in integer base units. parse_units and format_units convert between
human-readable decimal strings and base units using Decimal, never float.
"""

from decimal import Decimal, InvalidOperation, localcontext
from dataclasses import dataclass
from typing import Dict, Union


MAX_DECIMALS = 77  # 10**77 is the largest power of ten below 2**256


@dataclass(frozen=True)
class TokenMetadata:
    """Human-readable token description"""
    name: str = "token"
    symbol: str = "TKN"
    decimals: int = 18

    def __post_init__(self):
        if not self.name:
            raise ValueError("Token name is required")
        if not self.symbol:
            raise ValueError("Token symbol is required")
        if isinstance(self.decimals, bool) or not isinstance(self.decimals, int):
            raise TypeError("Token decimals must be an int")
        if not 0 <= self.decimals <= MAX_DECIMALS:
            raise ValueError(f"Token decimals must be between 0 and {MAX_DECIMALS}")

    @property
    def unit(self) -> int:
        """Base units in one whole token"""
        return 10 ** self.decimals

    def parse_units(self, value: Union[str, int, Decimal]) -> int:
        """
        Convert a whole-token amount to base units

        Args:
            value: Decimal string such as "5" or "0.25", an int, or a Decimal

        Returns:
            Amount in base units

        Raises:
            ValueError: If value is malformed, negative, or has more
                fractional digits than the token supports
        """
        if isinstance(value, bool) or isinstance(value, float):
            raise TypeError("Token amounts must not be given as float or bool")
        try:
            amount = Decimal(value.strip() if isinstance(value, str) else value)
        except InvalidOperation:
            raise ValueError(f"Cannot convert '{value}' to a token amount")
        if not amount.is_finite():
            raise ValueError(f"Token amount must be finite, got {value}")
        if amount < 0:
            raise ValueError(f"Token amount must be non-negative, got {value}")

        with localcontext() as ctx:
            ctx.prec = 200
            scaled = amount.scaleb(self.decimals)
            if scaled != scaled.to_integral_value():
                raise ValueError(
                    f"{value} has more than {self.decimals} fractional digits"
                )
            return int(scaled)

    def format_units(self, amount: int) -> str:
        """Render base units as a whole-token decimal string"""
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise TypeError("Amount must be an int")
        if amount < 0:
            raise ValueError("Amount must be non-negative")
        whole, fraction = divmod(amount, self.unit)
        if self.decimals == 0 or fraction == 0:
            return str(whole)
        digits = str(fraction).rjust(self.decimals, '0').rstrip('0')
        return f"{whole}.{digits}"

    def to_dict(self) -> Dict[str, Union[str, int]]:
        return {"name": self.name, "symbol": self.symbol, "decimals": self.decimals}
