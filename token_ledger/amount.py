"""
Fixed-Width Amount Arithmetic

Token amounts are plain Python ints constrained to an unsigned fixed width
(256 bits by default). Python ints never wrap, so every addition is checked
explicitly against the width and reported as Overflow instead of growing
past what a fixed-width ledger could represent.
"""

from dataclasses import dataclass

from .errors import InvalidAmount, Overflow


MIN_AMOUNT_BITS = 64


@dataclass(frozen=True)
class AmountType:
    """
    Unsigned integer type of a fixed bit width.
    All ledger arithmetic goes through one instance of this class.
    """
    bits: int = 256

    def __post_init__(self):
        if isinstance(self.bits, bool) or not isinstance(self.bits, int):
            raise TypeError("Amount width must be an int")
        if self.bits < MIN_AMOUNT_BITS:
            raise ValueError(f"Amount width must be at least {MIN_AMOUNT_BITS} bits")
        if self.bits % 8 != 0:
            raise ValueError("Amount width must be a multiple of 8 bits")

    @property
    def max_value(self) -> int:
        """Largest representable amount"""
        return (1 << self.bits) - 1

    def validate(self, value: int) -> int:
        """
        Validate an externally supplied amount

        Raises:
            TypeError: If value is not an int (bool is rejected too)
            InvalidAmount: If value is negative or wider than this type
        """
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"Amount must be an int, got {type(value).__name__}")
        if value < 0 or value > self.max_value:
            raise InvalidAmount(value, self.max_value)
        return value

    def checked_add(self, current: int, increment: int) -> int:
        """Add two amounts, raising Overflow past max_value"""
        if increment > self.max_value - current:
            raise Overflow(current, increment, self.max_value)
        return current + increment

    def checked_sub(self, current: int, decrement: int) -> int:
        """
        Subtract two amounts.

        Callers guard every subtraction with a balance or allowance
        precondition; reaching the error branch means that guard was skipped.
        """
        if decrement > current:
            raise ValueError(f"Amount underflow: {current} - {decrement}")
        return current - decrement

    def to_storage(self, value: int) -> str:
        """Amounts are stored as decimal strings"""
        return str(value)

    def from_storage(self, raw: str) -> int:
        value = int(raw)
        if value < 0 or value > self.max_value:
            raise ValueError(f"Stored amount {raw} is outside the {self.bits}-bit range")
        return value


UINT256 = AmountType(256)
UINT64 = AmountType(64)
