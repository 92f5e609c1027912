from decimal import Decimal, InvalidOperation
from typing import Union

from errors import OutOfRange

MAX_AMOUNT = 99_999_999

Number = Union[int, float, Decimal, str]


class AmountCodec:
    """Converts between currency amounts and stored minor units.

    In ``integer`` mode a stored unit is one whole currency unit; in
    ``decimal`` mode it is one cent. Every column holds minor units so the
    engine never branches on the representation.
    """

    def __init__(self, mode: str = "integer") -> None:
        if mode == "integer":
            self.scale = 1
            self.places = 0
        elif mode == "decimal":
            self.scale = 100
            self.places = 2
        else:
            raise ValueError(f"Unsupported amount mode: {mode}")
        self.mode = mode

    @property
    def max_units(self) -> int:
        return MAX_AMOUNT * self.scale

    def parse(self, value: Number, *, allow_zero: bool = True) -> int:
        if isinstance(value, bool):
            raise OutOfRange("Amount must be a number")
        try:
            amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise OutOfRange("Amount must be a number") from exc
        if not amount.is_finite():
            raise OutOfRange("Amount must be a finite number")
        if amount < 0 or amount > MAX_AMOUNT:
            raise OutOfRange(f"Amount must be between 0 and {MAX_AMOUNT}")
        if not allow_zero and amount == 0:
            raise OutOfRange("Amount must be positive")
        units = amount * self.scale
        if units != units.to_integral_value():
            if self.places == 0:
                raise OutOfRange("Amount must be a whole number")
            raise OutOfRange(f"Amount supports at most {self.places} decimal places")
        return int(units)

    def to_amount(self, units: int) -> Union[int, float]:
        if self.scale == 1:
            return int(units)
        return round(units / self.scale, self.places)
