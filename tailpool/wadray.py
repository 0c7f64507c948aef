from contextlib import contextmanager
from decimal import Decimal

SCALE = 10**6
BPS = 10**4


def mul_div(a, b, denom):
    """Returns a * b / denom truncated toward zero.

    Python integers don't overflow, so the intermediate product is exact. If `a` is an Amount
    the result is an Amount too.
    """
    num = int(a) * int(b)
    denom = int(denom)
    result = abs(num) // abs(denom)
    if (num < 0) != (denom < 0):
        result = -result
    if isinstance(a, Amount):
        return Amount(result)
    return result


def bps_of(amount, bps):
    return mul_div(amount, bps, BPS)


class Amount(int):
    """Fixed point number with 6 decimals, the unit of every monetary value in the pool"""

    DEFAULT_EQ_PRECISION = 4

    def __mul__(self, other):
        assert isinstance(other, Amount)
        return mul_div(self, other, SCALE)

    def __floordiv__(self, other):
        assert isinstance(other, Amount)
        return mul_div(self, SCALE, other)

    def __add__(self, other):
        assert isinstance(other, Amount)
        return Amount(int(self) + int(other))

    def __sub__(self, other):
        assert isinstance(other, Amount)
        return Amount(int(self) - int(other))

    def __neg__(self):
        return Amount(-int(self))

    def __abs__(self):
        return Amount(abs(int(self)))

    def __str__(self):
        return str(Decimal(int(self)) / Decimal(SCALE))

    def __repr__(self):
        return str(Decimal(int(self)) / Decimal(SCALE))

    def equal(self, other, decimals=None):
        if decimals is None:
            decimals = self.DEFAULT_EQ_PRECISION
        return abs(int(other) - int(self)) < (10**(6-decimals))

    def assert_equal(self, other, decimals=None):
        if decimals is None:
            decimals = self.DEFAULT_EQ_PRECISION
        diff = abs(int(other) - int(self))
        max_diff = (10**(6-decimals))
        assert diff < max_diff, f"{self} != {other} diff {int(self) - int(other)}"

    @classmethod
    def from_value(cls, value):
        if type(value) == cls:
            return value
        if type(value) == str:
            value = Decimal(value)
        elif type(value) == float:
            value = Decimal(repr(value))
        return cls(int(value * SCALE))

    @classmethod
    def from_raw(cls, value):
        """Builds an Amount from an already scaled integer"""
        return cls(int(value))

    def to_decimal(self):
        return Decimal(int(self)) / Decimal(SCALE)


_A = Amount.from_value


@contextmanager
def set_precision(cls, precision):
    old_precision = cls.DEFAULT_EQ_PRECISION
    cls.DEFAULT_EQ_PRECISION = precision
    try:
        yield
    finally:
        cls.DEFAULT_EQ_PRECISION = old_precision
