from m9g import Model
from m9g.fields import IntField

from .contracts import ValidationError, require
from .wadray import BPS, SCALE, mul_div


def _check_non_negative(value):
    if value < 0:
        raise ValueError("Curve coefficients can't be negative")


def _check_bps(value):
    if value < 0 or value > BPS:
        raise ValueError("Basis points must be in [0, 10000]")


class SeverityCurve(Model):
    """Quadratic payout curve over the reported severity.

    `a`, `b` and `c` are fixed point coefficients (scaled by 1e6) applied to the severity in basis
    points: `raw = (a * x**2 + b * x + c) / 1e6`. The coefficients are non-negative, so the curve
    never decreases. The result is clamped to [0, 10000] bps and never goes under `floor_bps`,
    so a triggered event always pays something.
    """

    a = IntField(default=0, validation_hook=_check_non_negative)
    b = IntField(default=SCALE, validation_hook=_check_non_negative)
    c = IntField(default=0, validation_hook=_check_non_negative)
    floor_bps = IntField(default=0, validation_hook=_check_bps)

    def raw_bps(self, severity_bps_in):
        x = severity_bps_in * SCALE
        x2 = mul_div(x, x, SCALE)
        total = mul_div(self.a, x2, SCALE) + mul_div(self.b, x, SCALE) + self.c
        return mul_div(total, 1, SCALE)

    def effective_bps(self, severity_bps_in):
        require(
            0 <= severity_bps_in <= BPS,
            ValidationError("InvalidSeverity", severity_bps_in),
        )
        raw = min(max(self.raw_bps(severity_bps_in), 0), BPS)
        return max(raw, self.floor_bps)
