import pytest

from tailpool.contracts import ValidationError
from tailpool.severity import SeverityCurve

LINEAR = dict(a=0, b=10**6, c=0)


def test_linear_curve_with_floor():
    curve = SeverityCurve(floor_bps=100, **LINEAR)
    assert curve.effective_bps(5000) == 5000
    assert curve.effective_bps(0) == 100
    assert curve.effective_bps(50) == 100
    assert curve.effective_bps(10000) == 10000


def test_quadratic_curve():
    # 0.0001 * x**2 -> x=5000 gives 2500 bps, x=10000 gives 10000 bps
    curve = SeverityCurve(a=100, b=0, c=0, floor_bps=0)
    assert curve.effective_bps(5000) == 2500
    assert curve.effective_bps(10000) == 10000
    assert curve.effective_bps(1) == 0  # truncated


def test_constant_term_is_in_bps_scaled():
    curve = SeverityCurve(a=0, b=0, c=250 * 10**6, floor_bps=0)
    assert curve.effective_bps(0) == 250
    assert curve.effective_bps(9000) == 250


def test_clamps_to_full_severity():
    assert SeverityCurve(a=0, b=3 * 10**6, c=0, floor_bps=0).effective_bps(5000) == 10000
    assert SeverityCurve(a=10**4, b=0, c=0, floor_bps=0).effective_bps(2000) == 10000


@pytest.mark.parametrize("severity", [-1, 10001])
def test_rejects_out_of_range_severity(severity):
    curve = SeverityCurve(floor_bps=100, **LINEAR)
    with pytest.raises(ValidationError, match="InvalidSeverity"):
        curve.effective_bps(severity)


@pytest.mark.parametrize(
    "coefficients,floor_bps",
    [
        (LINEAR, 100),
        (dict(a=100, b=0, c=0), 0),
        (dict(a=50, b=2 * 10**6, c=10 * 10**6), 500),
        (dict(a=10**4, b=10**7, c=10**10), 10000),
        (dict(a=0, b=0, c=0), 1),
    ],
)
def test_effective_severity_bounds(coefficients, floor_bps):
    curve = SeverityCurve(floor_bps=floor_bps, **coefficients)
    for severity in range(0, 10001, 37):
        assert floor_bps <= curve.effective_bps(severity) <= 10000
    assert floor_bps <= curve.effective_bps(10000) <= 10000


@pytest.mark.parametrize(
    "coefficients",
    [LINEAR, dict(a=100, b=0, c=0), dict(a=3, b=5 * 10**5, c=2 * 10**6)],
)
def test_curve_never_decreases(coefficients):
    curve = SeverityCurve(floor_bps=50, **coefficients)
    previous = 0
    for severity in range(0, 10001, 25):
        effective = curve.effective_bps(severity)
        assert effective >= previous
        previous = effective
