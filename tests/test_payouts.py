import pytest

from tailpool.contracts import ValidationError
from tailpool.epochs import TRIGGERED, Epoch
from tailpool.payouts import (
    CAPPED, EPOCH_BOUNDED, PROPORTIONAL, check_policy, compute_payout, max_epoch_liability
)
from tailpool.positions import weighted_stake
from tailpool.severity import SeverityCurve
from tailpool.wadray import _A, Amount

WEIGHT_SENIOR = 10000
WEIGHT_JUNIOR = 15000


def _epoch(**kwargs):
    params = dict(
        epoch_id=1,
        start_ts=0,
        end_ts=1000,
        status=TRIGGERED,
        triggered_at=10,
        severity_bps=5000,
        snapshot_senior_total=_A(9950),
        snapshot_junior_total=_A(7500),
        snapshot_pool_balance=_A(15000),
        snapshot_weighted_total=weighted_stake(_A(9950), _A(7500), WEIGHT_SENIOR, WEIGHT_JUNIOR),
    )
    params.update(kwargs)
    return Epoch(**params)


def test_weighted_stake():
    assert weighted_stake(_A(9950), Amount(0), WEIGHT_SENIOR, WEIGHT_JUNIOR) == _A(9950)
    assert weighted_stake(Amount(0), _A(7500), WEIGHT_SENIOR, WEIGHT_JUNIOR) == _A(11250)
    assert weighted_stake(_A(9950), _A(7500), WEIGHT_SENIOR, WEIGHT_JUNIOR) == _A(21200)


def test_proportional_payouts():
    epoch = _epoch()
    senior = compute_payout(epoch, PROPORTIONAL, _A(9950))
    junior = compute_payout(epoch, PROPORTIONAL, _A(11250))

    assert senior.payout == Amount(3520047169)
    assert junior.payout == Amount(3979952830)
    assert senior.shortfall == junior.shortfall == Amount(0)
    assert senior.max_epoch_liability == _A(7500)
    assert senior.payout + junior.payout <= senior.max_epoch_liability
    assert _A(7500) - (senior.payout + junior.payout) == Amount(1)  # truncation dust


def test_no_stake_no_payout():
    epoch = _epoch()
    assert compute_payout(epoch, PROPORTIONAL, Amount(0)).payout == Amount(0)
    empty = _epoch(snapshot_weighted_total=Amount(0))
    assert compute_payout(empty, PROPORTIONAL, _A(100)).payout == Amount(0)


def test_capped_payouts():
    epoch = _epoch(user_cap=_A(3600))
    assert compute_payout(epoch, CAPPED, _A(9950)).payout == Amount(3520047169)
    quote = compute_payout(epoch, CAPPED, _A(11250))
    assert quote.payout == _A(3600)
    assert quote.entitlement == Amount(3979952830)
    assert quote.shortfall == Amount(0)

    uncapped = _epoch(user_cap=Amount(0))
    assert compute_payout(uncapped, CAPPED, _A(11250)).payout == Amount(3979952830)


def test_epoch_bounded_payouts():
    epoch = _epoch(epoch_cap=_A(5000))
    assert max_epoch_liability(epoch, EPOCH_BOUNDED) == _A(5000)
    assert max_epoch_liability(epoch, PROPORTIONAL) == _A(7500)

    first = compute_payout(epoch, EPOCH_BOUNDED, _A(9950))
    assert first.payout == Amount(3520047169)
    assert first.shortfall == Amount(0)
    epoch.record_payout(first.payout, first.shortfall)

    second = compute_payout(epoch, EPOCH_BOUNDED, _A(11250))
    assert second.payout == _A(5000) - Amount(3520047169)
    assert second.shortfall == Amount(3979952830) - second.payout
    epoch.record_payout(second.payout, second.shortfall)
    assert epoch.total_paid_out == _A(5000)

    third = compute_payout(epoch, EPOCH_BOUNDED, _A(100))
    assert third.payout == Amount(0)
    assert third.shortfall == third.entitlement


def test_entitlement_grows_with_stake():
    epoch = _epoch()
    previous = Amount(0)
    for stake in range(0, 21200, 530):
        payout = compute_payout(epoch, PROPORTIONAL, _A(stake)).payout
        assert payout >= previous
        previous = payout


@pytest.mark.parametrize(
    "coefficients,floor_bps",
    [(dict(a=0, b=10**6, c=0), 100), (dict(a=100, b=0, c=0), 0), (dict(a=7, b=3 * 10**5, c=10**8), 250)],
)
def test_payout_grows_with_severity(coefficients, floor_bps):
    curve = SeverityCurve(floor_bps=floor_bps, **coefficients)
    previous = Amount(0)
    for severity in range(0, 10001, 50):
        epoch = _epoch(severity_bps=curve.effective_bps(severity))
        payout = compute_payout(epoch, PROPORTIONAL, _A(11250)).payout
        assert payout >= previous
        previous = payout
    assert previous > Amount(0)


def test_invalid_policy():
    with pytest.raises(ValidationError, match="InvalidPayoutPolicy"):
        check_policy("first_come")
    with pytest.raises(ValidationError, match="InvalidPayoutPolicy"):
        compute_payout(_epoch(), "first_come", _A(1))
