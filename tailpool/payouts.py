from collections import namedtuple

from .contracts import ValidationError, require
from .wadray import Amount, bps_of, mul_div

PROPORTIONAL = "proportional"
CAPPED = "capped"
EPOCH_BOUNDED = "epoch_bounded"
PAYOUT_POLICIES = (PROPORTIONAL, CAPPED, EPOCH_BOUNDED)

PayoutQuote = namedtuple("PayoutQuote", ["entitlement", "payout", "shortfall", "max_epoch_liability"])


def check_policy(policy):
    require(policy in PAYOUT_POLICIES, ValidationError("InvalidPayoutPolicy", policy))
    return policy


def max_epoch_liability(epoch, policy):
    """Maximum amount the epoch can pay in total"""
    liability = bps_of(epoch.snapshot_pool_balance, epoch.severity_bps)
    if policy == EPOCH_BOUNDED:
        liability = min(liability, epoch.epoch_cap)
    return liability


def proportional_entitlement(epoch, user_weighted_stake):
    if not user_weighted_stake or not epoch.snapshot_weighted_total:
        return Amount(0)
    liability = bps_of(epoch.snapshot_pool_balance, epoch.severity_bps)
    return mul_div(liability, user_weighted_stake, epoch.snapshot_weighted_total)


def compute_payout(epoch, policy, user_weighted_stake):
    """Computes what a user can claim from a triggered epoch under the given policy.

    Proportional: share of `severity * snapshot_pool_balance` by weighted stake.
    Capped: proportional, limited to the per user cap of the epoch (zero means no cap).
    EpochBounded: proportional, limited to what's left of the epoch cap. Claims are served in
    arrival order, the claim that hits the cap gets the remainder and later ones get nothing.
    """
    check_policy(policy)
    entitlement = proportional_entitlement(epoch, user_weighted_stake)
    payout = entitlement
    if policy == CAPPED and epoch.user_cap:
        payout = min(payout, epoch.user_cap)
    elif policy == EPOCH_BOUNDED:
        room = max(epoch.epoch_cap - epoch.total_paid_out, Amount(0))
        payout = min(payout, room)
    shortfall = entitlement - payout if policy == EPOCH_BOUNDED else Amount(0)
    return PayoutQuote(entitlement, payout, shortfall, max_epoch_liability(epoch, policy))
