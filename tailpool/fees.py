from collections import namedtuple

from .contracts import ValidationError, require
from .wadray import BPS, Amount, bps_of

FeeSplit = namedtuple("FeeSplit", ["protocol_fee", "referral_fee", "net"])


def compute_fees(gross_amount, protocol_fee_bps, referral_fee_bps, has_referrer=True):
    """Splits a deposit in protocol fee, referral fee and the net amount credited to the user.

    Both fees are taken from the gross amount and truncated. Without referrer there's no
    referral fee at all.
    """
    require(gross_amount >= 0, ValidationError("InvalidAmount", gross_amount))
    require(
        0 <= protocol_fee_bps <= BPS and 0 <= referral_fee_bps <= BPS
        and protocol_fee_bps + referral_fee_bps <= BPS,
        ValidationError("InvalidFeeBps", protocol_fee_bps, referral_fee_bps),
    )
    gross_amount = Amount(gross_amount)
    protocol_fee = bps_of(gross_amount, protocol_fee_bps)
    referral_fee = bps_of(gross_amount, referral_fee_bps) if has_referrer else Amount(0)
    return FeeSplit(protocol_fee, referral_fee, gross_amount - protocol_fee - referral_fee)
