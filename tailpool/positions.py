from m9g import Model
from m9g.fields import CompositeField, DictField, IntField, StringField

from .contracts import AddressField, AmountField
from .lots import SENIOR, TRANCHES, LotQueue, check_tranche
from .wadray import Amount, bps_of


def weighted_stake(senior, junior, weight_senior_bps, weight_junior_bps):
    return bps_of(Amount(senior), weight_senior_bps) + bps_of(Amount(junior), weight_junior_bps)


class UserPosition(Model):
    owner = AddressField()
    senior_deposited = AmountField(default=Amount(0))
    junior_deposited = AmountField(default=Amount(0))
    last_deposit_ts = DictField(StringField(), IntField(), default={})
    lots = DictField(StringField(), CompositeField(LotQueue), default={})
    referrer = AddressField(default=None, allow_none=True)

    def deposited(self, tranche):
        check_tranche(tranche)
        return self.senior_deposited if tranche == SENIOR else self.junior_deposited

    def _set_deposited(self, tranche, amount):
        if tranche == SENIOR:
            self.senior_deposited = amount
        else:
            self.junior_deposited = amount

    @property
    def total_deposited(self):
        return self.senior_deposited + self.junior_deposited

    def lot_queue(self, tranche):
        check_tranche(tranche)
        if tranche not in self.lots:
            self.lots[tranche] = LotQueue(tranche=tranche)
        return self.lots[tranche]

    def in_cooldown(self, tranche, now, min_seconds_between_deposits):
        last_ts = self.last_deposit_ts.get(tranche, None)
        if last_ts is None or not min_seconds_between_deposits:
            return False
        return now - last_ts < min_seconds_between_deposits

    def credit(self, tranche, amount, now):
        self.lot_queue(tranche).add_lot(amount, now)
        self._set_deposited(tranche, self.deposited(tranche) + amount)
        self.last_deposit_ts[tranche] = now

    def debit_matured(self, tranche, amount, now, lockup_seconds):
        consumed = self.lot_queue(tranche).consume_matured(amount, now, lockup_seconds)
        self._set_deposited(tranche, self.deposited(tranche) - consumed)
        return consumed

    def withdrawable(self, tranche, now, lockup_seconds):
        if tranche not in self.lots:
            return Amount(0)
        return self.lots[tranche].matured_amount(now, lockup_seconds)

    def weighted_stake(self, weight_senior_bps, weight_junior_bps):
        return weighted_stake(
            self.senior_deposited, self.junior_deposited, weight_senior_bps, weight_junior_bps
        )

    def check_lots(self):
        """True if the lots of each tranche add up to the deposited amount"""
        return all(
            self.deposited(tranche) == (self.lots[tranche].total() if tranche in self.lots else 0)
            for tranche in TRANCHES
        )

