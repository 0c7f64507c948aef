from m9g import Model
from m9g.fields import IntField, ListField, CompositeField, StringField

from .contracts import AmountField, FundsError, ValidationError, require
from .wadray import Amount

SENIOR = "senior"
JUNIOR = "junior"
TRANCHES = (SENIOR, JUNIOR)


def check_tranche(tranche):
    require(tranche in TRANCHES, ValidationError("InvalidTranche", tranche))
    return tranche


class Lot(Model):
    amount = AmountField(default=Amount(0))
    deposit_ts = IntField()
    tranche = StringField()

    def matured(self, now, lockup_seconds):
        return now - self.deposit_ts >= lockup_seconds


class LotQueue(Model):
    """FIFO queue of the deposit lots of one user in one tranche.

    Lots live in a list and `head` points to the oldest lot with funds left. Lots are appended
    with non-decreasing timestamps, so once the lot at the head is too young to withdraw every
    lot behind it is too.
    """

    COMPACT_THRESHOLD = 32

    tranche = StringField()
    lots = ListField(CompositeField(Lot), default=[])
    head = IntField(default=0)

    def active_lots(self):
        for index in range(self.head, len(self.lots)):
            yield self.lots[index]

    def lot_count(self):
        return len(self.lots) - self.head

    def total(self):
        return sum((lot.amount for lot in self.active_lots()), Amount(0))

    def matured_amount(self, now, lockup_seconds):
        matured = Amount(0)
        for lot in self.active_lots():
            if not lot.matured(now, lockup_seconds):
                break
            matured += lot.amount
        return matured

    def add_lot(self, amount, timestamp):
        require(amount >= 0, ValidationError("InvalidAmount", amount))
        if self.lot_count() and self.lots[-1].deposit_ts > timestamp:
            raise ValidationError("LotOutOfOrder", timestamp, self.lots[-1].deposit_ts)
        if amount == 0:
            return None
        lot = Lot(amount=amount, deposit_ts=timestamp, tranche=self.tranche)
        self.lots.append(lot)
        return lot

    def consume_matured(self, requested, now, lockup_seconds):
        """Consumes `requested` from the matured lots, oldest first. All or nothing."""
        require(requested > 0, ValidationError("InvalidAmount", requested))
        available = self.matured_amount(now, lockup_seconds)
        require(
            available >= requested,
            FundsError("InsufficientMaturedFunds", requested, available),
        )
        remaining = requested
        while remaining > 0:
            lot = self.lots[self.head]
            if lot.amount <= remaining:
                remaining -= lot.amount
                lot.amount = Amount(0)
                self.head += 1
            else:
                lot.amount -= remaining
                remaining = Amount(0)
        self._compact()
        return requested

    def _compact(self):
        if self.head == len(self.lots):
            self.lots = []
            self.head = 0
        elif self.head >= self.COMPACT_THRESHOLD:
            self.lots = list(self.lots[self.head:])
            self.head = 0
