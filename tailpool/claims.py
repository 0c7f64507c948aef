from m9g import Model
from m9g.fields import CompositeField, DictField, IntField, TupleField

from .contracts import AddressField, AmountField, DuplicateClaimError, require
from .wadray import Amount


class ClaimReceipt(Model):
    epoch_id = IntField()
    owner = AddressField()
    claimed_amount = AmountField(default=Amount(0))
    claimed_at = IntField(default=0)


class ClaimRegistry(Model):
    """Receipts of the payouts, at most one per (epoch_id, owner).

    `register` is an insert that fails if the key exists. The payout runs it before touching any
    balance, inside the same transaction, so the second of two racing claims always fails.
    """

    receipts = DictField(TupleField((IntField(), AddressField())), CompositeField(ClaimReceipt), default={})

    def has_claimed(self, epoch_id, owner):
        return (epoch_id, owner) in self.receipts

    def get(self, epoch_id, owner):
        return self.receipts.get((epoch_id, owner), None)

    def register(self, epoch_id, owner, amount, now):
        require(
            not self.has_claimed(epoch_id, owner),
            DuplicateClaimError("AlreadyClaimed", epoch_id, owner),
        )
        receipt = ClaimReceipt(epoch_id=epoch_id, owner=owner, claimed_amount=amount, claimed_at=now)
        self.receipts[(epoch_id, owner)] = receipt
        return self.receipts[(epoch_id, owner)]

    def total_claimed(self, epoch_id=None):
        return sum(
            (r.claimed_amount for r in self.receipts.values() if epoch_id is None or r.epoch_id == epoch_id),
            Amount(0),
        )
