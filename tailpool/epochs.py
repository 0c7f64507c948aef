from m9g import Model
from m9g.fields import IntField, StringField

from .contracts import AddressField, AmountField, BoolField, StateError, ValidationError, require
from .wadray import Amount

OPEN = "open"
TRIGGERED = "triggered"
CLOSED = "closed"


class Epoch(Model):
    """A coverage period. Goes open -> triggered -> closed, or straight from open to closed when
    nothing happened. Closed is terminal."""

    epoch_id = IntField()
    start_ts = IntField()
    end_ts = IntField(default=0)
    rolling = BoolField(default=False)
    status = StringField(default=OPEN)

    severity_input_bps = IntField(default=0)
    severity_bps = IntField(default=0)
    evidence_hash = StringField(default=None, allow_none=True)
    evidence_ts = IntField(default=None, allow_none=True)
    triggered_at = IntField(default=None, allow_none=True)
    reporter = AddressField(default=None, allow_none=True)

    snapshot_senior_total = AmountField(default=Amount(0))
    snapshot_junior_total = AmountField(default=Amount(0))
    snapshot_pool_balance = AmountField(default=Amount(0))
    snapshot_weighted_total = AmountField(default=Amount(0))

    user_cap = AmountField(default=Amount(0))
    epoch_cap = AmountField(default=Amount(0))
    total_paid_out = AmountField(default=Amount(0))
    shortfall = AmountField(default=Amount(0))

    @classmethod
    def open_epoch(cls, epoch_id, start_ts, end_ts, rolling):
        if not rolling:
            require(
                end_ts is not None and start_ts < end_ts,
                ValidationError("InvalidEpochWindow", start_ts, end_ts),
            )
        return cls(
            epoch_id=epoch_id, start_ts=start_ts, end_ts=end_ts or 0, rolling=bool(rolling)
        )

    @property
    def triggered(self):
        return self.status in (TRIGGERED, CLOSED) and self.triggered_at is not None

    @property
    def closed(self):
        return self.status == CLOSED

    @property
    def in_claims(self):
        return self.status == TRIGGERED

    def is_active(self, now):
        if now < self.start_ts:
            return False
        return bool(self.rolling) or now <= self.end_ts

    def check_can_trigger(self, now):
        require(not self.closed, StateError("EpochClosed", self.epoch_id))
        require(self.status == OPEN, StateError("AlreadyTriggered", self.epoch_id))
        require(self.is_active(now), StateError("EpochNotActive", self.epoch_id, now))

    def mark_triggered(self, now, severity_input_bps, severity_bps, snapshot, reporter,
                       evidence_hash=None, evidence_ts=None, user_cap=None, epoch_cap=None):
        self.check_can_trigger(now)
        senior_total, junior_total, pool_balance, weighted_total = snapshot
        self.severity_input_bps = severity_input_bps
        self.severity_bps = severity_bps
        self.snapshot_senior_total = senior_total
        self.snapshot_junior_total = junior_total
        self.snapshot_pool_balance = pool_balance
        self.snapshot_weighted_total = weighted_total
        self.user_cap = user_cap or Amount(0)
        self.epoch_cap = epoch_cap or Amount(0)
        self.evidence_hash = evidence_hash
        self.evidence_ts = evidence_ts
        self.reporter = reporter
        self.triggered_at = now
        self.status = TRIGGERED

    def check_claimable(self):
        require(not self.closed, StateError("EpochClosed", self.epoch_id))
        require(self.status == TRIGGERED, StateError("EpochNotTriggered", self.epoch_id))

    def record_payout(self, amount, shortfall=Amount(0)):
        self.total_paid_out += amount
        self.shortfall += shortfall

    def close(self):
        require(not self.closed, StateError("EpochClosed", self.epoch_id))
        self.status = CLOSED

    def as_dict(self):
        return {
            "epoch_id": self.epoch_id,
            "start_ts": self.start_ts,
            "end_ts": self.end_ts,
            "rolling": bool(self.rolling),
            "triggered": self.triggered,
            "closed": self.closed,
            "severity_input_bps": self.severity_input_bps,
            "severity_bps": self.severity_bps,
            "evidence_hash": self.evidence_hash,
            "evidence_ts": self.evidence_ts,
            "snapshot_senior_total": self.snapshot_senior_total,
            "snapshot_junior_total": self.snapshot_junior_total,
            "snapshot_pool_balance": self.snapshot_pool_balance,
            "user_cap": self.user_cap,
            "epoch_cap": self.epoch_cap,
            "total_paid_out": self.total_paid_out,
            "shortfall": self.shortfall,
        }
