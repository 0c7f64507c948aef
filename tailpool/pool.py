import logging
import time
from collections import namedtuple

from m9g import Model
from m9g.fields import CompositeField, DictField, IntField, StringField

from .claims import ClaimRegistry
from .contracts import (
    AccessControlContract,
    AddressField,
    AmountField,
    BoolField,
    ContractProxyField,
    FundsError,
    StalenessError,
    StateError,
    ValidationError,
    external,
    only_role,
    require,
    view,
)
from .epochs import Epoch
from .fees import compute_fees
from .lots import SENIOR, check_tranche
from .payouts import CAPPED, EPOCH_BOUNDED, PROPORTIONAL, check_policy, compute_payout
from .positions import UserPosition, weighted_stake
from .severity import SeverityCurve
from .wadray import BPS, SCALE, Amount, _A

logger = logging.getLogger(__name__)

ADMIN_ROLE = "ADMIN_ROLE"
REPORTER_ROLE = "REPORTER_ROLE"

PoolStats = namedtuple(
    "PoolStats",
    [
        "total_deposited",
        "total_senior",
        "total_junior",
        "pool_balance",
        "payout_policy",
        "epoch_cap",
        "total_claimed",
        "carryover_shortfall",
        "rolling_mode",
        "paused",
        "current_epoch_id",
    ],
)

WithdrawQuote = namedtuple("WithdrawQuote", ["can_withdraw", "available", "requested"])


class TimeControl:
    def __init__(self, start_time=None):
        if start_time is None:
            self._now = int(time.time())
        else:
            self._now = start_time

    @property
    def now(self):
        return self._now

    def fast_forward(self, seconds):
        self._now += seconds
        return self._now


time_control = TimeControl()


def to_amount(value):
    try:
        return Amount.from_value(value)
    except (TypeError, ValueError, ArithmeticError):
        raise ValidationError("InvalidAmount", value)


class PoolConfig(Model):
    currency = ContractProxyField(default=None, allow_none=True)
    treasury = AddressField(default="treasury")
    payout_policy = StringField(default=PROPORTIONAL)
    user_deposit_cap = AmountField(default=_A(1000000))
    min_deposit = AmountField(default=Amount(0))
    protocol_fee_bps = IntField(default=0)
    referral_fee_bps = IntField(default=0)
    lockup_seconds = IntField(default=0)
    min_seconds_between_deposits = IntField(default=0)
    epoch_cap = AmountField(default=Amount(0))
    rolling_mode = BoolField(default=False)
    max_stale_seconds = IntField(default=0)
    curve_a = IntField(default=0)
    curve_b = IntField(default=SCALE)
    curve_c = IntField(default=0)
    severity_floor_bps = IntField(default=0)
    weight_senior_bps = IntField(default=BPS)
    weight_junior_bps = IntField(default=BPS)
    user_payout_cap = AmountField(default=Amount(0))
    dust_threshold = AmountField(default=Amount(0))
    paused = BoolField(default=False)

    def validate(self):
        require(self.currency is not None, ValidationError("InvalidCurrency"))
        require(self.treasury is not None, ValidationError("InvalidTreasury"))
        check_policy(self.payout_policy)
        require(
            0 <= self.protocol_fee_bps <= BPS and 0 <= self.referral_fee_bps <= BPS
            and self.protocol_fee_bps + self.referral_fee_bps <= BPS,
            ValidationError("InvalidFeeBps", self.protocol_fee_bps, self.referral_fee_bps),
        )
        require(
            self.curve_a >= 0 and self.curve_b >= 0 and self.curve_c >= 0,
            ValidationError("InvalidCurve", self.curve_a, self.curve_b, self.curve_c),
        )
        require(
            0 <= self.severity_floor_bps <= BPS,
            ValidationError("InvalidSeverityFloor", self.severity_floor_bps),
        )
        require(
            self.weight_senior_bps > 0 and self.weight_junior_bps > 0,
            ValidationError("InvalidWeight", self.weight_senior_bps, self.weight_junior_bps),
        )
        for name in ("user_deposit_cap", "min_deposit", "epoch_cap", "user_payout_cap", "dust_threshold"):
            require(getattr(self, name) >= 0, ValidationError("InvalidAmount", name))
        for name in ("lockup_seconds", "min_seconds_between_deposits", "max_stale_seconds"):
            require(getattr(self, name) >= 0, ValidationError("InvalidPeriod", name))
        return self

    def severity_curve(self):
        return SeverityCurve(
            a=self.curve_a, b=self.curve_b, c=self.curve_c, floor_bps=self.severity_floor_bps
        )


class InsurancePool(AccessControlContract):
    """Parametric insurance pool with a senior and a junior tranche.

    Deposits are kept as FIFO lots per user and tranche. A reporter triggers the current epoch
    with a severity, which freezes the pool and snapshots the tranche totals and the balance.
    Each depositor then claims once its share of `severity * balance`, and finalizing the epoch
    unfreezes the pool.

    Every external method is an atomic transaction: if it reverts, the pool and the currency
    are restored to the state they had before the call.
    """

    config = CompositeField(PoolConfig)
    initialized = BoolField(default=False)
    total_senior = AmountField(default=Amount(0))
    total_junior = AmountField(default=Amount(0))
    total_claimed = AmountField(default=Amount(0))
    carryover_shortfall = AmountField(default=Amount(0))
    last_event_ts = IntField(default=0)
    current_epoch_id = IntField(default=None, allow_none=True)
    epochs = DictField(IntField(), CompositeField(Epoch), default={})
    positions = DictField(AddressField(), CompositeField(UserPosition), default={})
    claims = CompositeField(ClaimRegistry)

    def __init__(self, **kwargs):
        kwargs.setdefault("config", PoolConfig())
        kwargs.setdefault("claims", ClaimRegistry())
        super().__init__(**kwargs)
        self.roles[ADMIN_ROLE] = ([self.owner], self.DEFAULT_ADMIN_ROLE)
        self.roles[REPORTER_ROLE] = ([], ADMIN_ROLE)

    # ----- helpers -----

    @property
    def currency(self):
        return self._config().currency

    def _config(self):
        require(self.initialized, StateError("NotInitialized"))
        return self.config

    def pool_balance(self):
        return self.currency.balance_of(self)

    @property
    def total_deposited(self):
        return self.total_senior + self.total_junior

    @property
    def current_epoch(self):
        if self.current_epoch_id is None:
            return None
        return self.epochs[self.current_epoch_id]

    def _epoch(self, epoch_id=None):
        if epoch_id is None:
            epoch = self.current_epoch
        else:
            epoch = self.epochs.get(epoch_id, None)
        require(epoch is not None, StateError("NoActiveEpoch", epoch_id))
        return epoch

    def _in_claims(self):
        epoch = self.current_epoch
        return epoch is not None and epoch.in_claims

    def _tranche_total(self, tranche):
        return self.total_senior if tranche == SENIOR else self.total_junior

    def _set_tranche_total(self, tranche, amount):
        if tranche == SENIOR:
            self.total_senior = amount
        else:
            self.total_junior = amount

    def _position(self, user, create=False):
        if user not in self.positions:
            if not create:
                return None
            self.positions[user] = UserPosition(owner=user)
        return self.positions[user]

    def _user_weighted_stake(self, user):
        position = self._position(user)
        if position is None:
            return Amount(0)
        config = self._config()
        return position.weighted_stake(config.weight_senior_bps, config.weight_junior_bps)

    # ----- admin -----

    @external
    @only_role(ADMIN_ROLE)
    def initialize(self, config):
        require(not self.initialized, StateError("AlreadyInitialized"))
        if isinstance(config, dict):
            config = PoolConfig(**config)
        self.config = config.validate()
        self.initialized = True
        logger.info(
            "Pool %s initialized: policy=%s currency=%s", self.contract_id, config.payout_policy,
            config.currency
        )

    @external
    @only_role(ADMIN_ROLE)
    def set_paused(self, paused):
        config = self._config()
        require(paused or not self._in_claims(), StateError("EpochInClaims", self.current_epoch_id))
        config.paused = bool(paused)
        logger.info("Pool %s paused=%s", self.contract_id, config.paused)

    @external
    @only_role(ADMIN_ROLE)
    def set_policy(self, policy, epoch_cap=None):
        config = self._config()
        require(not self._in_claims(), StateError("EpochInClaims", self.current_epoch_id))
        config.payout_policy = check_policy(policy)
        if epoch_cap is not None:
            config.epoch_cap = to_amount(epoch_cap)
        config.validate()

    @external
    @only_role(ADMIN_ROLE)
    def set_curve_and_weights(self, a, b, c, floor_bps, weight_senior_bps, weight_junior_bps):
        config = self._config()
        require(not self._in_claims(), StateError("EpochInClaims", self.current_epoch_id))
        for value in (a, b, c, floor_bps, weight_senior_bps, weight_junior_bps):
            require(
                isinstance(value, int) and not isinstance(value, bool),
                ValidationError("InvalidInteger", value),
            )
        config.curve_a = a
        config.curve_b = b
        config.curve_c = c
        config.severity_floor_bps = floor_bps
        config.weight_senior_bps = weight_senior_bps
        config.weight_junior_bps = weight_junior_bps
        config.validate()

    @external
    @only_role(ADMIN_ROLE)
    def add_reporter(self, reporter):
        self.grant_role(REPORTER_ROLE, reporter)

    @external
    @only_role(ADMIN_ROLE)
    def remove_reporter(self, reporter):
        self.revoke_role(REPORTER_ROLE, reporter)

    # ----- epochs -----

    @external
    @only_role(ADMIN_ROLE)
    def start_epoch(self, epoch_id, start_ts, end_ts=None):
        config = self._config()
        require(epoch_id not in self.epochs, ValidationError("EpochExists", epoch_id))
        current = self.current_epoch
        require(current is None or current.closed, StateError("EpochActive", self.current_epoch_id))
        epoch = Epoch.open_epoch(epoch_id, start_ts, end_ts, config.rolling_mode)
        self.epochs[epoch_id] = epoch
        self.current_epoch_id = epoch_id
        logger.info("Epoch %s started: start=%s end=%s", epoch_id, start_ts, end_ts)
        return self.epochs[epoch_id]

    @external
    @only_role(ADMIN_ROLE, REPORTER_ROLE)
    def trigger_event(self, severity_bps_in, user_cap=None, epoch_cap_override=None,
                      evidence_hash=None, evidence_ts=None):
        config = self._config()
        epoch = self._epoch()
        now = time_control.now
        epoch.check_can_trigger(now)

        if evidence_ts is not None:
            require(evidence_ts <= now, ValidationError("EvidenceFromFuture", evidence_ts, now))
            if config.max_stale_seconds:
                require(
                    now - evidence_ts <= config.max_stale_seconds,
                    StalenessError("StaleEvidence", evidence_ts, now, config.max_stale_seconds),
                )

        severity_bps = config.severity_curve().effective_bps(severity_bps_in)

        if config.payout_policy == CAPPED:
            user_cap = to_amount(user_cap) if user_cap is not None else config.user_payout_cap
        else:
            user_cap = Amount(0)
        if config.payout_policy == EPOCH_BOUNDED:
            epoch_cap = to_amount(epoch_cap_override) if epoch_cap_override is not None else config.epoch_cap
        else:
            epoch_cap = Amount(0)

        snapshot = (
            self.total_senior,
            self.total_junior,
            self.pool_balance(),
            weighted_stake(
                self.total_senior, self.total_junior, config.weight_senior_bps, config.weight_junior_bps
            ),
        )
        epoch.mark_triggered(
            now, severity_bps_in, severity_bps, snapshot, self.running_as,
            evidence_hash=evidence_hash, evidence_ts=evidence_ts, user_cap=user_cap, epoch_cap=epoch_cap,
        )
        config.paused = True
        self.last_event_ts = now
        logger.info(
            "Epoch %s triggered by %s: severity_in=%s effective=%s policy=%s balance=%s",
            epoch.epoch_id, self.running_as, severity_bps_in, severity_bps, config.payout_policy,
            epoch.snapshot_pool_balance,
        )
        return severity_bps

    @external
    @only_role(ADMIN_ROLE)
    def finalize_epoch(self, dust_sweep=None):
        config = self._config()
        epoch = self._epoch()
        epoch.close()
        if epoch.shortfall:
            self.carryover_shortfall += epoch.shortfall

        swept = Amount(0)
        if dust_sweep is not None:
            dust_sweep = to_amount(dust_sweep)
            require(dust_sweep >= 0, ValidationError("InvalidAmount", dust_sweep))
            require(
                dust_sweep <= config.dust_threshold,
                ValidationError("DustAboveThreshold", dust_sweep, config.dust_threshold),
            )
            surplus = self.pool_balance() - (self.total_deposited - self.total_claimed)
            swept = min(dust_sweep, max(surplus, Amount(0)))
            if swept:
                self.currency.transfer(self, config.treasury, swept)

        config.paused = False
        logger.info(
            "Epoch %s finalized: paid_out=%s shortfall=%s swept=%s",
            epoch.epoch_id, epoch.total_paid_out, epoch.shortfall, swept,
        )
        return swept

    # ----- depositors -----

    @external
    def deposit_insurance(self, amount, tranche, referrer=None):
        config = self._config()
        user = self.running_as
        require(not config.paused, StateError("PoolPaused"))
        amount = to_amount(amount)
        require(amount > 0, ValidationError("InvalidAmount", amount))
        check_tranche(tranche)
        require(amount >= config.min_deposit, ValidationError("MinDeposit", amount, config.min_deposit))

        now = time_control.now
        position = self._position(user, create=True)
        require(
            not position.in_cooldown(tranche, now, config.min_seconds_between_deposits),
            StateError("DepositCooldown", tranche, config.min_seconds_between_deposits),
        )

        require(referrer != user, ValidationError("InvalidReferrer", referrer))

        fees = compute_fees(
            amount, config.protocol_fee_bps, config.referral_fee_bps, has_referrer=referrer is not None
        )
        user_total = position.total_deposited + fees.net
        require(
            user_total <= config.user_deposit_cap,
            FundsError("CapExceeded", user_total, config.user_deposit_cap),
        )

        self.currency.transfer_from(self, user, self, fees.net)
        if fees.protocol_fee:
            self.currency.transfer_from(self, user, config.treasury, fees.protocol_fee)
        if fees.referral_fee:
            self.currency.transfer_from(self, user, referrer, fees.referral_fee)

        position.credit(tranche, fees.net, now)
        if referrer is not None:
            position.referrer = referrer
        self._set_tranche_total(tranche, self._tranche_total(tranche) + fees.net)
        logger.info(
            "Deposit %s: tranche=%s gross=%s net=%s fee=%s referral_fee=%s",
            user, tranche, amount, fees.net, fees.protocol_fee, fees.referral_fee,
        )
        return fees.net

    @external
    def withdraw(self, amount, tranche):
        config = self._config()
        user = self.running_as
        require(not config.paused, StateError("PoolPaused"))
        amount = to_amount(amount)
        require(amount > 0, ValidationError("InvalidAmount", amount))
        check_tranche(tranche)

        position = self._position(user)
        require(position is not None, FundsError("InsufficientMaturedFunds", amount, Amount(0)))
        consumed = position.debit_matured(tranche, amount, time_control.now, config.lockup_seconds)
        require(
            consumed <= self.pool_balance(),
            FundsError("InsufficientPoolBalance", consumed, self.pool_balance()),
        )
        self._set_tranche_total(tranche, self._tranche_total(tranche) - consumed)
        self.currency.transfer(self, user, consumed)
        logger.info("Withdraw %s: tranche=%s amount=%s", user, tranche, consumed)
        return consumed

    @external
    def payout_user(self, epoch_id=None):
        config = self._config()
        user = self.running_as
        epoch = self._epoch(epoch_id)
        epoch.check_claimable()
        now = time_control.now

        receipt = self.claims.register(epoch.epoch_id, user, Amount(0), now)

        quote = compute_payout(epoch, config.payout_policy, self._user_weighted_stake(user))
        require(quote.payout > 0, FundsError("NothingToClaim", epoch.epoch_id, user))

        receipt.claimed_amount = quote.payout
        epoch.record_payout(quote.payout, quote.shortfall)
        self.total_claimed += quote.payout
        self.currency.transfer(self, user, quote.payout)
        logger.info("Payout %s: epoch=%s amount=%s", user, epoch.epoch_id, quote.payout)
        return quote.payout

    # ----- views -----

    @view
    def pool_stats(self):
        config = self._config()
        return PoolStats(
            total_deposited=self.total_deposited,
            total_senior=self.total_senior,
            total_junior=self.total_junior,
            pool_balance=self.pool_balance(),
            payout_policy=config.payout_policy,
            epoch_cap=config.epoch_cap,
            total_claimed=self.total_claimed,
            carryover_shortfall=self.carryover_shortfall,
            rolling_mode=bool(config.rolling_mode),
            paused=bool(config.paused),
            current_epoch_id=self.current_epoch_id,
        )

    @view
    def user_position(self, user):
        return self._position(user)

    @view
    def epoch_stats(self, epoch_id=None):
        return self._epoch(epoch_id).as_dict()

    @view
    def get_claim(self, epoch_id, user):
        return self.claims.get(epoch_id, user)

    @view
    def quote_deposit(self, amount, with_referrer=False):
        config = self._config()
        return compute_fees(
            to_amount(amount), config.protocol_fee_bps, config.referral_fee_bps, has_referrer=with_referrer
        )

    @view
    def quote_withdraw(self, user, amount, tranche):
        config = self._config()
        check_tranche(tranche)
        amount = to_amount(amount)
        position = self._position(user)
        if position is None:
            available = Amount(0)
        else:
            available = position.withdrawable(tranche, time_control.now, config.lockup_seconds)
        return WithdrawQuote(
            can_withdraw=not config.paused and available >= amount,
            available=available,
            requested=amount,
        )

    @view
    def quote_user_payout(self, user, epoch_id=None):
        config = self._config()
        epoch = self._epoch(epoch_id)
        epoch.check_claimable()
        return compute_payout(epoch, config.payout_policy, self._user_weighted_stake(user))

