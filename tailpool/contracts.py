import threading
import time
from contextlib import contextmanager
from decimal import Decimal
from functools import wraps

from m9g import Model
from m9g.fields import DictField, IntField, ListField, StringField, TupleField

from .wadray import Amount


class RevertError(Exception):
    pass


class RevertCustomError(RevertError):
    """Revert with a machine readable code, like `require(..., CustomError(args))` in solidity"""

    def __init__(self, code, *args):
        self.code = code
        self.error_args = args
        if args:
            message = f"{code}({', '.join(str(arg) for arg in args)})"
        else:
            message = code
        super().__init__(message)


class ValidationError(RevertCustomError):
    pass


class AuthorizationError(RevertCustomError):
    pass


class StateError(RevertCustomError):
    pass


class FundsError(RevertCustomError):
    pass


class DuplicateClaimError(RevertCustomError):
    pass


class StalenessError(RevertCustomError):
    pass


def require(condition, error=None):
    if not condition:
        if isinstance(error, RevertError):
            raise error
        raise RevertError(error or "required condition not met")


class AmountField(IntField):
    FIELD_TYPE = Amount

    def adapt(self, value):
        if type(value) in (str, float, Decimal, int):
            return Amount.from_value(value)
        elif isinstance(value, Amount):
            return value
        raise ValueError("Invalid value")


class BoolField(IntField):
    FIELD_TYPE = bool

    def adapt(self, value):
        if isinstance(value, (bool, int)):
            return bool(value)
        raise ValueError("Invalid value")


class AddressField(StringField):
    pass


class ContractProxy(str):
    def _get_contract(self):
        return Contract.manager.findByPrimaryKey(self)

    def __getattr__(self, attr_name):
        return getattr(self._get_contract(), attr_name)


class ContractProxyField(AddressField):
    FIELD_TYPE = ContractProxy

    def adapt(self, value):
        if type(value) == str:
            return ContractProxy(value)
        elif value is None:
            return None
        elif isinstance(value, ContractProxy):
            return value
        elif isinstance(value, Contract):
            return ContractProxy(value.contract_id)
        raise ValueError("Invalid value")


_current_transaction = None
_transaction_lock = threading.RLock()
_callers = threading.local()


class RWTransaction:
    def __init__(self):
        self.modified_contract_ids = set()
        self.modified_contracts = []
        self.track_count = 0

    @contextmanager
    def track(self, contract):
        if contract.contract_id not in self.modified_contract_ids:
            self.modified_contract_ids.add(contract.contract_id)
            self.modified_contracts.append(contract)
            contract.push_version()
        self.track_count += 1
        try:
            yield self
        except Exception:
            self.track_count -= 1
            if self.track_count == 0:
                self.archive()
                self._on_revert()
            raise
        else:
            self.track_count -= 1
            if self.track_count == 0:
                self.archive()
                self._on_end()

    def _on_revert(self):
        while self.modified_contracts:
            contract = self.modified_contracts.pop()
            self.modified_contract_ids.remove(contract.contract_id)
            contract.pop_version()

    def _on_end(self):
        for contract in self.modified_contracts:
            contract.drop_version()
        self.modified_contracts = []
        self.modified_contract_ids = set()

    def archive(self):
        "Archives the transaction - No longer current transaction"
        global _current_transaction
        _current_transaction = None


class ROTransaction:
    def __init__(self):
        self.modified_contracts = []
        self.serialized_contracts = {}
        self.track_count = 0

    @contextmanager
    def track(self, contract):
        if contract.contract_id not in self.serialized_contracts:
            self.serialized_contracts[contract.contract_id] = contract.serialize("pydict")
            self.modified_contracts.append(contract)
        self.track_count += 1
        try:
            yield self
        finally:
            self.track_count -= 1
            if self.track_count == 0:
                self.archive()
                self._on_end()

    def _on_end(self):
        while self.modified_contracts:
            contract = self.modified_contracts.pop()
            assert contract.serialize("pydict") == self.serialized_contracts[
                contract.contract_id
            ], f"Contract {contract.contract_id} modified in view"
            del self.serialized_contracts[contract.contract_id]

    def archive(self):
        "Archives the transaction - No longer current transaction"
        global _current_transaction
        _current_transaction = None


def external(method):
    """Runs the method as an atomic transaction.

    Every contract touched by an external call gets a snapshot on first use. If an exception
    escapes the outermost call, all of them are restored. Transactions are serialized with a
    process wide reentrant lock, so concurrent callers never see partial effects.
    """
    @wraps(method)
    def rollback_on_error(self, *args, **kwargs):
        global _current_transaction
        with _transaction_lock:
            if _current_transaction is None:
                _current_transaction = RWTransaction()
            elif isinstance(_current_transaction, ROTransaction):
                raise RuntimeError("Calling external from view")

            with _current_transaction.track(self):
                return method(self, *args, **kwargs)

    return rollback_on_error


def view(method):
    @wraps(method)
    def verify_unchanged(self, *args, **kwargs):
        global _current_transaction
        with _transaction_lock:
            if _current_transaction is None:
                _current_transaction = ROTransaction()

            with _current_transaction.track(self):
                return method(self, *args, **kwargs)

    return verify_unchanged


def only_role(*roles):
    def decorator(method):
        @wraps(method)
        def inner(self, *args, **kwargs):
            if any(self.has_role(role, self.running_as) for role in roles):
                return method(self, *args, **kwargs)
            raise AuthorizationError("Unauthorized", self.running_as, "|".join(roles))

        return inner
    return decorator


class ContractManager:
    def __init__(self):
        self._contracts = {}

    def add_contract(self, pk, contract):
        self._contracts[pk] = contract

    def findByPrimaryKey(self, pk):
        return self._contracts[pk]

    def clean_all(self):
        self._contracts = {}


class Contract(Model):
    version_format = "pydict"
    max_versions = 10
    contract_id = StringField(pk=True)

    manager = ContractManager()

    def __init__(self, contract_id=None, **kwargs):
        if contract_id is None:
            contract_id = f"{self.__class__.__name__}-{id(self)}"
        super().__init__(contract_id=contract_id, **kwargs)
        self._versions = []
        self.manager.add_contract(self.contract_id, self)

    @contextmanager
    def as_(self, user):
        """Runs the block with `user` as the caller identity.

        The identity is kept per thread, so concurrent callers of the same contract don't see each
        other's identity.
        """
        callers = _callers.__dict__.setdefault("stack", {})
        stack = callers.setdefault(self.contract_id, [])
        stack.append(user)
        try:
            yield self
        finally:
            stack.pop()

    @property
    def running_as(self):
        stack = _callers.__dict__.get("stack", {}).get(self.contract_id)
        if stack:
            return stack[-1]
        return getattr(self, "_running_as", None)

    def push_version(self, version_name=None):
        if version_name is None:
            version_name = "v%.3f" % time.time()
        serialized = self.serialize(self.version_format)
        if not hasattr(self, "_versions"):
            self._versions = [(serialized, version_name)]
        else:
            self._versions.append((serialized, version_name))
        if len(self._versions) > self.max_versions:
            self._versions.pop(0)

    def pop_version(self, version_name=None):
        if version_name is None:
            serialized, _ = self._versions.pop()
        else:
            version_index = [i for i, (_, v) in enumerate(self._versions) if v == version_name]
            serialized, _ = self._versions.pop(version_index[0])
        self.in_place_deserialize(serialized, format=self.version_format)

    def drop_version(self):
        "Forgets the last snapshot once the transaction committed"
        if self._versions:
            self._versions.pop()


class AccessControlContract(Contract):
    DEFAULT_ADMIN_ROLE = ""

    owner = AddressField(default="owner")
    roles = DictField(
        StringField(),
        TupleField((ListField(AddressField()), StringField())),
        default={}
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._running_as = self.owner
        self.roles[self.DEFAULT_ADMIN_ROLE] = ([self.owner], self.DEFAULT_ADMIN_ROLE)

    def has_role(self, role, account):
        members = self.roles.get(role, ((), ""))[0]
        return account in members

    def _check_role_admin(self, role):
        admin_role = self.roles.get(role, ((), self.DEFAULT_ADMIN_ROLE))[1]
        require(
            self.has_role(admin_role, self.running_as),
            AuthorizationError("Unauthorized", self.running_as, admin_role),
        )
        return admin_role

    @external
    def grant_role(self, role, user):
        admin_role = self._check_role_admin(role)
        members = list(self.roles.get(role, ([], admin_role))[0])
        if user not in members:
            members.append(user)
        self.roles[role] = (members, admin_role)

    @external
    def revoke_role(self, role, user):
        admin_role = self._check_role_admin(role)
        members = [member for member in self.roles.get(role, ([], admin_role))[0] if member != user]
        self.roles[role] = (members, admin_role)

    def role_members(self, role):
        return list(self.roles.get(role, ((), ""))[0])


class ERC20Token(AccessControlContract):
    """In-memory stable asset. Holds custody balances and executes the transfers the pool
    authorizes."""

    ZERO = Amount(0)

    name = StringField()
    symbol = StringField(default="")
    decimals = IntField(default=6)
    balances = DictField(AddressField(), AmountField(), default={})
    allowances = DictField(
        TupleField((AddressField(), AddressField())),
        AmountField(),
        default={}
    )

    _total_supply = AmountField(default=ZERO)

    def __init__(self, **kwargs):
        if "initial_supply" in kwargs:
            initial_supply = kwargs.pop("initial_supply")
        else:
            initial_supply = None
        super().__init__(**kwargs)
        if initial_supply:
            self.mint(self.owner, initial_supply)

    @external
    def mint(self, address, amount):
        self.balances[address] = self.balances.get(address, self.ZERO) + amount
        self._total_supply += amount

    def balance_of(self, account):
        if isinstance(account, (Contract, ContractProxy)):
            account = account.contract_id
        return self.balances.get(account, self.ZERO)

    @external
    def transfer(self, sender, recipient, amount):
        return self._transfer(sender, recipient, amount)

    def _transfer(self, sender, recipient, amount):
        if isinstance(sender, (Contract, ContractProxy)):
            sender = sender.contract_id
        if isinstance(recipient, (Contract, ContractProxy)):
            recipient = recipient.contract_id
        require(recipient is not None, "ERC20: transfer to the zero address")
        if self.balance_of(sender) < amount:
            raise RevertError("ERC20: transfer amount exceeds balance")
        elif self.balances[sender] == amount:
            del self.balances[sender]
        else:
            self.balances[sender] -= amount
        self.balances[recipient] = self.balances.get(recipient, self.ZERO) + amount
        return True

    def allowance(self, owner, spender):
        return self.allowances.get((owner, spender), self.ZERO)

    def _approve(self, owner, spender, amount):
        if isinstance(owner, (Contract, ContractProxy)):
            owner = owner.contract_id
        if isinstance(spender, (Contract, ContractProxy)):
            spender = spender.contract_id
        require(owner is not None, "ERC20: approve from the zero address")
        require(spender is not None, "ERC20: approve to the zero address")
        if amount == self.ZERO:
            try:
                del self.allowances[(owner, spender)]
            except KeyError:
                pass
        else:
            self.allowances[(owner, spender)] = amount

    @external
    def approve(self, sender, spender, amount):
        self._approve(sender, spender, amount)

    @external
    def transfer_from(self, spender, sender, recipient, amount):
        if isinstance(spender, (Contract, ContractProxy)):
            spender = spender.contract_id
        allowance = self.allowances.get((sender, spender), self.ZERO)
        if allowance < amount:
            raise RevertError("ERC20: insufficient allowance")
        self._transfer(sender, recipient, amount)
        self._approve(sender, spender, allowance - amount)
        return True

    def total_supply(self):
        return self._total_supply
