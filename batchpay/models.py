from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, localcontext
from enum import Enum
from typing import Optional, Tuple

from eth_account import Account

from batchpay.addresses import ZERO_ADDRESS, require_address, same_address
from batchpay.errors import (
    AmountOverflow,
    EmptyRecipientList,
    InvalidAmount,
    InvalidWallet,
    LengthMismatch,
)

NATIVE_ASSET = ZERO_ADDRESS
NATIVE_DECIMALS = 18
UINT256_MAX = 2**256 - 1


def is_native(asset: str) -> bool:
    return same_address(asset, NATIVE_ASSET)


def to_base_units(amount, decimals: int = NATIVE_DECIMALS, index=None) -> int:
    """'1.5' -> 1500000000000000000 for 18 decimals. Rejects values that do not
    land on a whole smallest unit instead of silently truncating them."""
    try:
        human = Decimal(str(amount).strip())
    except InvalidOperation:
        raise InvalidAmount(amount, "not a number", index) from None
    if not human.is_finite():
        raise InvalidAmount(amount, "not a number", index)
    if human < 0:
        raise InvalidAmount(amount, "negative", index)
    with localcontext() as ctx:
        ctx.prec = 100
        try:
            scaled = human.scaleb(decimals)
            whole = scaled.to_integral_value()
        except ArithmeticError:
            raise InvalidAmount(amount, "too large", index) from None
        if scaled != whole:
            raise InvalidAmount(amount, f"more than {decimals} decimals", index)
        return int(scaled)


def from_base_units(value: int, decimals: int = NATIVE_DECIMALS) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 100
        return Decimal(value).scaleb(-decimals)


@dataclass(frozen=True)
class Wallet:
    address: str
    private_key: str = field(repr=False)

    @classmethod
    def from_private_key(cls, private_key: str) -> "Wallet":
        acct = Account.from_key(private_key)
        return cls(acct.address, "0x" + bytes(acct.key).hex())

    @classmethod
    def from_record(cls, address: str, private_key: str) -> "Wallet":
        try:
            wallet = cls.from_private_key(private_key)
        except Exception:
            # eth_account raises several types for bad keys; never echo the key
            raise InvalidWallet(address, None, "private key is malformed") from None
        if not same_address(wallet.address, address):
            raise InvalidWallet(address, wallet.address)
        return wallet


@dataclass(frozen=True)
class TransferRecord:
    to_address: str
    amount: str
    from_address: Optional[str] = None

    def to_base_units(self, decimals: int = NATIVE_DECIMALS, index=None) -> int:
        return to_base_units(self.amount, decimals, index)


@dataclass(frozen=True)
class BatchRequest:
    asset: str
    recipients: Tuple[str, ...]
    amounts: Tuple[int, ...]
    sender: Wallet

    def __post_init__(self):
        recipients, amounts = tuple(self.recipients), tuple(self.amounts)
        if not recipients:
            raise EmptyRecipientList()
        if len(recipients) != len(amounts):
            raise LengthMismatch(len(recipients), len(amounts))
        checked = tuple(require_address(r, i) for i, r in enumerate(recipients))
        for i, amt in enumerate(amounts):
            if isinstance(amt, bool) or not isinstance(amt, int):
                raise InvalidAmount(amt, "not an integer amount", i)
            if amt < 0:
                raise InvalidAmount(amt, "negative", i)
        total = sum(amounts)
        if total > UINT256_MAX:
            raise AmountOverflow(total, UINT256_MAX)
        object.__setattr__(self, "asset", require_address(self.asset))
        object.__setattr__(self, "recipients", checked)
        object.__setattr__(self, "amounts", amounts)

    @property
    def total(self) -> int:
        return sum(self.amounts)

    @property
    def is_native(self) -> bool:
        return is_native(self.asset)


@dataclass(frozen=True)
class PendingTransaction:
    tx_hash: str
    sender: str
    nonce: int


class TxStatus(str, Enum):
    SUCCEEDED = "succeeded"
    REVERTED = "reverted"


@dataclass(frozen=True)
class ConfirmationReceipt:
    tx_hash: str
    status: TxStatus
    block_number: int
    confirming_block: int
    gas_used: int
    effective_gas_price: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status is TxStatus.SUCCEEDED

    @property
    def fee(self) -> int:
        return self.gas_used * self.effective_gas_price


@dataclass(frozen=True)
class GasProfile:
    # None means ask the node: estimate gas / sample the latest block
    gas_limit: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
