import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional, Protocol, Sequence, Set, Tuple

from web3 import Web3

from batchpay.addresses import require_address
from batchpay.errors import (
    ConfirmationCancelled,
    NetworkError,
    TransactionReverted,
)
from batchpay.models import (
    NATIVE_ASSET,
    NATIVE_DECIMALS,
    ConfirmationReceipt,
    GasProfile,
    PendingTransaction,
    TxStatus,
    Wallet,
    is_native,
)

log = logging.getLogger("batchpay.ledger")


class LedgerClient(Protocol):
    async def get_balance(self, address: str, asset: str = NATIVE_ASSET) -> int: ...
    async def get_transaction_count(self, address: str) -> int: ...
    async def get_allowance(self, asset: str, owner: str, spender: str) -> int: ...
    async def get_decimals(self, asset: str) -> int: ...
    async def is_admin(self, contract: str, address: str) -> bool: ...

    async def submit_batch_transfer(
        self,
        contract: str,
        asset: str,
        recipients: Sequence[str],
        amounts: Sequence[int],
        sender: Wallet,
        gas_profile: GasProfile,
        value: Optional[int] = None,
    ) -> PendingTransaction: ...

    async def submit_approval(
        self, asset: str, spender: str, amount: int, sender: Wallet, gas_profile: GasProfile
    ) -> PendingTransaction: ...

    async def submit_admin_change(
        self, contract: str, address: str, sender: Wallet, gas_profile: GasProfile, grant: bool = True
    ) -> PendingTransaction: ...

    async def await_confirmation(
        self,
        pending: PendingTransaction,
        confirmations: int = 1,
        timeout: Optional[float] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> ConfirmationReceipt: ...


class SenderLocks:
    """One asyncio.Lock per sender address, so nonce read + broadcast never interleave."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    def __len__(self):
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, address: str):
        key = address.lower()
        lock = self._locks.setdefault(key, asyncio.Lock())
        # count waiters too, so a lock is only dropped once nobody can still acquire it
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]


# gas charged by the simulator
SIM_BASE_GAS = 21_000
SIM_GAS_PER_RECIPIENT = 10_000
SIM_APPROVE_GAS = 46_000
SIM_ADMIN_GAS = 45_000


class SimulatedLedgerClient:
    """Deterministic in-memory ledger implementing the LedgerClient protocol.

    Submissions execute atomically when they are made: a batch either moves
    every amount or, on revert, moves nothing (the fee is still charged, as on
    chain). Confirmation waits return at once and advance the block height to
    the requested depth.
    """

    def __init__(self, gas_price: int = 0, start_block: int = 1):
        self.gas_price = gas_price
        self.block_number = start_block
        self._balances: Dict[Tuple[str, str], int] = {}
        self._nonces: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str, str], int] = {}
        self._tokens: Dict[str, int] = {}
        self._admins: Dict[str, Set[str]] = {}
        self._mined: Dict[str, Tuple[TxStatus, int, int]] = {}
        self._locks = SenderLocks()

    # ---- setup helpers ----

    def deploy_contract(self, contract: str, owner: str):
        # deployer is an admin by default
        self._admins[contract.lower()] = {owner.lower()}

    def add_token(self, asset: str, decimals: int = 18):
        self._tokens[asset.lower()] = decimals

    def set_balance(self, address: str, amount: int, asset: str = None):
        self._balances[self._key(asset, address)] = amount

    def set_transaction_count(self, address: str, count: int):
        self._nonces[address.lower()] = count

    # ---- reads ----

    async def get_balance(self, address, asset=None):
        return self._balance(asset, address)

    async def get_transaction_count(self, address):
        return self._nonces.get(address.lower(), 0)

    async def get_allowance(self, asset, owner, spender):
        return self._allowances.get((asset.lower(), owner.lower(), spender.lower()), 0)

    async def get_decimals(self, asset):
        if asset is None or is_native(asset):
            return NATIVE_DECIMALS
        try:
            return self._tokens[asset.lower()]
        except KeyError:
            raise NetworkError("decimals", f"no token at {asset}") from None

    async def is_admin(self, contract, address):
        return address.lower() in self._admins.get(contract.lower(), set())

    # ---- writes ----

    async def submit_batch_transfer(self, contract, asset, recipients, amounts, sender, gas_profile, value=None):
        total = sum(amounts)
        native = is_native(asset)
        if value is None:
            value = total if native else 0
        gas_used = SIM_BASE_GAS + SIM_GAS_PER_RECIPIENT * len(recipients)

        def execute():
            if not self._admin_of(contract, sender.address):
                return "caller is not an admin"
            if len(recipients) != len(amounts):
                return "length mismatch"
            if native:
                if value < total:
                    return "insufficient value"
                for to, amt in zip(recipients, amounts):
                    self._credit(None, to, amt)
                self._credit(None, contract, value - total)
                return None
            if value != 0:
                return "value sent with token transfer"
            if asset.lower() not in self._tokens:
                return "unknown token"
            allowance_key = (asset.lower(), sender.address.lower(), contract.lower())
            if self._allowances.get(allowance_key, 0) < total:
                return "insufficient allowance"
            if self._balance(asset, sender.address) < total:
                return "insufficient token balance"
            self._allowances[allowance_key] -= total
            self._credit(asset, sender.address, -total)
            for to, amt in zip(recipients, amounts):
                self._credit(asset, to, amt)
            return None

        return await self._mine(sender, value, gas_used, gas_profile, execute)

    async def submit_approval(self, asset, spender, amount, sender, gas_profile):
        def execute():
            if asset.lower() not in self._tokens:
                return "unknown token"
            self._allowances[(asset.lower(), sender.address.lower(), spender.lower())] = amount
            return None

        return await self._mine(sender, 0, SIM_APPROVE_GAS, gas_profile, execute)

    async def submit_admin_change(self, contract, address, sender, gas_profile, grant=True):
        def execute():
            if not self._admin_of(contract, sender.address):
                return "caller is not an admin"
            admins = self._admins[contract.lower()]
            if grant:
                admins.add(address.lower())
            else:
                admins.discard(address.lower())
            return None

        return await self._mine(sender, 0, SIM_ADMIN_GAS, gas_profile, execute)

    async def await_confirmation(self, pending, confirmations=1, timeout=None, cancel=None):
        if confirmations < 1:
            raise ValueError("confirmations must be >= 1")
        if cancel is not None and cancel.is_set():
            raise ConfirmationCancelled(pending.tx_hash)
        try:
            status, mined_in, gas_used = self._mined[pending.tx_hash]
        except KeyError:
            raise NetworkError("await_confirmation", f"unknown transaction {pending.tx_hash}") from None
        self.block_number = max(self.block_number, mined_in + confirmations - 1)
        receipt = ConfirmationReceipt(
            tx_hash=pending.tx_hash,
            status=status,
            block_number=mined_in,
            confirming_block=self.block_number,
            gas_used=gas_used,
            effective_gas_price=self.gas_price,
        )
        if not receipt.succeeded:
            raise TransactionReverted(pending.tx_hash, receipt)
        return receipt

    # ---- internals ----

    def _key(self, asset, address):
        asset = (asset or NATIVE_ASSET).lower()
        return asset, address.lower()

    def _balance(self, asset, address):
        return self._balances.get(self._key(asset, address), 0)

    def _credit(self, asset, address, amount):
        key = self._key(asset, address)
        self._balances[key] = self._balances.get(key, 0) + amount

    def _admin_of(self, contract, address):
        return address.lower() in self._admins.get(contract.lower(), set())

    async def _mine(self, sender, value, gas_used, gas_profile, execute):
        if gas_profile.gas_limit is not None and gas_used > gas_profile.gas_limit:
            gas_used = gas_profile.gas_limit
            out_of_gas = True
        else:
            out_of_gas = False
        fee = gas_used * self.gas_price
        async with self._locks.hold(sender.address):
            nonce = await self.get_transaction_count(sender.address)
            if self._balance(None, sender.address) < value + fee:
                raise NetworkError("send_raw_transaction", "insufficient funds for gas * price + value")

            # snapshot so a revert leaves no partial effects
            balances, allowances = dict(self._balances), dict(self._allowances)
            admins = {c: set(a) for c, a in self._admins.items()}
            self._credit(None, sender.address, -value)
            reason = "out of gas" if out_of_gas else execute()
            if reason is not None:
                self._balances, self._allowances, self._admins = balances, allowances, admins
                log.info("Simulated tx from %s reverted: %s", sender.address, reason)
            self._credit(None, sender.address, -fee)

            self.block_number += 1
            self._nonces[sender.address.lower()] = nonce + 1
            tx_hash = Web3.to_hex(Web3.keccak(text=f"{sender.address.lower()}:{nonce}"))
            status = TxStatus.REVERTED if reason else TxStatus.SUCCEEDED
            self._mined[tx_hash] = (status, self.block_number, gas_used)
        return PendingTransaction(tx_hash, require_address(sender.address), nonce)
