import asyncio
import logging
from typing import Optional

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

from batchpay.abi import BATCH_TRANSFER_ADMIN_ABI, ERC20_ABI
from batchpay.errors import (
    BatchPayError,
    ConfirmationCancelled,
    ConfirmationTimeout,
    NetworkError,
    TransactionReverted,
)
from batchpay.gas import FALLBACK_GAS_LIMIT, live_fees
from batchpay.ledger import SenderLocks
from batchpay.models import (
    NATIVE_DECIMALS,
    ConfirmationReceipt,
    GasProfile,
    PendingTransaction,
    TxStatus,
    Wallet,
    is_native,
)

log = logging.getLogger("batchpay.rpc")


class Web3LedgerClient:
    """LedgerClient backed by a JSON-RPC node through web3.py's AsyncWeb3.

    Transactions are signed locally with eth_account and sent raw, so the node
    never needs an unlocked account.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        chain_id: Optional[int] = None,
        confirmation_timeout: float = 180.0,
        poll_latency: float = 2.0,
        assume_decimals_if_fail: Optional[int] = None,
    ):
        self.w3 = w3
        self.confirmation_timeout = confirmation_timeout
        self.poll_latency = poll_latency
        self.assume_decimals_if_fail = assume_decimals_if_fail
        self._chain_id = chain_id
        self._locks = SenderLocks()

    @classmethod
    def from_url(cls, rpc_url: str, rpc_timeout: float = 30, **kwargs) -> "Web3LedgerClient":
        w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": rpc_timeout}))
        return cls(w3, **kwargs)

    # ---- reads ----

    async def get_balance(self, address, asset=None):
        address = Web3.to_checksum_address(address)
        if asset is None or is_native(asset):
            return await self._call("get_balance", self.w3.eth.get_balance(address))
        return await self._call("balanceOf", self._erc20(asset).functions.balanceOf(address).call())

    async def get_transaction_count(self, address):
        return await self._call(
            "get_transaction_count",
            self.w3.eth.get_transaction_count(Web3.to_checksum_address(address)),
        )

    async def get_allowance(self, asset, owner, spender):
        fn = self._erc20(asset).functions.allowance(
            Web3.to_checksum_address(owner), Web3.to_checksum_address(spender)
        )
        return await self._call("allowance", fn.call())

    async def get_decimals(self, asset):
        if asset is None or is_native(asset):
            return NATIVE_DECIMALS
        try:
            return await self._call("decimals", self._erc20(asset).functions.decimals().call())
        except NetworkError:
            if self.assume_decimals_if_fail is None:
                raise
            log.warning("decimals() failed for %s; assuming %d", asset, self.assume_decimals_if_fail)
            return self.assume_decimals_if_fail

    async def is_admin(self, contract, address):
        fn = self._admin_contract(contract).functions.admins(Web3.to_checksum_address(address))
        return await self._call("admins", fn.call())

    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = await self._call("chain_id", self.w3.eth.chain_id)
        return self._chain_id

    # ---- writes ----

    async def submit_batch_transfer(self, contract, asset, recipients, amounts, sender, gas_profile, value=None):
        if value is None:
            value = sum(amounts) if is_native(asset) else 0
        fn = self._admin_contract(contract).functions.batchTransfer(
            Web3.to_checksum_address(asset),
            [Web3.to_checksum_address(r) for r in recipients],
            list(amounts),
        )
        return await self._send("batchTransfer", fn, sender, gas_profile, value)

    async def submit_approval(self, asset, spender, amount, sender, gas_profile):
        fn = self._erc20(asset).functions.approve(Web3.to_checksum_address(spender), amount)
        return await self._send("approve", fn, sender, gas_profile)

    async def submit_admin_change(self, contract, address, sender, gas_profile, grant=True):
        functions = self._admin_contract(contract).functions
        target = Web3.to_checksum_address(address)
        fn = functions.addAdmin(target) if grant else functions.removeAdmin(target)
        return await self._send("addAdmin" if grant else "removeAdmin", fn, sender, gas_profile)

    async def await_confirmation(self, pending, confirmations=1, timeout=None, cancel=None):
        if confirmations < 1:
            raise ValueError("confirmations must be >= 1")
        timeout = self.confirmation_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            if cancel is not None and cancel.is_set():
                raise ConfirmationCancelled(pending.tx_hash)

            rcpt = await self._receipt_or_none(pending.tx_hash)
            if rcpt is not None:
                head = await self._call("block_number", self.w3.eth.block_number)
                if head - rcpt["blockNumber"] + 1 >= confirmations:
                    receipt = await self._to_receipt(rcpt, head)
                    log.info(
                        "%s confirmed in block %d (%d confs, gas %d)",
                        pending.tx_hash, receipt.block_number, confirmations, receipt.gas_used,
                    )
                    if not receipt.succeeded:
                        raise TransactionReverted(pending.tx_hash, receipt)
                    return receipt

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ConfirmationTimeout(pending.tx_hash, confirmations, timeout)
            await self._sleep(min(self.poll_latency, remaining), cancel)

    # ---- internals ----

    def _erc20(self, asset):
        return self.w3.eth.contract(address=Web3.to_checksum_address(asset), abi=ERC20_ABI)

    def _admin_contract(self, contract):
        return self.w3.eth.contract(address=Web3.to_checksum_address(contract), abi=BATCH_TRANSFER_ADMIN_ABI)

    async def _call(self, operation, awaitable):
        try:
            return await awaitable
        except BatchPayError:
            raise
        except Exception as e:
            raise NetworkError(operation, e) from e

    async def _fee_fields(self, gas_profile: GasProfile):
        if gas_profile.max_fee_per_gas is not None and gas_profile.max_priority_fee_per_gas is not None:
            return {
                "maxFeePerGas": gas_profile.max_fee_per_gas,
                "maxPriorityFeePerGas": gas_profile.max_priority_fee_per_gas,
            }
        fees = await self._call("fees", live_fees(self.w3))
        if gas_profile.max_priority_fee_per_gas is not None:
            fees["maxPriorityFeePerGas"] = gas_profile.max_priority_fee_per_gas
        if gas_profile.max_fee_per_gas is not None:
            fees["maxFeePerGas"] = gas_profile.max_fee_per_gas
        return fees

    async def _send(self, operation, fn, sender: Wallet, gas_profile: GasProfile, value: int = 0):
        chain_id = await self.chain_id()
        fee_fields = await self._fee_fields(gas_profile)

        async with self._locks.hold(sender.address):
            # read right before signing; the lock keeps other sends from this sender out
            nonce = await self._call(
                "get_transaction_count",
                self.w3.eth.get_transaction_count(sender.address, "pending"),
            )
            tx = await self._call(operation, fn.build_transaction({
                "chainId": chain_id,
                "from": sender.address,
                "nonce": nonce,
                "value": value,
                "gas": gas_profile.gas_limit or FALLBACK_GAS_LIMIT,
                "maxFeePerGas": fee_fields["maxFeePerGas"],
                "maxPriorityFeePerGas": fee_fields["maxPriorityFeePerGas"],
                "type": 2,
            }))
            if gas_profile.gas_limit is None:
                try:
                    tx["gas"] = await self.w3.eth.estimate_gas(tx)
                except Exception as e:
                    log.warning("estimate_gas failed for %s (%r); using %d", operation, e, tx["gas"])

            signed = Account.sign_transaction(tx, sender.private_key)
            # works on both eth-account v0.10 and v0.13
            raw = getattr(signed, "rawTransaction", None) or getattr(signed, "raw_transaction")
            txh = await self._call("send_raw_transaction", self.w3.eth.send_raw_transaction(raw))

        tx_hash = Web3.to_hex(txh)
        log.info("→ %s sent from %s | nonce %d | tx: %s", operation, sender.address, nonce, tx_hash)
        return PendingTransaction(tx_hash, sender.address, nonce)

    async def _receipt_or_none(self, tx_hash):
        try:
            return await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except Exception as e:
            raise NetworkError("get_transaction_receipt", e) from e

    async def _to_receipt(self, rcpt, head) -> ConfirmationReceipt:
        egp = rcpt.get("effectiveGasPrice")
        if egp is None:
            egp = await self._call("gas_price", self.w3.eth.gas_price)
        return ConfirmationReceipt(
            tx_hash=Web3.to_hex(rcpt["transactionHash"]),
            status=TxStatus.SUCCEEDED if rcpt["status"] == 1 else TxStatus.REVERTED,
            block_number=rcpt["blockNumber"],
            confirming_block=head,
            gas_used=rcpt["gasUsed"],
            effective_gas_price=egp,
        )

    async def _sleep(self, seconds, cancel):
        if cancel is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(cancel.wait(), seconds)
        except asyncio.TimeoutError:
            pass
