"""Batch disbursement: one contract call pays every recipient, then balances
are checked against what each recipient was owed.

A run walks VALIDATING -> BALANCE_SNAPSHOTTING -> SUBMITTING ->
AWAITING_CONFIRMATION -> RECONCILING and ends SUCCEEDED or FAILED. Nothing is
resubmitted automatically; a failed run is re-driven by the caller.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Dict, List, Optional, Sequence

from batchpay.addresses import require_address
from batchpay.errors import BalanceMismatch, BatchPayError, NotAdmin, TransactionFailed
from batchpay.ledger import LedgerClient, SenderLocks
from batchpay.models import (
    BatchRequest,
    ConfirmationReceipt,
    GasProfile,
    TransferRecord,
    Wallet,
)

log = logging.getLogger("batchpay.disburse")


class DisbursementState(str, Enum):
    VALIDATING = "validating"
    BALANCE_SNAPSHOTTING = "balance_snapshotting"
    SUBMITTING = "submitting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    RECONCILING = "reconciling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class BatchDisburser:
    def __init__(
        self,
        ledger: LedgerClient,
        gas_profile: GasProfile,
        confirmation_timeout: Optional[float] = None,
        check_admin: bool = True,
    ):
        self.ledger = ledger
        self.gas_profile = gas_profile
        self.confirmation_timeout = confirmation_timeout
        self.check_admin = check_admin
        self._senders = SenderLocks()

    async def disburse(
        self,
        contract: str,
        asset: str,
        recipients: Sequence[str],
        amounts: Sequence[int],
        sender: Wallet,
        confirmations: int = 1,
        cancel: Optional[asyncio.Event] = None,
    ) -> ConfirmationReceipt:
        state = DisbursementState.VALIDATING
        try:
            request = BatchRequest(asset, tuple(recipients), tuple(amounts), sender)
            contract = require_address(contract)
            if confirmations < 1:
                raise ValueError("confirmations must be >= 1")

            # whole runs from one sender are serialized so snapshots and nonces never interleave
            async with self._senders.hold(sender.address):
                if self.check_admin and not await self.ledger.is_admin(contract, sender.address):
                    raise NotAdmin(sender.address, contract)

                state = DisbursementState.BALANCE_SNAPSHOTTING
                watched = self._watched_addresses(request)
                before = await self._snapshot(watched, request.asset)

                state = DisbursementState.SUBMITTING
                if not request.is_native:
                    await self._ensure_allowance(contract, request, confirmations, cancel)
                log.info(
                    "Batch transfer of %d base units (%d recipients, asset %s) from %s",
                    request.total, len(request.recipients), request.asset, sender.address,
                )
                started = time.monotonic()
                pending = await self.ledger.submit_batch_transfer(
                    contract, request.asset, request.recipients, request.amounts, sender, self.gas_profile
                )

                state = DisbursementState.AWAITING_CONFIRMATION
                receipt = await self.ledger.await_confirmation(
                    pending, confirmations, timeout=self.confirmation_timeout, cancel=cancel
                )
                log.debug("%s confirmed after %.2fs", pending.tx_hash, time.monotonic() - started)

                state = DisbursementState.RECONCILING
                if not receipt.succeeded:
                    raise TransactionFailed(pending.tx_hash, receipt)
                after = await self._snapshot(watched, request.asset)
                self._reconcile(request, receipt, watched, before, after)
        except BatchPayError as e:
            e.failed_in = state
            e.state = DisbursementState.FAILED
            log.error("Disbursement failed while %s: %s", state.value, e)
            raise

        log.info("Batch transfer completed successfully: %s", receipt.tx_hash)
        return receipt

    async def disburse_records(
        self,
        contract: str,
        asset: str,
        records: Sequence[TransferRecord],
        sender: Wallet,
        confirmations: int = 1,
        cancel: Optional[asyncio.Event] = None,
    ) -> ConfirmationReceipt:
        decimals = await self.ledger.get_decimals(asset)
        amounts = [r.to_base_units(decimals, i) for i, r in enumerate(records)]
        return await self.disburse(
            contract, asset, [r.to_address for r in records], amounts, sender, confirmations, cancel
        )

    async def _ensure_allowance(self, contract, request: BatchRequest, confirmations, cancel):
        sender = request.sender
        allowance = await self.ledger.get_allowance(request.asset, sender.address, contract)
        if allowance >= request.total:
            return
        log.info("Allowance %d < %d; approving %s", allowance, request.total, contract)
        pending = await self.ledger.submit_approval(
            request.asset, contract, request.total, sender, self.gas_profile
        )
        # the contract checks allowance at call time, so approval must be final first
        receipt = await self.ledger.await_confirmation(
            pending, confirmations, timeout=self.confirmation_timeout, cancel=cancel
        )
        if not receipt.succeeded:
            raise TransactionFailed(pending.tx_hash, receipt)

    def _watched_addresses(self, request: BatchRequest) -> List[str]:
        seen: Dict[str, str] = {}
        for r in request.recipients:
            seen.setdefault(r.lower(), r)
        seen.setdefault(request.sender.address.lower(), request.sender.address)
        return list(seen.values())

    async def _snapshot(self, addresses: List[str], asset: str) -> Dict[str, int]:
        balances = await asyncio.gather(*(self.ledger.get_balance(a, asset) for a in addresses))
        return {a.lower(): b for a, b in zip(addresses, balances)}

    def _reconcile(self, request: BatchRequest, receipt, watched, before, after):
        # duplicates are credited per occurrence, so expectations are summed per address
        expected: Dict[str, int] = {a.lower(): 0 for a in watched}
        first_index: Dict[str, int] = {}
        for i, (r, amt) in enumerate(zip(request.recipients, request.amounts)):
            expected[r.lower()] += amt
            first_index.setdefault(r.lower(), i)
        sender = request.sender.address.lower()
        expected[sender] -= request.total
        if request.is_native:
            expected[sender] -= receipt.fee

        for address in watched:
            key = address.lower()
            actual = after[key] - before[key]
            if actual != expected[key]:
                raise BalanceMismatch(address, first_index.get(key), expected[key], actual)
