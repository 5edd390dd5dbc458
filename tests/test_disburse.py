import asyncio

import pytest

from batchpay.disburse import BatchDisburser, DisbursementState
from batchpay.errors import (
    BalanceMismatch,
    ConfirmationCancelled,
    EmptyRecipientList,
    InvalidAddress,
    InvalidAmount,
    LengthMismatch,
    NotAdmin,
    TransactionFailed,
)
from batchpay.ledger import SimulatedLedgerClient
from batchpay.models import NATIVE_ASSET, TransferRecord

from conftest import CONTRACT, ETHER, TOKEN, recipient


@pytest.fixture
def disburser(ledger, gas_profile):
    return BatchDisburser(ledger, gas_profile)


async def balances(ledger, addresses, asset=None):
    return [await ledger.get_balance(a, asset) for a in addresses]


class TestNative:
    async def test_single_recipient(self, ledger, disburser, admin):
        to = recipient(0)
        receipt = await disburser.disburse(CONTRACT, NATIVE_ASSET, [to], [ETHER], admin)
        assert receipt.succeeded
        assert await ledger.get_balance(to) == ETHER
        assert await ledger.get_balance(admin.address) == 99 * ETHER

    async def test_ten_recipients(self, ledger, disburser, admin):
        recipients = [recipient(i) for i in range(10)]
        amounts = [(i + 1) * ETHER // 10 for i in range(10)]
        for i, r in enumerate(recipients):
            ledger.set_balance(r, i)
        before = await balances(ledger, recipients)

        await disburser.disburse(CONTRACT, NATIVE_ASSET, recipients, amounts, admin)

        after = await balances(ledger, recipients)
        assert [a - b for a, b in zip(after, before)] == amounts

    async def test_fee_is_reconciled(self, admin, gas_profile):
        sim = SimulatedLedgerClient(gas_price=7)
        sim.deploy_contract(CONTRACT, admin.address)
        sim.set_balance(admin.address, 10 * ETHER)

        receipt = await BatchDisburser(sim, gas_profile).disburse(
            CONTRACT, NATIVE_ASSET, [recipient(0), recipient(1)], [ETHER, 2 * ETHER], admin
        )
        assert receipt.fee == receipt.gas_used * 7 > 0
        assert await sim.get_balance(admin.address) == 7 * ETHER - receipt.fee

    async def test_duplicate_recipients_are_credited_per_occurrence(self, ledger, disburser, admin):
        a, b = recipient(0), recipient(1)
        await disburser.disburse(CONTRACT, NATIVE_ASSET, [a, b, a.upper().replace("0X", "0x")], [1, 2, 3], admin)
        assert await ledger.get_balance(a) == 4
        assert await ledger.get_balance(b) == 2

    async def test_confirmation_depth(self, ledger, disburser, admin):
        receipt = await disburser.disburse(
            CONTRACT, NATIVE_ASSET, [recipient(0)], [1], admin, confirmations=3
        )
        assert receipt.confirming_block - receipt.block_number == 2

    async def test_insufficient_attached_value_reverts(self, ledger, admin, gas_profile):
        recipients = [recipient(0), recipient(1), recipient(2)]
        pending = await ledger.submit_batch_transfer(
            CONTRACT, NATIVE_ASSET, recipients, [ETHER] * 3, admin, gas_profile, value=ETHER
        )
        with pytest.raises(TransactionFailed) as exc:
            await ledger.await_confirmation(pending, 1)
        assert exc.value.tx_hash == pending.tx_hash
        assert await balances(ledger, recipients) == [0, 0, 0]
        assert await ledger.get_balance(admin.address) == 100 * ETHER


class TestValidation:
    async def test_empty(self, disburser, admin):
        with pytest.raises(EmptyRecipientList) as exc:
            await disburser.disburse(CONTRACT, NATIVE_ASSET, [], [], admin)
        assert exc.value.state is DisbursementState.FAILED
        assert exc.value.failed_in is DisbursementState.VALIDATING

    @pytest.mark.parametrize("n_recipients,n_amounts", [(2, 1), (1, 2), (3, 0)])
    async def test_length_mismatch(self, ledger, disburser, admin, n_recipients, n_amounts):
        with pytest.raises(LengthMismatch):
            await disburser.disburse(
                CONTRACT, NATIVE_ASSET,
                [recipient(i) for i in range(n_recipients)], [1] * n_amounts, admin,
            )
        assert await ledger.get_transaction_count(admin.address) == 0

    async def test_invalid_recipient(self, disburser, admin):
        with pytest.raises(InvalidAddress) as exc:
            await disburser.disburse(CONTRACT, NATIVE_ASSET, [recipient(0), "0x12"], [1, 1], admin)
        assert exc.value.index == 1

    async def test_non_admin(self, ledger, disburser, other):
        ledger.set_balance(other.address, ETHER)
        with pytest.raises(NotAdmin):
            await disburser.disburse(CONTRACT, NATIVE_ASSET, [recipient(0)], [1], other)
        assert await ledger.get_transaction_count(other.address) == 0

    async def test_non_admin_reverts_on_chain(self, ledger, gas_profile, other):
        ledger.set_balance(other.address, ETHER)
        unchecked = BatchDisburser(ledger, gas_profile, check_admin=False)
        with pytest.raises(TransactionFailed) as exc:
            await unchecked.disburse(CONTRACT, NATIVE_ASSET, [recipient(0)], [1], other)
        assert exc.value.failed_in is DisbursementState.AWAITING_CONFIRMATION
        assert await ledger.get_balance(recipient(0)) == 0


class TestToken:
    async def test_approves_when_allowance_short(self, ledger, disburser, admin):
        recipients = [recipient(i) for i in range(10)]
        amounts = [100 * ETHER] * 10

        await disburser.disburse(CONTRACT, TOKEN, recipients, amounts, admin)

        assert await balances(ledger, recipients, TOKEN) == amounts
        assert await balances(ledger, recipients) == [0] * 10
        assert await ledger.get_balance(admin.address, TOKEN) == 999_000 * ETHER
        # approval + batch
        assert await ledger.get_transaction_count(admin.address) == 2
        assert await ledger.get_allowance(TOKEN, admin.address, CONTRACT) == 0

    async def test_skips_approval_when_allowance_covers(self, ledger, disburser, admin, gas_profile):
        pending = await ledger.submit_approval(TOKEN, CONTRACT, 10 * ETHER, admin, gas_profile)
        await ledger.await_confirmation(pending)

        await disburser.disburse(CONTRACT, TOKEN, [recipient(0)], [4 * ETHER], admin)

        assert await ledger.get_transaction_count(admin.address) == 2
        assert await ledger.get_allowance(TOKEN, admin.address, CONTRACT) == 6 * ETHER

    async def test_insufficient_token_balance(self, ledger, disburser, admin):
        ledger.set_balance(admin.address, 5, asset=TOKEN)
        with pytest.raises(TransactionFailed):
            await disburser.disburse(CONTRACT, TOKEN, [recipient(0), recipient(1)], [3, 3], admin)
        assert await balances(ledger, [recipient(0), recipient(1)], TOKEN) == [0, 0]
        assert await ledger.get_balance(admin.address, TOKEN) == 5

    async def test_records_use_token_decimals(self, ledger, disburser, admin):
        usdc = "0x" + "ab" * 20
        ledger.add_token(usdc, decimals=6)
        ledger.set_balance(admin.address, 10_000_000, asset=usdc)
        records = [
            TransferRecord(recipient(0), "1.5"),
            TransferRecord(recipient(1), "0.000001"),
        ]
        await disburser.disburse_records(CONTRACT, usdc, records, admin)
        assert await balances(ledger, [recipient(0), recipient(1)], usdc) == [1_500_000, 1]

    async def test_records_reject_excess_precision(self, ledger, disburser, admin):
        usdc = "0x" + "ab" * 20
        ledger.add_token(usdc, decimals=6)
        with pytest.raises(InvalidAmount) as exc:
            await disburser.disburse_records(
                CONTRACT, usdc, [TransferRecord(recipient(0), "1"), TransferRecord(recipient(1), "0.0000001")], admin
            )
        assert exc.value.index == 1


class SkimmingLedger(SimulatedLedgerClient):
    """Moves one base unit away from a recipient after confirmation."""

    def __init__(self, victim, **kwargs):
        super().__init__(**kwargs)
        self.victim = victim

    async def await_confirmation(self, pending, confirmations=1, timeout=None, cancel=None):
        receipt = await super().await_confirmation(pending, confirmations, timeout, cancel)
        self._credit(None, self.victim, -1)
        return receipt


async def test_balance_mismatch_names_recipient(admin, gas_profile):
    victim = recipient(1)
    sim = SkimmingLedger(victim)
    sim.deploy_contract(CONTRACT, admin.address)
    sim.set_balance(admin.address, 10 * ETHER)

    with pytest.raises(BalanceMismatch) as exc:
        await BatchDisburser(sim, gas_profile).disburse(
            CONTRACT, NATIVE_ASSET, [recipient(0), victim], [5, 7], admin
        )
    err = exc.value
    assert err.index == 1
    assert err.address.lower() == victim.lower()
    assert (err.expected, err.actual) == (7, 6)
    assert err.state is DisbursementState.FAILED
    assert err.failed_in is DisbursementState.RECONCILING


async def test_cancelled_wait(ledger, disburser, admin):
    cancel = asyncio.Event()
    cancel.set()
    with pytest.raises(ConfirmationCancelled):
        await disburser.disburse(CONTRACT, NATIVE_ASSET, [recipient(0)], [1], admin, cancel=cancel)


async def test_concurrent_runs_from_one_sender(ledger, disburser, admin):
    runs = [
        disburser.disburse(CONTRACT, NATIVE_ASSET, [recipient(i), recipient(99)], [i + 1, 1], admin)
        for i in range(5)
    ]
    receipts = await asyncio.gather(*runs)
    assert len({r.tx_hash for r in receipts}) == 5
    assert await ledger.get_transaction_count(admin.address) == 5
    assert await ledger.get_balance(recipient(99)) == 5


async def test_records_reject_unrepresentable_amount(disburser, admin):
    with pytest.raises(InvalidAmount) as exc:
        await disburser.disburse_records(
            CONTRACT, NATIVE_ASSET, [TransferRecord(recipient(0), "1"), TransferRecord(recipient(1), "9E+999999")], admin
        )
    assert exc.value.index == 1


async def test_sender_lock_is_released_after_runs(ledger, disburser, admin):
    await asyncio.gather(*(
        disburser.disburse(CONTRACT, NATIVE_ASSET, [recipient(i)], [1], admin) for i in range(3)
    ))
    assert len(disburser._senders) == 0
    assert len(ledger._locks) == 0
