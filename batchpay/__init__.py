from batchpay.addresses import is_valid_address, require_address
from batchpay.disburse import BatchDisburser, DisbursementState
from batchpay.errors import *  # noqa: F401,F403
from batchpay.gas import GasPolicy
from batchpay.ledger import LedgerClient, SimulatedLedgerClient
from batchpay.models import (
    NATIVE_ASSET,
    BatchRequest,
    ConfirmationReceipt,
    GasProfile,
    PendingTransaction,
    TransferRecord,
    TxStatus,
    Wallet,
)
from batchpay.rpc import Web3LedgerClient
from batchpay.wallets import WalletFactory, create_wallet

__version__ = "0.1.0"
