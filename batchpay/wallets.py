import logging
from typing import Iterator, List

from eth_account import Account

from batchpay.errors import ExhaustedRetries
from batchpay.models import Wallet

log = logging.getLogger("batchpay.wallets")


def create_wallet() -> Wallet:
    acct = Account.create()
    log.debug("New account created: %s", acct.address)
    return Wallet(acct.address, "0x" + bytes(acct.key).hex())


def candidate_wallets(max_retries: int) -> Iterator[Wallet]:
    # one initial attempt plus max_retries more
    for _ in range(max_retries + 1):
        yield create_wallet()


class WalletFactory:
    def __init__(self, ledger):
        self.ledger = ledger

    def create_wallet(self) -> Wallet:
        return create_wallet()

    async def create_clean_wallet(self, max_retries: int = 3) -> Wallet:
        """A fresh wallet whose address has never sent a transaction."""
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        attempts = 0
        for wallet in candidate_wallets(max_retries):
            attempts += 1
            if await self.ledger.get_transaction_count(wallet.address) == 0:
                return wallet
            log.warning(
                "Retry %d: wallet address %s has transactions. Generating a new wallet...",
                attempts, wallet.address,
            )
        raise ExhaustedRetries(max_retries, attempts)

    async def create_clean_wallets(self, count: int, max_retries: int = 3) -> List[Wallet]:
        return [await self.create_clean_wallet(max_retries) for _ in range(count)]
