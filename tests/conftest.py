import pytest

from batchpay.gas import GasPolicy
from batchpay.ledger import SimulatedLedgerClient
from batchpay.models import Wallet

# well-known local devnet keys; never funded on a public chain
ADMIN_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
ADMIN_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
OTHER_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
OTHER_ADDRESS = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

CONTRACT = "0x5fbdb2315678afecb367f032d93f642f64180aa3"
TOKEN = "0xe7f1725e7734ce288f8367e1bb143e90bb3f0512"

ETHER = 10**18


def recipient(i: int) -> str:
    return "0x" + format(0x1000 + i, "040x")


@pytest.fixture
def admin():
    return Wallet.from_private_key(ADMIN_KEY)


@pytest.fixture
def other():
    return Wallet.from_private_key(OTHER_KEY)


@pytest.fixture
def gas_profile():
    return GasPolicy().select_profile("testnet")


@pytest.fixture
def ledger(admin):
    sim = SimulatedLedgerClient()
    sim.deploy_contract(CONTRACT, admin.address)
    sim.add_token(TOKEN, decimals=18)
    sim.set_balance(admin.address, 100 * ETHER)
    sim.set_balance(admin.address, 1_000_000 * ETHER, asset=TOKEN)
    return sim
