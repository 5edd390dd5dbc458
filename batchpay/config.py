import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from dotenv import load_dotenv

from batchpay.addresses import is_valid_address
from batchpay.disburse import BatchDisburser
from batchpay.errors import ConfigError
from batchpay.gas import GasPolicy
from batchpay.ledger import LedgerClient, SimulatedLedgerClient
from batchpay.models import NATIVE_ASSET, GasProfile, Wallet
from batchpay.rpc import Web3LedgerClient
from batchpay.wallets import WalletFactory


@dataclass(frozen=True)
class Network:
    name: str
    rpc: str
    chain_id: int
    gas_profile: str
    explorer: str = ""


NETWORKS = {
    "mainnet": Network("Polygon Mainnet", "https://polygon-rpc.com", 137, "mainnet", "https://polygonscan.com"),
    "amoy": Network("Polygon Amoy", "https://rpc-amoy.polygon.technology", 80002, "testnet", "https://www.oklink.com/amoy"),
    "localhost": Network("Localhost", "http://127.0.0.1:8545", 31337, "testnet"),
}
DEFAULT_NETWORK = "amoy"


@dataclass(frozen=True)
class Settings:
    network: str = DEFAULT_NETWORK
    rpc_url: str = NETWORKS[DEFAULT_NETWORK].rpc
    chain_id: Optional[int] = NETWORKS[DEFAULT_NETWORK].chain_id
    private_key: Optional[str] = field(default=None, repr=False)
    contract_address: Optional[str] = None
    token_address: str = NATIVE_ASSET
    confirmations: int = 1
    confirmation_timeout: float = 180.0
    poll_latency: float = 2.0
    rpc_timeout: float = 30.0
    simulate: bool = False

    @property
    def gas_profile_name(self) -> str:
        net = NETWORKS.get(self.network)
        return net.gas_profile if net else self.network


def _truthy(v: str) -> bool:
    return v.strip().lower() in {"1", "true", "yes", "on"}


def _number(env, name, default, cast):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a {cast.__name__}, got {raw!r}") from None


def _address(env, name, default=None):
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    if not is_valid_address(raw):
        raise ConfigError(f"{name} is not a valid address: {raw!r}")
    return raw


def load_settings(env: Mapping[str, str] = None, dotenv: bool = True) -> Settings:
    """Read settings from the process environment (after loading .env) or from `env`."""
    if env is None:
        if dotenv:
            load_dotenv()
        env = os.environ

    network = (env.get("NETWORK") or DEFAULT_NETWORK).strip()
    net = NETWORKS.get(network)
    rpc_url = env.get("RPC_URL") or (net.rpc if net else None)
    if not rpc_url:
        raise ConfigError(f"RPC_URL is required for unknown network {network!r}")

    pk = (env.get("PRIVATE_KEY") or "").strip() or None
    if pk and not pk.startswith("0x"):
        pk = "0x" + pk

    confirmations = _number(env, "CONFIRMATIONS", 1, int)
    if confirmations < 1:
        raise ConfigError("CONFIRMATIONS must be >= 1")

    return Settings(
        network=network,
        rpc_url=rpc_url,
        chain_id=_number(env, "CHAIN_ID", net.chain_id if net else None, int),
        private_key=pk,
        contract_address=_address(env, "BATCH_TRANSFER_ADMIN_ADDRESS"),
        token_address=_address(env, "TOKEN_ADDRESS", NATIVE_ASSET),
        confirmations=confirmations,
        confirmation_timeout=_number(env, "CONFIRMATION_TIMEOUT", 180.0, float),
        poll_latency=_number(env, "POLL_LATENCY", 2.0, float),
        rpc_timeout=_number(env, "RPC_TIMEOUT", 30.0, float),
        simulate=_truthy(env.get("SIMULATE", "")),
    )


def build_ledger(settings: Settings) -> LedgerClient:
    if settings.simulate:
        return SimulatedLedgerClient()
    return Web3LedgerClient.from_url(
        settings.rpc_url,
        rpc_timeout=settings.rpc_timeout,
        chain_id=settings.chain_id,
        confirmation_timeout=settings.confirmation_timeout,
        poll_latency=settings.poll_latency,
    )


@dataclass
class Context:
    """Everything one process needs, wired once and passed around explicitly."""

    settings: Settings
    ledger: LedgerClient
    gas_policy: GasPolicy
    gas_profile: GasProfile
    wallets: WalletFactory
    disburser: BatchDisburser

    @classmethod
    def from_settings(cls, settings: Settings, ledger: LedgerClient = None, gas_policy: GasPolicy = None) -> "Context":
        ledger = ledger or build_ledger(settings)
        gas_policy = gas_policy or GasPolicy()
        gas_profile = gas_policy.select_profile(settings.gas_profile_name)
        return cls(
            settings=settings,
            ledger=ledger,
            gas_policy=gas_policy,
            gas_profile=gas_profile,
            wallets=WalletFactory(ledger),
            disburser=BatchDisburser(ledger, gas_profile, settings.confirmation_timeout),
        )

    def funding_wallet(self) -> Wallet:
        if not self.settings.private_key:
            raise ConfigError("Missing PRIVATE_KEY in .env")
        try:
            return Wallet.from_private_key(self.settings.private_key)
        except Exception:
            # never echo the key material back
            raise ConfigError("PRIVATE_KEY is not a valid private key") from None

    def contract(self) -> str:
        if not self.settings.contract_address:
            raise ConfigError("Missing BATCH_TRANSFER_ADMIN_ADDRESS in .env")
        return self.settings.contract_address
