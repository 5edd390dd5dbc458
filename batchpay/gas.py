import logging
from types import MappingProxyType
from typing import Mapping

from web3 import Web3

from batchpay.errors import UnknownNetworkProfile
from batchpay.models import GasProfile

log = logging.getLogger("batchpay.gas")

GWEI = 10**9

DEFAULT_PROFILES = {
    "mainnet": GasProfile(
        gas_limit=500_000,
        max_fee_per_gas=100 * GWEI,
        max_priority_fee_per_gas=10 * GWEI,
    ),
    "testnet": GasProfile(
        gas_limit=300_000,
        max_fee_per_gas=50 * GWEI,
        max_priority_fee_per_gas=Web3.to_wei("1.5", "gwei"),
    ),
}
DEFAULT_PROFILE_NAME = "testnet"

# used when a profile leaves gas_limit to the node and estimation fails
FALLBACK_GAS_LIMIT = 300_000


class GasPolicy:
    """Named fee profiles. Read-only once built; swap them out with reconfigure()."""

    def __init__(self, profiles: Mapping[str, GasProfile] = None, default: str = DEFAULT_PROFILE_NAME):
        self._profiles = MappingProxyType({})
        self._default = default
        self.reconfigure(DEFAULT_PROFILES if profiles is None else profiles, default)

    @property
    def profiles(self) -> Mapping[str, GasProfile]:
        return self._profiles

    def reconfigure(self, profiles: Mapping[str, GasProfile], default: str = None):
        default = default or self._default
        if default not in profiles:
            raise UnknownNetworkProfile(default, profiles.keys())
        self._profiles = MappingProxyType(dict(profiles))
        self._default = default

    def select_profile(self, network_name: str, strict: bool = True) -> GasProfile:
        profile = self._profiles.get(network_name)
        if profile is not None:
            return profile
        if strict:
            raise UnknownNetworkProfile(network_name, self._profiles.keys())
        log.warning("No gas profile for %r; using %r", network_name, self._default)
        return self._profiles[self._default]


async def live_fees(w3, tip_gwei=1):
    latest = await w3.eth.get_block("latest")
    base = latest.get("baseFeePerGas")
    if base is None:
        base = await w3.eth.gas_price
    tip = Web3.to_wei(tip_gwei, "gwei")
    return {"maxFeePerGas": base + 2*tip, "maxPriorityFeePerGas": tip}
