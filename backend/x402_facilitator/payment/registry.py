"""
NetworkRegistry: CAIP-2 identifier -> enabled NetworkDescriptor.

The registry is built once from configuration and never mutated. Lookups are
exact: no aliases, no case folding, no nearest match.
"""

import logging
import re
from typing import Dict, Iterable, Optional, Tuple

from x402_facilitator.payment.types import ChainFamily, NetworkDescriptor

logger = logging.getLogger(__name__)

_EIP155_PATTERN = re.compile(r"eip155:([0-9]+)")
_SOLANA_PATTERN = re.compile(r"solana:([1-9A-HJ-NP-Za-km-z]+)")


def parse_eip155_chain_id(network_id: str) -> Optional[int]:
    """Return the chain id of an `eip155:<n>` identifier, or None if malformed."""
    match = _EIP155_PATTERN.fullmatch(network_id)
    if not match:
        return None
    return int(match.group(1))


class NetworkRegistry:
    """Static table of enabled networks keyed by CAIP-2 identifier."""

    def __init__(self, descriptors: Iterable[NetworkDescriptor]):
        enabled = tuple(d for d in descriptors if d.enabled)
        self._descriptors: Tuple[NetworkDescriptor, ...] = enabled
        self._evm_by_chain_id: Dict[int, NetworkDescriptor] = {}
        self._solana_by_cluster: Dict[str, NetworkDescriptor] = {}

        for descriptor in enabled:
            if descriptor.family is ChainFamily.EVM:
                if descriptor.chain_id is None:
                    raise ValueError(f"EVM descriptor {descriptor.network} has no chain id")
                self._evm_by_chain_id[descriptor.chain_id] = descriptor
            else:
                self._solana_by_cluster[descriptor.network] = descriptor

        logger.info(
            "Network registry loaded: %s",
            ", ".join(d.network for d in enabled) or "no networks enabled",
        )

    def resolve(self, network_id: Optional[str]) -> Optional[NetworkDescriptor]:
        """Resolve a CAIP-2 identifier to an enabled descriptor.

        Malformed identifiers (bare chain ids, empty or non-numeric suffixes,
        legacy names) resolve exactly like unknown ones: to None.
        """
        if not isinstance(network_id, str):
            return None

        chain_id = parse_eip155_chain_id(network_id)
        if chain_id is not None:
            return self._evm_by_chain_id.get(chain_id)

        if _SOLANA_PATTERN.fullmatch(network_id):
            return self._solana_by_cluster.get(network_id)

        return None

    def list(self) -> Tuple[NetworkDescriptor, ...]:
        """Enabled descriptors in definition order."""
        return self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)
