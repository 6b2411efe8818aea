"""
CapabilityAdvertiser: the x402 v2 discovery document (GET /supported).
"""

from typing import Any, Dict, List

from x402_facilitator.payment.registry import NetworkRegistry
from x402_facilitator.payment.types import EXACT_SCHEME, X402_VERSION, ChainFamily


def family_wildcard(family: ChainFamily) -> str:
    """Signer key for a chain family, e.g. "eip155:*"."""
    return f"{family.value}:*"


class CapabilityAdvertiser:
    """Derives {kinds, extensions, signers} from the enabled networks."""

    def __init__(self, registry: NetworkRegistry):
        self.registry = registry

    def supported(self) -> Dict[str, Any]:
        kinds: List[Dict[str, Any]] = []
        signers: Dict[str, List[str]] = {}

        for descriptor in self.registry.list():
            kinds.append(
                {
                    "x402Version": X402_VERSION,
                    "scheme": EXACT_SCHEME,
                    "network": descriptor.network,
                    "extra": {
                        "assetTransferMethod": descriptor.asset_transfer_method,
                        "name": descriptor.eip712_name,
                        "version": descriptor.eip712_version,
                    },
                }
            )

            addresses = signers.setdefault(family_wildcard(descriptor.family), [])
            if descriptor.facilitator_address not in addresses:
                addresses.append(descriptor.facilitator_address)

        return {"kinds": kinds, "extensions": [], "signers": signers}
