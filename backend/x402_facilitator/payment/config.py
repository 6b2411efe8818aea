"""
Configuration for the SBC x402 Facilitator.

Loads and validates environment variables for every supported network and
turns them into the NetworkDescriptors the facilitator core consumes.
"""

from typing import List

from pydantic_settings import BaseSettings

from x402_facilitator.payment.types import ChainFamily, NetworkDescriptor

BASE_MAINNET = "eip155:8453"
BASE_SEPOLIA = "eip155:84532"
RADIUS_MAINNET = "eip155:723"
RADIUS_TESTNET = "eip155:72344"
SOLANA_MAINNET = "solana:5eykt4UsFv8P8NJdTREpY1vzqKqZKvdp"


class FacilitatorSettings(BaseSettings):
    """Facilitator configuration, read once at process start."""

    facilitator_port: int = 3001
    log_level: str = "INFO"

    # Settlement mode: when False, settle fabricates transaction ids
    enable_real_settlement: bool = False

    # API key gating for mainnet networks
    enable_api_key_gating: bool = False
    dashboard_url: str = "https://dashboard.stablecoin.xyz"

    # Per-call deadlines for chain I/O
    rpc_timeout_seconds: float = 10.0
    confirmation_timeout_seconds: float = 120.0

    # Base Mainnet
    base_rpc_url: str = "https://mainnet.base.org"
    base_facilitator_private_key: str = ""
    base_facilitator_address: str = ""
    base_sbc_token_address: str = "0xfdcC3dd6671eaB0709A4C0f3F53De9a333d80798"
    base_sbc_decimals: int = 18
    base_eip712_name: str = "Stable Coin"
    base_eip712_version: str = "1"

    # Base Sepolia
    base_sepolia_rpc_url: str = "https://sepolia.base.org"
    base_sepolia_facilitator_private_key: str = ""
    base_sepolia_facilitator_address: str = ""
    base_sepolia_sbc_token_address: str = "0xf9FB20B8E097904f0aB7d12e9DbeE88f2dcd0F16"
    base_sepolia_sbc_decimals: int = 6
    base_sepolia_eip712_name: str = "Stable Coin"
    base_sepolia_eip712_version: str = "1"

    # Radius Mainnet
    radius_rpc_url: str = "https://rpc.radiustech.xyz"
    radius_facilitator_private_key: str = ""
    radius_facilitator_address: str = ""
    radius_sbc_token_address: str = "0x33ad9e4bd16b69b5bfded37d8b5d9ff9aba014fb"
    radius_sbc_decimals: int = 6
    radius_eip712_name: str = "Stable Coin"
    radius_eip712_version: str = "1"

    # Radius Testnet
    radius_testnet_rpc_url: str = "https://rpc.testnet.radiustech.xyz"
    radius_testnet_facilitator_private_key: str = ""
    radius_testnet_facilitator_address: str = ""
    radius_testnet_sbc_token_address: str = "0x33ad9e4bd16b69b5bfded37d8b5d9ff9aba014fb"
    radius_testnet_sbc_decimals: int = 6
    radius_testnet_eip712_name: str = "Stable Coin"
    radius_testnet_eip712_version: str = "1"

    # Solana Mainnet
    solana_rpc_url: str = "https://api.mainnet-beta.solana.com"
    solana_facilitator_private_key: str = ""  # base58 64-byte secret key
    solana_facilitator_address: str = ""
    solana_sbc_token_address: str = "DBAzBUXaLj1qANCseUPZz4sp9F8d2sc78C4vKjhbTGMA"
    solana_sbc_decimals: int = 9

    class Config:
        """Pydantic config."""
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"

    def validate(self) -> None:
        """Validate cross-field configuration.

        Raises:
            ValueError: If a network is half-configured or a value is out of range
        """
        if self.solana_facilitator_private_key and not self.solana_facilitator_address:
            raise ValueError("SOLANA_FACILITATOR_ADDRESS is required for Solana")

        for prefix in ("base", "base_sepolia", "radius", "radius_testnet"):
            address = getattr(self, f"{prefix}_facilitator_address")
            if address and (not address.startswith("0x") or len(address) != 42):
                raise ValueError(
                    f"{prefix.upper()}_FACILITATOR_ADDRESS must be a valid EVM address: {address}"
                )

        if self.rpc_timeout_seconds <= 0 or self.confirmation_timeout_seconds <= 0:
            raise ValueError("RPC and confirmation timeouts must be positive")


def _evm_descriptor(
    settings: FacilitatorSettings,
    prefix: str,
    display_name: str,
    chain_id: int,
) -> NetworkDescriptor:
    return NetworkDescriptor(
        network=f"eip155:{chain_id}",
        family=ChainFamily.EVM,
        display_name=display_name,
        rpc_url=getattr(settings, f"{prefix}_rpc_url"),
        asset=getattr(settings, f"{prefix}_sbc_token_address"),
        asset_decimals=getattr(settings, f"{prefix}_sbc_decimals"),
        facilitator_private_key=getattr(settings, f"{prefix}_facilitator_private_key"),
        facilitator_address=getattr(settings, f"{prefix}_facilitator_address"),
        eip712_name=getattr(settings, f"{prefix}_eip712_name"),
        eip712_version=getattr(settings, f"{prefix}_eip712_version"),
        chain_id=chain_id,
    )


def build_network_descriptors(settings: FacilitatorSettings) -> List[NetworkDescriptor]:
    """Build every known network descriptor, enabled or not, in definition order."""
    return [
        _evm_descriptor(settings, "base", "Base", 8453),
        _evm_descriptor(settings, "base_sepolia", "Base Sepolia", 84532),
        _evm_descriptor(settings, "radius", "Radius", 723),
        _evm_descriptor(settings, "radius_testnet", "Radius Testnet", 72344),
        NetworkDescriptor(
            network=SOLANA_MAINNET,
            family=ChainFamily.SOLANA,
            display_name="Solana",
            rpc_url=settings.solana_rpc_url,
            asset=settings.solana_sbc_token_address,
            asset_decimals=settings.solana_sbc_decimals,
            facilitator_private_key=settings.solana_facilitator_private_key,
            facilitator_address=settings.solana_facilitator_address,
            eip712_name="SBC",
            eip712_version="1",
        ),
    ]
