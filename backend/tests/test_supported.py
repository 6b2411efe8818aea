from factories import FACILITATOR, evm_descriptor
from x402_facilitator.payment.config import BASE_SEPOLIA, RADIUS_TESTNET, SOLANA_MAINNET
from x402_facilitator.payment.registry import NetworkRegistry
from x402_facilitator.payment.supported import CapabilityAdvertiser


def test_supported_lists_enabled_networks_in_order(registry, wallets):
    document = CapabilityAdvertiser(registry).supported()

    assert document["extensions"] == []
    assert [kind["network"] for kind in document["kinds"]] == [BASE_SEPOLIA, SOLANA_MAINNET]
    evm_kind, solana_kind = document["kinds"]

    assert evm_kind == {
        "x402Version": 2,
        "scheme": "exact",
        "network": BASE_SEPOLIA,
        "extra": {"assetTransferMethod": "erc2612", "name": "Stable Coin", "version": "1"},
    }
    assert solana_kind["extra"]["assetTransferMethod"] == "delegated-spl"
    assert document["signers"] == {
        "eip155:*": [FACILITATOR],
        "solana:*": [str(wallets.facilitator.pubkey())],
    }


def test_shared_evm_signer_is_listed_once():
    registry = NetworkRegistry(
        [evm_descriptor(), evm_descriptor(network=RADIUS_TESTNET, chain_id=72344)]
    )
    document = CapabilityAdvertiser(registry).supported()

    assert len(document["kinds"]) == 2
    assert document["signers"] == {"eip155:*": [FACILITATOR]}


def test_disabled_networks_are_not_advertised():
    registry = NetworkRegistry([evm_descriptor(facilitator_address="")])
    assert CapabilityAdvertiser(registry).supported() == {
        "kinds": [],
        "extensions": [],
        "signers": {},
    }
