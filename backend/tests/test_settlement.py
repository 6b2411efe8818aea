import re
from types import SimpleNamespace

import base58
import pytest
from solders.hash import Hash
from solders.signature import Signature
from solders.transaction import Transaction
from web3 import Web3

from factories import (
    DEADLINE,
    FACILITATOR,
    PAYEE,
    PAYER,
    make_payment,
    sign_permit,
    sign_transfer_intent,
)
from x402_facilitator.payment.config import BASE_SEPOLIA, SOLANA_MAINNET
from x402_facilitator.payment.gas import DEFAULT_GAS_LIMIT
from x402_facilitator.payment.settlement import (
    EvmPermitSettlement,
    SettlementError,
    SettlementExecutor,
    SolanaDelegatedSettlement,
    split_signature,
)
from x402_facilitator.payment.types import ErrorKind


class FakeReceipt:
    def __init__(self, status):
        self.status = status
        self.gasUsed = 54321
        self.blockNumber = 4242


class FakeContractFn:
    def __init__(self, name, args, estimate_reverts=False):
        self.name = name
        self.args = args
        self.estimate_reverts = estimate_reverts

    def estimate_gas(self, tx):
        if self.estimate_reverts:
            raise ValueError("execution reverted: ERC20Permit: invalid signature")
        return 60000

    def build_transaction(self, tx):
        return {**tx, "fn": self.name, "args": self.args}


class FakeToken:
    def __init__(self, address, estimate_reverts=()):
        self.address = address
        self.estimate_reverts = estimate_reverts

    @property
    def functions(self):
        reverts = self.estimate_reverts

        class F:
            def permit(self, *args):
                return FakeContractFn("permit", args, "permit" in reverts)

            def transferFrom(self, *args):
                return FakeContractFn("transferFrom", args, "transferFrom" in reverts)

        return F()


class FakeEth:
    def __init__(self, pending_nonce=7, revert=(), estimate_reverts=()):
        self.account = self
        self.estimate_reverts = set(estimate_reverts)
        self.pending_nonce = pending_nonce
        self.revert = set(revert)
        self.nonce_queries = []
        self.sent = []
        self.used_permits = set()
        self.max_priority_fee = 100

    def get_block(self, block_id):
        return {"baseFeePerGas": 1000}

    def get_transaction_count(self, address, block_identifier="latest"):
        self.nonce_queries.append((address, block_identifier))
        return self.pending_nonce

    def contract(self, address=None, abi=None):
        return FakeToken(address, self.estimate_reverts)

    def sign_transaction(self, tx, private_key):
        return SimpleNamespace(raw_transaction=tx)

    def send_raw_transaction(self, raw):
        if raw["fn"] == "permit":
            owner, _, _, _, v, r, s = raw["args"]
            if (owner, v, r, s) in self.used_permits:
                raise ValueError("execution reverted: ERC20Permit: invalid signature")
            self.used_permits.add((owner, v, r, s))
        self.sent.append(raw)
        self.pending_nonce += 1
        return bytes([len(self.sent)]) * 32

    def wait_for_transaction_receipt(self, tx_hash, timeout=120):
        raw = self.sent[tx_hash[0] - 1]
        return FakeReceipt(0 if raw["fn"] in self.revert else 1)


class FakeW3:
    def __init__(self, **kwargs):
        self.eth = FakeEth(**kwargs)

    @staticmethod
    def to_checksum_address(address):
        return Web3.to_checksum_address(address)

    @staticmethod
    def to_wei(value, unit):
        return Web3.to_wei(value, unit)


class ExplodingSettlement:
    def settle(self, *args):
        raise AssertionError("chain must not be touched")


def _evm_executor(registry, w3):
    return SettlementExecutor(
        registry,
        real_settlement=True,
        evm=EvmPermitSettlement(lambda descriptor: w3, confirmation_timeout=5),
        solana=ExplodingSettlement(),
    )


def test_split_signature_normalizes_v():
    r, s = "11" * 32, "22" * 32
    assert split_signature("0x" + r + s + "00") == (27, bytes.fromhex(r), bytes.fromhex(s))
    assert split_signature("0x" + r + s + "01")[0] == 28
    assert split_signature(r + s + "1c")[0] == 28


@pytest.mark.parametrize("signature", ["0x", "0x" + "ab" * 64, "0x" + "zz" * 65, None])
def test_split_signature_rejects_bad_input(signature):
    with pytest.raises(SettlementError):
        split_signature(signature)


def test_evm_settlement_sends_permit_then_transfer(registry, evm):
    w3 = FakeW3(pending_nonce=7)
    payload, requirements = make_payment(BASE_SEPOLIA, sign_permit(evm, value=1000))

    result = _evm_executor(registry, w3).settle(payload, requirements)

    assert result.success is True
    assert result.payer == PAYER
    assert result.network == BASE_SEPOLIA
    assert result.transaction == Web3.to_hex(bytes([2]) * 32)
    assert w3.eth.nonce_queries == [(FACILITATOR, "pending")]

    permit, transfer = w3.eth.sent
    assert (permit["fn"], permit["nonce"]) == ("permit", 7)
    assert (transfer["fn"], transfer["nonce"]) == ("transferFrom", 8)
    assert permit["from"] == FACILITATOR
    assert permit["chainId"] == 84532
    assert permit["gas"] == 72000
    assert permit["maxFeePerGas"] == 2100
    assert permit["args"][:4] == (PAYER, FACILITATOR, 1000, DEADLINE)
    assert permit["args"][4] in (27, 28)
    assert transfer["args"] == (PAYER, Web3.to_checksum_address(PAYEE), 1000)


def test_transfer_from_revert_fails_without_retry(registry, evm):
    w3 = FakeW3(revert={"transferFrom"})
    payload, requirements = make_payment(BASE_SEPOLIA, sign_permit(evm))

    result = _evm_executor(registry, w3).settle(payload, requirements)

    assert result.success is False
    assert result.transaction == ""
    assert result.error_reason
    assert result.error_kind is ErrorKind.INTERNAL_ERROR
    assert [tx["fn"] for tx in w3.eth.sent] == ["permit", "transferFrom"]
    assert "errorReason" in result.to_dict()


def test_permit_revert_stops_before_transfer(registry, evm):
    w3 = FakeW3(revert={"permit"})
    payload, requirements = make_payment(BASE_SEPOLIA, sign_permit(evm))

    result = _evm_executor(registry, w3).settle(payload, requirements)

    assert result.success is False
    assert [tx["fn"] for tx in w3.eth.sent] == ["permit"]


def test_permit_for_another_spender_sends_nothing(registry, evm):
    w3 = FakeW3()
    payload, requirements = make_payment(BASE_SEPOLIA, sign_permit(evm, spender=PAYEE))

    result = _evm_executor(registry, w3).settle(payload, requirements)

    assert result.success is False
    assert "spender" in result.error_reason
    assert w3.eth.nonce_queries == []
    assert w3.eth.sent == []


def test_permit_that_fails_simulation_is_not_sent(registry, evm):
    w3 = FakeW3(estimate_reverts={"permit"})
    payload, requirements = make_payment(BASE_SEPOLIA, sign_permit(evm))

    result = _evm_executor(registry, w3).settle(payload, requirements)

    assert result.success is False
    assert "Gas estimation failed" in result.error_reason
    assert w3.eth.sent == []


def test_transfer_estimate_failure_falls_back_to_default_gas(registry, evm):
    w3 = FakeW3(estimate_reverts={"transferFrom"})
    payload, requirements = make_payment(BASE_SEPOLIA, sign_permit(evm))

    result = _evm_executor(registry, w3).settle(payload, requirements)

    assert result.success is True
    assert w3.eth.sent[1]["gas"] == DEFAULT_GAS_LIMIT


def test_second_settlement_of_same_permit_fails_on_chain(registry, evm):
    w3 = FakeW3()
    executor = _evm_executor(registry, w3)
    payload, requirements = make_payment(BASE_SEPOLIA, sign_permit(evm))

    first = executor.settle(payload, requirements)
    second = executor.settle(payload, requirements)

    assert first.success is True
    assert second.success is False
    assert "invalid signature" in second.error_reason
    assert len(w3.eth.sent) == 2


def test_simulated_evm_settlement_touches_no_chain(registry, evm):
    executor = SettlementExecutor(
        registry, real_settlement=False, evm=ExplodingSettlement(), solana=ExplodingSettlement()
    )
    payload, requirements = make_payment(BASE_SEPOLIA, sign_permit(evm))

    result = executor.settle(payload, requirements)

    assert result.success is True
    assert re.fullmatch(r"0x[0-9a-f]{64}", result.transaction)
    assert "errorReason" not in result.to_dict()


def test_simulated_solana_settlement_id_is_base58_signature(registry, wallets):
    executor = SettlementExecutor(
        registry, real_settlement=False, evm=ExplodingSettlement(), solana=ExplodingSettlement()
    )
    payload, requirements = make_payment(
        SOLANA_MAINNET, sign_transfer_intent(wallets), pay_to=wallets.payee
    )

    result = executor.settle(payload, requirements)

    assert result.success is True
    assert len(base58.b58decode(result.transaction)) == 64


def test_settle_rejects_unknown_network(registry, evm):
    executor = SettlementExecutor(registry, evm=ExplodingSettlement(), solana=ExplodingSettlement())
    payload, requirements = make_payment("eip155:1", sign_permit(evm))

    result = executor.settle(payload, requirements)

    assert result.success is False
    assert result.network == "eip155:1"
    assert result.error_kind is ErrorKind.UNKNOWN_NETWORK
    assert result.error_reason == "Unknown network: eip155:1"


class FakeSolanaClient:
    def __init__(self, err=None):
        self.err = err
        self.sent = []
        self.confirmed = []

    def get_latest_blockhash(self, commitment=None):
        return SimpleNamespace(
            value=SimpleNamespace(blockhash=Hash.default(), last_valid_block_height=321)
        )

    def send_raw_transaction(self, raw, opts=None):
        self.sent.append((raw, opts))
        return SimpleNamespace(value=Signature.default())

    def confirm_transaction(self, signature, commitment=None, last_valid_block_height=None):
        self.confirmed.append((signature, last_valid_block_height))
        return SimpleNamespace(value=[SimpleNamespace(err=self.err)])


def _solana_executor(registry, client):
    return SettlementExecutor(
        registry,
        real_settlement=True,
        evm=ExplodingSettlement(),
        solana=SolanaDelegatedSettlement(lambda descriptor: client),
    )


def test_solana_delegated_transfer(registry, wallets):
    client = FakeSolanaClient()
    payload, requirements = make_payment(
        SOLANA_MAINNET, sign_transfer_intent(wallets, amount=1500), pay_to=wallets.payee
    )

    result = _solana_executor(registry, client).settle(payload, requirements)

    assert result.success is True
    assert result.payer == wallets.payer
    assert result.transaction == str(Signature.default())
    assert client.confirmed == [(Signature.default(), 321)]

    assert len(client.sent) == 1
    raw, _ = client.sent[0]
    tx = Transaction.from_bytes(raw)
    assert tx.message.account_keys[0] == wallets.facilitator.pubkey()
    assert len(tx.signatures) == 1


def test_solana_transaction_error_is_reported(registry, wallets):
    client = FakeSolanaClient(err="InstructionError(0, InsufficientFunds)")
    payload, requirements = make_payment(
        SOLANA_MAINNET, sign_transfer_intent(wallets), pay_to=wallets.payee
    )

    result = _solana_executor(registry, client).settle(payload, requirements)

    assert result.success is False
    assert result.transaction == ""
    assert "InsufficientFunds" in result.error_reason
