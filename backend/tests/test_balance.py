from types import SimpleNamespace

import pytest
from web3 import Web3

from factories import PAYER
from x402_facilitator.payment.balance import BalanceReadError, BalanceReader, format_units
from x402_facilitator.payment.gas import DEFAULT_GAS_LIMIT, GasEstimationError, GasStrategy


class FakeCall:
    def __init__(self, value):
        self.value = value

    def call(self):
        if isinstance(self.value, Exception):
            raise self.value
        return self.value


class FakeEth:
    def __init__(self, balance):
        self.balance = balance
        self.queried = []

    def contract(self, address=None, abi=None):
        eth = self

        class Functions:
            def balanceOf(self, owner):
                eth.queried.append((address, owner))
                return FakeCall(eth.balance)

        return SimpleNamespace(functions=Functions())


class FakeW3:
    def __init__(self, balance):
        self.eth = FakeEth(balance)

    @staticmethod
    def to_checksum_address(address):
        return Web3.to_checksum_address(address)


class FakeSolanaClient:
    def __init__(self, account_exists=True, amount="0"):
        self.account_exists = account_exists
        self.amount = amount

    def get_account_info(self, pubkey, commitment=None):
        return SimpleNamespace(value=object() if self.account_exists else None)

    def get_token_account_balance(self, pubkey, commitment=None):
        return SimpleNamespace(value=SimpleNamespace(amount=self.amount))


def test_erc20_balance(evm):
    w3 = FakeW3(balance=2500)
    reader = BalanceReader(web3_factory=lambda descriptor: w3)

    assert reader.read_balance(evm, PAYER) == 2500
    assert w3.eth.queried == [(Web3.to_checksum_address(evm.asset), PAYER)]


def test_erc20_balance_failure_is_wrapped(evm):
    reader = BalanceReader(web3_factory=lambda descriptor: FakeW3(TimeoutError("timed out")))

    with pytest.raises(BalanceReadError):
        reader.read_balance(evm, PAYER)


def test_spl_balance(sol, wallets):
    reader = BalanceReader(solana_client_factory=lambda d: FakeSolanaClient(amount="1500000000"))
    assert reader.read_balance(sol, wallets.payer) == 1_500_000_000


def test_missing_token_account_reads_as_zero(sol, wallets):
    reader = BalanceReader(solana_client_factory=lambda d: FakeSolanaClient(account_exists=False))
    assert reader.read_balance(sol, wallets.payer) == 0


def test_format_units():
    assert format_units(1_500_000, 6) == "1.500000"


class LegacyEth:
    gas_price = 5

    def get_block(self, block_id):
        return {"number": 1}


class FailingEstimate:
    def estimate_gas(self, tx):
        raise ValueError("execution reverted")


def test_gas_params_fall_back_to_legacy_price():
    strategy = GasStrategy(SimpleNamespace(eth=LegacyEth()))
    params = strategy.calculate_gas_params(strategy.estimate_gas_limit(FailingEstimate(), {}))

    assert params.as_tx_fields() == {"gas": DEFAULT_GAS_LIMIT, "gasPrice": 5}


def test_required_estimate_failure_raises():
    strategy = GasStrategy(SimpleNamespace(eth=LegacyEth()))
    with pytest.raises(GasEstimationError):
        strategy.estimate_gas_limit(FailingEstimate(), {}, required=True)
