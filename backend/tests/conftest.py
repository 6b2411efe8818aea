import pytest

from factories import NOW, FakeBalanceReader, SolanaWallets, evm_descriptor
from x402_facilitator.payment.registry import NetworkRegistry
from x402_facilitator.payment.validator import PaymentValidator


@pytest.fixture
def evm():
    return evm_descriptor()


@pytest.fixture
def wallets():
    return SolanaWallets()


@pytest.fixture
def sol(wallets):
    return wallets.descriptor()


@pytest.fixture
def registry(evm, sol):
    return NetworkRegistry([evm, sol])


@pytest.fixture
def balances():
    return FakeBalanceReader()


@pytest.fixture
def validator(registry, balances):
    return PaymentValidator(registry, balance_reader=balances, clock=lambda: NOW)
