"""
Per-request chain clients.

Every verify/settle call builds its own client scoped to one descriptor, with
an explicit transport timeout so a hung node cannot block a request forever.
"""

from typing import Callable

from solana.rpc.api import Client as SolanaClient
from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

from x402_facilitator.payment.types import NetworkDescriptor

DEFAULT_RPC_TIMEOUT_SECONDS = 10.0

Web3Factory = Callable[[NetworkDescriptor], Web3]
SolanaClientFactory = Callable[[NetworkDescriptor], SolanaClient]


def make_web3_factory(timeout: float = DEFAULT_RPC_TIMEOUT_SECONDS) -> Web3Factory:
    def factory(descriptor: NetworkDescriptor) -> Web3:
        w3 = Web3(Web3.HTTPProvider(descriptor.rpc_url, request_kwargs={"timeout": timeout}))
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return w3

    return factory


def make_solana_client_factory(timeout: float = DEFAULT_RPC_TIMEOUT_SECONDS) -> SolanaClientFactory:
    def factory(descriptor: NetworkDescriptor) -> SolanaClient:
        return SolanaClient(descriptor.rpc_url, timeout=timeout)

    return factory
