"""SBC x402 Facilitator - non-custodial verification and settlement for x402 payments."""

__version__ = "0.1.0"
