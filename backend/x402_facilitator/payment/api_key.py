"""
API key gating for mainnet /verify and /settle requests.

- Testnet (or unrecognised) networks: always allowed through
- Mainnet networks with no key: 401
- Mainnet networks with an invalid key: 403
- Disabled with ENABLE_API_KEY_GATING=false (self-hosted setups)

Keys are validated against the dashboard and cached for a few minutes.
The facilitator core never sees this gate.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Optional

import requests
from fastapi import HTTPException

from x402_facilitator.payment.config import BASE_MAINNET, RADIUS_MAINNET, SOLANA_MAINNET

logger = logging.getLogger(__name__)

MAINNET_NETWORKS: FrozenSet[str] = frozenset({BASE_MAINNET, RADIUS_MAINNET, SOLANA_MAINNET})

CACHE_TTL_SECONDS = 5 * 60
VALIDATION_TIMEOUT_SECONDS = 5


@dataclass
class _CachedKey:
    valid: bool
    expires_at: float


class ApiKeyGate:
    """Checks X-API-Key for restricted networks, with a TTL cache."""

    def __init__(
        self,
        dashboard_url: str,
        enabled: bool = True,
        restricted_networks: FrozenSet[str] = MAINNET_NETWORKS,
        clock: Callable[[], float] = time.monotonic,
        session: Optional[requests.Session] = None,
    ):
        self.dashboard_url = dashboard_url.rstrip("/")
        self.enabled = enabled
        self.restricted_networks = restricted_networks
        self.clock = clock
        self.session = session or requests.Session()
        self._cache: Dict[str, _CachedKey] = {}
        self._lock = threading.Lock()

    def check(self, network: Optional[str], api_key: Optional[str]) -> None:
        """Allow or reject a request for `network`.

        Raises:
            HTTPException: 401 without a key, 403 with a rejected key
        """
        if not self.enabled:
            return
        if not network or network not in self.restricted_networks:
            return

        if not api_key:
            raise HTTPException(
                status_code=401,
                detail="API key required for mainnet networks. Get yours at dashboard.stablecoin.xyz",
            )
        if not self.is_valid(api_key):
            raise HTTPException(status_code=403, detail="Invalid or inactive API key.")

    def is_valid(self, api_key: str) -> bool:
        now = self.clock()
        with self._lock:
            cached = self._cache.get(api_key)
        if cached and now < cached.expires_at:
            return cached.valid

        try:
            response = self.session.post(
                f"{self.dashboard_url}/api/keys/validate",
                json={"key": api_key},
                timeout=VALIDATION_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            # Fail closed: no mainnet access when the key cannot be checked.
            logger.error(f"API key validation error (dashboard unreachable): {e}")
            return False

        valid = False
        if response.ok:
            try:
                valid = bool(response.json().get("valid"))
            except ValueError:
                logger.warning("API key validation returned a non-JSON body")

        with self._lock:
            self._cache[api_key] = _CachedKey(valid=valid, expires_at=now + CACHE_TTL_SECONDS)
        return valid
