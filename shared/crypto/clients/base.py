import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from shared.crypto.chains import Chain
from shared.errors import ConfigurationError, NetworkError, UnsupportedChainError

CONFIGURATION_ERRORS = (
    requests.exceptions.InvalidURL,
    requests.exceptions.MissingSchema,
    requests.exceptions.InvalidSchema,
    requests.exceptions.InvalidHeader,
    requests.exceptions.URLRequired,
)


@dataclass
class FeeContext:
    """What an adapter needs to quote a fee for one sweep.

    Adapters stash whatever they fetched while quoting (gas price, UTXO set,
    fee rate) in `quote` so the transaction they sign matches the estimate.
    """
    source_address: str
    destination_address: str
    balance: int
    quote: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BroadcastResult:
    tx_hash: str
    raw: Optional[Dict[str, Any]] = None


class ChainAdapter(ABC):
    """Balance, fee and sweep-transaction capabilities for one ledger family."""

    chain: Chain = None

    def __init__(self, timeout: int = 30, logger: logging.Logger = None):
        self.timeout = timeout
        self.logger = logger or logging.getLogger(self.__class__.__module__)
        self.session_request = requests.Session()
        self.session_request.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': 'ChainSweeper/1.0'
        })

    def _http(self, method: str, url: str, **kwargs) -> requests.Response:
        """Send an HTTP request, turning transport trouble into NetworkError."""
        try:
            response = self.session_request.request(method, url, timeout=self.timeout, **kwargs)
        except CONFIGURATION_ERRORS as e:
            raise ConfigurationError(f"{self.chain.value} request to {url} is misconfigured: {e}", cause=e)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise NetworkError(f"{self.chain.value} request to {url} failed: {e}", cause=e)
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"{self.chain.value} request to {url} failed: {e}", cause=e)
        if response.status_code == 429 or response.status_code >= 500:
            raise NetworkError(f"{self.chain.value} node answered HTTP {response.status_code}")
        return response

    @abstractmethod
    def validate_address(self, address: str) -> bool:
        ...

    @abstractmethod
    def get_balance(self, address: str) -> int:
        """Balance in the chain's minor unit."""

    @abstractmethod
    def estimate_fee(self, context: FeeContext) -> int:
        """Fee in minor units for sweeping `context.balance`."""

    @abstractmethod
    def build_sign_and_broadcast(self, signer: str, source_address: str, destination_address: str,
                                 amount: int, context: Optional[FeeContext] = None) -> BroadcastResult:
        ...


class AdapterRegistry:
    """Chain adapters keyed by chain identifier."""

    def __init__(self):
        self._adapters: Dict[Chain, ChainAdapter] = {}

    def register(self, chain, adapter: ChainAdapter) -> None:
        self._adapters[Chain.parse(chain)] = adapter

    def get(self, chain) -> ChainAdapter:
        chain = Chain.parse(chain)
        adapter = self._adapters.get(chain)
        if adapter is None:
            raise UnsupportedChainError(f"No adapter registered for {chain.value}")
        return adapter

    def chains(self) -> List[Chain]:
        return list(self._adapters)

    def __contains__(self, chain) -> bool:
        try:
            return Chain.parse(chain) in self._adapters
        except UnsupportedChainError:
            return False
