"""
Supported chains

Closed set of chain identifiers the sweeper knows how to talk to. Adding a
chain means adding a member here and registering an adapter for it.
"""

from decimal import Decimal
from enum import Enum

from shared.errors import UnsupportedChainError


class LedgerFamily(Enum):
    MULTISIG_ACCOUNT = "multisig_account"
    UTXO = "utxo"
    EVM = "evm"
    ACCOUNT = "account"


class Chain(Enum):
    TRX = "TRX"
    BTC = "BTC"
    ETH = "ETH"
    BNB = "BNB"
    MATIC = "MATIC"
    SOL = "SOL"

    @classmethod
    def parse(cls, value) -> "Chain":
        """Accept an enum member or a case-insensitive symbol."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise UnsupportedChainError(f"Unknown chain: {value}")

    @property
    def family(self) -> LedgerFamily:
        return _FAMILIES[self]

    @property
    def decimals(self) -> int:
        return _DECIMALS[self]

    @property
    def is_evm(self) -> bool:
        return self.family is LedgerFamily.EVM

    def to_major(self, amount_minor: int) -> Decimal:
        return Decimal(int(amount_minor)) / (Decimal(10) ** self.decimals)

    def explorer_tx_url(self, tx_hash: str) -> str:
        return _EXPLORERS[self].format(tx_hash=tx_hash)


_FAMILIES = {
    Chain.TRX: LedgerFamily.MULTISIG_ACCOUNT,
    Chain.BTC: LedgerFamily.UTXO,
    Chain.ETH: LedgerFamily.EVM,
    Chain.BNB: LedgerFamily.EVM,
    Chain.MATIC: LedgerFamily.EVM,
    Chain.SOL: LedgerFamily.ACCOUNT,
}

# Minor units: SUN, satoshi, wei, lamport
_DECIMALS = {
    Chain.TRX: 6,
    Chain.BTC: 8,
    Chain.ETH: 18,
    Chain.BNB: 18,
    Chain.MATIC: 18,
    Chain.SOL: 9,
}

_EXPLORERS = {
    Chain.TRX: "https://tronscan.org/#/transaction/{tx_hash}",
    Chain.BTC: "https://blockstream.info/tx/{tx_hash}",
    Chain.ETH: "https://etherscan.io/tx/{tx_hash}",
    Chain.BNB: "https://bscscan.com/tx/{tx_hash}",
    Chain.MATIC: "https://polygonscan.com/tx/{tx_hash}",
    Chain.SOL: "https://solscan.io/tx/{tx_hash}",
}
