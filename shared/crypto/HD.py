import hashlib
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from hdwallet import HDWallet
from hdwallet.addresses import P2PKHAddress
from hdwallet.hds import BIP32HD
from hdwallet.mnemonics import BIP39Mnemonic
from hdwallet.cryptocurrencies import Bitcoin, Ethereum, Tron
from hdwallet.derivations import CustomDerivation
from hdwallet.seeds import BIP39Seed
from hdwallet.consts import PUBLIC_KEY_TYPES
from solders.keypair import Keypair

from shared.errors import DerivationError

logger = logging.getLogger(__name__)


@dataclass
class DerivedKey:
    path: str
    address: str
    private_key: str
    public_key: Optional[str] = None


class HD():
    """Mnemonic handling shared by every chain-specific deriver."""

    WORD_COUNTS = (12, 24)

    def __init__(self, passphrase: str = ""):
        self.passphrase = passphrase or ""
        self.wallet: Optional[HDWallet] = None

    @staticmethod
    def normalize_mnemonic(mnemonic: str) -> str:
        return " ".join((mnemonic or "").strip().lower().split())

    @classmethod
    def validate_mnemonic(cls, mnemonic: str) -> str:
        """Return the normalised phrase or raise DerivationError listing what is wrong."""
        normalized = cls.normalize_mnemonic(mnemonic)
        words = normalized.split(" ") if normalized else []
        violations = []
        if len(words) not in cls.WORD_COUNTS:
            violations.append("wrong_word_count")
        try:
            checksum_ok = BIP39Mnemonic.is_valid(normalized)
        except Exception:
            checksum_ok = False
        if not checksum_ok:
            violations.append("invalid_checksum")
        if violations:
            raise DerivationError(
                f"mnemonic rejected ({len(words)} words): " + ", ".join(violations),
                violations=violations,
            )
        return normalized

    def make_seed(self, mnemonic: str, passphrase: str = ""):
        salt = "mnemonic" + passphrase
        seed = hashlib.pbkdf2_hmac(
            "sha512",
            mnemonic.encode("utf-8"),
            salt.encode("utf-8"),
            2048
        )
        return seed.hex()

    def seed_from_mnemonic(self, mnemonic: str) -> str:
        return self.make_seed(self.validate_mnemonic(mnemonic), self.passphrase)


class BIP32Deriver(HD):
    """secp256k1 chains derived through hdwallet's BIP32 implementation."""

    cryptocurrency = None

    def __init__(self, testnet: bool = False, passphrase: str = ""):
        super().__init__(passphrase=passphrase)
        networks = self.cryptocurrency.NETWORKS
        self.testnet = testnet and hasattr(networks, "TESTNET")
        self.network = networks.TESTNET if self.testnet else networks.MAINNET

    @property
    def coin_type(self) -> int:
        return 1 if self.testnet else self.cryptocurrency.COIN_TYPE

    def from_mnemonic(self, mnemonic: str):
        return self.from_seed(self.seed_from_mnemonic(mnemonic))

    def from_seed(self, seed: str):
        self.wallet = HDWallet(
            cryptocurrency=self.cryptocurrency,
            hd=BIP32HD,
            network=self.network,
            public_key_type=PUBLIC_KEY_TYPES.COMPRESSED
        ).from_seed(seed=BIP39Seed(seed))
        return self

    def clean_derivation(self):
        if self.wallet:
            self.wallet.clean_derivation()
        return self

    def _address(self) -> str:
        return self.wallet.address()

    def derive(self, path: str) -> DerivedKey:
        if not self.wallet:
            raise ValueError("Wallet not initialized. Call from_mnemonic() or from_seed() first.")

        self.clean_derivation()
        self.wallet.from_derivation(derivation=CustomDerivation(path=path))
        try:
            return DerivedKey(
                path=path,
                address=self._address(),
                private_key=self.wallet.private_key(),
                public_key=self.wallet.public_key(),
            )
        finally:
            self.clean_derivation()

    def default_path(self, index: int = 0) -> str:
        return f"m/44'/{self.coin_type}'/0'/0/{index}"


class BTC(BIP32Deriver):
    cryptocurrency = Bitcoin

    # Tried in this order; the first usable one wins
    PURPOSES = (
        ("legacy", 44),
        ("wrapped_segwit", 49),
        ("native_segwit", 84),
    )

    def derivation_paths(self) -> List[Tuple[str, str]]:
        return [(name, f"m/{purpose}'/{self.coin_type}'/0'/0/0") for name, purpose in self.PURPOSES]

    def _address(self) -> str:
        # Always a legacy pay-to-public-key-hash address, whatever the path purpose
        return self.wallet.address(address=P2PKHAddress.name())

    def first_usable_key(self) -> DerivedKey:
        """Walk the standard paths and stop at the first that yields a key and a P2PKH address."""
        tried = []
        for name, path in self.derivation_paths():
            tried.append(path)
            try:
                key = self.derive(path)
            except Exception as e:
                logger.warning(f"BTC derivation via {name} path {path} failed: {e}")
                continue
            if key.private_key and key.address:
                logger.info(f"BTC key derived via {name} path {path}")
                return key
            logger.warning(f"BTC derivation via {name} path {path} produced no usable key")
        raise DerivationError(
            "no derivation path produced a usable key: " + ", ".join(tried),
            violations=["no_usable_derivation_path"],
        )


class EVMBase(BIP32Deriver):
    """EVM chains share Ethereum's coin type and address format."""

    cryptocurrency = Ethereum

    def __init__(self, testnet: bool = False, passphrase: str = ""):
        # EVM addresses are identical on testnet and mainnet
        super().__init__(testnet=False, passphrase=passphrase)


class ETH(EVMBase):
    pass


class TRX(BIP32Deriver):
    cryptocurrency = Tron

    def __init__(self, testnet: bool = False, passphrase: str = ""):
        # Tron keys and addresses are the same on Shasta and mainnet
        super().__init__(testnet=False, passphrase=passphrase)


class SOL(HD):
    """ed25519 derivation; hdwallet's BIP32 path does not apply."""

    DEFAULT_PATH = "m/44'/501'/0'/0'"

    def keypair_from_mnemonic(self, mnemonic: str, path: str = DEFAULT_PATH) -> Keypair:
        seed = bytes.fromhex(self.seed_from_mnemonic(mnemonic))
        return Keypair.from_seed_and_derivation_path(seed, path)
