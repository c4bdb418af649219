"""
Credential resolution

Turns a stored credential (raw private key, mnemonic, or a delegated pairing)
into the canonical address for a chain and, where possible, the key material
the chain adapter signs with.
"""

import base64
import binascii
import enum
import logging
from dataclasses import dataclass
from typing import Optional

import base58
from bitcoinlib.keys import BKeyError, Key
from cryptography.fernet import Fernet, InvalidToken
from eth_account import Account
from eth_utils import to_checksum_address
from solders.keypair import Keypair
from tronpy.keys import PrivateKey as TronPrivateKey

from shared.crypto.chains import Chain, LedgerFamily
from shared.crypto.HD import BTC, ETH, SOL, TRX
from shared.errors import CredentialError, DerivationError

logger = logging.getLogger(__name__)

# secp256k1 group order
SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


class CredentialKind(enum.Enum):
    PRIVATE_KEY = "private_key"
    MNEMONIC = "mnemonic"
    DELEGATED = "delegated"


@dataclass
class ResolvedCredential:
    address: str
    signer: Optional[str] = None
    derivation_path: Optional[str] = None

    @property
    def signing_available(self) -> bool:
        return self.signer is not None

    def __repr__(self):
        # Never print key material
        return (f"ResolvedCredential(address={self.address!r}, "
                f"signing_available={self.signing_available}, "
                f"derivation_path={self.derivation_path!r})")


class CredentialCipher:
    """Fernet encryption of stored credentials, keyed from APP_SECRET."""

    def __init__(self, app_secret: str):
        if not app_secret:
            raise ValueError("APP_SECRET is required to encrypt credentials")
        key = base64.urlsafe_b64encode(app_secret.encode()[:32].ljust(32, b'0'))
        self.cipher = Fernet(key)

    def encrypt(self, credential: str) -> str:
        return self.cipher.encrypt(credential.encode()).decode()

    def decrypt(self, encrypted_credential: str) -> str:
        try:
            return self.cipher.decrypt(encrypted_credential.encode()).decode()
        except (InvalidToken, AttributeError, UnicodeDecodeError) as e:
            raise CredentialError("stored credential could not be decrypted", cause=e)


def _strip_hex(value: str) -> str:
    value = value.strip()
    if value[:2].lower() == "0x":
        value = value[2:]
    return value.lower()


def _secp256k1_hex(value: str) -> Optional[str]:
    """Return a normalised 32-byte hex key, or None when `value` is not one."""
    candidate = _strip_hex(value)
    if len(candidate) != 64:
        return None
    try:
        secret = int(candidate, 16)
    except ValueError:
        return None
    if not 0 < secret < SECP256K1_ORDER:
        raise CredentialError("private key is outside the secp256k1 range")
    return candidate


class CredentialResolver:
    """Resolve (credential, kind, chain) into an address and signing material.

    Resolution is deterministic: the same credential on the same chain always
    gives the same address.
    """

    def __init__(self, btc_testnet: bool = False):
        self.btc_testnet = btc_testnet

    @property
    def btc_network(self) -> str:
        return "testnet" if self.btc_testnet else "bitcoin"

    def resolve(self, credential: Optional[str], kind, chain, paired_address: Optional[str] = None) -> ResolvedCredential:
        kind = CredentialKind(kind)
        chain = Chain.parse(chain)

        if kind is CredentialKind.DELEGATED:
            address = (paired_address or credential or "").strip()
            if not address:
                raise CredentialError("delegated wallet has no paired address")
            return ResolvedCredential(address=address, signer=None)

        if not credential or not credential.strip():
            raise CredentialError(f"empty {kind.value} credential")

        if kind is CredentialKind.PRIVATE_KEY:
            return self._from_private_key(credential, chain)
        return self._from_mnemonic(credential, chain)

    # ===== Raw private keys =====

    def _from_private_key(self, credential: str, chain: Chain) -> ResolvedCredential:
        if chain is Chain.BTC:
            return self._btc_key(credential)
        if chain is Chain.SOL:
            return self._sol_key(credential)

        private_hex = _secp256k1_hex(credential)
        if private_hex is None:
            raise CredentialError(f"{chain.value} private key must be 64 hex characters")
        if chain is Chain.TRX:
            return self._tron_key(private_hex)
        if chain.family is LedgerFamily.EVM:
            return self._evm_key(private_hex)
        raise CredentialError(f"raw keys are not supported for {chain.value}")

    def _btc_key(self, credential: str) -> ResolvedCredential:
        private_hex = _secp256k1_hex(credential)
        try:
            if private_hex is not None:
                key = Key(private_hex, network=self.btc_network)
            else:
                # WIF
                key = Key(credential.strip(), network=self.btc_network)
        except (BKeyError, ValueError, TypeError) as e:
            raise CredentialError("BTC private key must be 64 hex characters or WIF", cause=e)
        if not key.is_private:
            raise CredentialError("BTC credential is a public key, not a private key")
        if not key.compressed:
            raise CredentialError("uncompressed BTC keys are not supported; export the key as compressed WIF")
        signer = private_hex if private_hex is not None else credential.strip()
        return ResolvedCredential(address=key.address(), signer=signer)

    @staticmethod
    def _tron_key(private_hex: str) -> ResolvedCredential:
        try:
            key = TronPrivateKey(bytes.fromhex(private_hex))
        except Exception as e:
            raise CredentialError("invalid TRX private key", cause=e)
        return ResolvedCredential(address=key.public_key.to_base58check_address(), signer=private_hex)

    @staticmethod
    def _evm_key(private_hex: str) -> ResolvedCredential:
        account = Account.from_key("0x" + private_hex)
        return ResolvedCredential(address=to_checksum_address(account.address), signer="0x" + private_hex)

    @staticmethod
    def _sol_key(credential: str) -> ResolvedCredential:
        raw = credential.strip()
        try:
            hex_candidate = _strip_hex(raw)
            if len(hex_candidate) == 64 and all(c in "0123456789abcdef" for c in hex_candidate):
                keypair = Keypair.from_seed(bytes.fromhex(hex_candidate))
            else:
                secret = base58.b58decode(raw)
                if len(secret) == 64:
                    keypair = Keypair.from_bytes(secret)
                elif len(secret) == 32:
                    keypair = Keypair.from_seed(secret)
                else:
                    raise CredentialError(f"SOL secret must be 32 or 64 bytes, got {len(secret)}")
        except CredentialError:
            raise
        except (ValueError, binascii.Error) as e:
            raise CredentialError("SOL private key must be hex or base58", cause=e)
        return ResolvedCredential(
            address=str(keypair.pubkey()),
            signer=base58.b58encode(bytes(keypair)).decode(),
        )

    # ===== Mnemonics =====

    def _from_mnemonic(self, credential: str, chain: Chain) -> ResolvedCredential:
        if chain is Chain.BTC:
            deriver = BTC(testnet=self.btc_testnet).from_mnemonic(credential)
            key = deriver.first_usable_key()
            return ResolvedCredential(address=key.address, signer=key.private_key, derivation_path=key.path)

        if chain is Chain.SOL:
            deriver = SOL()
            keypair = deriver.keypair_from_mnemonic(credential)
            return ResolvedCredential(
                address=str(keypair.pubkey()),
                signer=base58.b58encode(bytes(keypair)).decode(),
                derivation_path=SOL.DEFAULT_PATH,
            )

        if chain is Chain.TRX:
            deriver = TRX().from_mnemonic(credential)
        elif chain.family is LedgerFamily.EVM:
            deriver = ETH().from_mnemonic(credential)
        else:
            raise DerivationError(f"mnemonics are not supported for {chain.value}")

        path = deriver.default_path(0)
        key = deriver.derive(path)
        if not key.private_key:
            raise DerivationError(f"{chain.value} derivation produced no private key",
                                  violations=["no_private_key"])
        private_hex = _strip_hex(key.private_key)
        if chain is Chain.TRX:
            return ResolvedCredential(address=key.address, signer=private_hex, derivation_path=path)
        return ResolvedCredential(address=to_checksum_address(key.address), signer="0x" + private_hex,
                                  derivation_path=path)
