import base58
import pytest
from solders.keypair import Keypair

from shared.crypto.chains import Chain
from shared.crypto.credentials import CredentialCipher, CredentialKind, CredentialResolver
from shared.crypto.HD import BTC, HD
from shared.errors import CredentialError, DerivationError

MNEMONIC = "abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon about"
KEY_ONE = "00" * 31 + "01"


@pytest.fixture
def resolver():
    return CredentialResolver()


# ===== Raw private keys =====

def test_btc_private_key_gives_compressed_p2pkh(resolver):
    resolved = resolver.resolve(KEY_ONE, CredentialKind.PRIVATE_KEY, Chain.BTC)
    assert resolved.address == "1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH"
    assert resolved.signing_available


def test_btc_accepts_wif(resolver):
    wif = "KwDiBf89QgGbjEhKnhXJuH7LrciVrZi3qYjgd9M7rFU73sVHnoWn"
    resolved = resolver.resolve(wif, CredentialKind.PRIVATE_KEY, "btc")
    assert resolved.address == "1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH"
    assert resolved.signer == wif


@pytest.mark.parametrize("wif", [
    "5HpHagT65TZzG1PH3CSu63k8DbpvD8s5ip4nEB3kEsreAnchuDf",
    "5KJvsngHeMpm884wtkJNzQGaCErckhHJBGFsvd3VyK5qMZXj3hS",
])
def test_btc_rejects_uncompressed_wif(resolver, wif):
    with pytest.raises(CredentialError) as exc_info:
        resolver.resolve(wif, CredentialKind.PRIVATE_KEY, Chain.BTC)
    assert "uncompressed" in str(exc_info.value)


@pytest.mark.parametrize("chain", [Chain.ETH, Chain.BNB, Chain.MATIC])
def test_evm_private_key(resolver, chain):
    resolved = resolver.resolve("0x" + KEY_ONE, CredentialKind.PRIVATE_KEY, chain)
    assert resolved.address == "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"
    assert resolved.signer == "0x" + KEY_ONE


def test_tron_private_key(resolver):
    resolved = resolver.resolve(KEY_ONE, CredentialKind.PRIVATE_KEY, Chain.TRX)
    assert resolved.address.startswith("T") and len(resolved.address) == 34
    assert resolved.signer == KEY_ONE


def test_same_credential_same_address(resolver):
    first = resolver.resolve(KEY_ONE, CredentialKind.PRIVATE_KEY, Chain.TRX)
    second = resolver.resolve("0x" + KEY_ONE.upper(), CredentialKind.PRIVATE_KEY, Chain.TRX)
    assert first.address == second.address


def test_sol_private_key_hex_and_base58_agree(resolver):
    keypair = Keypair.from_seed(bytes(range(32)))
    from_hex = resolver.resolve(bytes(range(32)).hex(), CredentialKind.PRIVATE_KEY, Chain.SOL)
    from_b58 = resolver.resolve(base58.b58encode(bytes(keypair)).decode(), CredentialKind.PRIVATE_KEY, Chain.SOL)
    assert from_hex.address == from_b58.address == str(keypair.pubkey())
    assert Keypair.from_bytes(base58.b58decode(from_hex.signer)).pubkey() == keypair.pubkey()


@pytest.mark.parametrize("credential", ["not-a-key", "abcd", "00" * 32, "zz" * 32])
def test_malformed_private_keys_rejected(resolver, credential):
    with pytest.raises(CredentialError):
        resolver.resolve(credential, CredentialKind.PRIVATE_KEY, Chain.ETH)


def test_empty_credential_rejected(resolver):
    with pytest.raises(CredentialError):
        resolver.resolve("   ", CredentialKind.PRIVATE_KEY, Chain.TRX)


# ===== Mnemonics =====

def test_btc_mnemonic_uses_legacy_path_first(resolver):
    resolved = resolver.resolve(MNEMONIC, CredentialKind.MNEMONIC, Chain.BTC)
    assert resolved.address == "1LqBGSKuX5yYUonjxT5qGfpUsXKYYWeabA"
    assert resolved.derivation_path == "m/44'/0'/0'/0/0"
    assert len(resolved.signer) == 64


def test_mnemonic_is_normalised(resolver):
    messy = "  " + MNEMONIC.upper().replace(" ", "   ") + "\n"
    assert resolver.resolve(messy, CredentialKind.MNEMONIC, Chain.BTC).address == \
        "1LqBGSKuX5yYUonjxT5qGfpUsXKYYWeabA"


def test_eth_mnemonic(resolver):
    resolved = resolver.resolve(MNEMONIC, CredentialKind.MNEMONIC, Chain.ETH)
    assert resolved.address == "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"
    assert resolved.derivation_path == "m/44'/60'/0'/0/0"


def test_tron_and_sol_mnemonics_are_deterministic(resolver):
    for chain in (Chain.TRX, Chain.SOL):
        first = resolver.resolve(MNEMONIC, CredentialKind.MNEMONIC, chain)
        second = resolver.resolve(MNEMONIC, CredentialKind.MNEMONIC, chain)
        assert first.address == second.address
        assert first.signing_available


def test_wrong_word_count():
    with pytest.raises(DerivationError) as exc_info:
        HD.validate_mnemonic(" ".join(MNEMONIC.split()[:11]))
    assert "wrong_word_count" in exc_info.value.violations


def test_invalid_checksum():
    with pytest.raises(DerivationError) as exc_info:
        HD.validate_mnemonic(" ".join(["abandon"] * 12))
    assert exc_info.value.violations == ["invalid_checksum"]


def test_invalid_mnemonic_rejected_before_derivation(resolver):
    with pytest.raises(DerivationError):
        resolver.resolve("abandon " * 12, CredentialKind.MNEMONIC, Chain.ETH)


class RecordingBTC(BTC):
    def __init__(self, failing=(), **kwargs):
        super().__init__(**kwargs)
        self.failing = set(failing)
        self.tried = []

    def derive(self, path):
        self.tried.append(path)
        if path in self.failing:
            raise ValueError("derivation failed")
        return super().derive(path)


def test_btc_stops_at_first_usable_path():
    deriver = RecordingBTC().from_mnemonic(MNEMONIC)
    key = deriver.first_usable_key()
    assert key.path == "m/44'/0'/0'/0/0"
    assert deriver.tried == ["m/44'/0'/0'/0/0"]


def test_btc_falls_back_in_order():
    deriver = RecordingBTC(failing={"m/44'/0'/0'/0/0"}).from_mnemonic(MNEMONIC)
    key = deriver.first_usable_key()
    assert key.path == "m/49'/0'/0'/0/0"
    assert deriver.tried == ["m/44'/0'/0'/0/0", "m/49'/0'/0'/0/0"]
    assert key.address.startswith("1")


def test_btc_no_usable_path():
    paths = ["m/44'/0'/0'/0/0", "m/49'/0'/0'/0/0", "m/84'/0'/0'/0/0"]
    deriver = RecordingBTC(failing=set(paths)).from_mnemonic(MNEMONIC)
    with pytest.raises(DerivationError) as exc_info:
        deriver.first_usable_key()
    assert deriver.tried == paths
    assert exc_info.value.violations == ["no_usable_derivation_path"]


# ===== Delegated =====

def test_delegated_has_no_signer(resolver):
    resolved = resolver.resolve(None, CredentialKind.DELEGATED, Chain.ETH,
                                paired_address="0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf")
    assert resolved.address == "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"
    assert resolved.signer is None
    assert not resolved.signing_available


def test_delegated_without_address(resolver):
    with pytest.raises(CredentialError):
        resolver.resolve(None, CredentialKind.DELEGATED, Chain.ETH)


def test_repr_hides_key(resolver):
    resolved = resolver.resolve(KEY_ONE, CredentialKind.PRIVATE_KEY, Chain.TRX)
    assert KEY_ONE not in repr(resolved)


# ===== Encryption =====

def test_cipher_round_trip():
    cipher = CredentialCipher("a" * 40)
    token = cipher.encrypt(MNEMONIC)
    assert token != MNEMONIC
    assert cipher.decrypt(token) == MNEMONIC


def test_cipher_wrong_secret():
    token = CredentialCipher("first-secret").encrypt(KEY_ONE)
    with pytest.raises(CredentialError):
        CredentialCipher("second-secret").decrypt(token)


def test_cipher_rejects_plaintext():
    with pytest.raises(CredentialError):
        CredentialCipher("secret").decrypt(KEY_ONE)


def test_cipher_requires_secret():
    with pytest.raises(ValueError):
        CredentialCipher("")
