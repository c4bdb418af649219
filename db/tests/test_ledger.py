import pytest
from sqlalchemy.exc import IntegrityError

from db.connection import create_tables, make_engine, make_session_factory
from db.base import Base
from db.ledger import Ledger
from db.models import SweepTransaction, TransactionStatus
from shared.crypto.chains import Chain
from shared.crypto.credentials import CredentialKind


@pytest.fixture(scope="function")
def engine():
    engine = make_engine("sqlite://")
    create_tables(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def ledger(engine):
    return Ledger(make_session_factory(engine))


@pytest.fixture
def owner(ledger):
    return ledger.get_or_create_user("5551234", "alice")


def add_wallet(ledger, owner, chain=Chain.TRX, address="TSourceAddress", kind=CredentialKind.PRIVATE_KEY,
               credential="gAAAA-encrypted", threshold=0):
    return ledger.insert_wallet(
        owner_id=owner.id,
        chain=chain,
        address=address,
        credential=credential,
        credential_kind=kind,
        receiver_address="TReceiverAddress",
        threshold=threshold,
    )


def test_get_or_create_user_is_idempotent(ledger):
    first = ledger.get_or_create_user("42", "bob")
    second = ledger.get_or_create_user("42")
    assert first.id == second.id
    assert ledger.get_user_by_telegram_id("42").telegram_username == "bob"
    assert ledger.get_user_by_telegram_id("43") is None


def test_get_or_create_user_updates_username(ledger):
    ledger.get_or_create_user("42", "bob")
    ledger.get_or_create_user("42", "robert")
    assert ledger.get_user_by_telegram_id("42").telegram_username == "robert"


def test_insert_and_list_wallets(ledger, owner):
    other = ledger.get_or_create_user("999")
    w1 = add_wallet(ledger, owner)
    w2 = add_wallet(ledger, owner, chain=Chain.ETH, address="0xabc")
    add_wallet(ledger, other, chain=Chain.SOL, address="SoLAddress")

    assert [w.id for w in ledger.list_wallets()] == [w1.id, w2.id, w2.id + 1]
    owned = ledger.list_wallets_by_owner(owner.id)
    assert [w.chain for w in owned] == [Chain.TRX, Chain.ETH]
    # Detached rows stay readable
    assert owned[0].credential_kind is CredentialKind.PRIVATE_KEY


def test_threshold_keeps_full_precision(ledger, owner):
    wei = 123456789012345678901234567890
    wallet = add_wallet(ledger, owner, chain=Chain.ETH, address="0xabc", threshold=wei)
    assert ledger.get_wallet(wallet.id).threshold == wei


def test_delegated_wallet_without_credential(ledger, owner):
    wallet = add_wallet(ledger, owner, chain=Chain.ETH, address="0xabc", kind=CredentialKind.DELEGATED,
                        credential=None)
    assert ledger.get_wallet(wallet.id).is_delegated


def test_non_delegated_wallet_requires_credential(ledger, owner):
    with pytest.raises(IntegrityError):
        add_wallet(ledger, owner, credential=None)


def test_insert_and_list_transactions(ledger, owner):
    wallet = add_wallet(ledger, owner)
    ledger.insert_transaction(wallet.id, Chain.TRX, 900_000, TransactionStatus.SUCCESS, tx_hash="abc123")
    ledger.insert_transaction(wallet.id, Chain.TRX, 5, TransactionStatus.FAILED)

    transactions = ledger.list_transactions_by_wallet(wallet.id)
    assert [(t.amount, t.status, t.tx_hash) for t in transactions] == [
        (900_000, TransactionStatus.SUCCESS, "abc123"),
        (5, TransactionStatus.FAILED, None),
    ]


def test_success_requires_hash(ledger, owner):
    wallet = add_wallet(ledger, owner)
    with pytest.raises(ValueError):
        ledger.insert_transaction(wallet.id, Chain.TRX, 1, TransactionStatus.SUCCESS, tx_hash=None)
    with pytest.raises(ValueError):
        SweepTransaction(wallet_id=wallet.id, chain=Chain.TRX, amount=1,
                         status=TransactionStatus.SUCCESS, tx_hash="")
    assert ledger.list_transactions_by_wallet(wallet.id) == []


def test_delete_transactions_by_wallet(ledger, owner):
    wallet = add_wallet(ledger, owner)
    other = add_wallet(ledger, owner, address="TOther")
    ledger.insert_transaction(wallet.id, Chain.TRX, 1, tx_hash="h1")
    ledger.insert_transaction(wallet.id, Chain.TRX, 2, tx_hash="h2")
    ledger.insert_transaction(other.id, Chain.TRX, 3, tx_hash="h3")

    assert ledger.delete_transactions_by_wallet(wallet.id) == 2
    assert ledger.list_transactions_by_wallet(wallet.id) == []
    assert len(ledger.list_transactions_by_wallet(other.id)) == 1


def test_delete_wallet_checks_owner(ledger, owner):
    stranger = ledger.get_or_create_user("777")
    wallet = add_wallet(ledger, owner)
    ledger.insert_transaction(wallet.id, Chain.TRX, 1, tx_hash="h1")

    assert ledger.delete_wallet(wallet.id, owner_id=stranger.id) is False
    assert ledger.get_wallet(wallet.id) is not None

    assert ledger.delete_wallet(wallet.id, owner_id=owner.id) is True
    assert ledger.get_wallet(wallet.id) is None
    assert ledger.list_transactions_by_wallet(wallet.id) == []
    assert ledger.delete_wallet(wallet.id) is False
