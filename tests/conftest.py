from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from dispatcher import Receipt
from session import ExchangeSession
from settings import Settings

PROGRAM_ID = Pubkey(bytes([7] * 32))
MINT = Pubkey(bytes([2] * 32))
AUTHORITY_WALLET = Pubkey(bytes([6] * 32))


@pytest.fixture
def payer() -> Keypair:
    return Keypair.from_seed(bytes([11] * 32))


@pytest.fixture
def authority() -> Keypair:
    return Keypair.from_seed(bytes([12] * 32))


def confirmed(slot=42, err=None):
    return SimpleNamespace(value=[SimpleNamespace(slot=slot, err=err)])


@pytest.fixture
def fake_client():
    """RPC client double: a fresh blockhash and a confirmed status unless a test overrides it."""
    client = MagicMock()
    client.get_latest_blockhash.return_value = SimpleNamespace(
        value=SimpleNamespace(blockhash=Hash.default(), last_valid_block_height=1_000)
    )
    client.send_raw_transaction.return_value = SimpleNamespace(value=None)
    client.confirm_transaction.return_value = confirmed()
    return client


@pytest.fixture
def session(payer):
    """Session wired to a dispatcher double that confirms everything."""
    dispatcher = MagicMock()
    dispatcher.submit_instruction.return_value = Receipt(signature="5ig", slot=7)
    return ExchangeSession(
        client=MagicMock(),
        dispatcher=dispatcher,
        fee_payer=payer,
        program_id=PROGRAM_ID,
        mint=MINT,
        authority_wallet=AUTHORITY_WALLET,
        settings=Settings(token_decimals=6),
    )
