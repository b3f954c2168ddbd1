from types import SimpleNamespace

import pytest
from solana.exceptions import SolanaRpcException
from solana.rpc.core import RPCException, TransactionExpiredBlockheightExceededError, UnconfirmedTxError
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from dispatcher import Receipt, TransactionDispatcher, required_signers, select_signers
from errors import (
    ExchangeProgramError,
    IndeterminateOutcome,
    MissingSigner,
    NetworkUnavailable,
    SubmissionRejected,
)
from tests.conftest import confirmed
from tx_builder import Exchange, build_instruction, resolve_exchange_accounts

PROGRAM_ID = Pubkey(bytes([7] * 32))
MINT = Pubkey(bytes([2] * 32))
WALLET = Pubkey(bytes([6] * 32))


def exchange_ix(payer: Keypair, lamports: int = 350_000_000):
    accounts = resolve_exchange_accounts(PROGRAM_ID, MINT, payer.pubkey(), WALLET)
    return build_instruction(PROGRAM_ID, Exchange(lamports), accounts)


def transport_error(message):
    # Positional args mirror how the client wraps a failed request: (exc, func, self, body).
    return SolanaRpcException(ConnectionError(message), lambda: None, None, "request")


def rpc_failure(message, logs=None, err=None):
    return RPCException(SimpleNamespace(message=message, data=SimpleNamespace(logs=logs or [], err=err)))


def test_required_signers_in_account_order(payer):
    ix = exchange_ix(payer)
    assert required_signers(ix.accounts) == [payer.pubkey()]


def test_select_signers_drops_extras(payer, authority):
    ix = exchange_ix(payer)
    assert select_signers(ix.accounts, [authority, payer]) == [payer]


def test_missing_signer_before_any_rpc(fake_client, payer, authority):
    dispatcher = TransactionDispatcher(fake_client)
    with pytest.raises(MissingSigner) as excinfo:
        dispatcher.submit_instruction(exchange_ix(payer), [authority])
    assert excinfo.value.missing == [payer.pubkey()]
    fake_client.get_latest_blockhash.assert_not_called()
    fake_client.send_raw_transaction.assert_not_called()


def test_confirmed_returns_receipt(fake_client, payer):
    dispatcher = TransactionDispatcher(fake_client, commitment="finalized", sleep_seconds=0.1)
    receipt = dispatcher.submit_instruction(exchange_ix(payer), [payer])

    assert isinstance(receipt, Receipt)
    assert receipt.slot == 42
    fake_client.send_raw_transaction.assert_called_once()
    raw, = fake_client.send_raw_transaction.call_args.args
    assert isinstance(raw, bytes)
    opts = fake_client.send_raw_transaction.call_args.kwargs["opts"]
    assert opts.skip_confirmation is True
    assert opts.preflight_commitment == "finalized"
    sig, = fake_client.confirm_transaction.call_args.args
    assert str(sig) == receipt.signature
    assert fake_client.confirm_transaction.call_args.kwargs["last_valid_block_height"] == 1_000


def test_submit_with_raw_parts(fake_client, payer):
    ix = exchange_ix(payer)
    receipt = TransactionDispatcher(fake_client).submit(ix.program_id, bytes(ix.data), ix.accounts, [payer])
    assert receipt.slot == 42


def test_preflight_rejection_carries_program_error(fake_client, payer):
    fake_client.send_raw_transaction.side_effect = rpc_failure(
        "Transaction simulation failed: Error processing Instruction 0: custom program error: 0xe",
        logs=["Program log: Error: Invalid Clash token count"],
    )
    dispatcher = TransactionDispatcher(fake_client)
    with pytest.raises(SubmissionRejected) as excinfo:
        dispatcher.submit_instruction(exchange_ix(payer), [payer])

    exc = excinfo.value
    assert "custom program error: 0xe" in exc.reason
    assert exc.program_error is ExchangeProgramError.InvalidClashTokenAmount
    assert exc.logs == ["Program log: Error: Invalid Clash token count"]
    assert exc.signature is not None
    fake_client.send_raw_transaction.assert_called_once()
    fake_client.confirm_transaction.assert_not_called()


def test_execution_error_is_rejection(fake_client, payer):
    fake_client.confirm_transaction.return_value = confirmed(
        err="TransactionErrorInstructionError((0, InstructionErrorCustom(15)))"
    )
    with pytest.raises(SubmissionRejected) as excinfo:
        TransactionDispatcher(fake_client).submit_instruction(exchange_ix(payer), [payer])
    assert excinfo.value.program_error is ExchangeProgramError.InsuficientClashToken


def test_expired_blockhash_is_rejection(fake_client, payer):
    fake_client.confirm_transaction.side_effect = TransactionExpiredBlockheightExceededError("expired")
    with pytest.raises(SubmissionRejected):
        TransactionDispatcher(fake_client).submit_instruction(exchange_ix(payer), [payer])


def test_unconfirmed_is_indeterminate(fake_client, payer):
    fake_client.confirm_transaction.side_effect = UnconfirmedTxError("timed out")
    with pytest.raises(IndeterminateOutcome) as excinfo:
        TransactionDispatcher(fake_client).submit_instruction(exchange_ix(payer), [payer])
    assert excinfo.value.signature
    assert "verify on the ledger" in excinfo.value.message
    fake_client.send_raw_transaction.assert_called_once()


def test_transport_failure_on_send_is_indeterminate(fake_client, payer):
    fake_client.send_raw_transaction.side_effect = transport_error("reset")
    with pytest.raises(IndeterminateOutcome):
        TransactionDispatcher(fake_client).submit_instruction(exchange_ix(payer), [payer])
    fake_client.confirm_transaction.assert_not_called()


def test_missing_status_is_indeterminate(fake_client, payer):
    fake_client.confirm_transaction.return_value = SimpleNamespace(value=[None])
    with pytest.raises(IndeterminateOutcome):
        TransactionDispatcher(fake_client).submit_instruction(exchange_ix(payer), [payer])


def test_blockhash_failure_is_network_unavailable(fake_client, payer):
    fake_client.get_latest_blockhash.side_effect = transport_error("down")
    with pytest.raises(NetworkUnavailable):
        TransactionDispatcher(fake_client).submit_instruction(exchange_ix(payer), [payer])
    fake_client.send_raw_transaction.assert_not_called()
