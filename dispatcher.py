"""
Single-instruction transaction dispatch.

Every call walks Built -> Signed -> Submitted -> {Confirmed | Rejected}. Nothing is
retried here: a rejection surfaces as SubmissionRejected, and a submission whose
outcome could not be observed surfaces as IndeterminateOutcome so the caller checks
the ledger before trying again.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.core import RPCException, TransactionExpiredBlockheightExceededError, UnconfirmedTxError
from solana.rpc.types import TxOpts
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from errors import IndeterminateOutcome, MissingSigner, NetworkUnavailable, SubmissionRejected, parse_program_error

logger = logging.getLogger("clash_exchange.dispatcher")


@dataclass(frozen=True)
class Receipt:
    signature: str
    slot: Optional[int]


def required_signers(accounts: Sequence[AccountMeta]) -> List[Pubkey]:
    seen: List[Pubkey] = []
    for meta in accounts:
        if meta.is_signer and meta.pubkey not in seen:
            seen.append(meta.pubkey)
    return seen


def select_signers(accounts: Sequence[AccountMeta], keypairs: Sequence[Keypair]) -> List[Keypair]:
    """Keypairs for exactly the signer-flagged accounts, in account order."""
    by_pubkey: Dict[Pubkey, Keypair] = {kp.pubkey(): kp for kp in keypairs}
    required = required_signers(accounts)
    missing = [pubkey for pubkey in required if pubkey not in by_pubkey]
    if missing:
        raise MissingSigner(missing)
    return [by_pubkey[pubkey] for pubkey in required]


def _rejection_details(exc: Exception):
    """Pull the message and program logs out of an RPC error payload."""
    payload = exc.args[0] if exc.args else exc
    message = getattr(payload, "message", None) or str(payload)
    data = getattr(payload, "data", None)
    logs = list(getattr(data, "logs", None) or [])
    err = getattr(data, "err", None)
    program_error = (parse_program_error(err) if err is not None else None) or parse_program_error(message)
    if program_error is None:
        for line in logs:
            program_error = parse_program_error(line)
            if program_error is not None:
                break
    return message, logs, program_error


class TransactionDispatcher:
    def __init__(
        self,
        client: Client,
        commitment: str = "confirmed",
        skip_preflight: bool = False,
        sleep_seconds: float = 0.5,
    ) -> None:
        self.client = client
        self.commitment = commitment
        self.skip_preflight = skip_preflight
        self.sleep_seconds = sleep_seconds

    def submit(
        self,
        program_id: Pubkey,
        data: bytes,
        accounts: Sequence[AccountMeta],
        signers: Sequence[Keypair],
    ) -> Receipt:
        ix = Instruction(program_id=program_id, data=bytes(data), accounts=list(accounts))
        return self.submit_instruction(ix, signers)

    def submit_instruction(self, ix: Instruction, signers: Sequence[Keypair]) -> Receipt:
        keypairs = select_signers(ix.accounts, signers)
        if not keypairs:
            raise ValueError("Instruction has no signer account to pay the fees")
        # The first signer pays the fees.
        payer = keypairs[0].pubkey()
        logger.debug("tx_built program=%s accounts=%s payer=%s", ix.program_id, len(ix.accounts), payer)

        try:
            blockhash_resp = self.client.get_latest_blockhash(commitment=self.commitment)
        except SolanaRpcException as exc:
            raise NetworkUnavailable(f"Failed to fetch blockhash: {exc}") from exc
        blockhash = blockhash_resp.value.blockhash
        last_valid_block_height = blockhash_resp.value.last_valid_block_height

        message = MessageV0.try_compile(payer, [ix], [], blockhash)
        tx = VersionedTransaction(message, keypairs)
        signature = tx.signatures[0]
        sig_str = str(signature)
        logger.debug("tx_signed sig=%s signers=%s", sig_str, [str(kp.pubkey()) for kp in keypairs])

        opts = TxOpts(
            skip_confirmation=True,
            skip_preflight=self.skip_preflight,
            preflight_commitment=self.commitment,
        )
        try:
            self.client.send_raw_transaction(bytes(tx), opts=opts)
        except RPCException as exc:
            reason, logs, program_error = _rejection_details(exc)
            logger.warning("tx_rejected sig=%s stage=preflight reason=%s", sig_str, reason)
            raise SubmissionRejected(reason, signature=sig_str, logs=logs, program_error=program_error) from exc
        except SolanaRpcException as exc:
            # The request may have reached the cluster before the connection failed.
            logger.warning("tx_indeterminate sig=%s stage=send error=%s", sig_str, exc, exc_info=True)
            raise IndeterminateOutcome(sig_str, f"send failed: {exc}") from exc
        logger.info("tx_submitted sig=%s program=%s", sig_str, ix.program_id)

        try:
            resp = self.client.confirm_transaction(
                signature,
                commitment=self.commitment,
                sleep_seconds=self.sleep_seconds,
                last_valid_block_height=last_valid_block_height,
            )
        except TransactionExpiredBlockheightExceededError as exc:
            logger.warning("tx_rejected sig=%s stage=confirm reason=blockhash_expired", sig_str)
            raise SubmissionRejected(f"blockhash expired before confirmation: {exc}", signature=sig_str) from exc
        except (UnconfirmedTxError, SolanaRpcException) as exc:
            logger.warning("tx_indeterminate sig=%s stage=confirm error=%s", sig_str, exc, exc_info=True)
            raise IndeterminateOutcome(sig_str, f"confirmation not observed: {exc}") from exc

        status = resp.value[0] if resp.value else None
        if status is None:
            logger.warning("tx_indeterminate sig=%s stage=confirm error=no_status", sig_str)
            raise IndeterminateOutcome(sig_str, "no signature status returned")
        if status.err is not None:
            reason = str(status.err)
            logger.warning("tx_rejected sig=%s stage=execution reason=%s", sig_str, reason)
            raise SubmissionRejected(
                reason,
                signature=sig_str,
                program_error=parse_program_error(status.err),
            )
        logger.info("tx_confirmed sig=%s slot=%s", sig_str, status.slot)
        return Receipt(signature=sig_str, slot=status.slot)
