import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from dispatcher import Receipt
from session import ExchangeSession
from tx_builder import (
    SOL_DECIMALS,
    ConfirmPayment,
    Exchange,
    Initialize,
    Terminate,
    build_instruction,
    resolve_authority_accounts,
    resolve_confirm_payment_accounts,
    resolve_exchange_accounts,
    to_base_units,
)

logger = logging.getLogger("clash_exchange.exchange")

Quantity = Union[str, int, float, Decimal]


@dataclass(frozen=True)
class InitializeResult:
    instruction: Instruction
    program_authority: Pubkey
    program_authority_custody: Pubkey
    receipt: Optional[Receipt] = None  # None on dry runs


@dataclass(frozen=True)
class ExchangeResult:
    instruction: Instruction
    lamports: int
    payer_custody: Pubkey
    receipt: Optional[Receipt] = None


@dataclass(frozen=True)
class ConfirmPaymentResult:
    instruction: Instruction
    token_amount: int
    recipient_custody: Pubkey
    receipt: Optional[Receipt] = None


@dataclass(frozen=True)
class TerminateResult:
    instruction: Instruction
    initializer_custody: Pubkey
    receipt: Optional[Receipt] = None


def initialize_exchange(session: ExchangeSession, initializer: Keypair, dry_run: bool = False) -> InitializeResult:
    logger.info("Initializing ICO program.")
    accounts = resolve_authority_accounts(session.program_id, session.mint, initializer.pubkey())
    ix = build_instruction(session.program_id, Initialize(), accounts)
    receipt = None if dry_run else session.dispatcher.submit_instruction(ix, [initializer])
    if receipt:
        logger.info(
            "ico_initialized sig=%s program_ata=%s; send tokens to the program ATA so it can exchange them",
            receipt.signature,
            accounts.program_authority_custody,
        )
    return InitializeResult(
        instruction=ix,
        program_authority=accounts.program_authority,
        program_authority_custody=accounts.program_authority_custody,
        receipt=receipt,
    )


def exchange_sol_for_token(
    session: ExchangeSession,
    payer: Keypair,
    sol_amount: Quantity,
    authority_wallet: Optional[Pubkey] = None,
    dry_run: bool = False,
) -> ExchangeResult:
    lamports = to_base_units(sol_amount, SOL_DECIMALS)
    wallet = authority_wallet or session.authority_wallet
    logger.info("exchange_prepare payer=%s sol=%s lamports=%s", payer.pubkey(), sol_amount, lamports)
    accounts = resolve_exchange_accounts(session.program_id, session.mint, payer.pubkey(), wallet)
    ix = build_instruction(session.program_id, Exchange(lamports), accounts)
    receipt = None if dry_run else session.dispatcher.submit_instruction(ix, [payer])
    return ExchangeResult(instruction=ix, lamports=lamports, payer_custody=accounts.payer_custody, receipt=receipt)


def confirm_token_payment(
    session: ExchangeSession,
    authority: Keypair,
    recipient: Pubkey,
    token_amount: Quantity,
    dry_run: bool = False,
) -> ConfirmPaymentResult:
    raw_amount = to_base_units(token_amount, session.settings.token_decimals)
    logger.info("payment_deliver recipient=%s tokens=%s raw=%s", recipient, token_amount, raw_amount)
    accounts = resolve_confirm_payment_accounts(session.program_id, session.mint, recipient, authority.pubkey())
    ix = build_instruction(session.program_id, ConfirmPayment(raw_amount), accounts)
    receipt = None if dry_run else session.dispatcher.submit_instruction(ix, [authority])
    return ConfirmPaymentResult(
        instruction=ix,
        token_amount=raw_amount,
        recipient_custody=accounts.recipient_custody,
        receipt=receipt,
    )


def terminate_exchange(session: ExchangeSession, initializer: Keypair, dry_run: bool = False) -> TerminateResult:
    logger.info("Terminating the ICO program.")
    accounts = resolve_authority_accounts(session.program_id, session.mint, initializer.pubkey())
    ix = build_instruction(session.program_id, Terminate(), accounts)
    receipt = None if dry_run else session.dispatcher.submit_instruction(ix, [initializer])
    return TerminateResult(instruction=ix, initializer_custody=accounts.initializer_custody, receipt=receipt)
