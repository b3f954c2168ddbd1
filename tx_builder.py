import base64
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import List, Tuple, Union

from borsh_construct import CStruct, U64
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID

from errors import InvalidAmount
from pda import derive_custody_address, program_authority_pda

SYS_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
SYSVAR_RENT_PUBKEY = Pubkey.from_string("SysvarRent111111111111111111111111111111111")
LAMPORTS_PER_SOL = 1_000_000_000
SOL_DECIMALS = 9
U64_MAX = 2**64 - 1
AMOUNT_SIZE = 8

INITIALIZE = 0
EXCHANGE = 1
CONFIRM_PAYMENT = 2
TERMINATE = 3

ExchangeLayout = CStruct("sol_as_lamports_amount" / U64)
PaymentLayout = CStruct("clash_token_amount" / U64)


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise TypeError(f"Amount must be an int in base units, got {type(amount).__name__}")
    if amount < 0 or amount > U64_MAX:
        raise ValueError(f"Amount {amount} does not fit in an unsigned 64-bit integer")


@dataclass(frozen=True)
class Initialize:
    discriminant = INITIALIZE


@dataclass(frozen=True)
class Exchange:
    amount: int  # lamports
    discriminant = EXCHANGE

    def __post_init__(self) -> None:
        _check_amount(self.amount)


@dataclass(frozen=True)
class ConfirmPayment:
    amount: int  # token base units
    discriminant = CONFIRM_PAYMENT

    def __post_init__(self) -> None:
        _check_amount(self.amount)


@dataclass(frozen=True)
class Terminate:
    discriminant = TERMINATE


Operation = Union[Initialize, Exchange, ConfirmPayment, Terminate]


@dataclass(frozen=True)
class AuthorityAccounts:
    """Accounts for Initialize and Terminate, which share one account schema."""

    initializer: Pubkey
    initializer_custody: Pubkey
    mint: Pubkey
    program_authority: Pubkey
    program_authority_custody: Pubkey


@dataclass(frozen=True)
class ExchangeAccounts:
    payer: Pubkey
    payer_custody: Pubkey
    authority_wallet: Pubkey  # receives the SOL
    authority_custody: Pubkey  # program authority's token account, source of the tokens
    mint: Pubkey
    program_id: Pubkey
    program_authority: Pubkey


@dataclass(frozen=True)
class ConfirmPaymentAccounts:
    recipient: Pubkey
    recipient_custody: Pubkey
    mint: Pubkey
    confirming_authority: Pubkey
    authority_custody: Pubkey
    program_id: Pubkey
    program_authority: Pubkey


ResolvedAccounts = Union[AuthorityAccounts, ExchangeAccounts, ConfirmPaymentAccounts]


def resolve_authority_accounts(program_id: Pubkey, mint: Pubkey, initializer: Pubkey) -> AuthorityAccounts:
    program_authority, _bump = program_authority_pda(program_id)
    return AuthorityAccounts(
        initializer=initializer,
        initializer_custody=derive_custody_address(initializer, mint),
        mint=mint,
        program_authority=program_authority,
        program_authority_custody=derive_custody_address(program_authority, mint),
    )


def resolve_exchange_accounts(
    program_id: Pubkey, mint: Pubkey, payer: Pubkey, authority_wallet: Pubkey
) -> ExchangeAccounts:
    program_authority, _bump = program_authority_pda(program_id)
    return ExchangeAccounts(
        payer=payer,
        payer_custody=derive_custody_address(payer, mint),
        authority_wallet=authority_wallet,
        authority_custody=derive_custody_address(program_authority, mint),
        mint=mint,
        program_id=program_id,
        program_authority=program_authority,
    )


def resolve_confirm_payment_accounts(
    program_id: Pubkey, mint: Pubkey, recipient: Pubkey, confirming_authority: Pubkey
) -> ConfirmPaymentAccounts:
    program_authority, _bump = program_authority_pda(program_id)
    return ConfirmPaymentAccounts(
        recipient=recipient,
        recipient_custody=derive_custody_address(recipient, mint),
        mint=mint,
        confirming_authority=confirming_authority,
        authority_custody=derive_custody_address(program_authority, mint),
        program_id=program_id,
        program_authority=program_authority,
    )


def encode_instruction_data(operation: Operation) -> bytes:
    if isinstance(operation, Exchange):
        payload = ExchangeLayout.build({"sol_as_lamports_amount": operation.amount})
    elif isinstance(operation, ConfirmPayment):
        payload = PaymentLayout.build({"clash_token_amount": operation.amount})
    elif isinstance(operation, (Initialize, Terminate)):
        payload = b""
    else:
        raise TypeError(f"Unsupported operation {operation!r}")
    return bytes([operation.discriminant]) + payload


def decode_instruction_data(data: bytes) -> Operation:
    """Parse instruction bytes back into an operation, following the program's unpack rules."""
    if not data:
        raise ValueError("Invalid instruction data: No data was passed to program")
    tag, payload = data[0], bytes(data[1:])
    if tag == INITIALIZE:
        return Initialize()
    if tag == EXCHANGE:
        if len(payload) != AMOUNT_SIZE:
            raise ValueError(f"Exchange payload must be 8 bytes, got {len(payload)}")
        return Exchange(ExchangeLayout.parse(payload).sol_as_lamports_amount)
    if tag == CONFIRM_PAYMENT:
        if len(payload) != AMOUNT_SIZE:
            raise ValueError(f"ConfirmPayment payload must be 8 bytes, got {len(payload)}")
        return ConfirmPayment(PaymentLayout.parse(payload).clash_token_amount)
    if tag == TERMINATE:
        return Terminate()
    raise ValueError(f"Invalid program instruction {tag}")


def initialize_account_metas(accounts: AuthorityAccounts) -> List[AccountMeta]:
    return [
        AccountMeta(pubkey=accounts.initializer, is_signer=True, is_writable=False),
        AccountMeta(pubkey=accounts.initializer_custody, is_signer=False, is_writable=True),
        AccountMeta(pubkey=accounts.mint, is_signer=False, is_writable=True),
        AccountMeta(pubkey=accounts.program_authority, is_signer=False, is_writable=True),
        AccountMeta(pubkey=accounts.program_authority_custody, is_signer=False, is_writable=True),
        AccountMeta(pubkey=SYS_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSVAR_RENT_PUBKEY, is_signer=False, is_writable=False),
    ]


def exchange_account_metas(accounts: ExchangeAccounts) -> List[AccountMeta]:
    return [
        AccountMeta(pubkey=accounts.payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=accounts.payer_custody, is_signer=False, is_writable=True),
        AccountMeta(pubkey=accounts.authority_wallet, is_signer=False, is_writable=True),
        AccountMeta(pubkey=accounts.authority_custody, is_signer=False, is_writable=True),
        AccountMeta(pubkey=accounts.mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=accounts.program_id, is_signer=False, is_writable=False),
        AccountMeta(pubkey=accounts.program_authority, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYS_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSVAR_RENT_PUBKEY, is_signer=False, is_writable=False),
    ]


def confirm_payment_account_metas(accounts: ConfirmPaymentAccounts) -> List[AccountMeta]:
    return [
        AccountMeta(pubkey=accounts.recipient, is_signer=False, is_writable=False),
        AccountMeta(pubkey=accounts.recipient_custody, is_signer=False, is_writable=True),
        AccountMeta(pubkey=accounts.mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=accounts.confirming_authority, is_signer=True, is_writable=False),
        AccountMeta(pubkey=accounts.authority_custody, is_signer=False, is_writable=True),
        AccountMeta(pubkey=accounts.program_id, is_signer=False, is_writable=False),
        AccountMeta(pubkey=accounts.program_authority, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYS_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSVAR_RENT_PUBKEY, is_signer=False, is_writable=False),
    ]


def terminate_account_metas(accounts: AuthorityAccounts) -> List[AccountMeta]:
    return [
        AccountMeta(pubkey=accounts.initializer, is_signer=True, is_writable=False),
        AccountMeta(pubkey=accounts.initializer_custody, is_signer=False, is_writable=True),
        AccountMeta(pubkey=accounts.mint, is_signer=False, is_writable=True),
        AccountMeta(pubkey=accounts.program_authority, is_signer=False, is_writable=True),
        AccountMeta(pubkey=accounts.program_authority_custody, is_signer=False, is_writable=True),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]


def encode(operation: Operation, accounts: ResolvedAccounts) -> Tuple[bytes, List[AccountMeta]]:
    """Instruction data and the ordered account list the program expects for `operation`."""
    if isinstance(operation, Initialize) and isinstance(accounts, AuthorityAccounts):
        metas = initialize_account_metas(accounts)
    elif isinstance(operation, Terminate) and isinstance(accounts, AuthorityAccounts):
        metas = terminate_account_metas(accounts)
    elif isinstance(operation, Exchange) and isinstance(accounts, ExchangeAccounts):
        metas = exchange_account_metas(accounts)
    elif isinstance(operation, ConfirmPayment) and isinstance(accounts, ConfirmPaymentAccounts):
        metas = confirm_payment_account_metas(accounts)
    else:
        raise TypeError(
            f"{type(accounts).__name__} cannot be used for a {type(operation).__name__} instruction"
        )
    return encode_instruction_data(operation), metas


def build_instruction(program_id: Pubkey, operation: Operation, accounts: ResolvedAccounts) -> Instruction:
    data, metas = encode(operation, accounts)
    return Instruction(program_id=program_id, data=data, accounts=metas)


def to_base_units(quantity: Union[str, int, float, Decimal], decimals: int) -> int:
    """Convert a user-facing quantity into integer base units, truncating sub-unit dust."""
    try:
        value = Decimal(str(quantity))
    except InvalidOperation as exc:
        raise InvalidAmount(f"Invalid amount {quantity!r}") from exc
    if not value.is_finite():
        raise InvalidAmount(f"Invalid amount {quantity!r}")
    if value < 0:
        raise InvalidAmount(f"Amount must be non-negative, got {quantity}")
    raw = int((value * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))
    if raw > U64_MAX:
        raise InvalidAmount(f"Amount {quantity} overflows an unsigned 64-bit integer at {decimals} decimals")
    return raw


def instruction_to_dict(ix: Instruction) -> dict:
    return {
        "program_id": str(ix.program_id),
        "keys": [
            {
                "pubkey": str(k.pubkey),
                "is_signer": k.is_signer,
                "is_writable": k.is_writable,
            }
            for k in ix.accounts
        ],
        "data": base64.b64encode(ix.data).decode(),
    }
