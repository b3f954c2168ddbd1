import re
from enum import IntEnum
from typing import List, Optional, Sequence


class ExchangeClientError(Exception):
    """Base error for exchange client operations."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigError(ExchangeClientError):
    """Configuration error - missing or invalid settings, keypair or token id."""

    pass


class ProgramNotDeployedError(ExchangeClientError):
    """Program account is missing on the cluster or not executable."""

    pass


class DerivationExhausted(ExchangeClientError):
    """No off-curve address exists for the seeds within the bump search space."""

    def __init__(self, seeds: Sequence[bytes], program_id: object) -> None:
        self.seeds = list(seeds)
        self.program_id = program_id
        super().__init__(f"Unable to find a viable program address bump seed for {program_id}")


class MissingSigner(ExchangeClientError):
    """A signer-flagged account has no keypair; raised before anything is sent."""

    def __init__(self, missing: List[object]) -> None:
        self.missing = missing
        super().__init__("Missing signature for: " + ", ".join(str(m) for m in missing))


class InvalidAmount(ExchangeClientError, ValueError):
    """A user-supplied quantity that cannot be expressed as u64 base units."""

    pass


class NetworkUnavailable(ExchangeClientError):
    """RPC failure before submission. Nothing was sent, so retrying is safe."""

    pass


class SubmissionRejected(ExchangeClientError):
    """The cluster or the program rejected the transaction. It did not apply."""

    def __init__(
        self,
        reason: str,
        signature: Optional[str] = None,
        logs: Optional[List[str]] = None,
        program_error: Optional["ExchangeProgramError"] = None,
    ) -> None:
        self.reason = reason
        self.signature = signature
        self.logs = logs or []
        self.program_error = program_error
        detail = f"Transaction rejected: {reason}"
        if program_error is not None:
            detail += f" ({program_error.name}: {program_error.description})"
        super().__init__(detail)


class IndeterminateOutcome(ExchangeClientError):
    """The transaction was sent but its outcome was not observed.

    It may or may not have applied; inspect the ledger for `signature` before retrying.
    """

    def __init__(self, signature: str, reason: str) -> None:
        self.signature = signature
        self.reason = reason
        super().__init__(
            f"Outcome of {signature} is unknown ({reason}); verify on the ledger before retrying"
        )


class ExchangeProgramError(IntEnum):
    # Codes are the declaration order of the on-chain error enum.
    InvalidInstructionDataEmpty = 0
    InvalidProgramInstruction = 1
    InvalidClashTokenId = 2
    InvalidAddressProgramPDA = 3
    AlreadyCreatedPDAAccount = 4
    InitializerNotMintAuthority = 5
    InvalidInitializerATAAddress = 6
    CannotTransferSameAccount = 7
    CannotTransferSameAssociatedAccount = 8
    InvalidSourceAssociatedAccountOwner = 9
    InvalidProgramAssociatedPDAOwner = 10
    InvalidClashTokenDestinationWallet = 11
    InvalidOfferTooFew = 12
    InvalidOfferTooMuch = 13
    InvalidClashTokenAmount = 14
    InsuficientClashToken = 15
    InvalidClashTrustedAuthority = 16
    InvalidTerminateUninitializedICO = 17
    InitializerAccountMismatch = 18
    InitializerAssociatedAccountMismatch = 19

    @property
    def description(self) -> str:
        return PROGRAM_ERROR_DESCRIPTIONS[self]


PROGRAM_ERROR_DESCRIPTIONS = {
    ExchangeProgramError.InvalidInstructionDataEmpty: "Invalid instruction data: No data was passed to program",
    ExchangeProgramError.InvalidProgramInstruction: "Invalid program instruction",
    ExchangeProgramError.InvalidClashTokenId: "Invalid Clash token ID",
    ExchangeProgramError.InvalidAddressProgramPDA: "Program account PDA does not match the expected PDA",
    ExchangeProgramError.AlreadyCreatedPDAAccount: "Program PDA account already exists! Terminate the current ICO and try again",
    ExchangeProgramError.InitializerNotMintAuthority: "Initializer is not the token mint authority",
    ExchangeProgramError.InvalidInitializerATAAddress: "Unexpected address for initializer associated token account",
    ExchangeProgramError.CannotTransferSameAccount: "Cannot transfer SOL from/to the same account",
    ExchangeProgramError.CannotTransferSameAssociatedAccount: "Cannot transfer CLASH from/to the same associated account",
    ExchangeProgramError.InvalidSourceAssociatedAccountOwner: "Invalid source associated account owner: must be owned by the source SOL account",
    ExchangeProgramError.InvalidProgramAssociatedPDAOwner: "Invalid program associated account owner: must be owner by the program PDA",
    ExchangeProgramError.InvalidClashTokenDestinationWallet: "Invalid Clash token destination account address",
    ExchangeProgramError.InvalidOfferTooFew: "Invalid offer because its value in USD is bellow the limit",
    ExchangeProgramError.InvalidOfferTooMuch: "Invalid offer because its value in USD is above the limit",
    ExchangeProgramError.InvalidClashTokenAmount: "Invalid Clash token count: more SOL may be required",
    ExchangeProgramError.InsuficientClashToken: "Not enough Clash tokens available to exchange",
    ExchangeProgramError.InvalidClashTrustedAuthority: "Invalid Clash trusted payment authority",
    ExchangeProgramError.InvalidTerminateUninitializedICO: "There is not an initialized ICO to terminate",
    ExchangeProgramError.InitializerAccountMismatch: "Incorrect initializer account",
    ExchangeProgramError.InitializerAssociatedAccountMismatch: "Incorrect initializer associated token account",
}

_CUSTOM_ERROR_RE = re.compile(r"custom program error: (0x[0-9a-fA-F]+)")
_CUSTOM_ERROR_REPR_RE = re.compile(r"InstructionErrorCustom\((\d+)\)|Custom\((\d+)\)")


def parse_program_error(reason: object) -> Optional[ExchangeProgramError]:
    """Recover the program's custom error code from a rejection payload, if any."""
    code = getattr(getattr(reason, "err", None), "code", None)
    if code is None:
        text = str(reason)
        match = _CUSTOM_ERROR_RE.search(text)
        if match:
            code = int(match.group(1), 16)
        else:
            match = _CUSTOM_ERROR_REPR_RE.search(text)
            if match:
                code = int(match.group(1) or match.group(2))
    if code is None:
        return None
    try:
        return ExchangeProgramError(code)
    except ValueError:
        return None
