from typing import Sequence, Tuple

from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from errors import DerivationExhausted

PROGRAM_AUTHORITY_SEEDS: Tuple[bytes, ...] = (b"genezys-fin", b"clash-ico")


def derive_program_address(seeds: Sequence[bytes], program_id: Pubkey) -> Tuple[Pubkey, int]:
    """First off-curve address for the seeds, searching bumps from 255 down to 0."""
    seeds = [bytes(seed) for seed in seeds]
    try:
        return Pubkey.find_program_address(seeds, program_id)
    except BaseException as exc:  # noqa: BLE001
        # solders reports an exhausted bump search as a pyo3 PanicException.
        if type(exc).__name__ != "PanicException":
            raise
        raise DerivationExhausted(seeds, program_id) from exc


def program_authority_pda(program_id: Pubkey) -> Tuple[Pubkey, int]:
    return derive_program_address(PROGRAM_AUTHORITY_SEEDS, program_id)


def derive_custody_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    """Associated token account of `owner` for `mint`."""
    return get_associated_token_address(owner, mint)
