from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml
from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from dispatcher import TransactionDispatcher
from errors import ConfigError, NetworkUnavailable, ProgramNotDeployedError
from pda import derive_custody_address
from settings import Settings

logger = logging.getLogger("clash_exchange.session")

LAMPORTS_PER_SOL = 1_000_000_000
LAMPORTS_PER_SIGNATURE = 5_000
DEPLOY_PROGRAM_CMD = "`solana program deploy dist/program/clash_exchange_program.so`"


@dataclass
class ExchangeSession:
    """Everything an operation needs; passed explicitly instead of held in module globals."""

    client: Client
    dispatcher: TransactionDispatcher
    fee_payer: Keypair
    program_id: Pubkey
    mint: Pubkey
    authority_wallet: Pubkey
    settings: Settings


@dataclass(frozen=True)
class Exchanger:
    keypair: Keypair
    custody: Pubkey

    @property
    def wallet(self) -> Pubkey:
        return self.keypair.pubkey()


def load_keypair(path: str | Path) -> Keypair:
    path = Path(path).expanduser()
    if not path.exists():
        raise ConfigError(f"Missing keypair at {path}")
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Failed to read keypair {path}: {exc}") from exc
    if isinstance(raw, list):
        secret = bytes(raw)
    elif isinstance(raw, dict) and "secretKey" in raw:
        secret = bytes(raw["secretKey"])
    else:
        raise ConfigError(f"Unsupported keypair file format: {path}")
    try:
        return Keypair.from_bytes(secret)
    except Exception as exc:  # noqa: BLE001
        raise ConfigError(f"Invalid keypair in {path}: {exc}") from exc


def parse_pubkey(value: str, what: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except Exception as exc:  # noqa: BLE001
        raise ConfigError(f"{what} is not a valid pubkey: {exc}") from exc


def read_cli_config(path: str) -> dict:
    """Solana CLI config (json_rpc_url, keypair_path); empty when absent or unreadable."""
    cfg_path = Path(path).expanduser()
    if not cfg_path.exists():
        return {}
    try:
        with open(cfg_path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("cli_config_unreadable path=%s error=%s", cfg_path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def resolve_rpc_url(settings: Settings) -> str:
    if settings.solana_rpc:
        return settings.solana_rpc
    rpc_url = read_cli_config(settings.solana_cli_config).get("json_rpc_url")
    if rpc_url:
        return rpc_url
    logger.warning("Failed to read RPC url from CLI config file, falling back to %s", settings.fallback_rpc)
    return settings.fallback_rpc


def resolve_fee_payer(settings: Settings) -> Keypair:
    if settings.payer_keypair_path:
        return load_keypair(settings.payer_keypair_path)
    keypair_path = read_cli_config(settings.solana_cli_config).get("keypair_path")
    if keypair_path:
        try:
            return load_keypair(keypair_path)
        except ConfigError as exc:
            logger.warning("payer_keypair_unusable path=%s error=%s", keypair_path, exc)
    logger.warning("Failed to create keypair from CLI config file, falling back to new random keypair")
    return Keypair()


def resolve_program_id(settings: Settings) -> Pubkey:
    if settings.program_id:
        return parse_pubkey(settings.program_id, "PROGRAM_ID")
    try:
        return load_keypair(settings.program_keypair_path).pubkey()
    except ConfigError as exc:
        raise ConfigError(
            f"Failed to read program keypair at '{settings.program_keypair_path}' due to error:\n"
            f"    {exc.message}.\n\nProgram may need to be deployed with {DEPLOY_PROGRAM_CMD}"
        ) from exc


def load_token_id(path: str | Path) -> Pubkey:
    token_file = Path(path)
    if not token_file.exists():
        raise ConfigError("Run the command `config` and configure a valid token ID first.")
    try:
        info = json.loads(token_file.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Failed to read token id file {token_file}: {exc}") from exc
    token_id = info.get("token_id") if isinstance(info, dict) else None
    if not token_id:
        raise ConfigError(f"{token_file} has no token_id")
    return parse_pubkey(token_id, "token_id")


def load_exchanger(path: str | Path, mint: Pubkey) -> Exchanger:
    keypair = load_keypair(path)
    return Exchanger(keypair=keypair, custody=derive_custody_address(keypair.pubkey(), mint))


def connect(settings: Settings) -> Client:
    rpc_url = resolve_rpc_url(settings)
    client = Client(rpc_url, commitment=settings.commitment, timeout=settings.rpc_timeout)
    try:
        version = client.get_version().value
    except SolanaRpcException as exc:
        raise NetworkUnavailable(f"Unable to reach cluster at {rpc_url}: {exc}") from exc
    logger.info("Connection to cluster established: %s %s", rpc_url, version)
    return client


def check_program(client: Client, program_id: Pubkey, program_so_path: Optional[str] = None) -> None:
    try:
        info = client.get_account_info(program_id).value
    except SolanaRpcException as exc:
        raise NetworkUnavailable(f"Failed to fetch program account {program_id}: {exc}") from exc
    if info is None:
        raise ProgramNotDeployedError(
            f"Program {program_id} needs to be built and deployed with {DEPLOY_PROGRAM_CMD}"
        )
    if not info.executable:
        raise ProgramNotDeployedError(f"Program {program_id} is not marked as executable")
    if program_so_path and not os.path.exists(program_so_path):
        logger.warning("Program is deployed but executable %s is missing; rebuild it before redeploying.", program_so_path)
    logger.info("Deployed program id is %s.", program_id)


def required_payer_balance(settings: Settings) -> int:
    if settings.min_payer_lamports is not None:
        return settings.min_payer_lamports
    return LAMPORTS_PER_SIGNATURE * settings.fee_reserve_signatures


def ensure_payer_funded(client: Client, payer: Pubkey, settings: Settings) -> int:
    """
    Make sure the fee payer can cover transaction fees. Best-effort airdrop on test clusters.
    """
    required = required_payer_balance(settings)
    try:
        balance = client.get_balance(payer).value
    except SolanaRpcException as exc:
        raise NetworkUnavailable(f"Failed to fetch balance of {payer}: {exc}") from exc
    if balance < required:
        try:
            sig = client.request_airdrop(payer, required - balance).value
            client.confirm_transaction(sig, commitment=settings.commitment)
        except Exception as exc:  # noqa: BLE001
            logger.warning("airdrop_failed payer=%s error=%s", payer, exc, exc_info=True)
        try:
            balance = client.get_balance(payer).value
        except SolanaRpcException as exc:
            raise NetworkUnavailable(f"Failed to fetch balance of {payer}: {exc}") from exc
        if balance < required:
            raise ConfigError(f"Fee payer {payer} holds {balance} lamports, needs {required}; top up funds before rerunning.")
    logger.info("Using account %s containing %s SOL to pay for fees", payer, balance / LAMPORTS_PER_SOL)
    return balance


def establish_session(settings: Settings, fund_payer: bool = True) -> ExchangeSession:
    client = connect(settings)
    fee_payer = resolve_fee_payer(settings)
    if fund_payer:
        ensure_payer_funded(client, fee_payer.pubkey(), settings)
    program_id = resolve_program_id(settings)
    check_program(client, program_id, settings.program_so_path)
    mint = load_token_id(settings.token_id_path)
    dispatcher = TransactionDispatcher(
        client,
        commitment=settings.commitment,
        skip_preflight=settings.skip_preflight,
        sleep_seconds=settings.confirm_sleep_seconds,
    )
    return ExchangeSession(
        client=client,
        dispatcher=dispatcher,
        fee_payer=fee_payer,
        program_id=program_id,
        mint=mint,
        authority_wallet=parse_pubkey(settings.authority_wallet, "AUTHORITY_WALLET"),
        settings=settings,
    )
