from typing import Optional

from pydantic_settings import BaseSettings

DEFAULT_AUTHORITY_WALLET = "DMxXQTaLqGD82GUKPFT7j7zJYNecRwCWkegYHVcM1DTy"
SOL_USD_QUOTE_URL = "https://api.coingecko.com/api/v3/simple/price?ids=solana&vs_currencies=usd"


class Settings(BaseSettings):
    solana_rpc: str = ""
    solana_cli_config: str = "~/.config/solana/cli/config.yml"
    fallback_rpc: str = "http://localhost:8899"
    payer_keypair_path: Optional[str] = None
    authority_keypair_path: Optional[str] = None  # payment authority for `confirm`; fee payer when unset
    program_keypair_path: str = "./dist/program/clash_exchange_program-keypair.json"
    program_id: Optional[str] = None  # overrides the program keypair file
    program_so_path: str = "./dist/program/clash_exchange_program.so"
    token_id_path: str = "token_id.json"
    exchanger_keypair_path: str = "./dist/static_wallet.json"
    authority_wallet: str = DEFAULT_AUTHORITY_WALLET
    token_decimals: int = 9
    commitment: str = "confirmed"
    skip_preflight: bool = False
    confirm_sleep_seconds: float = 0.5
    rpc_timeout: float = 30
    min_payer_lamports: Optional[int] = None
    fee_reserve_signatures: int = 100
    sol_usd_quote_url: str = SOL_USD_QUOTE_URL

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


def load_settings(env_file: Optional[str] = None) -> Settings:
    if env_file:
        return Settings(_env_file=env_file)
    return Settings()
