"""
Program configuration rendering for the `config` command.

Reads a JSON config, substitutes its values into the program's config template and
caches the token id for the client (token_id.json). The SOL/USD rate is fetched live.
"""

import json
import logging
from pathlib import Path
from typing import Optional

import requests

from errors import ConfigError
from settings import SOL_USD_QUOTE_URL

logger = logging.getLogger("clash_exchange.config")

SAMPLE_CONFIG = {
    "target_file": "program-rust/src/config.rs.dist",
    "output_file": "program-rust/src/config.rs",
    "clash_team_sol_wallet": "<clash authority wallet address to receive SOL>",
    "clash_token_id": "<clash token address on the Solana blockchain>",
    "clash_payment_authority": "<authority key to sign a payment realized by coinpayment>",
    "ico_freeze_duration_days": 30,
    "clash_usd_price": 0.035,
    "min_usd_price": "1.0",
    "max_usd_price": "10000.0",
}

# placeholder -> config key
PLACEHOLDERS = [
    ("#CLASH_SOL_WALLET", "clash_team_sol_wallet"),
    ("#CLASH_TOKEN_ID", "clash_token_id"),
    ("#CLASH_PAYMENT_AUTHORITY", "clash_payment_authority"),
    ("#CLASH_USD", "clash_usd_price"),
    ("#MIN_USD", "min_usd_price"),
    ("#MAX_USD", "max_usd_price"),
]


def fetch_sol_usd(url: str = SOL_USD_QUOTE_URL, timeout: float = 10) -> Optional[float]:
    try:
        resp = requests.get(url, timeout=timeout)
        resp.raise_for_status()
        price = resp.json()["solana"]["usd"]
    except (requests.RequestException, KeyError, TypeError, ValueError) as exc:
        logger.warning("sol_usd_quote_failed url=%s error=%s", url, exc, exc_info=True)
        return None
    logger.info("Current SOL/USD price: %s", price)
    return price


def render_template(template: str, config: dict, sol_usd: Optional[float]) -> str:
    rendered = template
    for placeholder, key in PLACEHOLDERS:
        if key in config:
            rendered = rendered.replace(placeholder, str(config[key]))
    if sol_usd is not None:
        rendered = rendered.replace("#SOL_USD", str(sol_usd))
    return rendered


def write_token_id(token_id: str, path: str = "token_id.json") -> None:
    Path(path).write_text(json.dumps({"token_id": token_id}, indent=2))


def update_program_config(
    config_path: str = "config.json",
    token_id_path: str = "token_id.json",
    quote_url: str = SOL_USD_QUOTE_URL,
) -> Optional[Path]:
    """Render the program config file; returns its path, or None when only a sample was written."""
    logger.info("Configuring program with values from file: %s", config_path)
    path = Path(config_path)
    if not path.exists():
        path.write_text(json.dumps(SAMPLE_CONFIG, indent=2), encoding="utf-8")
        logger.warning("Config file '%s' not found! A sample was created, edit this file and run the command again.", config_path)
        return None

    try:
        config = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise ConfigError(f"{config_path} is not valid JSON: {exc}") from exc
    missing = [key for key in ("target_file", "output_file") if not config.get(key)]
    if missing:
        raise ConfigError(f"{config_path} is missing " + ", ".join(missing))
    # Template and output paths are relative to the config file.
    base = path.parent
    template_path = base / config["target_file"]
    if not template_path.exists():
        raise ConfigError(f"Template file not found: {template_path}")
    template = template_path.read_text(encoding="utf-8")
    rendered = render_template(template, config, fetch_sol_usd(quote_url))

    if config.get("clash_token_id"):
        write_token_id(config["clash_token_id"], token_id_path)

    output = base / config["output_file"]
    output.write_text(rendered, encoding="utf-8")
    logger.info("Generated updated configuration file: %s", output)
    return output
