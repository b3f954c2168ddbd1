import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from errors import ConfigError, ProgramNotDeployedError
from pda import derive_custody_address
from session import (
    check_program,
    ensure_payer_funded,
    load_exchanger,
    load_keypair,
    load_token_id,
    required_payer_balance,
    resolve_fee_payer,
    resolve_program_id,
    resolve_rpc_url,
)
from settings import Settings

MINT = Pubkey(bytes([2] * 32))


def write_keypair(path, keypair, wrap=False):
    secret = list(bytes(keypair))
    path.write_text(json.dumps({"secretKey": secret} if wrap else secret))
    return path


def make_settings(tmp_path, **overrides):
    values = {
        "solana_rpc": "",
        "solana_cli_config": str(tmp_path / "missing.yml"),
        "payer_keypair_path": None,
        "program_id": None,
        "program_keypair_path": str(tmp_path / "program.json"),
        "token_id_path": str(tmp_path / "token_id.json"),
    }
    values.update(overrides)
    return Settings(**values)


class TestLoadKeypair:
    def test_list_format(self, tmp_path, payer):
        assert load_keypair(write_keypair(tmp_path / "kp.json", payer)).pubkey() == payer.pubkey()

    def test_secret_key_format(self, tmp_path, payer):
        path = write_keypair(tmp_path / "kp.json", payer, wrap=True)
        assert load_keypair(str(path)).pubkey() == payer.pubkey()

    def test_missing(self, tmp_path):
        with pytest.raises(ConfigError, match="Missing keypair"):
            load_keypair(tmp_path / "nope.json")

    @pytest.mark.parametrize("content", ["not json", '{"key": 1}', "[1, 2, 3]"])
    def test_invalid(self, tmp_path, content):
        path = tmp_path / "kp.json"
        path.write_text(content)
        with pytest.raises(ConfigError):
            load_keypair(path)


def test_load_exchanger_derives_custody(tmp_path, payer):
    exchanger = load_exchanger(write_keypair(tmp_path / "wallet.json", payer), MINT)
    assert exchanger.wallet == payer.pubkey()
    assert exchanger.custody == derive_custody_address(payer.pubkey(), MINT)


class TestTokenId:
    def test_reads_token_id(self, tmp_path):
        path = tmp_path / "token_id.json"
        path.write_text(json.dumps({"token_id": str(MINT)}))
        assert load_token_id(path) == MINT

    def test_missing_file_points_at_config_command(self, tmp_path):
        with pytest.raises(ConfigError, match="`config`"):
            load_token_id(tmp_path / "token_id.json")

    def test_bad_pubkey(self, tmp_path):
        path = tmp_path / "token_id.json"
        path.write_text(json.dumps({"token_id": "not-a-key"}))
        with pytest.raises(ConfigError):
            load_token_id(path)


class TestResolution:
    def test_rpc_from_settings_wins(self, tmp_path):
        settings = make_settings(tmp_path, solana_rpc="https://api.devnet.solana.com")
        assert resolve_rpc_url(settings) == "https://api.devnet.solana.com"

    def test_rpc_from_cli_config(self, tmp_path):
        cfg = tmp_path / "config.yml"
        cfg.write_text("json_rpc_url: http://127.0.0.1:8899\nkeypair_path: /nowhere/id.json\n")
        assert resolve_rpc_url(make_settings(tmp_path, solana_cli_config=str(cfg))) == "http://127.0.0.1:8899"

    def test_rpc_fallback(self, tmp_path):
        assert resolve_rpc_url(make_settings(tmp_path)) == "http://localhost:8899"

    def test_fee_payer_from_cli_config(self, tmp_path, payer):
        kp_path = write_keypair(tmp_path / "id.json", payer)
        cfg = tmp_path / "config.yml"
        cfg.write_text(f"keypair_path: {kp_path}\n")
        assert resolve_fee_payer(make_settings(tmp_path, solana_cli_config=str(cfg))).pubkey() == payer.pubkey()

    def test_fee_payer_falls_back_to_random(self, tmp_path):
        assert isinstance(resolve_fee_payer(make_settings(tmp_path)), Keypair)

    def test_program_id_setting(self, tmp_path):
        program_id = Pubkey(bytes([7] * 32))
        assert resolve_program_id(make_settings(tmp_path, program_id=str(program_id))) == program_id

    def test_program_id_from_keypair(self, tmp_path, authority):
        write_keypair(tmp_path / "program.json", authority)
        assert resolve_program_id(make_settings(tmp_path)) == authority.pubkey()

    def test_program_id_missing_mentions_deploy(self, tmp_path):
        with pytest.raises(ConfigError, match="solana program deploy"):
            resolve_program_id(make_settings(tmp_path))


class TestCheckProgram:
    def test_not_deployed(self):
        client = MagicMock()
        client.get_account_info.return_value = SimpleNamespace(value=None)
        with pytest.raises(ProgramNotDeployedError):
            check_program(client, Pubkey(bytes([7] * 32)))

    def test_not_executable(self):
        client = MagicMock()
        client.get_account_info.return_value = SimpleNamespace(value=SimpleNamespace(executable=False))
        with pytest.raises(ProgramNotDeployedError, match="executable"):
            check_program(client, Pubkey(bytes([7] * 32)))

    def test_deployed(self, tmp_path):
        client = MagicMock()
        client.get_account_info.return_value = SimpleNamespace(value=SimpleNamespace(executable=True))
        check_program(client, Pubkey(bytes([7] * 32)), str(tmp_path / "missing.so"))


class TestPayerFunding:
    def test_default_reserve(self, tmp_path):
        assert required_payer_balance(make_settings(tmp_path)) == 500_000
        assert required_payer_balance(make_settings(tmp_path, min_payer_lamports=1)) == 1

    def test_funded_payer_skips_airdrop(self, tmp_path, payer):
        client = MagicMock()
        client.get_balance.return_value = SimpleNamespace(value=10**9)
        assert ensure_payer_funded(client, payer.pubkey(), make_settings(tmp_path)) == 10**9
        client.request_airdrop.assert_not_called()

    def test_airdrop_tops_up(self, tmp_path, payer):
        client = MagicMock()
        client.get_balance.side_effect = [SimpleNamespace(value=0), SimpleNamespace(value=500_000)]
        client.request_airdrop.return_value = SimpleNamespace(value="sig")
        assert ensure_payer_funded(client, payer.pubkey(), make_settings(tmp_path)) == 500_000
        client.request_airdrop.assert_called_once_with(payer.pubkey(), 500_000)

    def test_unfunded_after_failed_airdrop(self, tmp_path, payer):
        client = MagicMock()
        client.get_balance.return_value = SimpleNamespace(value=0)
        client.request_airdrop.side_effect = RuntimeError("airdrop disabled")
        with pytest.raises(ConfigError, match="top up"):
            ensure_payer_funded(client, payer.pubkey(), make_settings(tmp_path))
