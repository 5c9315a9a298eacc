import json
import plistlib
from unittest.mock import AsyncMock

import httpx
import pytest

from kraken_dca.cli import main as cli


@pytest.fixture
def workdir(tmp_path, clean_env):
    # keep load_dotenv away from any real .env
    clean_env.chdir(tmp_path)
    return tmp_path


def test_list(workdir, strategy_doc, capsys):
    configs = workdir / "configs"
    configs.mkdir()
    (configs / "btc.json").write_text(json.dumps(strategy_doc), encoding="utf-8")

    assert cli.main(["list"]) == 0
    assert "btc.json" in capsys.readouterr().out


def test_list_empty_dir(workdir, capsys):
    assert cli.main(["list", "--dir", str(workdir / "nothing")]) == 0
    assert "No configurations found" in capsys.readouterr().out


def test_validate_ok(workdir, strategy_file, capsys):
    assert cli.main(["validate", str(strategy_file)]) == 0
    assert capsys.readouterr().out.startswith("OK: bitcoin-weekly")


def test_validate_invalid(workdir, tmp_path, strategy_doc, capsys):
    strategy_doc["schedule"]["cron"] = "every monday"
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps(strategy_doc), encoding="utf-8")

    assert cli.main(["validate", str(bad)]) == 1
    assert "INVALID" in capsys.readouterr().out


def test_run_fails_fast_on_config_error(workdir, strategy_file):
    # no credentials in ENV
    assert cli.main(["run", str(strategy_file)]) == 1


def test_generate_service(workdir, strategy_file, capsys):
    out = workdir / "svc.plist"
    assert cli.main(["generate-service", str(strategy_file), "-o", str(out), "--label", "com.test.dca"]) == 0
    with open(out, "rb") as fh:
        assert plistlib.load(fh)["Label"] == "com.test.dca"


def test_balance_groups_assets(workdir, monkeypatch, capsys):
    monkeypatch.setenv("KRAKEN_API_KEY", "key")
    monkeypatch.setenv("KRAKEN_API_SECRET", "c2VjcmV0")
    fetch = AsyncMock(return_value={"ZUSD": "120.5", "XXBT": "0.01", "XETH": "0.0000000000"})
    monkeypatch.setattr(cli, "_fetch_balances", fetch)

    assert cli.main(["balance"]) == 0
    out = capsys.readouterr().out
    assert out.index("Fiat:") < out.index("ZUSD") < out.index("Crypto:") < out.index("XXBT")
    assert "XETH" not in out

    assert cli.main(["balance", "--currency", "usd"]) == 0
    assert capsys.readouterr().out.strip() == "USD: 120.5"


def test_balance_without_credentials(workdir, capsys):
    assert cli.main(["balance"]) == 1


def test_balance_transport_error_exits_cleanly(workdir, monkeypatch):
    monkeypatch.setenv("KRAKEN_API_KEY", "key")
    monkeypatch.setenv("KRAKEN_API_SECRET", "c2VjcmV0")
    monkeypatch.setattr(cli, "_fetch_balances", AsyncMock(side_effect=httpx.ConnectError("dns")))

    assert cli.main(["balance"]) == 1
