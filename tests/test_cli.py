import json

import pytest

from core.otp_cli import main
from core.config import load_secret
from tests.conftest import RFC_SECRET_B32

ENV_KEYS = (
    "BASE32_SECRET_KEY", "SMARTDROP_DIGITS", "SMS_PROVIDER", "SEMAPHORE_API_KEY",
    "TEXTBELT_API_KEY", "TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_FROM_NUMBER",
    "SMARTBOX_ID", "SMARTDROP_HISTORY_LIMIT", "SMARTDROP_MOCK_DELAY", "SMARTDROP_LOG_LEVEL",
)


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SMARTDROP_SECRET_FILE", str(tmp_path / "otp_secret.json"))
    monkeypatch.setenv("SMARTDROP_DATABASE", str(tmp_path / "smartdrop.db"))
    monkeypatch.setenv("BASE32_SECRET_KEY", RFC_SECRET_B32)
    return tmp_path


def test_code_at(cli_env, capsys):
    assert main(["code", "--at", "59"]) == 0
    assert "Code: 287082  (expires at 60, 1s left)" in capsys.readouterr().out


def test_code_digits(cli_env, capsys):
    assert main(["code", "--at", "59", "--digits", "8"]) == 0
    assert "94287082" in capsys.readouterr().out


def test_code_without_secret(cli_env, monkeypatch):
    monkeypatch.delenv("BASE32_SECRET_KEY")
    with pytest.raises(SystemExit):
        main(["code"])


def test_verify(cli_env, capsys):
    assert main(["verify", "--code", "287082", "--at", "59"]) == 0
    assert "VALID" in capsys.readouterr().out
    assert main(["verify", "--code", "287082", "--at", "3000"]) == 1
    assert "INVALID" in capsys.readouterr().out


def test_set_secret(cli_env, monkeypatch, capsys):
    monkeypatch.delenv("BASE32_SECRET_KEY")
    path = cli_env / "otp_secret.json"
    assert main(["set-secret", "JBSWY3DPEHPK3PXP", "--file", str(path)]) == 0
    assert "JBSWY3DPEHPK3PXP" not in capsys.readouterr().out
    with open(path, encoding="utf-8") as f:
        assert json.load(f)["secret"] == "JBSWY3DPEHPK3PXP"

    # picked up again through SMARTDROP_SECRET_FILE
    assert main(["code", "--at", "59"]) == 0


def test_set_secret_rejects_garbage(cli_env, capsys):
    assert main(["set-secret", "!!!", "--file", str(cli_env / "s.json")]) == 1
    assert "[!]" in capsys.readouterr().err
    assert not (cli_env / "s.json").exists()


def test_send_and_history(cli_env, capsys):
    assert main(["send", "--phone", "09171234567", "--box", "SMARTBOX_009"]) == 0
    assert "+639171234567 via mock" in capsys.readouterr().out
    assert main(["history"]) == 0
    out = capsys.readouterr().out
    assert "SMARTBOX_009" in out
    assert "[sent]" in out


def test_send_bad_phone(cli_env, capsys):
    assert main(["send", "--phone", "12345"]) == 1
    assert "Delivery failed" in capsys.readouterr().err


def test_history_empty(cli_env, capsys):
    assert main(["history"]) == 0
    assert "No deliveries yet." in capsys.readouterr().out


def test_test_sms(cli_env, capsys):
    assert main(["test-sms"]) == 0
    assert "mock is configured correctly" in capsys.readouterr().out
    assert main(["test-sms", "--provider", "semaphore"]) == 1


def test_bad_configuration(cli_env, monkeypatch, capsys):
    monkeypatch.setenv("SMS_PROVIDER", "pigeon")
    assert main(["code", "--at", "59"]) == 2
    assert "Configuration error" in capsys.readouterr().err


def test_set_secret_defaults_to_configured_file(cli_env, monkeypatch, capsys):
    monkeypatch.delenv("BASE32_SECRET_KEY")
    path = cli_env / "custom" / "s.json"
    monkeypatch.setenv("SMARTDROP_SECRET_FILE", str(path))
    assert main(["set-secret", "JBSWY3DPEHPK3PXP"]) == 0
    assert str(path) in capsys.readouterr().out
    assert load_secret(str(path))["secret"] == "JBSWY3DPEHPK3PXP"

    assert main(["code", "--at", "59"]) == 0
    assert "Code: " in capsys.readouterr().out


def test_zero_digits_is_an_error(cli_env, capsys):
    assert main(["code", "--at", "59", "--digits", "0"]) == 2
    assert "digits" in capsys.readouterr().err
    assert main(["set-secret", "JBSWY3DPEHPK3PXP", "--file", str(cli_env / "s.json"), "--digits", "0"]) == 2
    assert not (cli_env / "s.json").exists()


def test_history_clear(cli_env, capsys):
    assert main(["send", "--phone", "09171234567"]) == 0
    assert main(["history", "--clear"]) == 0
    assert "Removed 1 deliveries" in capsys.readouterr().out
    assert main(["history"]) == 0
    assert "No deliveries yet." in capsys.readouterr().out
