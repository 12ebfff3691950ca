import json
import os

import pytest

from core.config import AppConfig, load_config, load_secret, save_secret
from tests.conftest import RFC_SECRET_B32


def test_defaults_without_environment(tmp_path):
    config = load_config(env={}, secret_file=str(tmp_path / "missing.json"))
    assert config.secret == ""
    assert config.digits == 6
    assert config.sms_provider == "mock"
    assert config.box_id == "SMARTBOX_001"
    assert config.history_limit == 10
    assert not config.is_configured


def test_environment_values(tmp_path):
    env = {
        "BASE32_SECRET_KEY": "  JBSWY3DPEHPK3PXP ",
        "SMARTDROP_DIGITS": "8",
        "SMS_PROVIDER": "Semaphore",
        "SEMAPHORE_API_KEY": "sem-key",
        "SMARTBOX_ID": "SMARTBOX_042",
        "SMARTDROP_DATABASE": str(tmp_path / "db.sqlite"),
        "SMARTDROP_HISTORY_LIMIT": "5",
        "SMARTDROP_LOG_LEVEL": "debug",
    }
    config = load_config(env=env, secret_file=str(tmp_path / "missing.json"))
    assert config.secret == "JBSWY3DPEHPK3PXP"
    assert config.digits == 8
    assert config.sms_provider == "semaphore"
    assert config.box_id == "SMARTBOX_042"
    assert config.history_limit == 5
    assert config.log_level == "DEBUG"
    assert config.is_configured
    assert config.provider_settings() == {"api_key": "sem-key"}


def test_secret_file_fallback(tmp_path):
    path = str(tmp_path / "otp_secret.json")
    save_secret(RFC_SECRET_B32, path=path, digits=8)
    config = load_config(env={}, secret_file=path)
    assert config.secret == RFC_SECRET_B32
    assert config.digits == 8


def test_environment_beats_secret_file(tmp_path):
    path = str(tmp_path / "otp_secret.json")
    save_secret(RFC_SECRET_B32, path=path)
    config = load_config(env={"BASE32_SECRET_KEY": "JBSWY3DPEHPK3PXP"}, secret_file=path)
    assert config.secret == "JBSWY3DPEHPK3PXP"


def test_secret_file_path_from_environment(tmp_path):
    path = str(tmp_path / "custom.json")
    save_secret(RFC_SECRET_B32, path=path)
    config = load_config(env={"SMARTDROP_SECRET_FILE": path})
    assert config.secret == RFC_SECRET_B32


def test_save_secret_keeps_backup(tmp_path):
    path = str(tmp_path / "otp_secret.json")
    save_secret("AAAA", path=path)
    save_secret(RFC_SECRET_B32, path=path)
    with open(path + ".bak", encoding="utf-8") as f:
        assert json.load(f)["secret"] == "AAAA"
    assert load_secret(path) == {"secret": RFC_SECRET_B32, "digits": 6}


@pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
def test_save_secret_permissions(tmp_path):
    path = str(tmp_path / "otp_secret.json")
    save_secret(RFC_SECRET_B32, path=path)
    assert os.stat(path).st_mode & 0o777 == 0o600


@pytest.mark.parametrize("env", [
    {"SMS_PROVIDER": "pigeon"},
    {"SMARTDROP_DIGITS": "0"},
    {"SMARTDROP_DIGITS": "11"},
    {"SMARTDROP_DIGITS": "six"},
    {"SMARTDROP_HISTORY_LIMIT": "ten"},
])
def test_bad_values_raise(tmp_path, env):
    with pytest.raises(ValueError):
        load_config(env=env, secret_file=str(tmp_path / "missing.json"))


@pytest.mark.parametrize("overrides, ready", [
    ({"sms_provider": "mock"}, True),
    ({"sms_provider": "textbelt"}, True),
    ({"sms_provider": "semaphore"}, False),
    ({"sms_provider": "semaphore", "semaphore_api_key": "k"}, True),
    ({"sms_provider": "twilio", "twilio_account_sid": "AC1", "twilio_auth_token": "t"}, False),
    ({"sms_provider": "twilio", "twilio_account_sid": "AC1", "twilio_auth_token": "t",
      "twilio_from_number": "+15005550006"}, True),
])
def test_provider_ready(overrides, ready):
    config = AppConfig(secret=RFC_SECRET_B32, **overrides)
    assert config.provider_ready is ready
    assert config.is_configured is ready


def test_blank_secret_is_not_configured():
    assert not AppConfig(secret="   ").is_configured


def test_provider_settings():
    config = AppConfig(twilio_account_sid="AC1", twilio_auth_token="t", twilio_from_number="+1", mock_delay=0.5)
    assert config.provider_settings("mock") == {"delay": 0.5}
    assert config.provider_settings("textbelt") == {"api_key": "textbelt"}
    assert config.provider_settings("twilio") == {
        "account_sid": "AC1",
        "auth_token": "t",
        "from_number": "+1",
    }


DOTENV_KEYS = ("BASE32_SECRET_KEY", "SMS_PROVIDER", "SEMAPHORE_API_KEY")


@pytest.fixture
def clean_environ(monkeypatch):
    # setenv + delenv registers each key so values loaded from .env are undone
    for key in DOTENV_KEYS:
        monkeypatch.setenv(key, "placeholder")
        monkeypatch.delenv(key)
    return monkeypatch


def test_dotenv_file_is_loaded(tmp_path, clean_environ):
    dotenv = tmp_path / ".env"
    dotenv.write_text(
        "BASE32_SECRET_KEY=JBSWY3DPEHPK3PXP\nSMS_PROVIDER=semaphore\nSEMAPHORE_API_KEY=from-dotenv\n",
        encoding="utf-8",
    )
    clean_environ.chdir(tmp_path)
    config = load_config(secret_file=str(tmp_path / "missing.json"))
    assert config.secret == "JBSWY3DPEHPK3PXP"
    assert config.sms_provider == "semaphore"
    assert config.provider_settings() == {"api_key": "from-dotenv"}


def test_process_environment_beats_dotenv(tmp_path, clean_environ):
    dotenv = tmp_path / "smartdrop.env"
    dotenv.write_text("BASE32_SECRET_KEY=JBSWY3DPEHPK3PXP\n", encoding="utf-8")
    clean_environ.setenv("BASE32_SECRET_KEY", RFC_SECRET_B32)
    config = load_config(secret_file=str(tmp_path / "missing.json"), dotenv_path=str(dotenv))
    assert config.secret == RFC_SECRET_B32


def test_save_secret_creates_directory(tmp_path):
    path = str(tmp_path / "nested" / "otp_secret.json")
    save_secret(RFC_SECRET_B32, path=path)
    assert load_secret(path)["secret"] == RFC_SECRET_B32
