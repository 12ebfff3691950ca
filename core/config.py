"""
config.py — Process configuration for SmartDrop.

Priority when loading:
1. Environment variables (BASE32_SECRET_KEY, SMS_PROVIDER, ...), including a
   .env file in the working directory
2. JSON secret file written by save_secret() (secret + digits)
3. Defaults (mock SMS provider, 6 digits, SMARTBOX_001)

The secret is kept as the Base32 text the operator typed; decoding happens in
otp_core. Never log it in full, use otp_core.mask_secret().
"""

import json
import logging
import os
import shutil
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv

from .otp_core import DEFAULT_DIGITS, MAX_DIGITS

SECRET_FILE = "otp_secret.json"
DATABASE_FILE = "database/smartdrop.db"
DEFAULT_BOX_ID = "SMARTBOX_001"
DEFAULT_HISTORY_LIMIT = 10
SMS_PROVIDERS = ("mock", "textbelt", "twilio", "semaphore")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@dataclass(frozen=True)
class AppConfig:
    """Immutable settings shared by the CLI, the scheduler and the Flask app."""

    secret: str = ""
    digits: int = DEFAULT_DIGITS
    sms_provider: str = "mock"
    semaphore_api_key: str = ""
    textbelt_api_key: str = "textbelt"
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    box_id: str = DEFAULT_BOX_ID
    database_file: str = DATABASE_FILE
    history_limit: int = DEFAULT_HISTORY_LIMIT
    mock_delay: float = 0.0
    log_level: str = "INFO"

    @property
    def is_configured(self) -> bool:
        """Whether a delivery can be attempted: a secret plus a ready provider."""
        return bool(self.secret.strip()) and self.provider_ready

    @property
    def provider_ready(self) -> bool:
        """Credentials required by the selected SMS provider are present."""
        if self.sms_provider == "semaphore":
            return bool(self.semaphore_api_key)
        if self.sms_provider == "twilio":
            return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_from_number)
        return self.sms_provider in SMS_PROVIDERS

    def provider_settings(self, provider: Optional[str] = None) -> dict:
        """Keyword arguments for backend.sms_service.get_provider()."""
        provider = provider or self.sms_provider
        if provider == "textbelt":
            return {"api_key": self.textbelt_api_key}
        if provider == "twilio":
            return {
                "account_sid": self.twilio_account_sid,
                "auth_token": self.twilio_auth_token,
                "from_number": self.twilio_from_number,
            }
        if provider == "semaphore":
            return {"api_key": self.semaphore_api_key}
        if provider == "mock":
            return {"delay": self.mock_delay}
        return {}


# --- Secret file -----------------------------------------------------------
def save_secret(secret_b32: str, path: str = SECRET_FILE, digits: int = DEFAULT_DIGITS) -> None:
    """
    Store the Base32 secret (and code length) as JSON.

    - If the file already exists, keep a backup at path + ".bak".
    - Permission is tightened to 600 where the filesystem allows it.
    """
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    if os.path.exists(path):
        shutil.copy2(path, path + ".bak")
    with open(path, "w", encoding="utf-8") as f:
        json.dump({"secret": secret_b32, "digits": digits}, f)
        f.write("\n")
    try:
        os.chmod(path, 0o600)
    except OSError:
        logging.getLogger(__name__).warning("Unable to chmod %s to 600", path)


def load_secret(path: str = SECRET_FILE) -> dict:
    """
    Read the secret file written by save_secret().

    Raises FileNotFoundError when the file does not exist.
    Returns a dict with "secret" and "digits".
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return {
        "secret": str(data.get("secret", "")).strip(),
        "digits": int(data.get("digits", DEFAULT_DIGITS)),
    }


# --- Environment -----------------------------------------------------------
def _int_env(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None


def _float_env(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}") from None


def load_config(env: Optional[Mapping[str, str]] = None, secret_file: Optional[str] = None,
                dotenv_path: Optional[str] = None) -> AppConfig:
    """
    Build an AppConfig from the environment, falling back to the secret file.

    Arguments:
        env: mapping to read instead of os.environ (tests)
        secret_file: path of the JSON secret file (default SMARTDROP_SECRET_FILE
            or otp_secret.json)
        dotenv_path: .env file merged into os.environ when `env` is None
            (default: nearest .env from the working directory). Variables
            already set in the process win.

    Raises:
        ValueError: malformed numeric variable, unknown provider or digits
            out of range.
    """
    if env is None:
        load_dotenv(dotenv_path or find_dotenv(usecwd=True))
        env = os.environ
    secret_file = secret_file or env.get("SMARTDROP_SECRET_FILE", SECRET_FILE)

    secret = env.get("BASE32_SECRET_KEY", "").strip()
    file_digits = None
    if not secret and os.path.exists(secret_file):
        stored = load_secret(secret_file)
        secret = stored["secret"]
        file_digits = stored["digits"]

    digits = _int_env(env, "SMARTDROP_DIGITS", file_digits or DEFAULT_DIGITS)
    if not 1 <= digits <= MAX_DIGITS:
        raise ValueError(f"SMARTDROP_DIGITS must be between 1 and {MAX_DIGITS}")

    provider = env.get("SMS_PROVIDER", "mock").strip().lower() or "mock"
    if provider not in SMS_PROVIDERS:
        raise ValueError(f"Unsupported SMS provider: {provider}")

    return AppConfig(
        secret=secret,
        digits=digits,
        sms_provider=provider,
        semaphore_api_key=env.get("SEMAPHORE_API_KEY", ""),
        textbelt_api_key=env.get("TEXTBELT_API_KEY", "textbelt") or "textbelt",
        twilio_account_sid=env.get("TWILIO_ACCOUNT_SID", ""),
        twilio_auth_token=env.get("TWILIO_AUTH_TOKEN", ""),
        twilio_from_number=env.get("TWILIO_FROM_NUMBER", ""),
        box_id=env.get("SMARTBOX_ID", DEFAULT_BOX_ID) or DEFAULT_BOX_ID,
        database_file=env.get("SMARTDROP_DATABASE", DATABASE_FILE) or DATABASE_FILE,
        history_limit=_int_env(env, "SMARTDROP_HISTORY_LIMIT", DEFAULT_HISTORY_LIMIT),
        mock_delay=_float_env(env, "SMARTDROP_MOCK_DELAY", 0.0),
        log_level=env.get("SMARTDROP_LOG_LEVEL", "INFO").upper() or "INFO",
    )


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger once; later calls only adjust the level."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    root.setLevel(level)
