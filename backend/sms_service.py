"""
SMS TRANSPORT - PROVIDERS FOR DELIVERY CODES

Every provider exposes the same two calls:
- send(phone, message) -> SendOutcome
- test_configuration() -> {"success": bool, "message": str, ...}

Transport problems (HTTP errors, timeouts, malformed JSON) never raise out of
send(); they come back as SendOutcome(success=False, error=...). Only missing
configuration (e.g. no Semaphore API key) raises ValueError up front.

PROVIDERS
- mock      : logs the message, always succeeds (testing)
- textbelt  : https://textbelt.com/text (key "textbelt" = free tier, 1 SMS/day)
- twilio    : https://api.twilio.com (trial credits)
- semaphore : https://api.semaphore.co (Philippines)
"""
import logging
import re
import time
from dataclasses import dataclass
from typing import Optional

import requests

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10.0
TEXTBELT_URL = 'https://textbelt.com/text'
TWILIO_URL = 'https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json'
TWILIO_ACCOUNT_URL = 'https://api.twilio.com/2010-04-01/Accounts/{sid}.json'
SEMAPHORE_MESSAGES_URL = 'https://api.semaphore.co/api/v4/messages'
SEMAPHORE_ACCOUNT_URL = 'https://api.semaphore.co/api/v4/account'
TEST_PHONE = '+639171234567'

_PH_MOBILE = re.compile(r'^639\d{9}$')


@dataclass(frozen=True)
class SendOutcome:
    success: bool
    provider: str
    message_id: str = ''
    status: str = ''
    error: str = ''
    quota_remaining: Optional[int] = None

    def to_dict(self) -> dict:
        data = {"success": self.success, "provider": self.provider}
        if self.success:
            data.update(message_id=self.message_id, status=self.status)
            if self.quota_remaining is not None:
                data["quota_remaining"] = self.quota_remaining
        else:
            data["error"] = self.error
        return data


def _millis() -> int:
    return int(time.time() * 1000)


# --- Phone numbers ---------------------------------------------------------
def format_phone_number(phone: str) -> str:
    """
    Normalize a Philippine mobile number to +63XXXXXXXXXX.

    09123456789 -> +639123456789, 9123456789 -> +639123456789
    """
    digits = re.sub(r'\D', '', phone)
    if digits.startswith('0'):
        digits = '63' + digits[1:]
    elif not digits.startswith('63'):
        digits = '63' + digits
    return '+' + digits


def validate_phone_number(phone: str) -> bool:
    return bool(_PH_MOBILE.match(format_phone_number(phone)[1:]))


# --- Providers -------------------------------------------------------------
class SmsProvider:
    """Base class, subclasses implement send() and test_configuration()."""

    name = 'base'

    def send(self, phone: str, message: str) -> SendOutcome:
        raise NotImplementedError

    def test_configuration(self) -> dict:
        raise NotImplementedError

    def _failure(self, error: str) -> SendOutcome:
        logger.warning("%s SMS failed: %s", self.name, error)
        return SendOutcome(success=False, provider=self.name, error=error)


class MockProvider(SmsProvider):
    name = 'mock'

    def __init__(self, delay: float = 0.0):
        self.delay = delay

    def send(self, phone: str, message: str) -> SendOutcome:
        logger.info("=== MOCK SMS SERVICE === to=%s len=%d", phone, len(message))
        logger.debug("Mock message body: %s", message)
        if self.delay:
            time.sleep(self.delay)  # simulate API latency
        return SendOutcome(success=True, provider=self.name,
                           message_id=f'MOCK_{_millis()}', status='sent')

    def test_configuration(self) -> dict:
        return {"success": True, "message": "Mock service is always available"}


class TextbeltProvider(SmsProvider):
    name = 'textbelt'

    def __init__(self, api_key: str = 'textbelt'):
        self.api_key = api_key or 'textbelt'

    def _post(self, phone: str, message: str) -> dict:
        response = requests.post(
            TEXTBELT_URL,
            json={"phone": phone, "message": message, "key": self.api_key},
            headers={"Content-Type": "application/json"},
            timeout=REQUEST_TIMEOUT,
        )
        return response.json()

    def send(self, phone: str, message: str) -> SendOutcome:
        try:
            result = self._post(phone, message)
        except (requests.RequestException, ValueError) as e:
            return self._failure(str(e))

        if not result.get('success'):
            return self._failure(result.get('error') or 'Textbelt SMS failed')
        return SendOutcome(
            success=True,
            provider=self.name,
            message_id=str(result.get('textId') or f'textbelt_{_millis()}'),
            status='sent',
            quota_remaining=result.get('quotaRemaining'),
        )

    def test_configuration(self) -> dict:
        try:
            result = self._post(TEST_PHONE, 'Test')
        except (requests.RequestException, ValueError) as e:
            return {"success": False, "message": str(e)}
        return {
            "success": bool(result.get('quotaRemaining') or result.get('success')),
            "message": result.get('error') or 'Configuration valid',
            "quota_remaining": result.get('quotaRemaining'),
        }


class TwilioProvider(SmsProvider):
    name = 'twilio'

    def __init__(self, account_sid: str, auth_token: str, from_number: str):
        if not (account_sid and auth_token and from_number):
            raise ValueError('Twilio account SID, auth token and sender number are required')
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number

    def send(self, phone: str, message: str) -> SendOutcome:
        try:
            response = requests.post(
                TWILIO_URL.format(sid=self.account_sid),
                data={"From": self.from_number, "To": phone, "Body": message},
                auth=(self.account_sid, self.auth_token),
                timeout=REQUEST_TIMEOUT,
            )
            result = response.json()
        except (requests.RequestException, ValueError) as e:
            return self._failure(str(e))

        if not response.ok:
            return self._failure(result.get('message') or 'Twilio SMS failed')
        return SendOutcome(success=True, provider=self.name,
                           message_id=str(result.get('sid', '')),
                           status=result.get('status') or 'queued')

    def test_configuration(self) -> dict:
        # Fetching the account resource checks the credentials without sending
        try:
            response = requests.get(
                TWILIO_ACCOUNT_URL.format(sid=self.account_sid),
                auth=(self.account_sid, self.auth_token),
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            return {"success": False, "message": str(e)}
        return {
            "success": response.ok,
            "message": 'Valid credentials' if response.ok else 'Invalid credentials',
        }


class SemaphoreProvider(SmsProvider):
    name = 'semaphore'

    def __init__(self, api_key: str):
        if not api_key:
            raise ValueError('Semaphore API key is required')
        self.api_key = api_key

    def send(self, phone: str, message: str) -> SendOutcome:
        try:
            response = requests.post(
                SEMAPHORE_MESSAGES_URL,
                data={"apikey": self.api_key, "number": phone, "message": message},
                headers={"Accept": "application/json"},
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            return self._failure(str(e))

        try:
            result = response.json()
        except ValueError:
            return self._failure(f'Invalid response format: {response.text}')

        # The messages endpoint answers with a list of queued messages
        if isinstance(result, list):
            result = result[0] if result else {}

        if response.ok and (result.get('status') == 'success' or result.get('message_id')):
            return SendOutcome(
                success=True,
                provider=self.name,
                message_id=str(result.get('message_id') or f'semaphore_{_millis()}'),
                status=result.get('status') or 'sent',
            )
        return self._failure(result.get('message') or result.get('error') or 'Semaphore SMS failed')

    def test_configuration(self) -> dict:
        try:
            response = requests.get(
                SEMAPHORE_ACCOUNT_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            return {"success": False, "message": str(e)}
        return {
            "success": response.ok,
            "message": 'Valid API key' if response.ok else 'Invalid API key',
        }


_PROVIDERS = {
    'mock': MockProvider,
    'textbelt': TextbeltProvider,
    'twilio': TwilioProvider,
    'semaphore': SemaphoreProvider,
}


def get_provider(name: str, **settings) -> SmsProvider:
    """
    Build the provider selected by name.

    Raises:
        ValueError: unknown provider, or required credentials missing.
    """
    try:
        provider_cls = _PROVIDERS[name]
    except KeyError:
        raise ValueError('Unsupported SMS provider') from None
    return provider_cls(**settings)


def send_sms(provider: SmsProvider, phone: str, message: str) -> SendOutcome:
    """Format the number and hand the message to the provider."""
    formatted = format_phone_number(phone)
    logger.info("Sending SMS via %s to %s", provider.name, formatted)
    return provider.send(formatted, message)
