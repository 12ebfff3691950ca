"""
DELIVERY - SEND AN ACCESS CODE TO THE RIDER

Flow: check config -> validate phone -> current code from the session ->
compose message -> SMS provider -> history row.
A history row is written only after the provider accepted the message.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional

from core.config import AppConfig
from core.errors import ClockUnavailable
from core.otp_core import TIME_STEP, read_clock
from core.scheduler import CodeSession
from database import db_manager

from .models import DeliveryRecord
from .sms_service import SmsProvider, format_phone_number, send_sms, validate_phone_number

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = (
    "SmartDrop Delivery Code: {code}\n\n"
    "Box: {box_id}\n"
    "Valid for {seconds} seconds.\n\n"
    "Present this code to access your delivery."
)


class DeliveryError(Exception):
    """A delivery could not be completed; `status` is the HTTP status to report."""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.status = status


def compose_message(code: str, box_id: str, custom_message: Optional[str] = None,
                    seconds: int = TIME_STEP) -> str:
    """Custom text wins when it is not blank, otherwise the default template."""
    if custom_message and custom_message.strip():
        return custom_message.strip()
    return DEFAULT_MESSAGE.format(code=code, box_id=box_id, seconds=seconds)


class DeliveryService:
    def __init__(self, config: AppConfig, session: CodeSession, provider: Optional[SmsProvider],
                 clock: Optional[Callable[[], float]] = None):
        self.config = config
        self.session = session
        self.provider = provider
        self.clock = clock or session.clock

    def send_code(self, phone: str, custom_message: Optional[str] = None,
                  box_id: Optional[str] = None) -> DeliveryRecord:
        """
        Send the current access code to `phone`.

        Raises:
            DeliveryError: 409 not configured, 400 missing/invalid phone,
                422 bad secret, 503 clock, 502 provider failure.
        """
        if not (self.session.has_secret and self.config.provider_ready):
            raise DeliveryError('System not configured', status=409)
        if not phone or not phone.strip():
            raise DeliveryError("Please enter the rider's phone number")
        if not validate_phone_number(phone):
            raise DeliveryError('Invalid Philippine mobile number (e.g. 09123456789)')

        box_id = box_id or self.config.box_id
        try:
            now = read_clock(self.clock)
        except ClockUnavailable as e:
            raise DeliveryError(str(e), status=503) from e
        outcome = self.session.current(now)
        if not outcome.ok:
            status = 422 if isinstance(outcome.error, ValueError) else 503
            raise DeliveryError(f'Failed to generate access code: {outcome.error}', status=status)
        snapshot = outcome.snapshot

        message = compose_message(snapshot.code, box_id, custom_message,
                                  seconds=snapshot.seconds_remaining(now))
        result = send_sms(self.provider, phone, message)
        if not result.success:
            logger.warning("Delivery to %s failed: %s", box_id, result.to_dict())
            raise DeliveryError(result.error or 'SMS provider failed', status=502)

        record = DeliveryRecord(
            id=uuid.uuid4().hex,
            code=snapshot.code,
            box_id=box_id,
            phone=format_phone_number(phone),
            message=message,
            timestamp=datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
            message_id=result.message_id,
            provider=result.provider,
            status='sent',
        )
        db_manager.add_delivery(record, self.config.database_file, keep=self.config.history_limit)
        logger.info("Access code for %s sent via %s (message id %s)",
                    box_id, result.provider, result.message_id)
        return record

    def history(self, limit: Optional[int] = None) -> List[DeliveryRecord]:
        limit = limit or self.config.history_limit
        return db_manager.recent_deliveries(self.config.database_file, limit=limit)

    def get(self, delivery_id: str) -> Optional[DeliveryRecord]:
        return db_manager.get_delivery(delivery_id, self.config.database_file)

    def clear_history(self) -> int:
        removed = db_manager.clear_deliveries(self.config.database_file)
        logger.info("Delivery history cleared (%d rows)", removed)
        return removed
