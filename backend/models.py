from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class DeliveryRecord:
    """One access code handed to an SMS provider. Created after a successful send."""

    id: str
    code: str
    box_id: str
    phone: str
    message: str
    timestamp: str
    message_id: str
    provider: str
    status: str = 'sent'

    def to_dict(self) -> dict:
        return asdict(self)
