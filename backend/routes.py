"""
SMARTDROP API ROUTES - FLASK BLUEPRINT

All endpoints live under /api and answer JSON.

EXAMPLES:
curl http://localhost:5000/api/code
curl -X POST http://localhost:5000/api/code -H "Content-Type: application/json" -d '{"secret": "JBSWY3DPEHPK3PXP", "at": 59}'
curl -X POST http://localhost:5000/api/deliveries -H "Content-Type: application/json" -d '{"phone": "09171234567"}'
curl http://localhost:5000/api/deliveries
curl http://localhost:5000/api/deliveries/<id>
"""
import logging
import random
import time
from datetime import datetime

from flask import Blueprint, current_app, jsonify, request

from core.errors import ClockUnavailable, InvalidSecretFormat
from core.otp_core import generate_code, read_clock
from core.scheduler import CodeSession

from .delivery import DeliveryError, DeliveryService
from .sms_service import get_provider

logger = logging.getLogger(__name__)

delivery_bp = Blueprint('delivery', __name__, url_prefix='/api')


def _session() -> CodeSession:
    return current_app.extensions['code_session']


def _deliveries() -> DeliveryService:
    return current_app.extensions['delivery_service']


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _error(message: str, status: int):
    return jsonify({"error": message}), status


@delivery_bp.errorhandler(InvalidSecretFormat)
def _invalid_secret(e):
    return _error(str(e), 422)


@delivery_bp.errorhandler(ClockUnavailable)
def _clock_unavailable(e):
    logger.error("Clock unavailable: %s", e)
    return _error(str(e), 503)


@delivery_bp.errorhandler(DeliveryError)
def _delivery_failed(e):
    return _error(str(e), e.status)


@delivery_bp.route('/code', methods=['GET'])
def current_code():
    """
    CURRENT ACCESS CODE

      curl http://localhost:5000/api/code

    Output: {"code": "287082", "expires_at": 60, "remaining": 1}
    """
    session = _session()
    now = read_clock(session.clock)
    outcome = session.current(now)
    if not outcome.ok:
        raise outcome.error
    snapshot = outcome.snapshot
    return jsonify({
        "code": snapshot.code,
        "expires_at": snapshot.expires_at,
        "remaining": snapshot.seconds_remaining(now),
    })


@delivery_bp.route('/code', methods=['POST'])
def code_for_secret():
    """
    CODE FOR AN EXPLICIT SECRET / TIME

    Input: {"secret": "GEZD...", "at": 59, "digits": 8}
    `at` defaults to now, `digits` to the configured length.
    """
    data = _json_body()
    secret = data.get('secret')
    if not isinstance(secret, str):
        return _error("secret (Base32 string) is required", 400)
    at = data.get('at')
    if at is not None and (isinstance(at, bool) or not isinstance(at, (int, float))):
        return _error("at must be a number of seconds", 400)
    digits = data.get('digits', current_app.config['SMARTDROP'].digits)
    if isinstance(digits, bool) or not isinstance(digits, int):
        return _error("digits must be an integer", 400)
    try:
        access = generate_code(secret, at, digits=digits)
    except InvalidSecretFormat:
        raise
    except ValueError as e:
        return _error(str(e), 400)
    return jsonify({"code": access.code, "expires_at": access.expires_at})


@delivery_bp.route('/verify', methods=['POST'])
def verify():
    """
    CHECK A CODE TYPED AT THE BOX

    Input: {"code": "287082", "window": 1}
    Output: {"valid": true}
    """
    data = _json_body()
    if "code" not in data:
        return _error("code is required", 400)
    window = data.get('window', 1)
    if isinstance(window, bool) or not isinstance(window, int) or window < 0:
        return _error("window must be a non-negative integer", 400)
    valid = _session().verify(str(data["code"]), window=window)
    return jsonify({"valid": valid})


@delivery_bp.route('/secret', methods=['PUT'])
def replace_secret():
    """
    REPLACE THE SHARED SECRET (configuration screen)

    Input: {"secret": "JBSWY3DPEHPK3PXP"}
    422 when the secret holds no Base32 key material.
    """
    data = _json_body()
    secret = data.get('secret')
    if not isinstance(secret, str):
        return _error("secret (Base32 string) is required", 400)
    outcome = _session().set_secret(secret.strip())
    if not outcome.ok:
        raise outcome.error
    return jsonify({"updated": True, "expires_at": outcome.snapshot.expires_at})


@delivery_bp.route('/deliveries', methods=['POST'])
def send_delivery():
    """
    SEND AN ACCESS CODE TO THE RIDER

    Input: {"phone": "09171234567", "message": "optional custom text", "box_id": "SMARTBOX_001"}
    Output 201: the delivery record
    """
    data = _json_body()
    record = _deliveries().send_code(
        data.get('phone') or '',
        custom_message=data.get('message'),
        box_id=data.get('box_id'),
    )
    return jsonify(record.to_dict()), 201


@delivery_bp.route('/deliveries', methods=['GET'])
def list_deliveries():
    """RECENT DELIVERIES, newest first (?limit=N)"""
    limit = request.args.get('limit', type=int)
    records = _deliveries().history(limit)
    return jsonify({"deliveries": [record.to_dict() for record in records]})


@delivery_bp.route('/deliveries/<delivery_id>', methods=['GET'])
def get_delivery(delivery_id):
    """ONE DELIVERY BY ID, 404 when it has been pruned or never existed"""
    record = _deliveries().get(delivery_id)
    if record is None:
        return _error('Delivery not found', 404)
    return jsonify(record.to_dict())


@delivery_bp.route('/sms/test', methods=['POST'])
def test_sms():
    """
    TEST THE SMS PROVIDER CONFIGURATION

    Input: {"provider": "textbelt"} (defaults to the configured provider)
    """
    config = current_app.config['SMARTDROP']
    provider_name = _json_body().get('provider') or config.sms_provider
    try:
        provider = get_provider(provider_name, **config.provider_settings(provider_name))
    except ValueError as e:
        return jsonify({"success": False, "provider": provider_name, "message": str(e)}), 400
    result = provider.test_configuration()
    result["provider"] = provider_name
    return jsonify(result)


@delivery_bp.route('/box/status', methods=['GET'])
def box_status():
    """SIMULATED SMART BOX TELEMETRY (no real device behind it)"""
    config = current_app.config['SMARTDROP']
    return jsonify({
        "box_id": config.box_id,
        "battery_level": random.randint(0, 99),
        "is_connected": random.random() > 0.1,
        "is_locked": random.random() > 0.3,
        "temperature": 20 + random.randint(0, 14),
        "humidity": 40 + random.randint(0, 39),
        "last_sync": datetime.fromtimestamp(time.time()).strftime('%H:%M:%S'),
    })
