"""
FLASK APP MAIN ENTRY POINT - SMARTDROP BACKEND SERVER
=====================================================

create_app() wires one CodeSession (the single owner of the shared secret),
the SMS provider and the delivery history into a Flask app, and registers the
/api blueprint from backend/routes.py.

Run:
    BASE32_SECRET_KEY=JBSWY3DPEHPK3PXP python -m backend.app
"""
import logging
from typing import Optional

from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from core.config import AppConfig, load_config, setup_logging
from core.errors import InvalidSecretFormat
from core.otp_core import mask_secret
from core.scheduler import CodeSession
from database.db_manager import ensure_database

from .delivery import DeliveryService
from .sms_service import get_provider

logger = logging.getLogger(__name__)


def create_app(config: Optional[AppConfig] = None, session: Optional[CodeSession] = None) -> Flask:
    """
    Build the Flask app.

    Arguments:
        config: settings (default: load_config() from the environment)
        session: pre-built CodeSession, e.g. with a fake clock in tests
    """
    config = config or load_config()
    setup_logging(config.log_level)

    app = Flask(__name__)
    app.config['SMARTDROP'] = config
    # Allow the mobile/web front end on another origin to call the API
    CORS(app)

    if session is None:
        session = CodeSession(digits=config.digits)
        if config.secret:
            try:
                session.set_secret(config.secret, regenerate=False)
            except InvalidSecretFormat as e:
                # surfaced on every /api/code call until a valid secret is PUT
                logger.error("Configured secret rejected (%s): %s", mask_secret(config.secret), e)

    provider = None
    if config.provider_ready:
        provider = get_provider(config.sms_provider, **config.provider_settings())

    ensure_database(config.database_file)

    app.extensions['code_session'] = session
    app.extensions['delivery_service'] = DeliveryService(config, session, provider)

    from .routes import delivery_bp
    app.register_blueprint(delivery_bp)

    @app.errorhandler(HTTPException)
    def _http_error(e):
        return jsonify({"error": e.description}), e.code

    @app.route('/', methods=['GET'])
    def index():
        return jsonify({
            "service": "SmartDrop",
            "box_id": config.box_id,
            "sms_provider": config.sms_provider,
            "configured": session.has_secret and config.provider_ready,
        })

    logger.info("SmartDrop backend ready (provider=%s, box=%s, digits=%d)",
                config.sms_provider, config.box_id, config.digits)
    return app


# Run the development server
if __name__ == '__main__':
    create_app().run(debug=True, host='0.0.0.0', port=5000)
