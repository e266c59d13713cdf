import os
from dotenv import load_dotenv

# Load environment variables from the project root
load_dotenv(os.path.join(os.path.dirname(__file__), '..', '.env'))
from flask import Flask, jsonify
from datetime import datetime

from .config import Config
from .simple_logger import get_logger


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.debug = app.config.get('DEBUG', False)
    app.logger = get_logger('app')

    from .hmrc.routes import hmrc_bp
    app.register_blueprint(hmrc_bp)

    @app.route('/health', methods=['GET'])
    def health_check():
        return jsonify({'status': 'healthy', 'timestamp': datetime.utcnow().isoformat()}), 200

    app.logger.info("HMRC RTI service starting up (%s)", app.config.get('HMRC_ENVIRONMENT'))
    return app
