"""
Flask application factory for the bulk plugin installer API.
"""
from flask import Flask
from flask_cors import CORS


def create_app(config_object=None):
    """Create and configure the Flask application."""
    app = Flask(__name__)

    if config_object:
        app.config.from_object(config_object)

    app.logger.setLevel('DEBUG' if app.config.get('DEBUG') else 'INFO')

    CORS(app, resources={
        r"/api/*": {
            "origins": app.config.get('CORS_ORIGINS', []),
            "supports_credentials": True,
            "allow_headers": ["Content-Type", "X-Admin-Token", "X-Actor-Id"],
            "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        }
    })

    from .plugins import bp as plugins_bp
    app.register_blueprint(plugins_bp)

    app.logger.info(f"Plugin directory: {app.config.get('PLUGINS_DIR')}")
    return app
