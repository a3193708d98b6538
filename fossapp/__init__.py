import os
import logging
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from dotenv import load_dotenv

from .config import DevConfig, ProdConfig, TestConfig

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()

CONFIGS = {
    'development': DevConfig,
    'testing': TestConfig,
    'production': ProdConfig,
}


def create_app(config_name: str | None = None) -> Flask:
    """Application factory with environment based configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)
    os.makedirs(app.instance_path, exist_ok=True)

    # Pick configuration
    env = config_name or os.getenv('ENV') or os.getenv('FLASK_ENV') or 'production'
    app.config.from_object(CONFIGS.get(env, ProdConfig))

    # Initialise logging
    logging.basicConfig(level=logging.DEBUG if app.debug else logging.INFO)

    db.init_app(app)
    migrate.init_app(app, db)

    # Ensure models loaded so tables can be created
    from fossapp import models  # noqa
    with app.app_context():
        db.create_all()

    from fossapp.context import init_services
    init_services(app)

    @app.route('/')
    def index():
        return jsonify(name='fossapp', status='ok')

    @app.errorhandler(404)
    def not_found(_):
        return jsonify(success=False, error='Not found'), 404

    @app.errorhandler(500)
    def server_error(_):
        return jsonify(success=False, error='Internal server error'), 500

    from fossapp.areas.routes import bp as areas_bp
    from fossapp.catalog.routes import bp as catalog_bp
    from fossapp.projects.routes import bp as projects_bp
    from fossapp.tiles.routes import bp as tiles_bp
    from fossapp.viewer.routes import bp as viewer_bp
    from fossapp.cli import fossapp_cli

    app.register_blueprint(projects_bp, url_prefix='/api/projects')
    app.register_blueprint(areas_bp, url_prefix='/api/areas')
    app.register_blueprint(catalog_bp, url_prefix='/api/catalog')
    app.register_blueprint(tiles_bp, url_prefix='/api/tiles')
    app.register_blueprint(viewer_bp, url_prefix='/api/viewer')
    app.cli.add_command(fossapp_cli)

    return app
