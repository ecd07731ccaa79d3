from flask import Flask

from shelfmark.api import api_bp
from shelfmark.auth import auth_bp
from shelfmark.config import Config
from shelfmark.extensions import db, login_manager, migrate
from shelfmark.jobs.scheduler import run_verification_sweep, start_scheduler


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(api_bp)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        print("Initialized Shelfmark database.")

    @app.cli.command("verify-sweep")
    def verify_sweep_command():
        checked = run_verification_sweep(app)
        print(f"Verified {checked} bookmarks.")

    with app.app_context():
        db.create_all()

    start_scheduler(app)
    return app
