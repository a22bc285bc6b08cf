import logging

import click
from flask import Flask, jsonify
from flask_migrate import Migrate

from config import Config
from models import db
from models.facility import Facility
from routes import health_bp, availability_bp, booking_bp, admin_bp
from services import build_services, booking_services
from services.errors import BookingError
from services.time_grid import parse_time
from utils.auth_context import load_current_user


def create_app(config_object=Config, payments=None, notifier=None, clock=None, sleep=None):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(availability_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(admin_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Booking core, collaborators overridable for tests
    overrides = {k: v for k, v in {"clock": clock, "sleep": sleep}.items() if v is not None}
    app.extensions["booking"] = build_services(app.config, payments=payments, notifier=notifier, **overrides)

    @app.before_request
    def _load_user():
        load_current_user()

    @app.errorhandler(BookingError)
    def _booking_error(exc):
        return jsonify(exc.to_dict()), exc.http_status

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp


    register_cli(app)


    return app

#-------------------------

def register_cli(app):
    @app.cli.command("create-facility")
    @click.argument("name")
    @click.option("--open", "open_time", default="06:00", show_default=True)
    @click.option("--close", "close_time", default="22:00", show_default=True)
    @click.option("--price", "slot_price", default=0, show_default=True, help="Price per 30-minute slot.")
    def create_facility(name, open_time, close_time, slot_price):
        """Create a bookable facility with operating hours."""
        close_minute = 24 * 60 if close_time == "24:00" else parse_time(close_time)
        facility = Facility(name=name, open_minute=parse_time(open_time),
                            close_minute=close_minute, slot_price=slot_price)
        db.session.add(facility)
        db.session.commit()
        click.echo(f"Facility {facility.id} created")

    @app.cli.command("release-stale-locks")
    def release_stale_locks():
        """Release expired Pending reservations; confirm the ones already paid."""
        outcome = booking_services().ledger.release_expired()
        click.echo(f"released={len(outcome['released'])} confirmed={len(outcome['confirmed'])}")

    @app.cli.command("retry-refunds")
    def retry_refunds():
        """Retry refunds queued by failed cancellations."""
        refunded = booking_services().cancellation.retry_refunds()
        click.echo(f"refunded={len(refunded)}")

#-------------------------




if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
