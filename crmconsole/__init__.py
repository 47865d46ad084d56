# crmconsole/__init__.py
from flask import Flask, request
from flask import session as visitor_cookie

from .client import SessionExpired
from .config import Config
from .decorators import login_redirect
from .extensions import VISITOR_KEY, api_base_url, close_api, end_visitor, get_dashboard, get_session, init_sessions
from .services.auth_service import make_probe
from .services.session_service import SessionState
from .time_utils import format_date, format_datetime


NAV_ITEMS = (
    ("dashboard.index", "Dashboard"),
    ("customers.index", "Customers"),
    ("fulfillments.index", "Fulfillments"),
    ("stores.index", "Config"),
)

# Endpoints that never wait on the session probe
PROBE_EXEMPT = {"static", "system.healthz"}


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    init_sessions(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.dashboard import dashboard_bp
    from .routes.customers import customers_bp
    from .routes.fulfillments import fulfillments_bp
    from .routes.stores import stores_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(fulfillments_bp)
    app.register_blueprint(stores_bp)

    @app.before_request
    def restore_session():
        # A visitor's first request after startup runs the probe; concurrent ones see UNKNOWN.
        if request.endpoint in PROBE_EXEMPT:
            return None
        session = get_session()
        if session is None:
            if VISITOR_KEY in visitor_cookie:
                end_visitor()
            return None
        if session.state is SessionState.UNKNOWN:
            session.try_restore(make_probe(app.config["CRM_SESSION_PROBE_PATH"]), api_base_url())
        return None

    @app.errorhandler(SessionExpired)
    def handle_session_expired(exc):
        """
        401 anywhere in a view. The session was already torn down by the
        client that saw it; all that is left is the redirect.
        """
        dashboard = get_dashboard()
        if dashboard is not None:
            dashboard.reset()
        next_path = request.full_path.rstrip("?") if request.method == "GET" else None
        return login_redirect(next_path)

    @app.context_processor
    def inject_session():
        session = get_session()
        return {
            "current_user": session.user if session is not None and session.is_authenticated else None,
            "nav_items": NAV_ITEMS,
        }

    app.jinja_env.filters["datetime"] = format_datetime
    app.jinja_env.filters["date"] = format_date

    app.teardown_appcontext(close_api)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
