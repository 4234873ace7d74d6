"""
Flask application factory and server entry-point.
"""

import logging
import os
import sys
import traceback

from flask import Flask
from flask_cors import CORS

from medshare.api.routes import register_routes
from medshare.config import LOG_LEVEL, SESSION_EXPIRY_HOURS
from medshare.database import create_schema, init_engine
from medshare.gateway import AccessGateway
from medshare.identity import ProfileDirectory
from medshare.lifecycle import GrantLifecycle
from medshare.models import utcnow
from medshare.store import GrantStore

logger = logging.getLogger(__name__)


def create_app(engine=None, clock=utcnow):
    """Build and return a fully configured Flask application."""
    app = Flask(__name__)
    CORS(app)

    # ── Initialise shared resources ──────────────────────────────────
    if engine is None:
        try:
            logger.info("[init] Initializing database connection...")
            engine = init_engine()
            create_schema(engine)
            logger.info("[init] API server ready")
        except Exception as e:
            print(f"[FATAL] Failed to initialize: {e}", file=sys.stderr)
            traceback.print_exc()
            sys.exit(1)

    store = GrantStore(engine)
    lifecycle = GrantLifecycle(store, ProfileDirectory(engine), clock=clock)
    gateway = AccessGateway(store, clock=clock)

    # ── Register routes ──────────────────────────────────────────────
    register_routes(app, engine, lifecycle, gateway)

    return app


def main():
    """Run the development server."""
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    print("=" * 60)
    print("MedShare – Grant Exchange API Server")
    print("=" * 60)

    app = create_app()

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    debug = os.getenv("FLASK_ENV") == "development"

    print(f"\n[server] Starting Flask API on {host}:{port}")
    print(f"[server] Debug mode: {debug}")
    print(f"[server] CORS enabled: True")
    print(f"[server] Session expiry: {SESSION_EXPIRY_HOURS} hours")
    print("\nAPI Endpoints:")
    print(f"  - POST   http://{host}:{port}/api/grants")
    print(f"  - GET    http://{host}:{port}/api/grants")
    print(f"  - DELETE http://{host}:{port}/api/grants/<token>")
    print(f"  - POST   http://{host}:{port}/api/grants/<token>/claim")
    print(f"  - GET    http://{host}:{port}/api/grants/<token>/view?scopes=...")
    print(f"  - GET    http://{host}:{port}/api/grants/claimed")
    print(f"  - GET    http://{host}:{port}/health")
    print("\n" + "=" * 60)

    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
