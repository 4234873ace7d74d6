"""
Flask route handlers for the grant exchange REST API.
"""

import logging

from flask import jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from medshare.api.auth import identity_required
from medshare.config import DEFAULT_TTL_HOURS
from medshare.errors import GrantError

logger = logging.getLogger(__name__)


def _requested_scopes():
    """Parse ``?scopes=a,b`` (or repeated ``scopes``); None when absent."""
    values = request.args.getlist("scopes")
    if not values:
        return None
    return [s for v in values for s in v.split(",")]


def register_routes(app, engine, lifecycle, gateway):
    """Register all API routes on the Flask *app*."""

    # ── Health / info ────────────────────────────────────────────────

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "service": "MedShare Grant Exchange API",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "grants": "/api/grants",
                "claim": "/api/grants/<token>/claim",
                "view": "/api/grants/<token>/view",
                "claimed": "/api/grants/claimed",
                "health": "/health",
            },
        })

    @app.route("/health", methods=["GET"])
    def health():
        checks = {"database": False}
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            checks["database"] = True
        except SQLAlchemyError as e:
            logger.warning("[health] Database check failed: %s", e)

        all_healthy = all(checks.values())
        return jsonify({
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }), 200 if all_healthy else 503

    # ── Issuer (patient) ─────────────────────────────────────────────

    @app.route("/api/grants", methods=["POST"])
    @identity_required
    def issue_grant():
        if request.data and not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400

        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400

        result = lifecycle.issue(
            request.subject_id,
            ttl_hours=data.get("ttl_hours", DEFAULT_TTL_HOURS),
            permissions=data.get("permissions"),
        )
        grant = result.grant
        return jsonify({
            "success": True,
            "token": grant.token,
            "expires_at": grant.expires_at.isoformat(),
            "permissions": grant.permissions,
            "reused": result.reused,
        }), 200 if result.reused else 201

    @app.route("/api/grants", methods=["GET"])
    @identity_required
    def list_issued_grants():
        include_inactive = request.args.get("include_inactive", "").lower() in {"1", "true", "yes"}
        grants = lifecycle.grants_for_issuer(request.subject_id, include_inactive)
        now = lifecycle.clock()
        return jsonify({
            "success": True,
            "grants": [g.summary(now) for g in grants],
        }), 200

    @app.route("/api/grants/<token>", methods=["DELETE"])
    @identity_required
    def revoke_grant(token):
        lifecycle.revoke(token, request.subject_id)
        return jsonify({"success": True, "message": "Token revoked"}), 200

    # ── Claimant (doctor) ────────────────────────────────────────────

    @app.route("/api/grants/<token>/claim", methods=["POST"])
    @identity_required
    def claim_grant(token):
        grant = lifecycle.claim(token, request.subject_id)
        return jsonify({
            "success": True,
            "grant": grant.summary(lifecycle.clock()),
        }), 200

    @app.route("/api/grants/<token>/view", methods=["GET"])
    @identity_required
    def view_grant(token):
        view = gateway.access(token, request.subject_id, _requested_scopes())
        return jsonify({"success": True, "view": view.to_dict()}), 200

    @app.route("/api/grants/claimed", methods=["GET"])
    @identity_required
    def list_claimed_grants():
        grants = lifecycle.grants_for_claimant(request.subject_id)
        now = lifecycle.clock()
        return jsonify({
            "success": True,
            "grants": [g.summary(now) for g in grants],
        }), 200

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(GrantError)
    def grant_error(e):
        return jsonify({"success": False, "error": e.code, "message": str(e)}), e.status

    @app.errorhandler(SQLAlchemyError)
    def storage_error(e):
        logger.exception("[ERROR] Storage failure")
        return jsonify({"success": False, "error": "Internal server error"}), 500

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Endpoint not found", "message": str(e)}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "message": str(e)}), 405

    @app.errorhandler(500)
    def internal_error(e):
        return jsonify({"error": "Internal server error"}), 500
