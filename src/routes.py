import logging
from datetime import datetime
from functools import wraps
from flask import g, request, jsonify
from auth import AuthenticationError, TokenAuthority
from models import InvalidTrackingEvent
from service import RecommendationService

logger = logging.getLogger(__name__)


def register_routes(app, service: RecommendationService, authority: TokenAuthority):
    """Register all Flask routes"""

    def optional_auth(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            g.user = authority.optional_user(request.headers.get("Authorization"))
            if g.user is not None:
                service.cache.track_activity(g.user.id)
            return view(*args, **kwargs)

        return wrapper

    def protect(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            try:
                g.user = authority.required_user(request.headers.get("Authorization"))
            except AuthenticationError as e:
                body = {"success": False, "message": e.message}
                if e.expired:
                    body["expired"] = True
                return jsonify(body), 401
            return view(*args, **kwargs)

        return wrapper

    @app.route("/recommendations", methods=["GET"])
    @optional_auth
    def recommendations():
        rec_type = request.args.get("type", "mixed")
        limit = request.args.get("limit")
        user_id = g.user.id if g.user else None

        results = service.recommend(user_id, rec_type, limit)
        return jsonify([r.to_dict() for r in results])

    @app.route("/recommendations/product/<product_id>", methods=["GET"])
    @optional_auth
    def product_recommendations(product_id):
        try:
            result = service.product_recommendations(product_id, g.user.id if g.user else None)
        except Exception as e:
            logger.error(f"Product recommendation error: {e}", exc_info=True)
            result = {"similar": [], "complementary": [], "userRecommended": []}
        if result is None:
            return jsonify({"message": "Product not found"}), 404
        return jsonify(result)

    @app.route("/recommendations/track", methods=["POST"])
    @protect
    def track():
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"success": False, "message": "Request body must be an object"}), 400
        try:
            outcome = service.track(
                g.user.id,
                data.get("action"),
                product_id=data.get("productId"),
                duration=data.get("duration"),
                metadata=data.get("metadata") or {},
            )
        except InvalidTrackingEvent as e:
            return jsonify({"success": False, "message": str(e)}), 400

        if not outcome.success:
            return jsonify({"success": False, "message": "Tracking failed but request continued"})
        return jsonify({"success": True, "message": "Tracking recorded", "outcome": outcome.value, "cacheInvalidated": True})

    @app.route("/recommendations/realtime", methods=["GET"])
    @protect
    def realtime():
        results = service.realtime(g.user.id, request.args.get("limit", 10))
        return jsonify(
            {
                "recommendations": [r.to_dict() for r in results],
                "timestamp": datetime.now().isoformat(),
                "cached": False,
            }
        )

    @app.route("/recommendations/stats", methods=["GET"])
    @protect
    def stats():
        return jsonify(service.user_stats(g.user))

    @app.route("/recommendations/admin/analytics", methods=["GET"])
    @protect
    def admin_analytics():
        if not g.user.is_admin:
            return jsonify({"message": "Admin only"}), 403
        return jsonify(service.admin_analytics())

    @app.route("/health", methods=["GET"])
    def health_check():
        return jsonify({"status": "healthy", "timestamp": datetime.now().isoformat()})
