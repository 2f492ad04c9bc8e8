# app.py
import logging
from datetime import datetime

from flask import Blueprint, Flask, g, json, jsonify, request
from flask_cors import CORS
from flask_login import current_user, login_required
from pymongo.errors import ConnectionFailure, PyMongoError
from werkzeug.exceptions import HTTPException

from auth import (
    login_manager, bcrypt,
    register_user, authenticate_user, issue_token, owner_required,
)
from config import Config
from db_mongo import (
    connect_mongo, initialize_mongodb, check_database_health, to_object_id,
    # Users
    get_user_by_email,
    # Properties
    create_property, find_properties, update_property, delete_property,
    # Favorites
    create_favorite, list_favorites, get_favorite, delete_favorite,
    # Recommendations
    create_recommendation, list_recommendations,
)
from db_redis import ResponseCache, cached_response, connect_cache, get_response_cache
from errors import BackendUnavailable, Forbidden, NotFound, ValidationFailure
from listing_filters import build_property_filter
from parsing import coerce_listing

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__)

PROPERTIES_CACHE = "properties"


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return {}
    return data


def _require_object_id(value, field):
    oid = to_object_id(value)
    if oid is None:
        raise ValidationFailure(f"Invalid {field}")
    return oid


def _invalidating_cache():
    cache = get_response_cache()
    if cache is None or not cache.invalidate_on_write:
        return None
    return cache


# ==================== PUBLIC ROUTES ====================

@api.route("/")
def index():
    return "Property Listing Backend is Running"


@api.route("/health")
def health():
    return "OK"


@api.route("/api/health", methods=["GET"])
def api_health():
    """System health check."""
    mongo_ok = check_database_health()
    cache = get_response_cache()
    cache_ok = cache.ping() if cache is not None else False

    return jsonify({
        "status": "healthy" if mongo_ok else "degraded",
        "timestamp": datetime.utcnow().isoformat(),
        "mongodb_connected": mongo_ok,
        "cache_connected": cache_ok,
    })


# ==================== AUTHENTICATION API ====================

@api.route("/api/auth/register", methods=["POST"])
def api_register():
    """User registration endpoint"""
    data = _json_body()
    email = str(data.get("email") or "").strip()
    password = str(data.get("password") or "")

    user = register_user(email, password)
    return jsonify(user)


@api.route("/api/auth/login", methods=["POST"])
def api_login():
    """User login endpoint"""
    data = _json_body()
    email = str(data.get("email") or "").strip()
    password = str(data.get("password") or "")

    token = authenticate_user(email, password)
    return jsonify({"token": token})


@api.route("/api/auth/refresh", methods=["POST"])
@login_required
def api_refresh_token():
    """Issue a fresh token while the current one is still valid"""
    return jsonify({"token": issue_token(current_user.id)})


# ==================== PROPERTIES ====================

@api.route("/api/properties", methods=["GET"])
@cached_response(PROPERTIES_CACHE)
def api_list_properties():
    """Search listings by the supported query parameters."""
    query = build_property_filter(request.args)
    logger.info("MongoDB query filter: %s", query)

    properties = find_properties(query)
    g.cache_tags = [p["_id"] for p in properties]
    return jsonify(properties)


@api.route("/api/properties", methods=["POST"])
@login_required
def api_create_property():
    fields = coerce_listing(_json_body(), strict=True)
    prop = create_property(fields, current_user.id)

    cache = _invalidating_cache()
    if cache:
        cache.invalidate_namespace(PROPERTIES_CACHE)
    return jsonify(prop)


@api.route("/api/properties/<property_id>", methods=["PUT"])
@login_required
@owner_required
def api_update_property(property_id):
    changes = coerce_listing(_json_body(), strict=True)
    updated = update_property(property_id, changes)
    if updated is None:
        # deleted between the ownership check and the update
        raise NotFound("Property not found")

    cache = _invalidating_cache()
    if cache:
        cache.invalidate_namespace(PROPERTIES_CACHE)
    return jsonify(updated)


@api.route("/api/properties/<property_id>", methods=["DELETE"])
@login_required
@owner_required
def api_delete_property(property_id):
    delete_property(property_id)

    cache = _invalidating_cache()
    if cache:
        cache.invalidate_tags(PROPERTIES_CACHE, [g.property["_id"]])
    return "Deleted"


# ==================== FAVORITES ====================

@api.route("/api/favorites", methods=["POST"])
@login_required
def api_add_favorite():
    property_id = _require_object_id(_json_body().get("propertyId"), "propertyId")
    favorite = create_favorite(current_user.id, property_id)
    return jsonify(favorite)


@api.route("/api/favorites", methods=["GET"])
@login_required
def api_list_favorites():
    return jsonify(list_favorites(current_user.id))


@api.route("/api/favorites/<favorite_id>", methods=["DELETE"])
@login_required
def api_delete_favorite(favorite_id):
    favorite = get_favorite(favorite_id)
    if not favorite:
        raise NotFound("Favorite not found")
    if favorite.get("userId") != current_user.id:
        raise Forbidden("Forbidden")

    delete_favorite(favorite_id)
    return "Deleted"


# ==================== RECOMMENDATIONS ====================

@api.route("/api/recommend", methods=["POST"])
@login_required
def api_recommend():
    data = _json_body()
    recipient_email = str(data.get("recipientEmail") or "").strip()

    recipient = get_user_by_email(recipient_email) if recipient_email else None
    if not recipient:
        raise NotFound("Recipient not found")

    property_id = _require_object_id(data.get("propertyId"), "propertyId")
    message = data.get("message")
    recommendation = create_recommendation(
        current_user.id,
        recipient["_id"],
        property_id,
        str(message) if message is not None else None,
    )

    return jsonify({"message": "Property recommended successfully", "recommendation": recommendation})


@api.route("/api/recommendations", methods=["GET"])
@login_required
def api_list_recommendations():
    return jsonify(list_recommendations(current_user.id))


# ==================== ERROR HANDLERS ====================

def http_error(e):
    # Start from werkzeug's response so headers like Allow and Location survive
    response = e.get_response()
    response.set_data(json.dumps({"ok": False, "error": e.description}))
    response.mimetype = "application/json"
    return response


def database_unavailable(e):
    logger.error("MongoDB unavailable: %s", e)
    return http_error(BackendUnavailable("Database unavailable"))


def database_error(e):
    logger.exception("MongoDB error: %s", e)
    return jsonify({"ok": False, "error": "Internal server error"}), 500


# ========== FLASK APP INITIALIZATION ==========

def create_app(config=None, db=None, cache_client=None):
    """
    Build the Flask app.

    `db` (a pymongo Database) and `cache_client` (a redis client) are
    created from the configuration when not supplied.
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    CORS(app)
    login_manager.init_app(app)
    bcrypt.init_app(app)

    if db is None:
        db = connect_mongo(app.config["MONGO_URI"], app.config["MONGO_DB"])
    app.extensions["mongo_db"] = db
    if initialize_mongodb(db):
        logger.info("MongoDB initialized successfully")
    else:
        logger.warning("MongoDB initialization failed; continuing")

    if cache_client is None and app.config.get("REDIS_URL"):
        cache_client = connect_cache(app.config["REDIS_URL"], app.config.get("REDIS_TOKEN"))
    if cache_client is not None:
        app.extensions["response_cache"] = ResponseCache(
            cache_client,
            ttl=app.config["CACHE_TTL"],
            invalidate_on_write=app.config["CACHE_INVALIDATE_ON_WRITE"],
        )
    else:
        logger.info("REDIS_URL not set; responses are not cached")

    app.register_blueprint(api)
    app.register_error_handler(HTTPException, http_error)
    app.register_error_handler(ConnectionFailure, database_unavailable)
    app.register_error_handler(PyMongoError, database_error)
    return app


# ==================== STARTUP ====================

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    application = create_app()
    logger.info("Starting Property Listing backend on http://0.0.0.0:3000")
    application.run(host="0.0.0.0", port=3000)
