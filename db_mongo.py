# MongoDB utilities for the Property Listing backend.
# Handles users, properties, favorites and recommendations

import logging
from datetime import datetime
from typing import Dict, Any, Iterable, List, Optional

from flask import current_app
from pymongo import MongoClient, ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError
from bson import ObjectId

logger = logging.getLogger(__name__)


# ========== CONNECTION ==========
def connect_mongo(uri: str, db_name: str) -> Database:
    # Build a client once at startup; the app owns it from there
    client = MongoClient(
        uri,
        serverSelectionTimeoutMS=5000,
        appname="property-listing",
    )
    return client[db_name]


def get_db() -> Database:
    return current_app.extensions["mongo_db"]


# ========== INITIALIZATION ==========
def initialize_mongodb(db: Database) -> bool:
    # Create indexes if absent
    try:
        db.users.create_index([("email", ASCENDING)], unique=True)

        db.properties.create_index([("createdBy", ASCENDING)])
        db.properties.create_index([("city", ASCENDING)])
        db.properties.create_index([("type", ASCENDING)])
        db.properties.create_index([("price", ASCENDING)])

        db.favorites.create_index([("userId", ASCENDING)])

        db.recommendations.create_index([("toUserId", ASCENDING), ("recommendedAt", DESCENDING)])
        return True
    except PyMongoError as e:
        logger.error("Mongo init error: %s", e)
        return False


def check_database_health() -> bool:
    try:
        get_db().command("ping")
        return True
    except PyMongoError:
        return False


# ========== HELPERS ==========
def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def serialize(value: Any) -> Any:
    # ObjectIds -> hex strings, datetimes -> ISO strings, recursively
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    return value


def _by_id(collection, ids: Iterable[ObjectId], projection=None) -> Dict[ObjectId, Dict[str, Any]]:
    wanted = list({i for i in ids if i is not None})
    if not wanted:
        return {}
    return {doc["_id"]: doc for doc in collection.find({"_id": {"$in": wanted}}, projection)}


# ========== USERS ==========
def create_user(email: str, password_hash: str) -> Dict[str, Any]:
    # Raises DuplicateKeyError when the email is taken
    db = get_db()
    doc = {"email": email, "password": password_hash}
    res = db.users.insert_one(doc)
    return {"_id": str(res.inserted_id), "email": email}


def get_user_by_email(email: str) -> Optional[Dict[str, Any]]:
    return get_db().users.find_one({"email": email})


# ========== PROPERTIES ==========
def create_property(fields: Dict[str, Any], owner_id: str) -> Dict[str, Any]:
    db = get_db()
    doc = dict(fields)
    doc["createdBy"] = to_object_id(owner_id)
    res = db.properties.insert_one(doc)
    doc["_id"] = res.inserted_id
    return serialize(doc)


def find_properties(query: Dict[str, Any]) -> List[Dict[str, Any]]:
    db = get_db()
    return [serialize(doc) for doc in db.properties.find(query)]


def get_property(property_id: str) -> Optional[Dict[str, Any]]:
    oid = to_object_id(property_id)
    if oid is None:
        return None
    doc = get_db().properties.find_one({"_id": oid})
    return serialize(doc) if doc else None


def update_property(property_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    db = get_db()
    oid = to_object_id(property_id)
    if oid is None:
        return None
    changes = {k: v for k, v in changes.items() if k not in ("_id", "createdBy")}
    if not changes:
        return get_property(property_id)
    doc = db.properties.find_one_and_update(
        {"_id": oid},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    return serialize(doc) if doc else None


def delete_property(property_id: str) -> bool:
    oid = to_object_id(property_id)
    if oid is None:
        return False
    return get_db().properties.delete_one({"_id": oid}).deleted_count > 0


# ========== FAVORITES ==========
def create_favorite(user_id: str, property_id: ObjectId) -> Dict[str, Any]:
    db = get_db()
    doc = {"userId": to_object_id(user_id), "propertyId": property_id}
    res = db.favorites.insert_one(doc)
    doc["_id"] = res.inserted_id
    return serialize(doc)


def list_favorites(user_id: str) -> List[Dict[str, Any]]:
    # Favorites of a user with propertyId populated (None if the listing is gone)
    db = get_db()
    favorites = list(db.favorites.find({"userId": to_object_id(user_id)}))
    properties = _by_id(db.properties, (f.get("propertyId") for f in favorites))

    results = []
    for fav in favorites:
        fav["propertyId"] = properties.get(fav.get("propertyId"))
        results.append(serialize(fav))
    return results


def get_favorite(favorite_id: str) -> Optional[Dict[str, Any]]:
    oid = to_object_id(favorite_id)
    if oid is None:
        return None
    doc = get_db().favorites.find_one({"_id": oid})
    return serialize(doc) if doc else None


def delete_favorite(favorite_id: str) -> bool:
    oid = to_object_id(favorite_id)
    if oid is None:
        return False
    return get_db().favorites.delete_one({"_id": oid}).deleted_count > 0


# ========== RECOMMENDATIONS ==========
def create_recommendation(from_user_id: str, to_user_id: ObjectId,
                          property_id: ObjectId, message: Optional[str]) -> Dict[str, Any]:
    db = get_db()
    doc = {
        "fromUserId": to_object_id(from_user_id),
        "toUserId": to_user_id,
        "propertyId": property_id,
        "message": message,
        "recommendedAt": datetime.utcnow(),
    }
    res = db.recommendations.insert_one(doc)
    doc["_id"] = res.inserted_id
    return serialize(doc)


def list_recommendations(user_id: str) -> List[Dict[str, Any]]:
    """
    Recommendations addressed to a user.
    fromUserId is populated with the sender's {_id, email}; propertyId
    with the full listing.
    """
    db = get_db()
    recs = list(db.recommendations.find({"toUserId": to_object_id(user_id)}))
    senders = _by_id(db.users, (r.get("fromUserId") for r in recs), {"email": 1})
    properties = _by_id(db.properties, (r.get("propertyId") for r in recs))

    results = []
    for rec in recs:
        rec["fromUserId"] = senders.get(rec.get("fromUserId"))
        rec["propertyId"] = properties.get(rec.get("propertyId"))
        results.append(serialize(rec))
    return results
