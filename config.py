# config.py
"""
Runtime configuration for the Property Listing backend.
Values come from the environment (optionally a .env file).
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name, default):
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY") or os.getenv("JWT_SECRET", "dev-secret-key-change-in-production")

    # MongoDB
    MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
    MONGO_DB = os.getenv("MONGO_DB", "propertydb")

    # Redis response cache (disabled when REDIS_URL is unset).
    # With REDIS_TOKEN set the connection always uses TLS.
    REDIS_URL = os.getenv("REDIS_URL")
    REDIS_TOKEN = os.getenv("REDIS_TOKEN")
    CACHE_TTL = _env_int("CACHE_TTL", 3600)
    CACHE_INVALIDATE_ON_WRITE = _env_bool("CACHE_INVALIDATE_ON_WRITE", True)

    # Auth
    TOKEN_MAX_AGE = _env_int("TOKEN_MAX_AGE", 86400)  # 0 = tokens never expire
    BCRYPT_LOG_ROUNDS = _env_int("BCRYPT_LOG_ROUNDS", 10)
