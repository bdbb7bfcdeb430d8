from __future__ import annotations

import motor.motor_asyncio
from pathlib import Path

from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict
from pymongo import ASCENDING, DESCENDING, GEOSPHERE
from pymongo.errors import ConfigurationError
from pymongo.uri_parser import parse_uri


BASE_DIR = Path(__file__).resolve().parents[1]
ENV_FILES = [BASE_DIR / ".env.local", BASE_DIR / ".env"]


class Settings(BaseSettings):
    mongodb_url: str = "mongodb://localhost:27017/lifeline"
    jwt_secret: str = "supersecret"
    jwt_algorithm: str = "HS256"
    jwt_expires_min: int = 60 * 24 * 7
    bcrypt_rounds: int = 12
    mongo_server_timeout_ms: int = 2000
    mongo_connect_timeout_ms: int = 2000
    mongo_socket_timeout_ms: int = 2000
    frontend_url: str = "http://localhost:3001"
    firebase_service_account_path: str | None = None
    firebase_project_id: str | None = None
    firebase_private_key: str | None = None
    firebase_client_email: str | None = None
    match_radius_km: float = 50.0
    match_limit: int = 50
    push_timeout_seconds: float = 10.0
    heartbeat_interval_seconds: float = 30.0
    realtime_send_timeout_seconds: float = 5.0
    request_ttl_days: int = 7
    donation_cooldown_days: int = 90
    log_level: str = "INFO"
    admin_email: str | None = None
    admin_password: str | None = None
    admin_name: str = "LifeLine Admin"

    model_config = SettingsConfigDict(
        env_file=[str(path) for path in ENV_FILES],
        case_sensitive=False,
        env_prefix="",
    )


def get_settings() -> Settings:
    return Settings()


settings = get_settings()
FALLBACK_MONGO_URL = "mongodb://localhost:27017/lifeline"


def _create_client(uri: str) -> motor.motor_asyncio.AsyncIOMotorClient:
    connect_kwargs = {
        "serverSelectionTimeoutMS": settings.mongo_server_timeout_ms,
        "connectTimeoutMS": settings.mongo_connect_timeout_ms,
        "socketTimeoutMS": settings.mongo_socket_timeout_ms,
        "tz_aware": True,
    }
    try:
        return motor.motor_asyncio.AsyncIOMotorClient(uri, **connect_kwargs)
    except ConfigurationError as exc:
        if uri == FALLBACK_MONGO_URL:
            raise
        logger.warning(
            "MongoDB DNS resolution failed for {} ({}). Falling back to local Mongo at {}.",
            uri,
            exc,
            FALLBACK_MONGO_URL,
        )
        return motor.motor_asyncio.AsyncIOMotorClient(FALLBACK_MONGO_URL, **connect_kwargs)


client = _create_client(settings.mongodb_url)


def _resolve_database_name(uri: str | None) -> str:
    if uri:
        try:
            parsed = parse_uri(uri)
            if parsed.get("database"):
                return parsed["database"]
        except (ConfigurationError, ValueError) as exc:  # pragma: no cover
            logger.warning("Unable to parse Mongo URI {} ({}). Using fallback database name.", uri, exc)
    return "lifeline"


database_name = _resolve_database_name(settings.mongodb_url)
db = client.get_database(database_name)


async def ensure_indexes(database=db) -> None:
    """Create the indexes the matching queries rely on."""
    donors = database.get_collection("donors")
    await donors.create_index([("email", ASCENDING)], unique=True)
    await donors.create_index([("location", GEOSPHERE)])
    await donors.create_index([("blood_type", ASCENDING), ("status", ASCENDING), ("is_available", ASCENDING)])

    requests = database.get_collection("requests")
    await requests.create_index([("status", ASCENDING), ("urgency", ASCENDING), ("created_at", DESCENDING)])

    donations = database.get_collection("donations")
    await donations.create_index([("donor", ASCENDING), ("created_at", DESCENDING)])
    await donations.create_index([("blood_type", ASCENDING)])

    users = database.get_collection("users")
    await users.create_index([("email", ASCENDING)], unique=True)
