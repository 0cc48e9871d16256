# backend/portal/config.py
from __future__ import annotations
import os


def parse_system_tokens(raw: str | None) -> dict[str, str]:
    """
    Parse SYSTEM_TOKENS ("n8n:secret1,cron:secret2") into {name: token}.

    Entries without a name or token are ignored.
    """
    tokens: dict[str, str] = {}
    for entry in (raw or "").split(","):
        name, _, token = entry.strip().partition(":")
        if name.strip() and token.strip():
            tokens[name.strip()] = token.strip()
    return tokens


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/portal.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///portal.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Header carrying the external identity, set by the authenticating gateway
    IDENTITY_HEADER = os.environ.get("IDENTITY_HEADER", "X-Authenticated-Identity")

    # Automation actors (scheduler, carrier webhook) authenticate with these
    SYSTEM_TOKENS = parse_system_tokens(os.environ.get("SYSTEM_TOKENS"))

    # Seconds a resolved identity is reused before the mapping is re-read.
    # Removal and re-roling only clear the cache of the worker that handled them.
    IDENTITY_CACHE_TTL = int(os.environ.get("IDENTITY_CACHE_TTL", "30"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
