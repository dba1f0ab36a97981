"""Shared configuration utilities."""

import logging
import os
import sys
from typing import Optional


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_env(key: str, default: Optional[str] = None, required: bool = False) -> str:
    """Get environment variable with optional default and required validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable {key} is not set")
    return value


def get_library_config() -> dict:
    """
    Get Zotero library configuration from environment.

    A group library (ZOTERO_GROUP_ID) takes precedence over a user
    library (ZOTERO_USER_ID). One of them must be set.
    """
    group_id = get_env("ZOTERO_GROUP_ID")
    user_id = get_env("ZOTERO_USER_ID")
    if group_id:
        library_type, library_id = "group", group_id
    elif user_id:
        library_type, library_id = "user", user_id
    else:
        raise ValueError("Either ZOTERO_GROUP_ID or ZOTERO_USER_ID must be set")

    return {
        "base_url": get_env("ZOTERO_API_URL", "https://api.zotero.org"),
        "library_type": library_type,
        "library_id": library_id,
        "api_key": get_env("ZOTERO_API_KEY", required=True),
        "timeout": float(get_env("ZOTERO_TIMEOUT", "30")),
    }


def get_sync_config() -> dict:
    """Get sync engine configuration from environment."""
    return {
        "poll_interval": float(get_env("UPLOAD_POLL_INTERVAL", "1.0")),
        "debug": get_env("ZOTERO_DEBUG", "false").lower() == "true",
    }


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging the same way for every entry point."""
    level_name = (level or get_env("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)]
    )
