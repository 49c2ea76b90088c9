"""
Application-wide settings and environment configuration
"""

from __future__ import annotations

import os
from pathlib import Path

# Project paths
TRIAGEQ_ROOT = Path(__file__).parent.parent

# Environment
ENV = os.getenv("TRIAGEQ_ENV", "development")
DEBUG = ENV == "development"

# API Configuration
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))

# Local state (trash, watcher database)
DATA_DIR = Path(os.getenv("TRIAGEQ_DATA_DIR", str(Path.home() / ".triageq")))

# Google Cloud / Gemini
GOOGLE_CLOUD_PROJECT = os.getenv("GOOGLE_CLOUD_PROJECT", "")
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
GEMINI_LOCATION = os.getenv("GEMINI_LOCATION", "us-central1")
GEMINI_FLASH_MODEL = os.getenv("GEMINI_FLASH_MODEL", "gemini-2.0-flash-001")
GEMINI_PRO_MODEL = os.getenv("GEMINI_PRO_MODEL", "gemini-2.5-pro")

# Gmail / Sheets OAuth token written by the desktop sign-in flow
GMAIL_TOKEN_PATH = Path(os.getenv("GMAIL_TOKEN_PATH", str(DATA_DIR / "google_token.json")))


def is_production() -> bool:
    """Check if running in production"""
    return ENV == "production"


def is_development() -> bool:
    """Check if running in development"""
    return ENV == "development"
