"""Centralized configuration for TriageQ.

Re-exports triageq.infrastructure.settings and adds typed tunables for the
watchers, queue, router, and persistence layers. Every value has a safe
default so the service starts without extra environment configuration.
"""

from __future__ import annotations

import os

from triageq.infrastructure.settings import *  # noqa: F401, F403

# --- App ---
APP_VERSION: str = "0.1.0"

# --- Database ---
DB_CONNECT_TIMEOUT: float = float(os.getenv("TRIAGEQ_DB_CONNECT_TIMEOUT", "30.0"))
DB_RETRY_MAX: int = int(os.getenv("TRIAGEQ_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("TRIAGEQ_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("TRIAGEQ_DB_RETRY_MAX_DELAY", "2.0"))

# --- LLM ---
LLM_MAX_RETRIES: int = int(os.getenv("TRIAGEQ_LLM_MAX_RETRIES", "3"))
LLM_RULE_TEMPERATURE: float = 0.1
LLM_RULE_MAX_TOKENS: int = 500
EMAIL_BODY_TRUNCATION: int = 1500

# --- Folder watcher ---
FOLDER_DEBOUNCE_SECONDS: float = float(os.getenv("TRIAGEQ_FOLDER_DEBOUNCE", "2.0"))
FOLDER_ACTIVITY_MAX: int = 100
ACTIVITY_LOG_FILENAME: str = "triageq_activity_log.xlsx"

# --- Mailbox watchers ---
MAIL_MAX_WATCHERS: int = 5
MAIL_MIN_INTERVAL_SECONDS: int = 60
MAIL_MAX_ACTIVITY: int = 100
MAIL_MAX_MATCHES: int = 50
MAIL_MAX_PROCESSED_IDS: int = 200
MAIL_FETCH_LIMIT: int = 20
MAIL_LOOKBACK_SECONDS: int = 24 * 60 * 60
MAIL_CLOCK_SKEW_SECONDS: int = 60
EMAIL_LOG_FILENAME: str = "triageq_email_log.xlsx"
EMAIL_SHEET_NAME: str = "TriageQ Email Log"

# --- Trash ---
TRASH_MANIFEST_MAX: int = 100

# --- Router / executor ---
ROUTER_MAX_TOOL_ROUNDS: int = 10
ROUTER_MAXIMUM_COMPLEXITY: float = 0.8
ROUTER_MAXIMUM_STEPS: int = 5
ROUTER_MINIMAL_STEPS: int = 2
STORAGE_SCAN_MAX_DEPTH: int = 3
READ_FILE_MAX_CHARS: int = 20000
