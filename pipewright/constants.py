"""Shared constants for pipewright pipelines."""

from __future__ import annotations

MAX_FIX_ATTEMPTS = 3

PAUSE_POLL_INTERVAL_SECONDS = 5.0
PAUSE_TIMEOUT_SECONDS = 30 * 60

INSTALL_TIMEOUT_SECONDS = 180.0
BUILD_TIMEOUT_SECONDS = 120.0

MAX_DIAGNOSTIC_LINES = 10
MAX_ERROR_MESSAGE_CHARS = 2000

REPO_SUBDIR = "repo"
STRUCTURED_PLAN_ARTIFACT = "structured_plan"

DEFAULT_MODEL = "x-ai/grok-code-fast-1"
DEFAULT_API_URL = "http://localhost:3000"
DEFAULT_CONFIG_PATH = "pipewright.yaml"
