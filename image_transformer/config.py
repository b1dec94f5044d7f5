"""
Configuration settings for Image Transformer

This module contains all constants, endpoint paths, and default settings for the application.
Required credentials are read from the environment by FlowscaleSettings.from_env().
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, FrozenSet, Mapping, Optional

from .exceptions import ConfigurationError


# ============================================================================
# Flowscale API Endpoints
# ============================================================================

class FlowscaleEndpoints:
    """Flowscale REST endpoints (relative to the configured base URL)"""
    RUNS = "/api/v1/runs"
    RUN_OUTPUT = "/api/v1/runs/output"

    @classmethod
    def get_run_url(cls, run_id: str) -> str:
        return f"{cls.RUNS}/{run_id}"

    @classmethod
    def get_cancel_url(cls, run_id: str) -> str:
        return f"{cls.RUNS}/{run_id}/cancel"


API_KEY_HEADER = "X-API-KEY"


# ============================================================================
# Timeout & Polling Configuration
# ============================================================================

@dataclass
class TimeoutConfig:
    """Timeout and polling interval configuration"""
    # Max time to wait for a queued run to finish (seconds)
    run_execution: float = 600.0

    # Output polling interval while a run is executing (seconds)
    run_poll_interval: float = 2.0

    # HTTP request timeout (seconds)
    http_request: float = 30.0

    # Max attempts for idempotent (GET) requests
    max_retries: int = 3

    # Delay between attempts (seconds)
    retry_delay: float = 2.0


DEFAULT_TIMEOUTS = TimeoutConfig()


# ============================================================================
# Cosmetic Progress Configuration
# ============================================================================

@dataclass
class ProgressConfig:
    """Simulated progress bar behaviour while a run is pending"""
    step: int = 5
    interval: float = 0.5
    ceiling: int = 95


DEFAULT_PROGRESS = ProgressConfig()


# ============================================================================
# Run Status Values
# ============================================================================

STATUS_SUCCESS = "success"

# generation_status values after which polling stops
TERMINAL_GENERATION_STATUSES: FrozenSet[str] = frozenset({
    "success",
    "failed",
    "error",
    "cancelled",
})


# ============================================================================
# File Intake Limits
# ============================================================================

MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10MB

ALLOWED_EXTENSIONS: FrozenSet[str] = frozenset({".png", ".jpg", ".jpeg", ".gif"})

ALLOWED_MIME_TYPES: FrozenSet[str] = frozenset({
    "image/png",
    "image/jpeg",
    "image/jpg",
    "image/gif",
})


# ============================================================================
# Workflow Input Slots
# ============================================================================

# Slot identifiers assigned by the remote workflow definition
DEFAULT_IMAGE_SLOT = "image_22068"
DEFAULT_PROMPT_SLOT = "default_value_48043"


# ============================================================================
# User-facing Messages
# ============================================================================

MESSAGE_TIMEOUT = "Image processing took too long to complete. Please try again."
MESSAGE_FAILURE = "Error processing image. Please try again."
MESSAGE_CANCELLED = "Generation cancelled."
MESSAGE_SUCCESS = "Generation complete."
MESSAGE_NO_FILE = "Please select an image first."
MESSAGE_FILE_TOO_LARGE = "File size must be less than 10MB."


# ============================================================================
# Environment-backed Settings
# ============================================================================

ENV_API_KEY = "FLOWSCALE_API_KEY"
ENV_API_URL = "FLOWSCALE_API_URL"
ENV_WORKFLOW_ID = "FLOWSCALE_WORKFLOW_ID"
ENV_IMAGE_SLOT = "FLOWSCALE_IMAGE_SLOT"
ENV_PROMPT_SLOT = "FLOWSCALE_PROMPT_SLOT"
ENV_GROUP_ID = "FLOWSCALE_GROUP_ID"
ENV_LOG_LEVEL = "IMAGE_TRANSFORMER_LOG_LEVEL"
ENV_SERVER_HOST = "IMAGE_TRANSFORMER_HOST"
ENV_SERVER_PORT = "IMAGE_TRANSFORMER_PORT"

REQUIRED_ENV_VARS = (ENV_API_KEY, ENV_API_URL, ENV_WORKFLOW_ID)

# Local interface only unless IMAGE_TRANSFORMER_HOST says otherwise
DEFAULT_SERVER_HOST = "127.0.0.1"


def _parse_port(value: Optional[str]) -> Optional[int]:
    if not value or not value.strip():
        return None
    try:
        port = int(value)
    except ValueError:
        raise ConfigurationError(f"{ENV_SERVER_PORT} must be a port number, got {value!r}") from None
    if not 0 < port < 65536:
        raise ConfigurationError(f"{ENV_SERVER_PORT} out of range: {port}")
    return port


@dataclass(frozen=True)
class FlowscaleSettings:
    """Process-wide settings for talking to the Flowscale workflow service"""
    api_key: str
    api_url: str
    workflow_id: str
    image_slot: str = DEFAULT_IMAGE_SLOT
    prompt_slot: str = DEFAULT_PROMPT_SLOT
    group_id: Optional[str] = None
    server_host: str = DEFAULT_SERVER_HOST
    server_port: Optional[int] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "FlowscaleSettings":
        """
        Build settings from environment variables

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            FlowscaleSettings

        Raises:
            ConfigurationError: If any required variable is missing or blank
        """
        env = os.environ if environ is None else environ

        missing = [name for name in REQUIRED_ENV_VARS if not env.get(name, "").strip()]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )

        return cls(
            api_key=env[ENV_API_KEY].strip(),
            api_url=env[ENV_API_URL].strip().rstrip("/"),
            workflow_id=env[ENV_WORKFLOW_ID].strip(),
            image_slot=env.get(ENV_IMAGE_SLOT) or DEFAULT_IMAGE_SLOT,
            prompt_slot=env.get(ENV_PROMPT_SLOT) or DEFAULT_PROMPT_SLOT,
            group_id=env.get(ENV_GROUP_ID) or None,
            server_host=env.get(ENV_SERVER_HOST) or DEFAULT_SERVER_HOST,
            server_port=_parse_port(env.get(ENV_SERVER_PORT)),
        )


# ============================================================================
# Gradio Configuration
# ============================================================================

# Default Gradio server ports to try (will use first available)
GRADIO_PORTS = [7861, 7862, 7863, 7864, 7865, 7866, 7867, 7868, 7869, 7870]

# UI state polling interval (seconds)
UI_POLL_INTERVAL = 0.5


# ============================================================================
# Logging Configuration
# ============================================================================

LOG_FORMAT = "[{asctime}] [{levelname}] [{name}] {message}"

LOG_LEVELS: Dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for the application process"""
    level_name = (level or os.environ.get(ENV_LOG_LEVEL) or "INFO").upper()
    logging.basicConfig(
        level=LOG_LEVELS.get(level_name, logging.INFO),
        format=LOG_FORMAT,
        style="{",
    )


# ============================================================================
# Version Information
# ============================================================================

VERSION = "1.0.0"
PROJECT_NAME = "Image Transformer"
PROJECT_DESCRIPTION = "Transform images with a hosted Flowscale workflow"
