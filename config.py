"""
Configuration module for the RecruitFlow MCP Server.

Provides centralized configuration management with support for:
- Environment variables
- Default values
- Path resolution
- Logging configuration
- Construction of the optional system-of-record and messaging clients
"""

import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from utils.ats_client import AtsClient
from utils.ats_sync import AtsSyncAdapter, load_stage_labels
from utils.notifiers import WhatsAppNotifier
from utils.state_machine import PipelineStateMachine

# Load environment variables from .env file at project root
_env_path = Path(__file__).resolve().parent / ".env"
load_dotenv(dotenv_path=_env_path)


def _parse_int(env_var: str, default: int, problems: List[str]) -> int:
    """Parse an integer env var, falling back to the default on bad input."""
    value = os.getenv(env_var)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        problems.append(f"{env_var}={value!r} is not an integer; using {default}")
        return default


def _parse_float(env_var: str, default: float, problems: List[str]) -> float:
    """Parse a float env var, falling back to the default on bad input."""
    value = os.getenv(env_var)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        problems.append(f"{env_var}={value!r} is not a number; using {default}")
        return default


class Config:
    """
    Configuration class for MCP server settings.

    Supports configuration via environment variables (and .env file) with sensible defaults.
    All paths are resolved relative to the repository root.
    """

    def __init__(self):
        """Initialize configuration from environment variables and defaults."""
        self._problems: List[str] = []

        # Repository root detection
        self._repo_root = self._find_repo_root()

        # Database configuration
        self.db_path = self._resolve_db_path()

        # Logging configuration
        self.log_level = os.getenv("RECRUITFLOW_LOG_LEVEL", "INFO").upper()
        self.log_file = self._resolve_log_path()

        # Server configuration
        self.server_name = os.getenv("RECRUITFLOW_SERVER_NAME", "recruitflow-mcp-server")

        # State machine
        self.max_interview_rounds = _parse_int(
            "RECRUITFLOW_MAX_INTERVIEW_ROUNDS", 5, self._problems
        )

        # System of record (ATS); sync is disabled without a base URL
        self.ats_base_url = os.getenv("RECRUITFLOW_ATS_BASE_URL") or None
        self.ats_api_key = os.getenv("RECRUITFLOW_ATS_API_KEY") or None
        self.ats_timeout_seconds = _parse_float(
            "RECRUITFLOW_ATS_TIMEOUT_SECONDS", 15.0, self._problems
        )
        self.ats_actor = os.getenv("RECRUITFLOW_ATS_ACTOR", "recruitflow-agent")
        self.stage_map_path = self._resolve_optional_path("RECRUITFLOW_STAGE_MAP_PATH")
        self.sync_max_attempts = _parse_int("RECRUITFLOW_SYNC_MAX_ATTEMPTS", 5, self._problems)

        # Candidate engagement
        self.engagement_min_confidence = _parse_float(
            "RECRUITFLOW_ENGAGEMENT_MIN_CONFIDENCE", 0.6, self._problems
        )
        self.whatsapp_api_url = os.getenv(
            "RECRUITFLOW_WHATSAPP_API_URL", "https://graph.facebook.com/v21.0"
        )
        self.whatsapp_token = os.getenv("RECRUITFLOW_WHATSAPP_TOKEN") or None
        self.whatsapp_phone_number_id = os.getenv("RECRUITFLOW_WHATSAPP_PHONE_NUMBER_ID") or None

        # Shared clients, built on first use and closed by close()
        self._sync_adapter: Optional[AtsSyncAdapter] = None
        self._candidate_notifier: Optional[WhatsAppNotifier] = None

    def _find_repo_root(self) -> Path:
        """
        Find the repository root directory.

        Returns:
            Path to repository root (the directory holding config.py)
        """
        return Path(__file__).resolve().parent

    def _resolve_db_path(self) -> Path:
        """
        Resolve the database path from environment or default.

        Resolution order:
        1. RECRUITFLOW_DB environment variable (absolute or relative)
        2. RECRUITFLOW_ROOT/data/pipeline.db
        3. Default: <repo_root>/data/pipeline.db

        Returns:
            Resolved absolute Path to database
        """
        # Check for explicit database path
        db_env = os.getenv("RECRUITFLOW_DB")
        if db_env:
            db_path = Path(db_env)
            if db_path.is_absolute():
                return db_path
            else:
                # Relative to repo root
                return self._repo_root / db_path

        # Check for RECRUITFLOW_ROOT
        root_env = os.getenv("RECRUITFLOW_ROOT")
        if root_env:
            return Path(root_env) / "data" / "pipeline.db"

        # Default path relative to repo root
        return self._repo_root / "data" / "pipeline.db"

    def _resolve_optional_path(self, env_var: str) -> Optional[Path]:
        value = os.getenv(env_var)
        if not value:
            return None
        path = Path(value)
        return path if path.is_absolute() else self._repo_root / path

    def _resolve_log_path(self) -> Optional[Path]:
        """
        Resolve the log file path from environment.

        If RECRUITFLOW_LOG_FILE is set, logs will be written to that file.
        Otherwise, logs go to stderr only.

        Returns:
            Path to log file, or None for stderr-only logging
        """
        return self._resolve_optional_path("RECRUITFLOW_LOG_FILE")

    @property
    def sync_enabled(self) -> bool:
        return self.ats_base_url is not None

    @property
    def whatsapp_enabled(self) -> bool:
        return bool(self.whatsapp_token and self.whatsapp_phone_number_id)

    def setup_logging(self):
        """
        Configure logging based on configuration settings.

        Sets up logging to stderr and optionally to a file.
        Log level is controlled by RECRUITFLOW_LOG_LEVEL.
        """
        # Parse log level
        numeric_level = getattr(logging, self.log_level, logging.INFO)

        # Create formatter
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )

        # Configure root logger
        root_logger = logging.getLogger()
        root_logger.setLevel(numeric_level)

        # Remove existing handlers to avoid duplicates
        root_logger.handlers.clear()

        # Always add stderr handler
        stderr_handler = logging.StreamHandler()
        stderr_handler.setLevel(numeric_level)
        stderr_handler.setFormatter(formatter)
        root_logger.addHandler(stderr_handler)

        # Add file handler if log file is configured
        if self.log_file:
            # Ensure log directory exists
            self.log_file.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.FileHandler(self.log_file)
            file_handler.setLevel(numeric_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

            logging.info(f"Logging to file: {self.log_file}")

        logging.info(f"Log level set to: {self.log_level}")
        logging.info(f"Database path: {self.db_path}")
        logging.info(f"System-of-record sync: {'enabled' if self.sync_enabled else 'disabled'}")

    def get_db_path_str(self) -> str:
        """
        Get database path as string for use in tool handlers.

        Returns:
            Database path as string
        """
        return str(self.db_path)

    def validate(self) -> list[str]:
        """
        Validate configuration and return any warnings.

        Returns:
            List of warning messages (empty if all valid)
        """
        warnings = list(self._problems)

        # The store creates the file on first use, so a missing DB is informational
        if not self.db_path.exists():
            warnings.append(
                f"Database file not found: {self.db_path}. It will be created on first use."
            )

        # Check if log file directory is writable (if configured)
        if self.log_file:
            log_dir = self.log_file.parent
            if not log_dir.exists():
                try:
                    log_dir.mkdir(parents=True, exist_ok=True)
                except Exception as e:
                    warnings.append(f"Cannot create log directory {log_dir}: {e}")
            elif not os.access(log_dir, os.W_OK):
                warnings.append(f"Log directory not writable: {log_dir}")

        if self.max_interview_rounds < 1:
            warnings.append(
                f"RECRUITFLOW_MAX_INTERVIEW_ROUNDS must be at least 1 "
                f"(got {self.max_interview_rounds})"
            )
        if self.sync_max_attempts < 1:
            warnings.append(
                f"RECRUITFLOW_SYNC_MAX_ATTEMPTS must be at least 1 (got {self.sync_max_attempts})"
            )
        if not 0.0 <= self.engagement_min_confidence <= 1.0:
            warnings.append(
                "RECRUITFLOW_ENGAGEMENT_MIN_CONFIDENCE must be between 0 and 1 "
                f"(got {self.engagement_min_confidence})"
            )
        if self.ats_timeout_seconds <= 0:
            warnings.append(
                f"RECRUITFLOW_ATS_TIMEOUT_SECONDS must be positive (got {self.ats_timeout_seconds})"
            )

        if self.ats_api_key and not self.ats_base_url:
            warnings.append(
                "RECRUITFLOW_ATS_API_KEY is set but RECRUITFLOW_ATS_BASE_URL is not; "
                "system-of-record sync is disabled."
            )
        if self.stage_map_path and not self.stage_map_path.is_file():
            warnings.append(f"Stage map file not found: {self.stage_map_path}")
        if bool(self.whatsapp_token) != bool(self.whatsapp_phone_number_id):
            warnings.append(
                "WhatsApp is partially configured; set both RECRUITFLOW_WHATSAPP_TOKEN "
                "and RECRUITFLOW_WHATSAPP_PHONE_NUMBER_ID."
            )

        return warnings

    def build_sync_adapter(self) -> Optional[AtsSyncAdapter]:
        """
        Build the system-of-record sync adapter, or None when sync is disabled.

        Raises:
            ValueError: If the stage map override file is invalid
        """
        if not self.sync_enabled:
            return None

        labels = load_stage_labels(str(self.stage_map_path) if self.stage_map_path else None)
        client = AtsClient(
            self.ats_base_url,
            api_key=self.ats_api_key,
            timeout=self.ats_timeout_seconds,
            actor=self.ats_actor,
        )
        return AtsSyncAdapter(client, stage_labels=labels)

    def build_candidate_notifier(self) -> Optional[WhatsAppNotifier]:
        """Build the WhatsApp notifier, or None when it is not configured."""
        if not self.whatsapp_enabled:
            return None

        return WhatsAppNotifier(
            self.whatsapp_token,
            self.whatsapp_phone_number_id,
            api_url=self.whatsapp_api_url,
            timeout=self.ats_timeout_seconds,
        )

    def get_sync_adapter(self) -> Optional[AtsSyncAdapter]:
        """Return the shared sync adapter, building it on first use."""
        if not self.sync_enabled:
            return None
        if self._sync_adapter is None:
            self._sync_adapter = self.build_sync_adapter()
        return self._sync_adapter

    def get_candidate_notifier(self) -> Optional[WhatsAppNotifier]:
        """Return the shared WhatsApp notifier, building it on first use."""
        if not self.whatsapp_enabled:
            return None
        if self._candidate_notifier is None:
            self._candidate_notifier = self.build_candidate_notifier()
        return self._candidate_notifier

    def close(self) -> None:
        """Close the shared HTTP clients."""
        if self._sync_adapter is not None:
            self._sync_adapter.client.close()
            self._sync_adapter = None
        if self._candidate_notifier is not None:
            self._candidate_notifier.close()
            self._candidate_notifier = None

    def build_state_machine(self, db_path: Optional[str] = None) -> PipelineStateMachine:
        """
        Build a state machine wired to the shared sync adapter.

        Args:
            db_path: Optional database path override (default: configured path)
        """
        return PipelineStateMachine(
            db_path or self.get_db_path_str(),
            sync_adapter=self.get_sync_adapter(),
            max_interview_rounds=self.max_interview_rounds,
        )


# Global configuration instance
config = Config()


def get_config() -> Config:
    """
    Get the global configuration instance.

    Returns:
        Global Config instance
    """
    return config
