"""Application configuration via environment variables."""

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings

log = logging.getLogger("callagent.config")

_SESSION_STORES = {"memory", "file"}


class Settings(BaseSettings):
    # Server
    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False
    log_level: str = "INFO"

    # Admin auth (agent registration, call tracing)
    admin_api_key: str = ""

    # Session store
    session_store: str = "memory"  # "memory" or "file"
    session_dir: str = "data/sessions"

    # Agent definitions (JSONL, one agent per line)
    agents_file: str = "data/agents.jsonl"
    min_additional_questions: int = 3

    # Calling-layer client
    call_agent_url: str = "http://localhost:8080"
    client_timeout: float = 30.0
    client_max_retries: int = 3
    client_retry_base_delay: float = 1.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []

        if self.session_store not in _SESSION_STORES:
            raise ValueError(
                f"SESSION_STORE must be one of {sorted(_SESSION_STORES)}, "
                f"got {self.session_store!r}"
            )
        if not 0 <= self.min_additional_questions <= 10:
            raise ValueError(
                "MIN_ADDITIONAL_QUESTIONS must be between 0 and 10, "
                f"got {self.min_additional_questions}"
            )
        if self.client_max_retries < 0:
            raise ValueError(
                f"CLIENT_MAX_RETRIES must be >= 0, got {self.client_max_retries}"
            )
        if self.client_retry_base_delay < 0:
            raise ValueError(
                f"CLIENT_RETRY_BASE_DELAY must be >= 0, got {self.client_retry_base_delay}"
            )

        if not self.admin_api_key:
            if self.debug:
                warnings.append(
                    "ADMIN_API_KEY not set. Agent and tracing APIs are open (DEBUG=true)."
                )
            else:
                warnings.append(
                    "ADMIN_API_KEY not set. Agent registration and call tracing are "
                    "locked. Set ADMIN_API_KEY in .env to enable them."
                )

        if self.session_store == "memory" and not self.debug:
            warnings.append(
                "SESSION_STORE=memory — sessions are lost when the server restarts."
            )

        return warnings


settings = Settings()
