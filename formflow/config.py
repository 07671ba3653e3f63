"""Runtime configuration for formflow.

FormflowConfig collects the few knobs shared by the registry, the workflow
engine and the session host. It can be built directly, from a dict, or from
``FORMFLOW_*`` environment variables:

    FORMFLOW_DEFAULT_SERVER_ERROR  message used when a rejection carries none
    FORMFLOW_STRICT_FIELD_KINDS    "1"/"true" to reject unknown field kinds
    FORMFLOW_SUBMIT_TIMEOUT        seconds to wait for a coroutine handler
    FORMFLOW_LOG_LEVEL             level used by configure_logging()
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

DEFAULT_SERVER_ERROR = "Submission failed"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class FormflowConfig:
    """Settings shared by formflow components.

    Attributes:
        default_server_error: Server error stored when a rejection has no message
        strict_field_kinds: Reject unknown field kinds instead of treating them as strings
        submit_timeout: Seconds to wait for a coroutine handler, or None for no limit
        log_level: Level name applied by configure_logging()
    """
    default_server_error: str = DEFAULT_SERVER_ERROR
    strict_field_kinds: bool = False
    submit_timeout: Optional[float] = None
    log_level: str = "INFO"

    def __post_init__(self):
        if self.submit_timeout is not None and self.submit_timeout <= 0:
            raise ValueError("submit_timeout must be positive")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "defaultServerError": self.default_server_error,
            "strictFieldKinds": self.strict_field_kinds,
            "submitTimeout": self.submit_timeout,
            "logLevel": self.log_level,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormflowConfig":
        """Create FormflowConfig from dict (camelCase keys)."""
        timeout = data.get("submitTimeout")
        return cls(
            default_server_error=data.get("defaultServerError", DEFAULT_SERVER_ERROR),
            strict_field_kinds=bool(data.get("strictFieldKinds", False)),
            submit_timeout=float(timeout) if timeout is not None else None,
            log_level=data.get("logLevel", "INFO"),
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "FormflowConfig":
        """Create FormflowConfig from ``FORMFLOW_*`` environment variables."""
        env = os.environ if environ is None else environ
        timeout = env.get("FORMFLOW_SUBMIT_TIMEOUT")
        return cls(
            default_server_error=env.get("FORMFLOW_DEFAULT_SERVER_ERROR", DEFAULT_SERVER_ERROR),
            strict_field_kinds=env.get("FORMFLOW_STRICT_FIELD_KINDS", "").strip().lower() in _TRUTHY,
            submit_timeout=float(timeout) if timeout else None,
            log_level=env.get("FORMFLOW_LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(config: Optional[FormflowConfig] = None) -> None:
    """Configure root logging for command-line use.

    Library code only ever logs through ``logging.getLogger(__name__)``;
    this helper is for entry points such as ``python -m formflow``.
    """
    config = config or FormflowConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


__all__ = [
    "DEFAULT_SERVER_ERROR",
    "FormflowConfig",
    "configure_logging",
]
