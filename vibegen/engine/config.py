"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via API_BASE_URL,
AUTH_TOKEN, OUTPUT_DIR and VIBEGEN_* env vars.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)


# Optional async observer for reconciled frames and notices.
# Signature: async def callback(item) -> None
ObserverCallback = Callable[[Any], Awaitable[None]]


async def fire_callback(callback: ObserverCallback | None, item: Any) -> None:
    """Invoke an observer if set; observer errors never break the caller."""
    if callback is None:
        return
    try:
        await callback(item)
    except Exception:
        logger.debug("Observer callback failed for %r", item, exc_info=True)


def configure_logging(level: str = "INFO") -> None:
    """Apply a basic logging setup for scripts embedding the client."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


@dataclass
class ClientConfig:
    """Generation client configuration."""

    # Remote service
    api_base_url: str = "http://localhost:8787"
    # Opaque bearer credential. Empty means unauthenticated.
    auth_token: str = field(default="", repr=False)

    # Local artifacts land under <output_dir>/<session_id>/
    output_dir: str = "./output"

    # Creation-call defaults for fields the caller leaves unset
    default_language: str = "typescript"
    default_frameworks: list[str] = field(
        default_factory=lambda: ["react", "vite"],
    )
    default_template: str = "auto"
    default_agent_mode: str = "deterministic"

    # Maximum entries kept in the visible conversation window
    conversation_tail: int = 50

    # Logging
    log_level: str = "INFO"

    @property
    def api_origin(self) -> str:
        """scheme://host[:port] of the API, sent as the channel Origin."""
        parts = urlsplit(self.api_base_url)
        if not parts.scheme or not parts.netloc:
            return self.api_base_url.rstrip("/")
        return f"{parts.scheme}://{parts.netloc}"

    def api_url(self, path: str) -> str:
        return f"{self.api_base_url.rstrip('/')}/{path.lstrip('/')}"

    @classmethod
    def from_env(cls) -> ClientConfig:
        """Load configuration from environment variables."""
        vibegen_vars = sorted(
            k for k in os.environ if k.startswith("VIBEGEN_")
        )
        if vibegen_vars:
            logger.info(
                "ClientConfig.from_env: VIBEGEN_* env overrides: %s",
                ", ".join(vibegen_vars),
            )

        frameworks_raw = os.getenv("VIBEGEN_FRAMEWORKS")
        if frameworks_raw:
            frameworks = [
                f.strip() for f in frameworks_raw.split(",") if f.strip()
            ]
        else:
            frameworks = ["react", "vite"]

        config = cls(
            api_base_url=os.getenv("API_BASE_URL", cls.api_base_url),
            auth_token=os.getenv("AUTH_TOKEN", ""),
            output_dir=os.getenv("OUTPUT_DIR", cls.output_dir),
            default_language=os.getenv(
                "VIBEGEN_LANGUAGE", cls.default_language
            ),
            default_frameworks=frameworks,
            default_template=os.getenv(
                "VIBEGEN_TEMPLATE", cls.default_template
            ),
            default_agent_mode=os.getenv(
                "VIBEGEN_AGENT_MODE", cls.default_agent_mode
            ),
            conversation_tail=int(os.getenv(
                "VIBEGEN_CONVERSATION_TAIL", str(cls.conversation_tail)
            )),
            log_level=os.getenv("VIBEGEN_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "ClientConfig.from_env: api=%s output_dir=%s authenticated=%s",
            config.api_base_url, config.output_dir, bool(config.auth_token),
        )
        return config
