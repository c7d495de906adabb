"""Environment-driven settings for the storage and model collaborators.

Values are read at call time (``Settings.from_env``) so tests can
monkeypatch the environment and late ``.env`` loading keeps working.

Environment Variables:
    REDIS_URL: Redis connection URL (default: redis://localhost:6379/0)
    PINECONE_API_KEY: Pinecone API key
    PINECONE_INDEX_NAME: Pinecone index name (default: chatbot)
    MISTRAL_API_KEY: Mistral API key (embeddings and chat)
    MISTRAL_BASE_URL: Mistral API base URL (default: https://api.mistral.ai)
    MISTRAL_EMBED_MODEL: Embedding model (default: mistral-embed)
    MISTRAL_CHAT_MODEL: Chat model (default: mistral-small-latest)
    CRAWL_STALE_AFTER: Seconds after which a ``crawling`` record may be taken
        over by a new crawl (default: 1800)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

LOGGER = logging.getLogger(__name__)

# Configuration directory for global CLI usage
CONFIG_DIR = Path.home() / ".config" / "sitechat"
CONFIG_ENV_FILE = CONFIG_DIR / ".env"


class ConfigError(Exception):
    """Raised when a required setting is missing."""

    def __init__(self, message: str, name: str = ""):
        self.name = name
        super().__init__(message)


def load_config(cwd: Optional[Path] = None) -> Optional[Path]:
    """Load .env configuration with fallback to the user config directory.

    Search order:
    1. .env in the current working directory
    2. ~/.config/sitechat/.env

    Returns the file that was loaded, or ``None``.
    """
    local_env = (cwd or Path.cwd()) / ".env"
    if local_env.is_file():
        load_dotenv(local_env)
        return local_env

    if CONFIG_ENV_FILE.is_file():
        load_dotenv(CONFIG_ENV_FILE)
        return CONFIG_ENV_FILE

    LOGGER.debug("No .env found in %s or %s", local_env.parent, CONFIG_DIR)
    return None


@dataclass(frozen=True)
class Settings:
    redis_url: str = "redis://localhost:6379/0"
    pinecone_api_key: Optional[str] = None
    pinecone_index_name: str = "chatbot"
    mistral_api_key: Optional[str] = None
    mistral_base_url: str = "https://api.mistral.ai"
    embed_model: str = "mistral-embed"
    chat_model: str = "mistral-small-latest"
    crawl_stale_after: float = 1800.0

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            pinecone_api_key=os.getenv("PINECONE_API_KEY") or None,
            pinecone_index_name=os.getenv("PINECONE_INDEX_NAME", "chatbot"),
            mistral_api_key=os.getenv("MISTRAL_API_KEY") or None,
            mistral_base_url=os.getenv("MISTRAL_BASE_URL", "https://api.mistral.ai"),
            embed_model=os.getenv("MISTRAL_EMBED_MODEL", "mistral-embed"),
            chat_model=os.getenv("MISTRAL_CHAT_MODEL", "mistral-small-latest"),
            crawl_stale_after=float(os.getenv("CRAWL_STALE_AFTER", "1800")),
        )

    def require(self, *names: str) -> None:
        """Raise :class:`ConfigError` if any named attribute is unset."""
        for name in names:
            if not getattr(self, name):
                raise ConfigError(
                    f"Missing setting {name.upper()}. Set it in the environment "
                    f"or in {CONFIG_ENV_FILE}.",
                    name=name,
                )
