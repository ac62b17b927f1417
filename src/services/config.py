"""
Loads and handles config from config.yml
The GitHub token is loaded from .env for security
"""
import logging
import os
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class Config(BaseModel):
    # Core
    DATABASE_PATH: str = "data/digests.db"

    # Ollama
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_MODEL_FAST: str = "llama3.2:3b"
    OLLAMA_MODEL_QUALITY: str = "llama3.1:8b"
    LLM_TEMPERATURE: float = 0.1
    # Must stay below the hosting environment's wall-clock budget
    LLM_TIMEOUT_SECONDS: float = 60.0

    # Retry / cache
    RETRY_DELAY_SECONDS: float = 1.0
    DIGEST_CACHE_TTL_HOURS: int = 24
    IMPACT_CACHE_TTL_HOURS: int = 24

    # Summaries
    SUMMARY_WRITE_INTERVAL_MS: int = 500
    SUMMARY_MAX_PROMPT_DIGESTS: int = 60

    # GitHub
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_TOKEN: Optional[str] = None

    # Logging
    LOG_LEVEL: str = "INFO"


def _get_config_path() -> Optional[str]:
    """Get the path to config.yml, handling different working directories."""
    # Try relative path first
    if os.path.exists('resources/config.yml'):
        return 'resources/config.yml'

    # Try from project root
    project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    config_path = os.path.join(project_root, 'resources', 'config.yml')
    if os.path.exists(config_path):
        return config_path

    return None


def _read_yaml(path: Optional[str]) -> Dict[str, Any]:
    if path is None:
        logger.warning("No resources/config.yml found, using defaults")
        return {}

    with open(path, 'r') as file:
        return yaml.safe_load(file) or {}


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from config.yml and the GitHub token from .env."""
    # Load .env for sensitive credentials
    load_dotenv()

    data = _read_yaml(path or _get_config_path())

    # Only keep keys the model knows about, everything else is a typo
    known = {k: v for k, v in data.items() if k in Config.model_fields}
    unknown = sorted(set(data) - set(known))
    if unknown:
        logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")

    config = Config(**known)
    token = os.getenv("GITHUB_TOKEN")
    if token:
        config = config.model_copy(update={"GITHUB_TOKEN": token})
    return config
