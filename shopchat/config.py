import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel


# Provider name -> (base url, api key env var, default model)
PROVIDERS = {
    "together": ("https://api.together.xyz/v1", "TOGETHER_API_KEY", "meta-llama/Llama-2-7b-chat-hf"),
    "openrouter": ("https://openrouter.ai/api/v1", "OPENROUTER_API_KEY", "microsoft/phi-3-mini-4k-instruct"),
    "openai": (None, "OPENAI_API_KEY", "gpt-4o-mini"),
}

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DEFAULT_CATALOG_PATH = os.path.join(BASE_DIR, "data", "demo_catalog.json")
DEMO_WORKSPACE_ID = "demo-workspace"
DEMO_CHATBOT_ID = "demo-chatbot"


class Settings(BaseModel):
    llm_provider: str = "together"
    llm_api_key: Optional[str] = None
    llm_base_url: Optional[str] = None
    llm_model: str = PROVIDERS["together"][2]
    llm_max_tokens: int = 512
    llm_temperature: float = 0.7
    llm_timeout_seconds: float = 20.0

    database_url: Optional[str] = None
    catalog_path: str = DEFAULT_CATALOG_PATH
    search_result_limit: int = 3
    chat_enabled_only: bool = False

    rate_limit_max: int = 60
    rate_limit_window: int = 60
    log_level: str = "INFO"


def _flag(name: str) -> bool:
    return os.environ.get(name, "0").strip().lower() in {"1", "true", "yes", "on"}


def settings_from_env() -> Settings:
    """Build settings from the process environment (and .env when present)."""
    load_dotenv()
    provider = os.environ.get("LLM_PROVIDER", "together").strip().lower()
    if provider not in PROVIDERS:
        provider = "together"
    base_url, key_var, default_model = PROVIDERS[provider]
    return Settings(
        llm_provider=provider,
        llm_api_key=os.environ.get(key_var) or None,
        llm_base_url=os.environ.get("LLM_BASE_URL") or base_url,
        llm_model=os.environ.get("LLM_MODEL") or default_model,
        llm_max_tokens=int(os.environ.get("LLM_MAX_TOKENS", "512")),
        llm_temperature=float(os.environ.get("LLM_TEMPERATURE", "0.7")),
        llm_timeout_seconds=float(os.environ.get("LLM_TIMEOUT_SECONDS", "20")),
        database_url=os.environ.get("DATABASE_URL") or None,
        catalog_path=os.environ.get("CATALOG_PATH", DEFAULT_CATALOG_PATH),
        search_result_limit=int(os.environ.get("SEARCH_RESULT_LIMIT", "3")),
        chat_enabled_only=_flag("CHAT_ENABLED_ONLY"),
        rate_limit_max=int(os.environ.get("RATE_LIMIT_MAX", "60")),
        rate_limit_window=int(os.environ.get("RATE_LIMIT_WINDOW", "60")),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return settings_from_env()
