from typing import List, Optional, Set
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Shared
    APP_ENV: str = "dev"
    APP_PORT: int = 8000
    APP_TIMEZONE: str = "UTC"
    DATABASE_URL: str
    REDIS_URL: str
    APP_AUTH_BEARER_TOKENS: str  # Comma-separated
    RECENT_CONTEXT_TTL_HOURS: int = 48

    # LLM provider
    LLM_API_KEY: str
    LLM_API_BASE_URL: str = ""
    LLM_TIMEOUT_SECONDS: int = 30
    LLM_MAX_RETRIES: int = 2
    LLM_RETRY_BACKOFF_SECONDS: float = 1.0
    LLM_MODEL_PLAN: str
    LLM_MODEL_CONFIRM: Optional[str] = None  # Falls back to LLM_MODEL_PLAN

    # Telegram
    TELEGRAM_BOT_TOKEN: Optional[str] = None
    TELEGRAM_WEBHOOK_SECRET: Optional[str] = None
    TELEGRAM_API_BASE: str = "https://api.telegram.org"
    TELEGRAM_COMMAND_TIMEOUT_SECONDS: int = 20
    TELEGRAM_ALLOWED_CHAT_IDS: Optional[str] = None  # Comma-separated; empty allows every chat
    TELEGRAM_ALLOWED_USERNAMES: Optional[str] = None  # Comma-separated, without "@"

    # Notion
    NOTION_TOKEN: Optional[str] = None
    NOTION_API_BASE: str = "https://api.notion.com/v1"
    NOTION_VERSION: str = "2022-06-28"
    NOTION_TIMEOUT_SECONDS: int = 20
    NOTION_TASKS_DB_ID: Optional[str] = None
    NOTION_IDEAS_DB_ID: Optional[str] = None
    NOTION_SOCIAL_DB_ID: Optional[str] = None
    NOTION_JOURNAL_DB_ID: Optional[str] = None

    # Action engine
    ENGINE_DEBUG: bool = False
    ENGINE_SEARCH_LIMIT: int = 10
    ENGINE_LIST_LIMIT: int = 20
    TASK_TITLE_MAX_LEN: int = 120

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def auth_tokens(self) -> List[str]:
        return [t.strip() for t in self.APP_AUTH_BEARER_TOKENS.split(",") if t.strip()]

    @property
    def telegram_allowed_chat_ids(self) -> Set[str]:
        if not self.TELEGRAM_ALLOWED_CHAT_IDS:
            return set()
        return {c.strip() for c in self.TELEGRAM_ALLOWED_CHAT_IDS.split(",") if c.strip()}

    @property
    def telegram_allowed_usernames(self) -> Set[str]:
        if not self.TELEGRAM_ALLOWED_USERNAMES:
            return set()
        return {u.strip().lstrip("@").lower() for u in self.TELEGRAM_ALLOWED_USERNAMES.split(",") if u.strip()}

settings = Settings()
