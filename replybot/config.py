from typing import Optional

from pydantic_settings import BaseSettings

from replybot.errors import ConfigurationError

# Source code 0 is the platform's "mobile push": a message typed by a real user.
MOBILE_PUSH_SOURCE = 0


class Settings(BaseSettings):
    debug: bool = False
    log_level: str = "INFO"

    # Reply generation
    enable_ai_reply: bool = True
    enable_message_merge: bool = True
    merge_window_ms: int = 3000
    max_merged_messages: int = 3
    accepted_message_sources: list[int] = [MOBILE_PUSH_SOURCE]
    reply_in_rooms: bool = False

    # Conversation history (required: no safe default for retention)
    conversation_max_messages: Optional[int] = None
    conversation_timeout_ms: Optional[int] = None
    conversation_cleanup_interval_ms: Optional[int] = None
    history_limit: int = 20

    # Admission control and dedup
    max_concurrent_jobs: int = 50
    dedup_ttl_seconds: float = 300
    dedup_max_entries: int = 10000

    # Pacing
    typing_speed_chars_per_sec: float = 8
    typing_min_delay_ms: int = 800
    typing_max_delay_ms: int = 8000
    typing_random_variation: float = 0.2
    typing_thinking_time_min_ms: int = 1000
    typing_thinking_time_max_ms: int = 3000
    typing_reasonable_wait_ms: int = 3000
    enable_typing_thinking_time: bool = True
    enable_split_send: bool = True

    # Agent backend
    agent_api_base_url: Optional[str] = None
    agent_api_key: Optional[str] = None
    agent_api_timeout_seconds: float = 600
    agent_max_retries: int = 3
    agent_retry_base_delay_ms: int = 1000
    agent_rate_limit_default_wait_seconds: float = 60
    agent_cache_ttl_seconds: float = 3600
    agent_cache_max_item_kb: int = 100
    agent_model: Optional[str] = None
    agent_system_prompt: Optional[str] = None
    agent_prompt_type: Optional[str] = None
    agent_allowed_tools: list[str] = []
    agent_profile_path: Optional[str] = None

    # Outbound sender and persistence
    message_sender_url: Optional[str] = None
    message_sender_timeout_seconds: float = 30
    chat_records_enabled: bool = False
    database_url: str = "sqlite:///./replybot.db"

    cleanup_worker_enabled: bool = True

    class Config:
        env_file = ".env"
        extra = "ignore"

    def require_runtime(self) -> None:
        """Refuse to run with undefined retention or without an agent backend."""
        required = {
            "CONVERSATION_MAX_MESSAGES": self.conversation_max_messages,
            "CONVERSATION_TIMEOUT_MS": self.conversation_timeout_ms,
            "CONVERSATION_CLEANUP_INTERVAL_MS": self.conversation_cleanup_interval_ms,
            "AGENT_API_BASE_URL": self.agent_api_base_url,
            "AGENT_API_KEY": self.agent_api_key,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ConfigurationError(missing)


settings = Settings()
