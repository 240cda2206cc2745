from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # secrets (set in .env or per-browser via cookies)
    openrouter_api_key: str = ""
    groq_api_key: str = ""
    litellm_api_key: str = ""

    # upstreams
    openrouter_api_url: str = "https://openrouter.ai/api/v1/"
    groq_api_url: str = "https://api.groq.com/openai/v1/"
    litellm_api_url: str = "http://localhost:4000/v1/"
    app_referer: str = "http://localhost:8000/"
    app_title: str = "AI Conversation System"
    upstream_timeout: float = 60.0
    tts_model: str = "playai-tts"
    stt_model: str = "whisper-large-v3-turbo"

    # tunables live here, not in .env
    data_dir: str = "storage"
    site_url: str = "http://localhost:8000"
    cors_origins: list[str] = ["http://localhost:8000"]
    history_window: int = 10
    termination_marker: str = "#END#"
    default_max_tokens: int = 150
    default_temperature: float = 0.7
    thinking_delay_min: float = 1.0
    thinking_delay_max: float = 3.0
    inter_turn_pause: float = 0.8
    speech_fallback_pause: float = 1.0
    seconds_per_word: float = 0.4
    min_speaking_time: float = 1.5
    playback_grace: float = 0.5
    clip_timeout: float = 60.0
    share_ttl_days: int = 30
    unshared_max_age_days: int = 30
    nonce_limit: int = 20
    nonce_check_enabled: bool = True

    @property
    def conversations_dir(self) -> str:
        return f"{self.data_dir}/conversations"

    @property
    def shared_tracker_path(self) -> str:
        return f"{self.data_dir}/data/shared_conversations.json"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
