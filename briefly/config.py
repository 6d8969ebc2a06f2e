from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenRouter
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "google/gemini-2.0-flash-001"
    planner_model: str = ""  # optional override for topic decomposition only

    # Search
    search_provider: str = "duckduckgo"  # duckduckgo | serpapi | google | brave | tavily | mock
    serpapi_api_key: str = ""
    google_api_key: str = ""
    google_search_id: str = ""
    brave_api_key: str = ""
    tavily_api_key: str = ""
    search_max_parallel: int = 4
    search_timeout_seconds: float = 30.0
    search_language: str = "en"

    # Fetch + content cache
    content_cache_enabled: bool = True
    content_cache_dir: str = ".briefly-cache/content"
    content_cache_ttl_hours: int = 24
    fetch_max_parallel: int = 8
    fetch_timeout_seconds: float = 20.0
    fetch_retry_max: int = 1
    fetch_user_agent: str = "BrieflyResearch/1.0 (+https://example.local)"
    extractor_max_page_chars: int = 120000
    min_content_line_chars: int = 20

    # Ranking
    ranker_backend: str = "embedding"  # embedding | bm25
    local_embed_model: str = "BAAI/bge-small-en-v1.5"
    local_embed_batch_size: int = 32
    ranker_max_text_chars: int = 8000

    # Planner / synthesizer
    planner_max_sub_queries: int = 5
    synthesis_max_tokens: int = 4096
    synthesis_source_chars: int = 500

    # Research defaults
    max_sources: int = 20
    output_dir: str = "research"

    # App
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
