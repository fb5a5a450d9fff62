from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Bright Data SERP proxy (optional: missing credentials disable search)
    brightdata_serp_api_key: str = ""
    brightdata_serp_zone: str = ""
    brightdata_request_url: str = "https://api.brightdata.com/request"
    brightdata_log_raw: bool = False

    # SERP provider
    serp_provider: str = "brightdata"  # brightdata | dataforseo
    dataforseo_user: str = ""
    dataforseo_pass: str = ""
    dataforseo_location_name: str = "United States"
    dataforseo_language_code: str = "en"

    # Planner / evidence gate LLM (OpenAI-compatible endpoint)
    deepinfra_api_key: str = ""
    llm_base_url: str = "https://api.deepinfra.com/v1/openai"
    planner_model: str = "openai/gpt-oss-20b"
    planner_max_tokens: int = 220
    gate_max_tokens: int = 120

    # Page fetching
    fetch_concurrency: int = 12
    page_timeout_ms: int = 3000
    page_max_bytes: int = 8 * 1024 * 1024
    extractor_mode: str = "regex"  # regex | trafilatura
    user_agent: str = "Mozilla/5.0 (compatible; WebEvidenceBot/1.0)"

    # App
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_to_file: bool = False
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
