from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # OpenRouter for the AI research call (perplexity/sonar)
    openrouter_api_key: str = ""
    openrouter_url: str = "https://openrouter.ai/api/v1/chat/completions"
    research_model: str = "perplexity/sonar"
    research_temperature: float = 0.1

    # Attribution headers sent to OpenRouter
    app_referer: str = "https://crm.worknetic.de"
    app_title: str = "Worknetic CRM"

    # Website crawl
    fetch_timeout: float = 10.0
    crawl_delay: float = 0.5  # Politeness delay between pages, not a timeout

    # SMTP probing (never delivers mail)
    smtp_port: int = 25
    smtp_timeout: float = 10.0
    smtp_sender_domain: str = "worknetic.de"

    # DNS
    dns_timeout: float = 3.0
    dns_lifetime: float = 5.0

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    # Timeouts
    api_timeout: int = 30
    pipeline_timeout: int = 180

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
