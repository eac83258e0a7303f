import os
from typing import List, Optional

from dotenv import load_dotenv, find_dotenv
from pydantic import BaseModel

# Only load .env file if it exists (for local development)
# Cloud platforms provide environment variables directly
try:
    dotenv_path = find_dotenv(usecwd=True)
    if dotenv_path:
        load_dotenv(dotenv_path)
except Exception:
    # If dotenv loading fails, continue with system environment variables
    pass

APP_NAME = "KrishiOS Advisory"

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8080"))

_origins = os.getenv("ALLOW_ORIGINS", "*")
ALLOW_ORIGINS = [o.strip() for o in _origins.split(",") if o.strip()] or ["*"]

# LLM gateway (OpenAI-compatible chat completions with tool calling)
LLM_API_KEY = os.getenv("LOVABLE_API_KEY", "").strip()
LLM_API_BASE = os.getenv("LLM_API_BASE", "https://ai.gateway.lovable.dev/v1").strip()
LLM_MODEL = os.getenv("LLM_MODEL", "google/gemini-3-flash-preview").strip()
LLM_VISION_MODEL = os.getenv("LLM_VISION_MODEL", "google/gemini-2.5-flash").strip()
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
STREAM_IDLE_TIMEOUT_SECONDS = float(os.getenv("STREAM_IDLE_TIMEOUT_SECONDS", "30"))
STREAM_MAX_SECONDS = float(os.getenv("STREAM_MAX_SECONDS", "300"))

# OpenWeather (current conditions, 5-day forecast, geocoding)
OPENWEATHER_API_KEY = os.getenv("OPENWEATHER_API_KEY", "").strip()
OPENWEATHER_BASE_URL = "https://api.openweathermap.org"

# Resend transactional email
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "").strip()
RESEND_BASE_URL = "https://api.resend.com"
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@krishios.com").strip()

# Supabase Auth + Postgres
SUPABASE_URL = os.getenv("SUPABASE_URL", "").strip().rstrip("/")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "").strip()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./krishios.db").strip()

# Advisory policy knobs
ALERT_TITLE_DAILY_CAP = int(os.getenv("ALERT_TITLE_DAILY_CAP", "2"))
FINANCE_HISTORY_LIMIT = int(os.getenv("FINANCE_HISTORY_LIMIT", "50"))


class Settings(BaseModel):
    """Resolved configuration handed to every component at start-up."""

    app_name: str = APP_NAME
    allow_origins: List[str] = ["*"]

    llm_api_key: Optional[str] = None
    llm_api_base: str = "https://ai.gateway.lovable.dev/v1"
    llm_model: str = "google/gemini-3-flash-preview"
    llm_vision_model: str = "google/gemini-2.5-flash"
    llm_timeout_seconds: float = 60.0
    stream_idle_timeout_seconds: float = 30.0
    stream_max_seconds: float = 300.0

    openweather_api_key: Optional[str] = None
    openweather_base_url: str = "https://api.openweathermap.org"

    resend_api_key: Optional[str] = None
    resend_base_url: str = "https://api.resend.com"
    admin_email: str = "admin@krishios.com"

    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    database_url: str = "sqlite:///./krishios.db"

    alert_title_daily_cap: int = 2
    finance_history_limit: int = 50


def load_settings() -> Settings:
    """Build the Settings object from the module-level environment values."""
    return Settings(
        app_name=APP_NAME,
        allow_origins=ALLOW_ORIGINS,
        llm_api_key=LLM_API_KEY or None,
        llm_api_base=LLM_API_BASE,
        llm_model=LLM_MODEL,
        llm_vision_model=LLM_VISION_MODEL,
        llm_timeout_seconds=LLM_TIMEOUT_SECONDS,
        stream_idle_timeout_seconds=STREAM_IDLE_TIMEOUT_SECONDS,
        stream_max_seconds=STREAM_MAX_SECONDS,
        openweather_api_key=OPENWEATHER_API_KEY or None,
        openweather_base_url=OPENWEATHER_BASE_URL,
        resend_api_key=RESEND_API_KEY or None,
        resend_base_url=RESEND_BASE_URL,
        admin_email=ADMIN_EMAIL,
        supabase_url=SUPABASE_URL or None,
        supabase_anon_key=SUPABASE_ANON_KEY or None,
        database_url=DATABASE_URL,
        alert_title_daily_cap=ALERT_TITLE_DAILY_CAP,
        finance_history_limit=FINANCE_HISTORY_LIMIT,
    )
