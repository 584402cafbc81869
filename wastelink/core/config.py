from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "wastelink"
    use_mongo: bool = False

    # scoring provider: "vision" (Gemini) or "external" (HTTP inference endpoint)
    contamination_provider: Optional[Literal["vision", "external"]] = None
    contamination_api_url: str = ""
    contamination_api_token: Optional[str] = None
    gemini_api_key: Optional[str] = None
    gemini_model_id: str = "gemini-2.5-flash"
    contamination_alert_threshold: int = 6  # 1..10 scale
    scoring_timeout_s: float = 10.0

    log_level: str = "INFO"
    log_json: bool = False

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
