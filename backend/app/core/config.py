from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
class Settings(BaseSettings):
    
    model_config = SettingsConfigDict(
        env_file = ".env",
        env_file_encoding = "utf-8",
        extra = "ignore"
    )
    
    # Database
    DATABASE_URL: str = "sqlite:///./tax_rules.db"
    
    # Gemini - merge model
    GEMINI_API_KEY: Optional[str] = ""
    GEMINI_MODEL: str = "gemini-1.5-pro"
    GEMINI_API_BASE: str = "https://generativelanguage.googleapis.com/v1beta"
    LLM_TIMEOUT_SECONDS: int = 60
    LLM_MAX_RETRIES: int = 2
    
    # Aggregation
    ENABLE_INTELLIGENT_MERGE: bool = True
    
    # Form schemas
    FORM_SCHEMA_STRICT: bool = True
    
    # Logging
    LOG_LEVEL: str = "INFO"
        
settings = Settings()
