from typing import List

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """Application settings"""
    
    # Database
    DATABASE_URL: str
    
    # API
    API_TITLE: str = "E-Learning Chat API"
    API_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["*"]
    
    # Security
    SECRET_KEY: str
    
    # Chat policy
    MESSAGE_EDIT_WINDOW_MINUTES: int = 15
    MESSAGE_MAX_LENGTH: int = 2000
    SEARCH_MIN_LENGTH: int = 2
    
    # Pagination
    CONVERSATIONS_PAGE_SIZE: int = 20
    MESSAGES_PAGE_SIZE: int = 50
    SEARCH_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100
    
    class Config:
        env_file = ".env"
        case_sensitive = True

# Create settings instance
settings = Settings()
