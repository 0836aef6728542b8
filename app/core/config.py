# app/core/config.py
import json
from typing import List, Optional, Union
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

# Locate the .env file relative to the project root
BASE_DIR = Path(__file__).resolve().parent.parent.parent
ENV_FILE = BASE_DIR / ".env"


def split_list(value) -> List[str]:
    """Accept a list, a JSON array string or a comma-separated string."""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    value = str(value).strip()
    if value.startswith("["):
        try:
            return [str(v).strip() for v in json.loads(value) if str(v).strip()]
        except ValueError:
            pass
    return [v.strip() for v in value.split(",") if v.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=str(ENV_FILE), extra="ignore")

    # Application
    PROJECT_NAME: str = "Topoo Identity"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Session tokens
    JWT_SECRET_KEY: str
    # Retired signing keys that still verify tokens issued before a rotation
    JWT_PREVIOUS_SECRET_KEYS: Union[List[str], str] = []
    JWT_ALGORITHM: str = "HS256"
    SESSION_TOKEN_EXPIRE_DAYS: int = 30

    # Passwords
    PASSWORD_HASH_ITERATIONS: int = 100000
    PASSWORD_MIN_LENGTH: int = 6

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./topoo.db"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # CORS
    BACKEND_CORS_ORIGINS: Union[List[str], str] = ["*"]

    # Google identity tokens
    GOOGLE_CLIENT_ID: Optional[str] = None
    GOOGLE_TOKENINFO_URL: str = "https://oauth2.googleapis.com/tokeninfo"

    # GitHub OAuth
    GITHUB_CLIENT_ID: Optional[str] = None
    GITHUB_CLIENT_SECRET: Optional[str] = None
    GITHUB_AUTHORIZE_URL: str = "https://github.com/login/oauth/authorize"
    GITHUB_TOKEN_URL: str = "https://github.com/login/oauth/access_token"
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_OAUTH_SCOPE: str = "user:email read:user"
    OAUTH_USER_AGENT: str = "Topoo-Gateway"
    # When set, the GitHub callback redirects here with ?token= instead of rendering the bridge page
    OAUTH_SUCCESS_REDIRECT_URL: Optional[str] = None
    IDENTITY_PROVIDER_TIMEOUT_SECONDS: float = 10.0

    # Quota
    QUOTA_PRODUCT_CODE: str = "p16-gateway"
    QUOTA_ROLLOVER_ON_CONSUME: bool = True
    QUOTA_HISTORY_LIMIT: int = 100

    @property
    def cors_origins(self) -> List[str]:
        return split_list(self.BACKEND_CORS_ORIGINS)

    @property
    def previous_secret_keys(self) -> List[str]:
        return split_list(self.JWT_PREVIOUS_SECRET_KEYS)


settings = Settings()
