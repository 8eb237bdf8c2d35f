from decimal import Decimal
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")
    sql_echo: bool = Field(False, alias="SQL_ECHO")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    # Comma-separated list; "*" allows any origin
    cors_origins: str = Field("*", alias="CORS_ORIGINS")

    # Rounding slack when checking manual allocations against balances and the amount received
    fee_allocation_tolerance: Decimal = Field(Decimal("0.01"), alias="FEE_ALLOCATION_TOLERANCE", ge=0)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def cors_origin_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
