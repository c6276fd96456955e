from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Challan numbers look like CH-202503-001
    challan_number_prefix: str = Field("CH", alias="CHALLAN_NUMBER_PREFIX")
    challan_number_padding: int = Field(3, alias="CHALLAN_NUMBER_PADDING")
    first_challan_due_days: int = Field(15, alias="FIRST_CHALLAN_DUE_DAYS")
    critical_overdue_days: int = Field(30, alias="CRITICAL_OVERDUE_DAYS")

    default_reminder_template: Optional[str] = Field(
        "Payment reminder for challan {challan_number}", alias="DEFAULT_REMINDER_TEMPLATE"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
