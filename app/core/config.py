from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    # Tokens are issued by the campus identity service, not by this app
    auth_token_url: str = Field("/api/v1/auth/token", alias="AUTH_TOKEN_URL")

    # Attendance below this percentage flags a student as at risk
    attendance_risk_threshold: int = Field(75, alias="ATTENDANCE_RISK_THRESHOLD", gt=0, lt=100)
    bulk_max_concurrency: int = Field(5, alias="BULK_MAX_CONCURRENCY", ge=1)
    cascade_max_attempts: int = Field(3, alias="CASCADE_MAX_ATTEMPTS", ge=1)

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
