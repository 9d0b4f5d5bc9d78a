from functools import lru_cache
import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class Settings(BaseModel):
    env: str = Field(default="dev", alias="ENV")

    database_url: str = Field(default="", alias="DATABASE_URL")
    postgres_db: str = Field(default="studio", alias="POSTGRES_DB")
    postgres_user: str = Field(default="studio", alias="POSTGRES_USER")
    postgres_password: str = Field(default="studio", alias="POSTGRES_PASSWORD")
    postgres_host: str = Field(default="localhost", alias="POSTGRES_HOST")
    postgres_port: int = Field(default=5432, alias="POSTGRES_PORT")

    jwt_secret: str = Field(default="secret", alias="JWT_SECRET")
    jwt_expire_min: int = Field(default=43200, alias="JWT_EXPIRE_MIN")

    max_participants_limit: int = Field(default=20, alias="MAX_PARTICIPANTS_LIMIT")
    min_session_minutes: int = Field(default=15, alias="MIN_SESSION_MINUTES")
    lock_timeout_ms: int = Field(default=250, alias="LOCK_TIMEOUT_MS")
    availability_timeout_ms: int = Field(default=300, alias="AVAILABILITY_TIMEOUT_MS")

    studio_open_hour: int = Field(default=6, alias="STUDIO_OPEN_HOUR")
    studio_close_hour: int = Field(default=22, alias="STUDIO_CLOSE_HOUR")

    reconcile_interval_minutes: int = Field(default=15, alias="RECONCILE_INTERVAL_MINUTES")

    class Config:
        populate_by_name = True

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg2://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def lock_timeout_seconds(self) -> float:
        return self.lock_timeout_ms / 1000

    @property
    def studio_hours_per_day(self) -> int:
        return max(self.studio_close_hour - self.studio_open_hour, 0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_dotenv(override=False)
    return Settings(**os.environ)
