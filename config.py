import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    database_url: str = ""
    database_name: str = ""
    frontend_url: str = "http://localhost:3000"
    # "development" exposes internal error details in 500 responses
    environment: str = "production"
    port: int = 8000
    log_level: str = "INFO"

    @property
    def debug(self) -> bool:
        return self.environment == "development"


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "").strip(),
        database_name=os.getenv("DATABASE_NAME", "").strip(),
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000").strip(),
        environment=os.getenv("ENVIRONMENT", "production").strip().lower(),
        port=int(os.getenv("PORT", 8000)),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
    )
