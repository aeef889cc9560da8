from dotenv import load_dotenv
from functools import lru_cache
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import FrozenSet, Optional
import os


SYSTEM_DATABASES = frozenset({
    "master", "tempdb", "model", "msdb",
    "information_schema", "performance_schema", "mysql", "sys",
})


class Settings(BaseModel):
    """Deployment configuration shared by the resolver, registry and CRUD engine."""

    model_config = ConfigDict(frozen=True)

    app_database_url: str = "sqlite:///./tablegate.db"
    app_database_name: str = "APPDATA"
    data_database_url_template: str = "sqlite:///./{database}.db"

    allowed_databases: FrozenSet[str] = Field(default_factory=frozenset)
    system_databases: FrozenSet[str] = SYSTEM_DATABASES

    default_page_size: int = 100
    max_page_size: int = 1000

    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: float = 30.0

    secret_key: Optional[str] = None
    algorithm: str = "HS256"

    log_level: str = "INFO"
    debug: bool = False

    @model_validator(mode="after")
    def check_consistency(self):
        excluded = {self.app_database_name.lower()} | {name.lower() for name in self.system_databases}
        exposed = sorted(name for name in self.allowed_databases if name.lower() in excluded)
        if exposed:
            raise ValueError(f"Databases cannot be exposed through the generic surface: {exposed}")
        if "{database}" not in self.data_database_url_template:
            raise ValueError("DATA_DATABASE_URL_TEMPLATE must contain a '{database}' placeholder")
        if self.default_page_size < 1 or self.max_page_size < self.default_page_size:
            raise ValueError("MAX_PAGE_SIZE must be >= DEFAULT_PAGE_SIZE >= 1")
        return self

    def is_database_allowed(self, database_name: str) -> bool:
        return database_name in self.allowed_databases

    def database_url(self, database_name: str) -> str:
        return self.data_database_url_template.format(database=database_name)


def _split_list(raw: Optional[str]) -> FrozenSet[str]:
    if not raw:
        return frozenset()
    return frozenset(item.strip() for item in raw.split(",") if item.strip())


def settings_from_env() -> Settings:
    load_dotenv()

    values = {
        "allowed_databases": _split_list(os.getenv("ALLOWED_DATABASES")),
        "secret_key": os.getenv("SECRET_KEY"),
        "debug": os.getenv("DEBUG", "false").lower() in ("1", "true", "yes"),
    }
    optional = {
        "app_database_url": os.getenv("APP_DATABASE_URL"),
        "app_database_name": os.getenv("APP_DATABASE_NAME"),
        "data_database_url_template": os.getenv("DATA_DATABASE_URL_TEMPLATE"),
        "default_page_size": os.getenv("DEFAULT_PAGE_SIZE"),
        "max_page_size": os.getenv("MAX_PAGE_SIZE"),
        "pool_size": os.getenv("POOL_SIZE"),
        "max_overflow": os.getenv("POOL_MAX_OVERFLOW"),
        "pool_timeout": os.getenv("POOL_TIMEOUT"),
        "algorithm": os.getenv("ALGORITHM"),
        "log_level": os.getenv("LOG_LEVEL"),
    }
    values.update({key: value for key, value in optional.items() if value is not None})
    return Settings(**values)


@lru_cache
def get_settings() -> Settings:
    return settings_from_env()
