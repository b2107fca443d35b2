from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

DEFAULT_ENV_FILE = ".env"

# Levels both stdlib logging and uvicorn understand.
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def load_environment(env_file: str | Path | None = DEFAULT_ENV_FILE) -> bool:
    """
    Load KEY=VALUE pairs from `env_file` into os.environ.

    Existing environment values always win, so calling this more than once is
    a no-op after the first load. A missing file is not an error.
    """
    if not env_file:
        return False
    path = Path(env_file)
    if not path.is_file():
        return False
    return bool(load_dotenv(path, override=False))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=None, extra="ignore", frozen=True, populate_by_name=True
    )

    # Runtime
    environment: str = Field(default="development", validation_alias="APP_ENV")
    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    # 0 asks the OS for an ephemeral port.
    port: int = Field(default=3000, ge=0, le=65535, validation_alias="PORT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # Body parsing (defaults match the common 100kb parser limit)
    json_body_limit: int = Field(default=102400, gt=0, validation_alias="JSON_BODY_LIMIT")
    urlencoded_body_limit: int = Field(
        default=102400, gt=0, validation_alias="URLENCODED_BODY_LIMIT"
    )
    urlencoded_parameter_limit: int = Field(
        default=1000, gt=0, validation_alias="URLENCODED_PARAMETER_LIMIT"
    )

    # Route collections, as "package.module:attribute" import strings.
    users_routes: str | None = Field(default=None, validation_alias="USERS_ROUTES")
    news_routes: str | None = Field(default=None, validation_alias="NEWS_ROUTES")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, v: object) -> str:
        level = str(v or "").strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"must be one of {', '.join(LOG_LEVELS)}")
        return level

    # ---- helpers / derived flags ----
    @property
    def normalized_environment(self) -> str:
        v = (self.environment or "").strip().lower()
        if v in ("prod", "production"):
            return "production"
        if v in ("stage", "staging"):
            return "staging"
        if v in ("dev", "development"):
            return "development"
        if v in ("test", "testing"):
            return "test"
        return v or "development"

    @property
    def is_production(self) -> bool:
        return self.normalized_environment == "production"

    def to_log_safe_dict(self) -> dict[str, object]:
        return {
            "environment": self.normalized_environment,
            "host": self.host,
            "port": self.port,
            "log_level": self.log_level,
            "body_limits": {
                "json": self.json_body_limit,
                "urlencoded": self.urlencoded_body_limit,
                "urlencoded_parameters": self.urlencoded_parameter_limit,
            },
            "routes": {
                "users": self.users_routes or "not_implemented",
                "news": self.news_routes or "not_implemented",
            },
        }


def build_settings(**overrides: object) -> Settings:
    """
    Build Settings from the current environment, translating pydantic's
    ValidationError into a ConfigurationError naming the bad variables.
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        variables: list[str] = []
        problems: list[str] = []
        for err in e.errors():
            name = ".".join(str(x) for x in (err.get("loc") or ()))
            if name and name not in variables:
                variables.append(name)
            problems.append(f"{name or '?'}: {err.get('msg', 'invalid value')}")
        raise ConfigurationError(
            "Invalid configuration: " + "; ".join(problems), variables=variables
        ) from e


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_environment()
    return build_settings()


def reset_settings_cache() -> None:
    get_settings.cache_clear()
