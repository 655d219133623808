"""
Connection configuration and environment settings.

``Config`` is the immutable record a ``Client`` is built from. Zero / empty
optional fields mean "use the package default" below.
"""

from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_OPEN_CONNS = 10
MAX_IDLE_CONNS = 5
CONN_MAX_LIFETIME = 30.0  # seconds
CONN_MAX_IDLE_TIME = 1.0  # seconds

DEFAULT_MIGRATION_DIR = "./database/migrations"
DEFAULT_MIGRATIONS_TABLE = "schema_migrations"


class Config(BaseModel):
    """Database connection, pool and migration settings for one client."""

    model_config = ConfigDict(frozen=True)

    host: str = ""
    port: int = 3306
    user: str = ""
    password: str = ""
    name: str = ""

    tls: bool = False
    timeout: str = ""
    charset: str = ""
    collation: str = ""
    parse_time: bool = False

    migration_dir: str = ""
    migrations_table: str = ""

    max_open_conns: int = 0
    max_idle_conns: int = 0
    conn_max_lifetime: float = 0.0
    conn_max_idle_time: float = 0.0

    # Route through the sentry-instrumented driver instead of the plain one.
    sentry_enabled: bool = False

    def effective_max_open_conns(self) -> int:
        return self.max_open_conns if self.max_open_conns > 0 else MAX_OPEN_CONNS

    def effective_max_idle_conns(self) -> int:
        return self.max_idle_conns if self.max_idle_conns > 0 else MAX_IDLE_CONNS

    def effective_conn_max_lifetime(self) -> float:
        if self.conn_max_lifetime > 0:
            return self.conn_max_lifetime
        return CONN_MAX_LIFETIME

    def effective_conn_max_idle_time(self) -> float:
        if self.conn_max_idle_time > 0:
            return self.conn_max_idle_time
        return CONN_MAX_IDLE_TIME

    def effective_migration_dir(self) -> str:
        return self.migration_dir or DEFAULT_MIGRATION_DIR

    def effective_migrations_table(self) -> str:
        return self.migrations_table or DEFAULT_MIGRATIONS_TABLE


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    LOG_LEVEL: str = "INFO"
    SENTRY_DSN: str | None = None

    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "root"
    DB_PASSWORD: str = ""
    DB_NAME: str = ""
    DB_TLS: bool = False
    DB_TIMEOUT: str = ""
    DB_CHARSET: str = ""
    DB_COLLATION: str = ""
    DB_PARSE_TIME: bool = False

    DB_MIGRATION_DIR: str = ""
    DB_MIGRATIONS_TABLE: str = ""

    DB_MAX_OPEN_CONNS: int = 0
    DB_MAX_IDLE_CONNS: int = 0
    DB_CONN_MAX_LIFETIME: float = 0.0
    DB_CONN_MAX_IDLE_TIME: float = 0.0

    DB_SENTRY_ENABLED: bool = False

    def db_config(self) -> Config:
        return Config(
            host=self.DB_HOST,
            port=self.DB_PORT,
            user=self.DB_USER,
            password=self.DB_PASSWORD,
            name=self.DB_NAME,
            tls=self.DB_TLS,
            timeout=self.DB_TIMEOUT,
            charset=self.DB_CHARSET,
            collation=self.DB_COLLATION,
            parse_time=self.DB_PARSE_TIME,
            migration_dir=self.DB_MIGRATION_DIR,
            migrations_table=self.DB_MIGRATIONS_TABLE,
            max_open_conns=self.DB_MAX_OPEN_CONNS,
            max_idle_conns=self.DB_MAX_IDLE_CONNS,
            conn_max_lifetime=self.DB_CONN_MAX_LIFETIME,
            conn_max_idle_time=self.DB_CONN_MAX_IDLE_TIME,
            sentry_enabled=self.DB_SENTRY_ENABLED,
        )


def get_settings() -> Settings:
    """Read settings from the environment (and .env) at call time."""
    return Settings()  # type: ignore
