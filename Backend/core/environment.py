from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class SQLConfig(BaseModel):
    driver: str
    username: str | None = None
    password: str | None = None
    host: str | None = None
    port: int | None = None
    database: str
    additional_config: dict[str, str] | None = {}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENVIRONMENT: str = "development"

    # Workflow defaults
    DEFAULT_WORKFLOW_STATE: str = "draft"
    UNIVERSAL_PERMISSION: str = "admin_all"

    # Strings longer than this are inferred as long text
    LONG_TEXT_THRESHOLD: int = 500

    # Database config
    DB_DRIVER: str = "postgresql+asyncpg"
    PG_DB_HOST: str = "localhost"
    PG_DB_NAME: str = "formflow"
    PG_DB_PASSWORD: str = ""
    PG_DB_USER: str = "postgres"
    PG_DB_PORT: int = 5432

    @property
    def PG_DB_CONFIG(self) -> SQLConfig:
        additional_config: dict = {}

        return SQLConfig(
            driver=self.DB_DRIVER,
            host=self.PG_DB_HOST,
            port=self.PG_DB_PORT,
            database=self.PG_DB_NAME,
            username=self.PG_DB_USER,
            password=self.PG_DB_PASSWORD,
            additional_config=additional_config,
        )


settings = Settings()

__all__ = ["settings"]
