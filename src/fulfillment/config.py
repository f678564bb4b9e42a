from typing import Union

from pydantic import Field, PostgresDsn, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerDescriptionSettings(BaseSettings):
    API_STR: str = "/api/v1"

    REST_SERVICE_NAME: str = "fulfillment"
    REST_SERVICE_DESCRIPTION: str = "Allocates stock to orders and packs it into weight-limited shipments"
    REST_SERVICE_VERSION: str = "0.1.0"


class DataSettings(BaseSettings):
    DB_URI: Union[PostgresDsn, str] = Field(
        validation_alias="DATABASE_URL",
        default="sqlite+aiosqlite:///:memory:",
    )
    ECHO_SQL: bool = Field(validation_alias="ECHO_SQL", default=False)


class MessageBrokerSettings(BaseSettings):
    REDIS_URI: Union[RedisDsn, str] = Field(
        validation_alias="REDIS_URL",
        default="redis://localhost:6379/0",
    )


class PackingSettings(BaseSettings):
    MAX_PACKAGE_MASS_G: int = Field(validation_alias="MAX_PACKAGE_MASS_G", default=1800, gt=0)
    STRATEGY: str = Field(validation_alias="PACKING_STRATEGY", default="greedy_first_fit")
    BATCH_THRESHOLD: int = Field(validation_alias="BATCH_THRESHOLD", default=100, gt=0)
    BATCH_SIZE: int = Field(validation_alias="BATCH_SIZE", default=50, gt=0)
    MAX_QUANTITY: int = Field(validation_alias="MAX_QUANTITY", default=10_000_000, gt=0)


class Settings(BaseSettings):
    DEBUG: bool = Field(validation_alias="DEBUG", default=True)
    LOG_LEVEL: str = Field(validation_alias="LOG_LEVEL", default="INFO")

    desc: ServerDescriptionSettings = ServerDescriptionSettings()
    data: DataSettings = DataSettings()
    broker: MessageBrokerSettings = MessageBrokerSettings()
    packing: PackingSettings = PackingSettings()

    model_config = SettingsConfigDict(case_sensitive=True)
