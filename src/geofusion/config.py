"""Library settings, loaded from ``GEOFUSION_*`` environment variables."""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="GEOFUSION_", env_file=".env", env_file_encoding="utf-8"
    )

    # output encoding of geometry columns
    dialect: Literal["wkb", "ewkb"] = "ewkb"
    byte_order: Literal["big", "little"] = "little"

    # auto-close open polygon rings on decode instead of failing the row
    close_rings: bool = False

    # delegate algorithms to shapely (GEOS) where it provides them
    use_engine: bool = False

    # batch execution
    max_workers: Optional[int] = Field(default=None, ge=1)
    chunk_size: int = Field(default=4096, ge=1)

    # R-tree fan-out
    node_capacity: int = Field(default=16, ge=2)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
