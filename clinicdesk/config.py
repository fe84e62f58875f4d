from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreAdapter(Enum):
    POSTGREST = "postgrest"
    MEMORY = "memory"


class SupabaseConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SUPABASE_", env_file=".env", extra="ignore")

    url: str = ""
    service_key: str = ""
    schema_name: str = "public"
    adapter: StoreAdapter = StoreAdapter.POSTGREST
    timeout: float = 30.0


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    clinic_timezone: str = "UTC"
    supabase: SupabaseConfig = Field(default_factory=lambda: SupabaseConfig())
