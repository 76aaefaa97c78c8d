from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="VITALS_", extra="ignore")

    port: int = 8010
    service_name: str = Field(default="vitals_service")
    environment: str = Field(default="development")

    crux_api_key: str | None = Field(default=None)
    crux_api_url: str = Field(default="https://chromeuxreport.googleapis.com/v1/records:queryRecord")

    field_data_timeout_s: float = Field(default=5.0, gt=0)
    prefer_phone_field: bool = Field(default=True)

    user_agent: str = Field(default="Web-Vitals-Reconciler/1.0")

    def is_development(self) -> bool:
        return self.environment.lower() == "development"


settings = Settings()
