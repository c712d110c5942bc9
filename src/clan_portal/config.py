"""Application settings loaded from environment variables / .env file."""

from pydantic_settings import BaseSettings, SettingsConfigDict

from clan_common.identity.roles import RoleConfig


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 1440
    discord_client_id: str = ""
    discord_client_secret: str = ""
    discord_bot_token: str = ""
    discord_guild_id: str = ""
    discord_role_high_staff: str = ""
    discord_role_main: str = ""
    discord_role_test: str = ""
    discord_role_newbie: str = ""
    discord_timeout_seconds: float = 5.0
    next_rank_days: int = 30
    public_base_url: str = "http://localhost:8100"
    app_env: str = "development"
    app_port: int = 8100
    app_host: str = "0.0.0.0"

    def role_config(self) -> RoleConfig:
        return RoleConfig(
            high_staff=self.discord_role_high_staff,
            main=self.discord_role_main,
            test=self.discord_role_test,
            newbie=self.discord_role_newbie,
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
