from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    api_base_url: str = "http://10.0.2.2/BeatWell/backend/api"
    server_timezone: str = "UTC"  # Zone the backend writes naive session expiries in

    # Remote gateway timeout settings (seconds)
    remote_timeout: float = 30.0
    remote_connect_timeout: float = 10.0

    # Local device storage
    data_dir: Path = Path.home() / ".beatwell"
    database_url: str = ""  # Defaults to sqlite under data_dir
    session_context_path: Path | None = None  # Defaults to data_dir/session.json

    # Auth settings
    session_ttl_days: int = 30  # Used only when the server omits expires_at
    bcrypt_rounds: int = 12

    # Read defaults
    meal_history_limit: int = 50
    daily_calorie_goal: int = 2000
    daily_water_goal: int = 8

    class Config:
        env_file = ".env"
        env_prefix = "BEATWELL_"

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_dir / 'beatwell.db'}"

    @property
    def resolved_session_context_path(self) -> Path:
        return self.session_context_path or self.data_dir / "session.json"


settings = Settings()
