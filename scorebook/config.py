from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Applied when a match is set up without an explicit overs limit
    default_overs_limit: Optional[int] = None
    max_wickets: int = 10

    log_level: str = "INFO"
    stream_keepalive_seconds: float = 1.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
