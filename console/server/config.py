"""
Console server configuration.

Loaded from environment variables with NIGHTSHIFT_CONSOLE_ prefix.
"""

from pydantic_settings import BaseSettings


class ConsoleConfig(BaseSettings):
    model_config = {"env_prefix": "NIGHTSHIFT_CONSOLE_"}

    # Server
    host: str = "0.0.0.0"
    port: int = 8422

    # Run the scheduler's built-in tick loop inside the console process
    run_tick_loop: bool = True

    # CORS
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:3001"]
