from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    booking_api_base_url: str = "http://localhost:4000"
    booking_api_timeout_seconds: float = 30.0

    # Bridge used to confirm payments with the processor: "stripe" or "sandbox".
    payment_bridge: str = "sandbox"
    stripe_secret_key: str | None = None

    checkout_poll_interval_seconds: float = 2.0
    checkout_poll_max_attempts: int = 30
    checkout_timeout_grace_seconds: float = 3.0

    database_url: str = "sqlite:///./checkout.db"
    database_pool_size: int = 5
    database_max_overflow: int = 5
    database_pool_timeout_seconds: int = 30
    database_pool_recycle_seconds: int = 1800

    env: str = "dev"
    log_level: str = "info"

    @property
    def checkout_poll_budget_seconds(self) -> float:
        return self.checkout_poll_interval_seconds * self.checkout_poll_max_attempts


settings = Settings()
