"""Application settings and configuration."""

from decimal import Decimal
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "reader-rewards-ledger"
    env: str = "development"
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    allowed_origins: str = "*"
    seed_demo_data: bool = False
    demo_password: str = "change-me-please"

    # Reward amounts (kwacha)
    currency_symbol: str = "K"
    daily_reward_amount: Decimal = Decimal("5.00")
    read_reward_amount: Decimal = Decimal("0.20")
    comment_reward_amount: Decimal = Decimal("0.20")
    post_approved_reward_amount: Decimal = Decimal("10.00")
    referral_bonus_amount: Decimal = Decimal("50.00")

    # Withdrawal policy
    activity_withdrawal_minimum: Decimal = Decimal("1000")
    referral_withdrawal_minimum: Decimal = Decimal("300")
    withdrawal_maximum: Decimal = Decimal("10000")

    # Accounts
    # Reserved for seeded administrators; public sign-up refuses them
    admin_emails: list[str] = Field(default_factory=lambda: ["admin@anp.com"])
    invite_code_required: bool = True
    invite_code_length: int = 8
    min_password_length: int = 6
    referral_code_length: int = 8

    def format_amount(self, amount: Decimal) -> str:
        return f"{self.currency_symbol}{amount:,.2f}"


# Global settings instance
settings = Settings()
