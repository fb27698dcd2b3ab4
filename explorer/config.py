# explorer/config.py
from dataclasses import dataclass, field
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [v.strip() for v in str(value).split(",") if v and v.strip()]


@dataclass(frozen=True)
class LockoutPolicy:
    """Failed-login thresholds used by the lockout guard."""

    max_failed_attempts: int = 5
    lockout_minutes: int = 15


@dataclass(frozen=True)
class OidcConfig:
    """OIDC behaviour consumed by identity resolution."""

    issuer: Optional[str] = None
    auto_create_users: bool = True
    admin_groups: List[str] = field(default_factory=list)
    require_email_verified: bool = False


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./data/explorer.db"
    secret_key: str = "change-me"
    env: Literal["dev", "stage", "prod"] = "dev"
    debug: bool = False
    log_level: str = "INFO"
    access_log: bool = True
    sql_echo: bool = False
    auto_init_db: bool = True

    # Authentication
    auth_enabled: bool = True
    auth_mode: Literal["local", "oidc", "both"] = "both"
    auth_max_failed: int = 5
    auth_lock_minutes: int = 15
    password_hash_iterations: int = 210_000
    auth_admin_email: Optional[str] = None
    auth_admin_password: Optional[str] = None

    # OIDC (claims are verified upstream; only mapping rules live here)
    oidc_issuer: Optional[str] = None
    oidc_auto_create_users: bool = True
    oidc_admin_groups: str = ""
    oidc_require_email_verified: bool = False

    # Storage scoping
    volume_root: str = "/mnt"
    user_volumes: bool = False

    @property
    def is_dev(self) -> bool:
        return self.env == "dev" or self.debug is True

    def lockout_policy(self) -> LockoutPolicy:
        return LockoutPolicy(
            max_failed_attempts=self.auth_max_failed,
            lockout_minutes=self.auth_lock_minutes,
        )

    def oidc_config(self) -> OidcConfig:
        return OidcConfig(
            issuer=(self.oidc_issuer or "").strip() or None,
            auto_create_users=self.oidc_auto_create_users,
            admin_groups=_split_csv(self.oidc_admin_groups),
            require_email_verified=self.oidc_require_email_verified,
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
