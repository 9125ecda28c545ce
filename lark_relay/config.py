from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_STATE_DIR = Path.home() / ".openclaw"


def _split_csv(value: str) -> set[str]:
    return {item.strip() for item in value.split(",") if item.strip()}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LARK_RELAY_", env_file=".env", extra="ignore")

    # Store
    queue_db_path: str = str(DEFAULT_STATE_DIR / "lark-queue.db")
    media_dir: str = str(DEFAULT_STATE_DIR / "media" / "lark-inbound")

    # Lark
    lark_app_id: str = ""
    lark_app_secret: str = ""
    lark_domain: str = "lark"
    lark_verification_token: str = ""
    lark_encrypt_key: str = ""
    dm_allowlist: str = ""
    group_allowlist: str = ""
    group_require_mention: bool = True

    # Gateway (processing backend)
    gateway_url: str = "http://127.0.0.1:18789"
    gateway_token: str = ""
    agent_id: str = "main"
    outbound_token: str = ""

    # Consumers
    consumers_enabled: bool = True
    inbound_batch_size: int = 3
    outbound_batch_size: int = 5
    poll_interval_seconds: float = 0.5
    backend_timeout_seconds: float = 300.0
    maintenance_interval_seconds: float = 3600.0

    log_level: str = "INFO"

    @property
    def resolved_queue_db_path(self) -> Path:
        return Path(self.queue_db_path).expanduser()

    @property
    def resolved_media_dir(self) -> Path:
        return Path(self.media_dir).expanduser()

    @property
    def dm_allowlist_ids(self) -> set[str]:
        return _split_csv(self.dm_allowlist)

    @property
    def group_allowlist_ids(self) -> set[str]:
        return _split_csv(self.group_allowlist)

    @property
    def lark_configured(self) -> bool:
        return bool(self.lark_app_id and self.lark_app_secret)


settings = Settings()
