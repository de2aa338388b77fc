import os
import logging
from dataclasses import dataclass
from typing import Mapping, Optional


logger = logging.getLogger("config")


TOKEN_WARNING_DAYS = 7
TOKEN_DEFAULT_EXPIRES_DAYS = 60
EVENT_SYNC_PAST_DAYS = 30
CLEANUP_DEFAULT_DAYS_TO_KEEP = 90
EXTERNAL_CALL_TIMEOUT = 60.0

EVENTS_DEFAULT_PAGE_SIZE = 50
EVENTS_MAX_PAGE_SIZE = 100
EVENTS_MAX_SEARCH_LENGTH = 200

SYNC_REQUESTS_PER_DAY = 10
TOKEN_REFRESH_PER_PAGE_PER_DAY = 24
WEBHOOK_WINDOW_MS = 1000

DEFAULT_MONGODB_DB = "eventagg"
DEFAULT_IMAGES_BUCKET = "event-images"
DEFAULT_WEBHOOK_VERIFY_TOKEN = "verify_me"
VAULT_TOKEN_FILE = "/vault/token/token"


class ConfigError(Exception):
    pass


@dataclass
class AppCredentials:
    app_id: str
    app_secret: str


@dataclass
class EventAggConfig:
    mongodb_url: str
    mongodb_db: str = DEFAULT_MONGODB_DB
    vault_endpoint: Optional[str] = None
    vault_token: Optional[str] = None
    facebook_app_id: Optional[str] = None
    facebook_app_secret: Optional[str] = None
    webhook_verify_token: str = DEFAULT_WEBHOOK_VERIFY_TOKEN
    oauth_callback_url: Optional[str] = None
    web_app_url: Optional[str] = None
    sync_token: Optional[str] = None
    resend_api_key: Optional[str] = None
    alert_email_from: str = "alerts@eventagg.local"
    alert_email_to: Optional[str] = None
    media_public_url: str = ""
    images_bucket: str = DEFAULT_IMAGES_BUCKET
    external_call_timeout: float = EXTERNAL_CALL_TIMEOUT

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "EventAggConfig":
        env = os.environ if env is None else env
        mongodb_url = env.get("MONGODB_URL")
        if not mongodb_url:
            raise ConfigError("MONGODB_URL is not set")

        vault_token = env.get("VAULT_TOKEN")
        vault_endpoint = env.get("VAULT_ENDPOINT")
        if vault_endpoint and not vault_token:
            token_file = env.get("VAULT_TOKEN_FILE", VAULT_TOKEN_FILE)
            try:
                with open(token_file, "r") as f:
                    vault_token = f.read().strip()
            except OSError as e:
                raise ConfigError(f"VAULT_ENDPOINT is set but no VAULT_TOKEN and cannot read {token_file}: {e}") from e

        timeout_str = env.get("EXTERNAL_CALL_TIMEOUT", "")
        try:
            timeout = float(timeout_str) if timeout_str else EXTERNAL_CALL_TIMEOUT
        except ValueError as e:
            raise ConfigError(f"EXTERNAL_CALL_TIMEOUT must be a number, got {timeout_str!r}") from e
        if timeout <= 0:
            raise ConfigError("EXTERNAL_CALL_TIMEOUT must be positive")

        return cls(
            mongodb_url=mongodb_url,
            mongodb_db=env.get("MONGODB_DB") or DEFAULT_MONGODB_DB,
            vault_endpoint=vault_endpoint,
            vault_token=vault_token,
            facebook_app_id=env.get("FACEBOOK_APP_ID"),
            facebook_app_secret=env.get("FACEBOOK_APP_SECRET"),
            webhook_verify_token=env.get("FACEBOOK_WEBHOOK_VERIFY_TOKEN") or DEFAULT_WEBHOOK_VERIFY_TOKEN,
            oauth_callback_url=env.get("OAUTH_CALLBACK_URL"),
            web_app_url=env.get("WEB_APP_URL"),
            sync_token=env.get("SYNC_TOKEN"),
            resend_api_key=env.get("RESEND_API_KEY"),
            alert_email_from=env.get("ALERT_EMAIL_FROM") or "alerts@eventagg.local",
            alert_email_to=env.get("ALERT_EMAIL_TO") or env.get("ADMIN_EMAIL"),
            media_public_url=(env.get("MEDIA_PUBLIC_URL") or "").rstrip("/"),
            images_bucket=env.get("EVENT_IMAGES_BUCKET") or DEFAULT_IMAGES_BUCKET,
            external_call_timeout=timeout,
        )

    def app_credentials(self) -> AppCredentials:
        if not self.facebook_app_id or not self.facebook_app_secret:
            raise ConfigError("FACEBOOK_APP_ID and FACEBOOK_APP_SECRET must be set")
        return AppCredentials(app_id=self.facebook_app_id, app_secret=self.facebook_app_secret)
