from pathlib import Path
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices

ROOT = Path(__file__).resolve().parents[2]
load_dotenv(ROOT / ".env", override=False)


class Settings(BaseSettings):
    # ───────────────── GCP / Firestore / Firebase ───────────────
    gcp_project: str | None = Field(
        None,
        validation_alias=AliasChoices(
            "GCP_PROJECT_ID",
            "GCLOUD_PROJECT",
            "GOOGLE_CLOUD_PROJECT",
            "FIREBASE_PROJECT_ID",
        ),
    )
    gcp_credentials_path: str | None = Field(
        None,
        validation_alias=AliasChoices("GOOGLE_APPLICATION_CREDENTIALS", "GCP_CREDENTIALS")
    )

    # ───────────────── Internal trigger/scheduler bridge ─────────
    # Shared secret sent as `x-proxy-key` by the event bridge and scheduler.
    proxy_key: str | None = Field(None, validation_alias="PROXY_KEY")

    # ───────────────── Notifications ─────────────────────────────
    deep_link_scheme: str = Field("ragestate", validation_alias="DEEP_LINK_SCHEME")
    aggregation_window_min: int = Field(5, validation_alias="AGGREGATION_WINDOW_MINUTES")
    aggregation_limit: int = Field(10, validation_alias="AGGREGATION_LIMIT")
    mark_read_default: int = 100
    mark_read_hard_cap: int = 300

    # ───────────────── Devices ───────────────────────────────────
    device_stale_days: int = Field(30, validation_alias="DEVICE_STALE_DAYS")
    prune_batch_size: int = Field(300, validation_alias="PRUNE_BATCH_SIZE")

    # ───────────────── Resend ────────────────────────────────────
    resend_api_key: str | None = Field(None, validation_alias="RESEND_API_KEY")
    resend_domain: str = Field("ragestate.com", validation_alias="RESEND_DOMAIN")
    resend_from: str | None = Field(None, validation_alias="RESEND_FROM")
    support_email: str | None = Field(None, validation_alias="SUPPORT_EMAIL")

    ui_origin: str = Field(
        "http://localhost:3000",
        validation_alias=AliasChoices("UI_ORIGIN")
    )

    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")

    model_config = SettingsConfigDict(case_sensitive=False, env_file='.env', extra='allow')


settings = Settings()

import os as _os, sys as _sys
if settings.gcp_credentials_path:
    _os.environ.setdefault("GOOGLE_APPLICATION_CREDENTIALS", settings.gcp_credentials_path)
else:
    print("[notify] WARNING: GOOGLE_APPLICATION_CREDENTIALS not set; relying on ADC.", file=_sys.stderr)
