from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./newsroom_admin.db"

    # No fallback: the admin endpoint refuses to serve until this is set
    admin_password: str | None = None

    # Base URL of the deployed edge functions, e.g. https://<ref>.supabase.co/functions/v1
    functions_base_url: str = "http://localhost:54321/functions/v1"
    service_role_key: str | None = None

    # "pg_cron" mirrors configs into cron.job, "apscheduler" runs them in-process
    cron_backend: str = "pg_cron"
    cron_sync_on_startup: bool = True
    cron_request_timeout_ms: int = 60000

    log_level: str = "INFO"
    axiom_token: str | None = None
    axiom_dataset: str | None = None
    axiom_url: str = "https://api.axiom.co"
    axiom_org_id: str | None = None


settings = Settings()
