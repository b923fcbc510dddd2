from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://tasktrack:tasktrack@db:5432/tasktrack"
  environment: str = "development"  # development | production
  app_version: str = "v2026-10-19"
  build_sha: str = "dev"

  jwt_secret: str = "dev-secret-change-me"
  jwt_algorithm: str = "HS256"
  jwt_audience: str | None = None
  jwt_issuer: str | None = None

  log_level: str = "INFO"
  log_format: str = "dev"  # dev | json

  # Indexed queries are cheaper than scans, so scans get the smaller cap.
  query_page_cap: int = 100
  scan_page_cap: int = 50
  default_page_size: int = 50
  assign_batch_cap: int = 25
  title_max_length: int = 200
  description_max_length: int = 2000

  admin_groups: str = "admin,Admins"
  store_timeout_seconds: float = 10.0
  directory_timeout_seconds: float = 10.0
  stream_poll_interval_seconds: float = 1.0

  email_provider: str = "local"  # local | smtp
  email_from: str = "noreply@example.com"
  smtp_host: str | None = None
  smtp_port: int = 587
  smtp_username: str | None = None
  smtp_password: str | None = None
  smtp_starttls: bool = True

  cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
  trusted_hosts: str = "localhost,127.0.0.1,api,test"

  def is_production(self) -> bool:
    return self.environment.strip().lower() == "production"

  def admin_group_set(self) -> frozenset[str]:
    return frozenset(g.strip() for g in self.admin_groups.split(",") if g.strip())

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def trusted_host_list(self) -> list[str]:
    return [h.strip() for h in self.trusted_hosts.split(",") if h.strip()]


settings = Settings()
