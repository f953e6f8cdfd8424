from pydantic_settings import BaseSettings
from typing import List, Optional
import os


class Settings(BaseSettings):
    env: str = "dev"
    secret_key: str = "change_me_super_secret"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 30
    refresh_token_expire_minutes: int = 60 * 24 * 30
    password_hash_rounds: int = 12
    database_url: str = "sqlite:///./controlai.sqlite3"
    backend_cors_origins: str = "http://localhost:5173"

    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Receipts
    receipts_dir: str = "receipts"
    verification_base_url: str = "https://controlai.com/verify"
    receipt_number_attempts: int = 5
    outbox_max_attempts: int = 5
    company_name: str = "ControlAI Vendas"
    company_document: str = "12.345.678/0001-90"
    company_address: str = "Rua Exemplo, 123 - Centro, Cidade - UF"

    # SMTP
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_secure: bool = False  # implicit TLS (port 465)
    smtp_starttls: bool = True
    smtp_user: Optional[str] = None
    smtp_pass: Optional[str] = None
    smtp_from: str = '"ControlAI Vendas" <vendas@controlai.com>'
    smtp_timeout: float = 30.0

    # Detached receipt signatures
    signing_enabled: bool = False
    signing_private_key_path: str = os.path.join("config", "keys", "private.pem")
    signing_public_key_path: str = os.path.join("config", "keys", "public.pem")
    signing_issuer: str = "ControlAI Vendas"

    @property
    def cors_origins(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        origins = self.backend_cors_origins
        return [origin.strip() for origin in origins.split(",") if origin.strip()]

    def verification_url(self, receipt_number: str) -> str:
        return f"{self.verification_base_url.rstrip('/')}/{receipt_number}"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
