from __future__ import annotations

from pydantic import BaseModel


class Settings(BaseModel):
    app_name: str = "vaultgate"
    # "production" hides internal error detail from clients
    environment: str = "development"
    log_level: str = "INFO"

    # Database Configuration
    # Use a simple SQLite file by default; override via `database_url` in config or env
    database_url: str = "sqlite:///./vaultgate.db"

    # JWT Configuration
    jwt_secret: str = "dev-access-secret-change-me"
    jwt_issuer: str = "vaultgate"
    jwt_access_expiry: str = "15m"
    jwt_refresh_expiry: str = "7d"

    # Password hashing (argon2id)
    argon2_memory_cost: int = 65536
    argon2_time_cost: int = 3
    argon2_parallelism: int = 4

    # MFA
    mfa_issuer: str = "VaultGate"

    # Sharing
    frontend_url: str = "http://localhost:5173"
    share_download_url_ttl: int = 300

    # S3 / MinIO Configuration
    s3_endpoint_url: str = "http://localhost:9000"
    s3_region: str = "us-east-1"
    s3_access_key: str = "minioadmin"
    s3_secret_key: str = "minioadmin"
    s3_bucket: str = "vaultgate-files"
    s3_use_path_style: bool = True

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"
