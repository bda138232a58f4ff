"""
Configuration management for the Hacienda document broker
"""
import secrets
from typing import List, Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Project info
    PROJECT_NAME: str = "Hacienda Electronic Document Broker"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"

    # CORS
    BACKEND_CORS_ORIGINS: str = ""

    def get_cors_origins(self) -> List[str]:
        """Get CORS origins as a list"""
        if not self.BACKEND_CORS_ORIGINS:
            return []
        return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]

    # Database
    DATABASE_URL: str = "sqlite:///./documents.db"
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_POOL_RECYCLE: int = 3600
    AUTO_CREATE_TABLES: bool = True

    # Hacienda identity provider and reception API
    HACIENDA_ENVIRONMENT: str = "development"  # development or production
    HACIENDA_IDP_URL_DEV: str = "https://idp.comprobanteselectronicos.go.cr/auth/realms/rut-stag/protocol/openid-connect"
    HACIENDA_IDP_URL_PROD: str = "https://idp.comprobanteselectronicos.go.cr/auth/realms/rut/protocol/openid-connect"
    HACIENDA_CLIENT_ID_DEV: str = "api-stag"
    HACIENDA_CLIENT_ID_PROD: str = "api-prod"
    HACIENDA_API_URL_DEV: str = "https://api-sandbox.comprobanteselectronicos.go.cr/recepcion/v1"
    HACIENDA_API_URL_PROD: str = "https://api.comprobanteselectronicos.go.cr/recepcion/v1"
    HACIENDA_USERNAME: str = ""
    HACIENDA_PASSWORD: str = ""
    HACIENDA_TIMEOUT: float = 5.0

    # Callback URL Hacienda posts verdicts to (if supported)
    HACIENDA_CALLBACK_URL: Optional[str] = None
    # Shared secret the callback must carry (X-Callback-Token header or ?token=).
    # Callbacks are refused while it is empty.
    HACIENDA_CALLBACK_TOKEN: str = ""

    # Public taxpayer lookup
    TAXPAYER_API_URL: str = "https://api.hacienda.go.cr/fe/ae"
    TAXPAYER_TIMEOUT: float = 5.0

    # Signing: none, simulated or p12
    SIGNING_MODE: str = "simulated"
    SIGNING_CERTIFICATE_ID: Optional[int] = None
    SIGNATURE_POLICY_URL: str = (
        "https://cdn.comprobanteselectronicos.go.cr/xml-schemas/"
        "Resoluci%C3%B3n_General_sobre_disposiciones_t%C3%A9cnicas_comprobantes_electr%C3%B3nicos_para_efectos_tributarios.pdf"
    )

    # Encryption
    ENCRYPTION_KEY: str = secrets.token_urlsafe(32)

    # File storage
    MAX_CERTIFICATE_SIZE: int = 5 * 1024 * 1024  # 5MB

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"
    AUDIT_LOG_FILE: Optional[str] = None

    model_config = ConfigDict(
        env_file=[".env.local", ".env"],
        case_sensitive=True
    )

    @property
    def is_production(self) -> bool:
        return self.HACIENDA_ENVIRONMENT == "production"

    @property
    def hacienda_idp_url(self) -> str:
        return self.HACIENDA_IDP_URL_PROD if self.is_production else self.HACIENDA_IDP_URL_DEV

    @property
    def hacienda_client_id(self) -> str:
        return self.HACIENDA_CLIENT_ID_PROD if self.is_production else self.HACIENDA_CLIENT_ID_DEV

    @property
    def hacienda_api_url(self) -> str:
        return self.HACIENDA_API_URL_PROD if self.is_production else self.HACIENDA_API_URL_DEV


settings = Settings()
