import json

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AliasChoices, Field


class Settings(BaseSettings):
    # Base de datos
    db_url: str = Field("sqlite+aiosqlite:///./pdfvc.sqlite3", alias="DB_URL")

    # Identidad del emisor
    issuer_did: str = Field("did:web:gecorpid.com", alias="ISSUER_DID")
    issuer_kid: str | None = Field(None, alias="ISSUER_KID")

    # Claves Ed25519 en formato JWK (JSON). ISSUER_PRIVATE_JWK se mantiene por compatibilidad
    private_jwk: str | None = Field(
        None, validation_alias=AliasChoices("PRIVATE_JWK", "ISSUER_PRIVATE_JWK")
    )
    public_jwk: str | None = Field(None, alias="PUBLIC_JWK")

    # URL pública del sitio; verify_url = site_url + verify_path.
    # Con un front propio que sirva /v/{cid}: VERIFY_PATH=/v/{cid}
    site_url: str = Field("http://127.0.0.1:8000", alias="SITE_URL")
    verify_path: str = Field("/api/scan?cid={cid}", alias="VERIFY_PATH")

    # Emisión
    ticket_ttl_minutes: int = Field(30, alias="TICKET_TTL_MINUTES")
    vc_validity_days: int = Field(365, alias="VC_VALIDITY_DAYS")

    # === did:web ===
    use_did_web: bool = Field(True, alias="USE_DID_WEB")
    did_web_timeout: float = Field(5.0, alias="DID_WEB_TIMEOUT")

    # Administración
    admin_secret: str | None = Field(None, alias="ADMIN_SECRET")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,  # permite defaults si no hay variable de entorno
    )

    @property
    def default_kid(self) -> str:
        """kid único para firmar y publicar en did.json.

        ISSUER_KID; si no, el kid de PRIVATE_JWK; si no, el de PUBLIC_JWK; si no,
        '{issuer_did}#key-1'.
        """
        return (
            self.issuer_kid
            or _jwk_kid(self.private_jwk)
            or _jwk_kid(self.public_jwk)
            or f"{self.issuer_did}#key-1"
        )

    def verify_url(self, cid: str) -> str:
        return self.site_url.rstrip("/") + self.verify_path.format(cid=cid)


def _jwk_kid(raw: str | None) -> str | None:
    try:
        kid = json.loads(raw).get("kid") if raw else None
    except (ValueError, AttributeError):
        return None
    return kid if isinstance(kid, str) and kid else None


settings = Settings()
