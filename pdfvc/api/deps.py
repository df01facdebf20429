# pdfvc/api/deps.py
import hmac

from fastapi import Depends, Header

from pdfvc.core.config import settings
from pdfvc.core.crypto import CredentialSigner
from pdfvc.core.errors import Unauthorized
from pdfvc.core.keys import KeyResolver
from pdfvc.services.credentials import CredentialRegistry
from pdfvc.services.issuance import IssuanceCoordinator
from pdfvc.services.ledger import CreditLedger
from pdfvc.services.tenants import TenantDirectory
from pdfvc.services.verification import VerificationService


def api_key_header(
    x_api_key: str | None = Header(None),
    authorization: str | None = Header(None),
) -> str:
    """API key del tenant: cabecera x-api-key o Authorization: Bearer."""
    if x_api_key and x_api_key.strip():
        return x_api_key.strip()
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    raise Unauthorized("Missing API key (x-api-key or Authorization: Bearer)")


def require_admin(x_admin_secret: str | None = Header(None)) -> None:
    if not settings.admin_secret or not x_admin_secret:
        raise Unauthorized("Admin secret required")
    if not hmac.compare_digest(x_admin_secret.encode(), settings.admin_secret.encode()):
        raise Unauthorized("Admin secret required")


def get_key_resolver() -> KeyResolver:
    return KeyResolver.from_settings(settings)


def get_tenants() -> TenantDirectory:
    return TenantDirectory()


def get_ledger() -> CreditLedger:
    return CreditLedger()


def get_registry() -> CredentialRegistry:
    return CredentialRegistry()


def get_coordinator(resolver: KeyResolver = Depends(get_key_resolver)) -> IssuanceCoordinator:
    signer = CredentialSigner(
        resolver,
        issuer_did=settings.issuer_did,
        validity_seconds=settings.vc_validity_days * 24 * 60 * 60,
    )
    return IssuanceCoordinator(signer)


def get_verifier(resolver: KeyResolver = Depends(get_key_resolver)) -> VerificationService:
    return VerificationService(resolver, issuer_did=settings.issuer_did)
