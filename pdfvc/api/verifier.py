from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from pdfvc.api.deps import get_registry, get_verifier
from pdfvc.core.config import settings
from pdfvc.core.errors import NotFound
from pdfvc.core.keys import KeyResolver, StaticKeySource, expand_kid, public_jwk_dict
from pdfvc.services.credentials import CredentialRegistry
from pdfvc.services.verification import VerificationService

router = APIRouter()
did_router = APIRouter()


class VerifyInput(BaseModel):
    jwt: str


@router.post("/verify")
async def verify_token(body: VerifyInput, verifier: VerificationService = Depends(get_verifier)):
    # Siempre 200: un token inválido es un resultado, no un error del servidor
    res = await verifier.verify_credential(body.jwt)
    return res.model_dump(exclude_none=True)


@router.get("/scan")
async def scan_by_cid(cid: str = Query(...), verifier: VerificationService = Depends(get_verifier)):
    res = await verifier.verify_by_cid(cid)
    return res.model_dump(exclude_none=True)


@router.get("/public/credential")
async def public_credential(cid: str = Query(...), registry: CredentialRegistry = Depends(get_registry)):
    """Metadatos mínimos para comparar el hash en local; el PDF nunca se sube."""
    cred = await registry.get(cid)
    if cred is None:
        raise NotFound()
    return JSONResponse(
        {
            "cid": cred.cid,
            "sha256": cred.sha256,
            "status": cred.status,
            "doc_type": cred.doc_type,
            "issued_at": cred.issued_at.isoformat(),
            "revoked_at": cred.revoked_at.isoformat() if cred.revoked_at else None,
        },
        headers={"Cache-Control": "no-store"},
    )


@did_router.get("/.well-known/did.json")
async def did_document():
    """Documento did:web del emisor con su clave pública Ed25519."""
    resolver = KeyResolver.from_settings(settings)
    static = next((s for s in resolver.sources if isinstance(s, StaticKeySource)), None)
    if static is None:
        raise NotFound("No public key configured")

    did = settings.issuer_did
    kid = expand_kid(did, static.kid or settings.default_kid)
    return {
        "@context": ["https://www.w3.org/ns/did/v1", "https://w3id.org/security/suites/jws-2020/v1"],
        "id": did,
        "verificationMethod": [{
            "id": kid,
            "type": "JsonWebKey2020",
            "controller": did,
            "publicKeyJwk": public_jwk_dict(static.public_key),
        }],
        "assertionMethod": [kid],
        "authentication": [kid],
    }
