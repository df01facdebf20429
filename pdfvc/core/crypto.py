# pdfvc/core/crypto.py
from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Sequence

import jwt

from pdfvc.core.keys import ALGORITHM, KeyResolver

VC_CONTEXT = "https://www.w3.org/2018/credentials/v1"
DOCUMENT_CREDENTIAL_TYPE = "DocumentHashCredential"


@dataclass(frozen=True)
class SignedToken:
    token: str
    jti: str
    expires_at: int


def tenant_did(issuer_did: str, tenant_id: str) -> str:
    """DID del tenant colgado del DID del emisor (did:web admite rutas con ':')."""
    return f"{issuer_did}:tenants:{tenant_id}"


class CredentialSigner:
    """Construye el payload VC-JWT y lo firma con la clave EdDSA activa.

    El ``jti`` es siempre el ``cid`` que pasa el llamador, de modo que el token
    apunta a exactamente un registro de emisión. Que no se firme dos veces el
    mismo ``cid`` lo garantiza el ticket de un solo uso, no esta clase.
    """

    def __init__(
        self,
        resolver: KeyResolver,
        issuer_did: str,
        validity_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        self.resolver = resolver
        self.issuer_did = issuer_did
        self.validity_seconds = validity_seconds
        self._clock = clock

    def sign(
        self,
        claims: Mapping[str, Any],
        subject_did: str,
        cid: str,
        vc_types: Sequence[str] = (DOCUMENT_CREDENTIAL_TYPE,),
        kid: str | None = None,
        validity_seconds: int | None = None,
    ) -> SignedToken:
        signing = self.resolver.resolve_signing_key()
        now = int(self._clock())
        exp = now + (validity_seconds if validity_seconds is not None else self.validity_seconds)

        payload = {
            "iss": self.issuer_did,
            "sub": subject_did,
            "jti": cid,
            "iat": now,
            "nbf": now,
            "exp": exp,
            "vc": {
                "@context": [VC_CONTEXT],
                "type": ["VerifiableCredential", *vc_types],
                "issuer": self.issuer_did,
                "issuanceDate": datetime.fromtimestamp(now, timezone.utc).isoformat(),
                "credentialSubject": {"id": subject_did, **claims},
            },
        }
        token = jwt.encode(
            payload,
            signing.key,
            algorithm=ALGORITHM,
            headers={"kid": kid or signing.kid},
        )
        return SignedToken(token=token, jti=cid, expires_at=exp)
