# pdfvc/services/verification.py
from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any, BinaryIO, Iterable

import jwt
from jwt import (
    ExpiredSignatureError,
    ImmatureSignatureError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
)
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from pdfvc.core.config import settings
from pdfvc.core.keys import ALGORITHM, KeyResolver
from pdfvc.services.credentials import STATUS_REVOKED, CredentialRegistry

log = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
REQUIRED_CLAIMS = ["iss", "sub", "jti", "iat", "nbf"]


class VerificationResult(BaseModel):
    valid: bool
    issuer: str | None = None
    subject: str | None = None
    header: dict[str, Any] | None = None
    payload: dict[str, Any] | None = None
    status: str | None = None
    error: str | None = None
    code: str | None = None

    @classmethod
    def failure(cls, code: str, error: str, **extra) -> "VerificationResult":
        return cls(valid=False, code=code, error=error, **extra)


@dataclass(frozen=True)
class HashComparison:
    match: bool
    computed: str
    expected: str


def compute_digest(stream: BinaryIO | bytes | Iterable[bytes]) -> str:
    """SHA-256 en hex (64 caracteres, minúsculas) leyendo por bloques."""
    h = hashlib.sha256()
    if isinstance(stream, (bytes, bytearray, memoryview)):
        h.update(stream)
    elif hasattr(stream, "read"):
        for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
            h.update(chunk)
    else:
        for chunk in stream:
            h.update(chunk)
    return h.hexdigest()


def compare_digest(stream: BinaryIO | bytes | Iterable[bytes], registered: str) -> HashComparison:
    """Comprobación local: el documento nunca sale de la máquina que la ejecuta."""
    computed = compute_digest(stream)
    expected = (registered or "").strip().lower()
    match = hmac.compare_digest(computed.encode("ascii"), expected.encode("ascii", "replace"))
    return HashComparison(match=match, computed=computed, expected=expected)


class VerificationService:
    def __init__(
        self,
        resolver: KeyResolver,
        registry: CredentialRegistry | None = None,
        issuer_did: str | None = None,
    ):
        self.resolver = resolver
        self.registry = registry or CredentialRegistry()
        # Solo los tokens de este emisor tienen registro propio
        self.issuer_did = issuer_did or settings.issuer_did

    async def verify_token(
        self,
        token: str,
        expected_issuer: str | None = None,
        expected_subject: str | None = None,
    ) -> VerificationResult:
        """Verifica firma y claims de un VC-JWT.

        Cualquier fallo se devuelve como ``valid=False`` con un motivo legible;
        este método no lanza excepciones hacia el transporte.
        """
        try:
            if not isinstance(token, str) or token.count(".") != 2:
                return VerificationResult.failure("malformed", "token is not a compact JWS")
            try:
                header = jwt.get_unverified_header(token)
            except InvalidTokenError as e:
                return VerificationResult.failure("malformed", f"invalid header: {e}")

            # Fijar el algoritmo antes de buscar ninguna clave
            if header.get("alg") != ALGORITHM:
                return VerificationResult.failure(
                    "unsupported_algorithm",
                    f"unsupported alg {header.get('alg')!r}, only {ALGORITHM} is accepted",
                    header=header,
                )

            kid = header.get("kid")
            if kid is not None and not isinstance(kid, str):
                return VerificationResult.failure("malformed", "kid must be a string", header=header)

            try:
                unverified = jwt.decode(token, options={"verify_signature": False})
            except InvalidTokenError as e:
                return VerificationResult.failure("malformed", f"invalid payload: {e}", header=header)

            iss = unverified.get("iss")
            if not isinstance(iss, str) or not iss:
                return VerificationResult.failure("malformed", "token has no iss", header=header)

            key = await self.resolver.resolve_verification_key(iss, kid)
            if key is None:
                return VerificationResult.failure(
                    "key_not_found", f"no verification key for issuer {iss}", header=header
                )

            data = jwt.decode(
                token,
                key,
                algorithms=[ALGORITHM],
                issuer=expected_issuer,
                options={"require": REQUIRED_CLAIMS},
            )
            if expected_subject is not None and data.get("sub") != expected_subject:
                return VerificationResult.failure(
                    "subject_mismatch", "subject does not match", header=header
                )
            return VerificationResult(
                valid=True,
                issuer=data.get("iss"),
                subject=data.get("sub"),
                header=header,
                payload=data,
            )

        except InvalidSignatureError as e:
            return VerificationResult.failure("signature_invalid", str(e))
        except ExpiredSignatureError as e:
            return VerificationResult.failure("expired", str(e))
        except ImmatureSignatureError as e:
            return VerificationResult.failure("immature", str(e))
        except InvalidIssuerError as e:
            return VerificationResult.failure("issuer_mismatch", str(e))
        except InvalidTokenError as e:
            return VerificationResult.failure("invalid", str(e))
        except Exception as e:
            log.exception("unexpected error verifying token")
            return VerificationResult.failure("error", f"verify-error: {e}")

    async def verify_credential(self, token: str) -> VerificationResult:
        """verify_token + estado de la credencial registrada con ese jti."""
        result = await self.verify_token(token)
        if not result.valid:
            return result
        return await self._with_status(result, result.payload.get("jti"))

    async def verify_by_cid(self, cid: str) -> VerificationResult:
        try:
            cred = await self.registry.get(cid)
        except SQLAlchemyError:
            log.exception("credential lookup failed cid=%s", cid)
            return VerificationResult.failure("storage_unavailable", "credential store unavailable")
        if cred is None:
            return VerificationResult.failure("not_found", "cid not found")
        return await self.verify_credential(cred.vc_jwt)

    async def _with_status(self, result: VerificationResult, jti: str | None) -> VerificationResult:
        if result.issuer != self.issuer_did:
            # Un jti ajeno puede coincidir con un cid nuestro: no se mezcla el estado
            return result
        try:
            cred = await self.registry.get(jti) if jti else None
        except SQLAlchemyError:
            log.exception("credential lookup failed jti=%s", jti)
            return VerificationResult.failure(
                "storage_unavailable", "credential store unavailable", header=result.header
            )
        if cred is None:
            # Emisión en una fase: no hay registro, vale solo la firma
            return result
        if cred.status == STATUS_REVOKED:
            return VerificationResult.failure(
                "revoked",
                f"credential revoked{f': {cred.reason}' if cred.reason else ''}",
                issuer=result.issuer,
                subject=result.subject,
                header=result.header,
                payload=result.payload,
                status=cred.status,
            )
        return result.model_copy(update={"status": cred.status})
