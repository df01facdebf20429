# pdfvc/core/keys.py
"""Resolución de claves Ed25519.

Firma: la clave privada sale siempre de la configuración (PRIVATE_JWK).
Verificación: lista ordenada de fuentes, la primera que devuelve clave gana:

1. JWK pública configurada (mismo despliegue que el emisor, sin red).
2. Documento did:web publicado por el emisor (``/.well-known/did.json``).

Si ninguna resuelve se devuelve ``None``; nunca se verifica sin clave.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Protocol, Sequence
from urllib.parse import unquote

import httpx
import jwt
from jwt.algorithms import OKPAlgorithm
from jwt.exceptions import InvalidKeyError, PyJWKError
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from pdfvc.core.config import Settings, settings as default_settings
from pdfvc.core.errors import KeyResolutionFailure

log = logging.getLogger(__name__)

ALGORITHM = "EdDSA"

# Cache en memoria para claves resueltas por did:web: (did, kid) -> clave
_DID_WEB_PUBKEY_CACHE: dict[tuple[str, str], Ed25519PublicKey] = {}


@dataclass(frozen=True)
class SigningKey:
    key: Ed25519PrivateKey
    kid: str


class KeySource(Protocol):
    async def resolve(self, issuer_did: str, kid: str | None) -> Ed25519PublicKey | None: ...


def load_jwk(raw: str | dict | None) -> jwt.PyJWK | None:
    """Parsea una JWK OKP/Ed25519. Devuelve None si falta o no es válida."""
    if not raw:
        return None
    try:
        data = json.loads(raw) if isinstance(raw, str) else raw
        if data.get("kty") != "OKP" or data.get("crv") != "Ed25519":
            return None
        return jwt.PyJWK(data, algorithm=ALGORITHM)
    except (PyJWKError, InvalidKeyError, ValueError, TypeError, AttributeError):
        return None


def public_jwk_dict(key: Ed25519PublicKey, kid: str | None = None) -> dict:
    jwk = json.loads(OKPAlgorithm.to_jwk(key))
    jwk.update({"alg": ALGORITHM, "use": "sig"})
    if kid:
        jwk["kid"] = kid
    return jwk


def expand_kid(issuer_did: str, kid: str | None) -> str:
    """'#key-1' -> 'did:web:x#key-1'; sin kid -> '{did}#key-1'."""
    if not kid:
        return f"{issuer_did}#key-1"
    if kid.startswith("#"):
        return f"{issuer_did}{kid}"
    return kid


def did_web_to_url(issuer_did: str) -> str:
    """
    did:web:example.org              -> https://example.org/.well-known/did.json
    did:web:example.org:users:alice -> https://example.org/users/alice/did.json
    did:web:localhost%3A8443        -> https://localhost:8443/.well-known/did.json
    """
    path = issuer_did[len("did:web:"):]
    parts = path.split(":")
    host = unquote(parts[0])
    tail = "/".join(unquote(p) for p in parts[1:])
    if tail:
        return f"https://{host}/{tail}/did.json"
    return f"https://{host}/.well-known/did.json"


class StaticKeySource:
    """Clave pública del propio despliegue (PUBLIC_JWK o derivada de PRIVATE_JWK)."""

    def __init__(self, issuer_did: str, public_key: Ed25519PublicKey, kid: str | None = None):
        self.issuer_did = issuer_did
        self.public_key = public_key
        self.kid = kid

    async def resolve(self, issuer_did: str, kid: str | None) -> Ed25519PublicKey | None:
        if issuer_did != self.issuer_did:
            return None
        if self.kid and kid and expand_kid(issuer_did, kid) != expand_kid(issuer_did, self.kid):
            return None
        return self.public_key


class DidWebKeySource:
    def __init__(self, timeout: float = 5.0, transport: httpx.AsyncBaseTransport | None = None):
        self.timeout = timeout
        self._transport = transport

    async def resolve(self, issuer_did: str, kid: str | None) -> Ed25519PublicKey | None:
        if not issuer_did or not issuer_did.startswith("did:web:"):
            return None

        method_id = expand_kid(issuer_did, kid)
        cached = _DID_WEB_PUBKEY_CACHE.get((issuer_did, method_id))
        if cached is not None:
            return cached

        url = did_web_to_url(issuer_did)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(url, headers={"Accept": "application/json"})
                resp.raise_for_status()
                doc = resp.json()
        except httpx.HTTPError as e:
            log.warning("did:web fetch failed for %s: %s", url, e)
            return None
        except ValueError as e:
            log.warning("did:web document at %s is not JSON: %s", url, e)
            return None

        key = self._key_from_document(doc, issuer_did, method_id)
        if key is None:
            log.warning("did:web document at %s has no usable key %s", url, method_id)
            return None

        _DID_WEB_PUBKEY_CACHE[(issuer_did, method_id)] = key
        return key

    @staticmethod
    def _key_from_document(doc, issuer_did: str, method_id: str) -> Ed25519PublicKey | None:
        if not isinstance(doc, dict) or doc.get("id") != issuer_did:
            return None
        vms = doc.get("verificationMethod") or []
        if not isinstance(vms, list):
            return None
        vm = next(
            (
                x for x in vms
                if isinstance(x, dict) and expand_kid(issuer_did, x.get("id")) == method_id
            ),
            None,
        )
        if vm is None:
            return None
        parsed = load_jwk(vm.get("publicKeyJwk"))
        if parsed is None or not isinstance(parsed.key, Ed25519PublicKey):
            return None
        return parsed.key


class KeyResolver:
    def __init__(
        self,
        sources: Sequence[KeySource],
        private_jwk: str | None = None,
        default_kid: str | None = None,
    ):
        self.sources = list(sources)
        self._private_jwk = private_jwk
        self._default_kid = default_kid

    @classmethod
    def from_settings(
        cls,
        cfg: Settings = default_settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "KeyResolver":
        sources: list[KeySource] = []
        static = _static_public_key(cfg)
        if static is not None:
            sources.append(StaticKeySource(cfg.issuer_did, *static))
        if cfg.use_did_web:
            sources.append(DidWebKeySource(timeout=cfg.did_web_timeout, transport=transport))
        return cls(sources, private_jwk=cfg.private_jwk, default_kid=cfg.default_kid)

    async def resolve_verification_key(
        self, issuer_did: str, kid: str | None = None
    ) -> Ed25519PublicKey | None:
        for source in self.sources:
            key = await source.resolve(issuer_did, kid)
            if key is not None:
                return key
        return None

    def resolve_signing_key(self) -> SigningKey:
        parsed = load_jwk(self._private_jwk)
        if parsed is None or not isinstance(parsed.key, Ed25519PrivateKey):
            raise KeyResolutionFailure("PRIVATE_JWK is missing or is not an Ed25519 private key")
        kid = self._default_kid or parsed.key_id
        if not kid:
            raise KeyResolutionFailure("No kid configured for the signing key")
        return SigningKey(key=parsed.key, kid=kid)


def _static_public_key(cfg: Settings) -> tuple[Ed25519PublicKey, str] | None:
    parsed = load_jwk(cfg.public_jwk)
    if parsed is not None and isinstance(parsed.key, Ed25519PublicKey):
        return parsed.key, cfg.default_kid
    # Sin PUBLIC_JWK: si este proceso firma, su clave pública es la de la privada
    parsed = load_jwk(cfg.private_jwk)
    if parsed is not None and isinstance(parsed.key, Ed25519PrivateKey):
        return parsed.key.public_key(), cfg.default_kid
    return None
