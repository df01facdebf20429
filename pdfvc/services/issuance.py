# pdfvc/services/issuance.py
"""Emisión de credenciales.

Dos protocolos:

* En dos fases: ``request_ticket`` reserva un ``cid`` y ``finalize`` lo canjea
  junto al SHA-256 del PDF (calculado en el cliente) por un VC-JWT firmado.
* En una fase: ``issue`` firma directamente un VC sobre un sujeto arbitrario.

No hay una transacción que abarque ticket, créditos y credencial. El ticket y
el crédito se confirman cada uno con su propio UPDATE condicional; si algo
falla después de cobrar se intenta devolver el crédito, y si la devolución
también falla queda una entrada en el log ``pdfvc.reconciliation``.
"""
from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from pdfvc.core.config import Settings, settings as default_settings
from pdfvc.core.crypto import CredentialSigner, tenant_did
from pdfvc.core.errors import (
    InsufficientCredits,
    InvalidInput,
    InvalidTicket,
    StorageFailure,
    TicketOutcome,
)
from pdfvc.core.logging_config import audit_log, reconciliation_log
from pdfvc.db.models import Credential, IssuanceLog, Tenant
from pdfvc.db.session import SessionLocal
from pdfvc.services.credentials import STATUS_VALID
from pdfvc.services.ledger import CreditLedger
from pdfvc.services.tenants import TenantDirectory
from pdfvc.services.tickets import TicketStore

log = logging.getLogger(__name__)

SHA256_RE = re.compile(r"^[0-9a-f]{64}$")
DEFAULT_VC_TYPE = "BasicIDCredential"
MAX_DOC_TYPE_LEN = 64


@dataclass(frozen=True)
class TicketGrant:
    cid: str
    nonce: str
    verify_url: str
    expires_at: int


@dataclass(frozen=True)
class FinalizedCredential:
    cid: str
    token: str
    verify_url: str
    expires_at: int


@dataclass(frozen=True)
class DirectIssuance:
    jti: str
    token: str
    verify_url: str
    exp: int
    remaining_credits: int


def normalize_sha256(value: str | None) -> str:
    digest = (value or "").strip().lower()
    if not SHA256_RE.match(digest):
        raise InvalidInput("sha256 must be 64 hex characters")
    return digest


class IssuanceCoordinator:
    def __init__(
        self,
        signer: CredentialSigner,
        sessionmaker: async_sessionmaker = SessionLocal,
        tenants: TenantDirectory | None = None,
        tickets: TicketStore | None = None,
        ledger: CreditLedger | None = None,
        cfg: Settings = default_settings,
    ):
        self.signer = signer
        self._sessionmaker = sessionmaker
        self.tenants = tenants or TenantDirectory(sessionmaker)
        self.tickets = tickets or TicketStore(sessionmaker)
        self.ledger = ledger or CreditLedger(sessionmaker)
        self.cfg = cfg

    # --- Dos fases -------------------------------------------------------

    async def request_ticket(self, api_key: str | None) -> TicketGrant:
        tenant = await self.tenants.authenticate(api_key)
        # Comprobación orientativa; el cobro real ocurre en finalize()
        if await self.ledger.balance(tenant.id) <= 0:
            raise InsufficientCredits()
        ticket = await self.tickets.request(tenant.id)
        return TicketGrant(
            cid=ticket.cid,
            nonce=ticket.nonce,
            verify_url=self.cfg.verify_url(ticket.cid),
            expires_at=ticket.expires_at,
        )

    async def finalize(
        self,
        api_key: str | None,
        cid: str | None,
        sha256: str | None,
        doc_type: str | None = None,
        file_mime: str = "application/pdf",
    ) -> FinalizedCredential:
        if not cid:
            raise InvalidInput("cid is required")
        digest = normalize_sha256(sha256)
        if doc_type is not None and len(doc_type) > MAX_DOC_TYPE_LEN:
            raise InvalidInput(f"doc_type longer than {MAX_DOC_TYPE_LEN} characters")

        tenant = await self.tenants.authenticate(api_key)
        # Falla antes de tocar el ticket si la clave de firma no está configurada
        self.signer.resolver.resolve_signing_key()

        outcome = await self.tickets.consume(cid, tenant.id, sha256=digest)
        if outcome is not TicketOutcome.OK:
            raise InvalidTicket(outcome)

        # Si no hay saldo el ticket queda consumido: no se puede reintentar
        if not await self.ledger.spend(tenant.id):
            log.info("finalize without credits tenant=%s cid=%s", tenant.id, cid)
            raise InsufficientCredits()

        try:
            signed = self.signer.sign(
                {
                    "tenant_id": tenant.id,
                    "file_sha256": digest,
                    "file_mime": file_mime,
                    "doc_type": doc_type,
                },
                subject_did=tenant_did(self.cfg.issuer_did, tenant.id),
                cid=cid,
            )
            async with self._sessionmaker() as s:
                s.add(
                    Credential(
                        cid=cid,
                        tenant_id=tenant.id,
                        sha256=digest,
                        doc_type=doc_type,
                        file_mime=file_mime,
                        vc_jwt=signed.token,
                        exp=signed.expires_at,
                        status=STATUS_VALID,
                    )
                )
                await s.commit()
        except SQLAlchemyError as e:
            log.exception("credential insert failed tenant=%s cid=%s", tenant.id, cid)
            await self._refund(tenant, cid)
            raise StorageFailure() from e
        except Exception:
            await self._refund(tenant, cid)
            raise

        audit_log.info("credential.issue tenant=%s cid=%s doc_type=%s", tenant.id, cid, doc_type)
        return FinalizedCredential(
            cid=cid,
            token=signed.token,
            verify_url=self.cfg.verify_url(cid),
            expires_at=signed.expires_at,
        )

    # --- Una fase --------------------------------------------------------

    async def issue(
        self,
        api_key: str | None,
        subject_id: str | None,
        claims: Mapping[str, Any] | None = None,
        vc_types: Sequence[str] | None = None,
        expires_in_days: int | None = None,
    ) -> DirectIssuance:
        subject_id, claims, vc_types, validity = self._validate_direct(
            subject_id, claims, vc_types, expires_in_days
        )
        tenant = await self.tenants.authenticate(api_key)
        if await self.ledger.balance(tenant.id) <= 0:
            raise InsufficientCredits()

        jti = str(uuid.uuid4())
        signed = self.signer.sign(
            claims, subject_did=subject_id, cid=jti, vc_types=vc_types, validity_seconds=validity
        )

        if not await self.ledger.spend(tenant.id):
            # Carrera perdida entre la comprobación y el cobro: el token firmado se descarta
            log.info("direct issuance lost credit race tenant=%s jti=%s", tenant.id, jti)
            raise InsufficientCredits()

        try:
            async with self._sessionmaker() as s:
                s.add(
                    IssuanceLog(
                        tenant_id=tenant.id,
                        jti=jti,
                        subject=subject_id,
                        vc_type=json.dumps(list(vc_types)),
                    )
                )
                await s.commit()
            remaining = await self.ledger.balance(tenant.id)
        except SQLAlchemyError as e:
            log.exception("issuance log insert failed tenant=%s jti=%s", tenant.id, jti)
            await self._refund(tenant, jti)
            raise StorageFailure() from e

        audit_log.info(
            "credential.issue_direct tenant=%s jti=%s subject=%s types=%s",
            tenant.id, jti, subject_id, ",".join(vc_types),
        )
        return DirectIssuance(
            jti=jti,
            token=signed.token,
            verify_url=self.cfg.verify_url(jti),
            exp=signed.expires_at,
            remaining_credits=remaining,
        )

    def _validate_direct(self, subject_id, claims, vc_types, expires_in_days):
        if not isinstance(subject_id, str) or not subject_id.strip():
            raise InvalidInput("subjectId is required")
        claims = dict(claims or {})
        if "id" in claims:
            raise InvalidInput("claims cannot override credentialSubject.id")
        try:
            json.dumps(claims)
        except (TypeError, ValueError) as e:
            raise InvalidInput(f"claims must be JSON serialisable: {e}") from e

        types = list(vc_types) if vc_types else [DEFAULT_VC_TYPE]
        if not all(isinstance(t, str) and t for t in types):
            raise InvalidInput("vcType must be a list of non-empty strings")
        # "VerifiableCredential" lo añade siempre el firmante
        types = [t for t in types if t != "VerifiableCredential"] or [DEFAULT_VC_TYPE]

        validity = None
        if expires_in_days is not None:
            if expires_in_days <= 0:
                raise InvalidInput("expiresInDays must be a positive integer")
            validity = expires_in_days * 24 * 60 * 60
        return subject_id.strip(), claims, types, validity

    async def _refund(self, tenant: Tenant, ref: str) -> None:
        try:
            await self.ledger.add(tenant.id, 1)
            log.warning("credit refunded tenant=%s ref=%s", tenant.id, ref)
        except Exception:
            reconciliation_log.error(
                "refund failed, credit must be restored manually tenant=%s ref=%s",
                tenant.id, ref, exc_info=True,
            )
