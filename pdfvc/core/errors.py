# pdfvc/core/errors.py
"""Errores de dominio de emisión/revocación.

Cada error lleva su código HTTP y un código corto legible por máquina; el
handler registrado en ``pdfvc.main`` los convierte en JSON. La verificación
nunca lanza estos errores: devuelve ``valid: false`` como dato.
"""
from __future__ import annotations

from enum import Enum


class TicketOutcome(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    TENANT_MISMATCH = "tenant_mismatch"
    ALREADY_USED = "already_used"
    EXPIRED = "expired"


class VCError(Exception):
    status_code = 500
    code = "internal_error"
    default_detail = "Server error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.detail}


class Unauthorized(VCError):
    status_code = 401
    code = "unauthorized"
    default_detail = "Missing or invalid API key"


class InvalidInput(VCError):
    status_code = 400
    code = "invalid_input"
    default_detail = "Invalid request body"


class InvalidTicket(VCError):
    code = "invalid_ticket"

    _STATUS = {
        TicketOutcome.NOT_FOUND: 404,
        TicketOutcome.TENANT_MISMATCH: 403,
        TicketOutcome.ALREADY_USED: 400,
        TicketOutcome.EXPIRED: 400,
    }
    _DETAIL = {
        TicketOutcome.NOT_FOUND: "Ticket not found",
        TicketOutcome.TENANT_MISMATCH: "Ticket belongs to another tenant",
        TicketOutcome.ALREADY_USED: "Ticket already used",
        TicketOutcome.EXPIRED: "Ticket expired",
    }

    def __init__(self, kind: TicketOutcome):
        self.kind = kind
        self.status_code = self._STATUS[kind]
        super().__init__(self._DETAIL[kind])

    def to_dict(self) -> dict:
        return {**super().to_dict(), "reason": self.kind.value}


class InsufficientCredits(VCError):
    status_code = 402
    code = "no_credits"
    default_detail = "No credits available"


class Forbidden(VCError):
    status_code = 403
    code = "forbidden"
    default_detail = "Forbidden"


class NotFound(VCError):
    status_code = 404
    code = "not_found"
    default_detail = "Not found"


class KeyResolutionFailure(VCError):
    status_code = 500
    code = "key_resolution_failure"
    default_detail = "Signing key is not configured"


class StorageFailure(VCError):
    status_code = 500
    code = "storage_failure"
    default_detail = "Internal storage error"
