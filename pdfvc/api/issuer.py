# pdfvc/api/issuer.py
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from pdfvc.api.deps import api_key_header, get_coordinator, get_ledger, get_registry, get_tenants
from pdfvc.services.credentials import CredentialRegistry
from pdfvc.services.issuance import IssuanceCoordinator
from pdfvc.services.ledger import CreditLedger
from pdfvc.services.tenants import TenantDirectory

router = APIRouter()

NO_STORE = {"Cache-Control": "no-store"}


class IssueFinalInput(BaseModel):
    cid: str
    sha256: str
    doc_type: str | None = None
    file_mime: str = "application/pdf"


class IssueInput(BaseModel):
    subjectId: str
    vcType: list[str] | None = None
    claims: dict[str, Any] | None = None
    expiresInDays: int | None = Field(None, gt=0)


class RevokeInput(BaseModel):
    cid: str
    reason: str | None = None


@router.post("/issue-request")
async def issue_request(
    api_key: str = Depends(api_key_header),
    coordinator: IssuanceCoordinator = Depends(get_coordinator),
):
    grant = await coordinator.request_ticket(api_key)
    return {
        "cid": grant.cid,
        "verify_url": grant.verify_url,
        "nonce": grant.nonce,
        "expires_at": grant.expires_at,
    }


@router.post("/issue-final")
async def issue_final(
    body: IssueFinalInput,
    api_key: str = Depends(api_key_header),
    coordinator: IssuanceCoordinator = Depends(get_coordinator),
):
    done = await coordinator.finalize(
        api_key, body.cid, body.sha256, doc_type=body.doc_type, file_mime=body.file_mime
    )
    return {"vc_jwt": done.token, "verify_url": done.verify_url, "cid": done.cid}


@router.post("/issue")
async def issue(
    body: IssueInput,
    api_key: str = Depends(api_key_header),
    coordinator: IssuanceCoordinator = Depends(get_coordinator),
):
    out = await coordinator.issue(
        api_key,
        body.subjectId,
        claims=body.claims,
        vc_types=body.vcType,
        expires_in_days=body.expiresInDays,
    )
    return {
        "vc_jwt": out.token,
        "jti": out.jti,
        "verify_url": out.verify_url,
        "exp": out.exp,
        "remaining_credits": out.remaining_credits,
    }


@router.post("/revoke")
async def revoke(
    body: RevokeInput,
    api_key: str = Depends(api_key_header),
    registry: CredentialRegistry = Depends(get_registry),
):
    cred = await registry.revoke(body.cid, api_key, reason=body.reason)
    return {"ok": True, "cid": cred.cid, "status": cred.status}


@router.get("/credits")
async def credits(
    api_key: str = Depends(api_key_header),
    tenants: TenantDirectory = Depends(get_tenants),
    ledger: CreditLedger = Depends(get_ledger),
):
    tenant = await tenants.authenticate(api_key)
    return _no_store({"credits": await ledger.balance(tenant.id)})


@router.get("/history")
async def history(
    api_key: str = Depends(api_key_header),
    tenants: TenantDirectory = Depends(get_tenants),
    registry: CredentialRegistry = Depends(get_registry),
):
    tenant = await tenants.authenticate(api_key)
    rows = await registry.history(tenant)
    return _no_store({
        "history": [
            {
                "cid": r.cid,
                "sha256": r.sha256,
                "status": r.status,
                "doc_type": r.doc_type,
                "issued_at": r.issued_at.isoformat(),
                "revoked_at": r.revoked_at.isoformat() if r.revoked_at else None,
            }
            for r in rows
        ]
    })


def _no_store(content: dict) -> JSONResponse:
    return JSONResponse(content, headers=NO_STORE)
