from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from pdfvc.api.deps import get_ledger, get_tenants, require_admin
from pdfvc.core.logging_config import audit_log
from pdfvc.services.ledger import CreditLedger
from pdfvc.services.tenants import TenantDirectory

router = APIRouter(dependencies=[Depends(require_admin)])


class CreateTenantInput(BaseModel):
    name: str | None = None
    email: str | None = None
    credits: int = Field(0, ge=0)


class AddCreditsInput(BaseModel):
    tenant_id: str
    amount: int


@router.post("/tenants")
async def create_tenant(body: CreateTenantInput, tenants: TenantDirectory = Depends(get_tenants)):
    tenant, api_key = await tenants.create(name=body.name, email=body.email, credits=body.credits)
    # La API key solo se devuelve aquí; en base de datos queda su hash
    return JSONResponse(
        {"tenant_id": tenant.id, "api_key": api_key, "credits": tenant.credits},
        headers={"Cache-Control": "no-store"},
    )


@router.get("/tenants")
async def list_tenants(tenants: TenantDirectory = Depends(get_tenants)):
    rows = await tenants.list()
    return {
        "tenants": [
            {
                "id": t.id,
                "name": t.name,
                "email": t.email,
                "is_active": t.is_active,
                "credits": t.credits,
            }
            for t in rows
        ]
    }


@router.post("/credits")
async def add_credits(body: AddCreditsInput, ledger: CreditLedger = Depends(get_ledger)):
    balance = await ledger.add(body.tenant_id, body.amount)
    audit_log.info("credits.add tenant=%s amount=%d balance=%d", body.tenant_id, body.amount, balance)
    return {"ok": True, "credits": balance}
