# pdfvc/services/credentials.py
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from pdfvc.core.errors import Forbidden, NotFound
from pdfvc.core.logging_config import audit_log
from pdfvc.db.models import Credential, Tenant
from pdfvc.db.session import SessionLocal
from pdfvc.services.tenants import TenantDirectory

STATUS_VALID = "valid"
STATUS_REVOKED = "revoked"

HISTORY_LIMIT = 50


class CredentialRegistry:
    def __init__(
        self,
        sessionmaker: async_sessionmaker = SessionLocal,
        tenants: TenantDirectory | None = None,
    ):
        self._sessionmaker = sessionmaker
        self.tenants = tenants or TenantDirectory(sessionmaker)

    async def get(self, cid: str) -> Credential | None:
        async with self._sessionmaker() as s:
            res = await s.execute(select(Credential).where(Credential.cid == cid))
            return res.scalar_one_or_none()

    async def history(self, tenant: Tenant, limit: int = HISTORY_LIMIT) -> list[Credential]:
        async with self._sessionmaker() as s:
            res = await s.execute(
                select(Credential)
                .where(Credential.tenant_id == tenant.id)
                .order_by(Credential.issued_at.desc(), Credential.id.desc())
                .limit(limit)
            )
            return list(res.scalars().all())

    async def revoke(self, cid: str, api_key: str | None, reason: str | None = None) -> Credential:
        """Revoca una credencial del propio tenant.

        Revocar algo ya revocado no es error: se devuelve tal cual, sin volver a
        fechar ni cambiar el motivo.
        """
        tenant = await self.tenants.authenticate(api_key)
        async with self._sessionmaker() as s:
            cred = (
                await s.execute(select(Credential).where(Credential.cid == cid))
            ).scalar_one_or_none()
            if cred is None:
                raise NotFound("Credential not found")
            if cred.tenant_id != tenant.id:
                raise Forbidden()
            if cred.status == STATUS_REVOKED:
                return cred

            res = await s.execute(
                update(Credential)
                .where(Credential.cid == cid, Credential.status != STATUS_REVOKED)
                .values(status=STATUS_REVOKED, revoked_at=datetime.now(timezone.utc), reason=reason)
                .execution_options(synchronize_session=False)
            )
            await s.commit()
            changed = res.rowcount == 1

        if changed:
            audit_log.info("credential.revoke tenant=%s cid=%s reason=%r", tenant.id, cid, reason)
        return await self.get(cid)
