# pdfvc/services/tenants.py
from __future__ import annotations

import hashlib
import secrets

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from pdfvc.core.errors import InvalidInput, Unauthorized
from pdfvc.core.logging_config import audit_log
from pdfvc.db.models import Tenant
from pdfvc.db.session import SessionLocal


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def generate_api_key() -> str:
    return f"KEY_{secrets.token_urlsafe(24)}"


class TenantDirectory:
    def __init__(self, sessionmaker: async_sessionmaker = SessionLocal):
        self._sessionmaker = sessionmaker

    async def find_by_api_key(self, api_key: str) -> Tenant | None:
        """Busca por hash de la key y, para tenants antiguos, por la key en claro."""
        async with self._sessionmaker() as s:
            res = await s.execute(
                select(Tenant).where(
                    or_(Tenant.api_key_hash == hash_api_key(api_key), Tenant.api_key == api_key)
                )
            )
            return res.scalars().first()

    async def authenticate(self, api_key: str | None) -> Tenant:
        if not api_key:
            raise Unauthorized()
        tenant = await self.find_by_api_key(api_key)
        if tenant is None:
            raise Unauthorized("Invalid API key")
        if not tenant.is_active:
            raise Unauthorized("Tenant is not active")
        return tenant

    async def create(
        self, name: str | None = None, email: str | None = None, credits: int = 0
    ) -> tuple[Tenant, str]:
        """Crea un tenant y devuelve la API key en claro (solo se muestra esta vez)."""
        if credits < 0:
            raise InvalidInput("credits must be >= 0")
        api_key = generate_api_key()
        tenant = Tenant(
            name=name,
            email=email,
            api_key_hash=hash_api_key(api_key),
            credits=credits,
            is_active=True,
        )
        async with self._sessionmaker() as s:
            if email:
                dup = await s.execute(select(Tenant.id).where(Tenant.email == email))
                if dup.scalar_one_or_none() is not None:
                    raise InvalidInput("Email already registered")
            s.add(tenant)
            await s.commit()
        audit_log.info("tenant.create tenant=%s credits=%d", tenant.id, credits)
        return tenant, api_key

    async def list(self) -> list[Tenant]:
        async with self._sessionmaker() as s:
            res = await s.execute(select(Tenant).order_by(Tenant.created_at.desc()))
            return list(res.scalars().all())
