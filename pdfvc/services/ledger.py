# pdfvc/services/ledger.py
"""Saldo de créditos por tenant.

Todas las mutaciones son un único UPDATE condicional en la base de datos; la
decisión se toma por el número de filas afectadas, nunca leyendo el saldo y
escribiéndolo después.
"""
from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from pdfvc.core.errors import InvalidInput, NotFound
from pdfvc.db.models import Tenant
from pdfvc.db.session import SessionLocal


class CreditLedger:
    def __init__(self, sessionmaker: async_sessionmaker = SessionLocal):
        self._sessionmaker = sessionmaker

    async def spend(self, tenant_id: str) -> bool:
        """Descuenta un crédito. False si el saldo ya era 0."""
        async with self._sessionmaker() as s:
            res = await s.execute(
                update(Tenant)
                .where(Tenant.id == tenant_id, Tenant.credits >= 1)
                .values(credits=Tenant.credits - 1)
                .execution_options(synchronize_session=False)
            )
            await s.commit()
        return res.rowcount == 1

    async def add(self, tenant_id: str, delta: int) -> int:
        async with self._sessionmaker() as s:
            try:
                res = await s.execute(
                    update(Tenant)
                    .where(Tenant.id == tenant_id)
                    .values(credits=Tenant.credits + delta)
                    .execution_options(synchronize_session=False)
                )
            except IntegrityError as e:
                await s.rollback()
                raise InvalidInput("Credit balance cannot go below 0") from e
            if res.rowcount != 1:
                await s.rollback()
                raise NotFound("Tenant not found")
            balance = (
                await s.execute(select(Tenant.credits).where(Tenant.id == tenant_id))
            ).scalar_one()
            await s.commit()
        return balance

    async def balance(self, tenant_id: str) -> int:
        async with self._sessionmaker() as s:
            credits = (
                await s.execute(select(Tenant.credits).where(Tenant.id == tenant_id))
            ).scalar_one_or_none()
        if credits is None:
            raise NotFound("Tenant not found")
        return credits
