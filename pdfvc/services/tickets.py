# pdfvc/services/tickets.py
from __future__ import annotations

import time
import uuid
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from pdfvc.core.config import settings
from pdfvc.core.errors import TicketOutcome
from pdfvc.db.models import IssueTicket
from pdfvc.db.session import SessionLocal


class TicketStore:
    """Tickets de emisión de un solo uso con ventana de validez fija.

    La caducidad se comprueba al consumir contra el reloj; no hay barrido.
    """

    def __init__(
        self,
        sessionmaker: async_sessionmaker = SessionLocal,
        ttl_seconds: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._sessionmaker = sessionmaker
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.ticket_ttl_minutes * 60
        self._clock = clock

    async def request(self, tenant_id: str) -> IssueTicket:
        ticket = IssueTicket(
            cid=str(uuid.uuid4()),
            tenant_id=tenant_id,
            nonce=str(uuid.uuid4()),
            expires_at=int(self._clock()) + self.ttl_seconds,
            used=False,
        )
        async with self._sessionmaker() as s:
            s.add(ticket)
            await s.commit()
        return ticket

    async def consume(self, cid: str, tenant_id: str, sha256: str | None = None) -> TicketOutcome:
        now = int(self._clock())
        async with self._sessionmaker() as s:
            # Marcar como usado solo si sigue sin usar: de dos llamadas concurrentes
            # una sola ve rowcount == 1
            res = await s.execute(
                update(IssueTicket)
                .where(
                    IssueTicket.cid == cid,
                    IssueTicket.tenant_id == tenant_id,
                    IssueTicket.used.is_(False),
                    IssueTicket.expires_at >= now,
                )
                .values(used=True, sha256=sha256)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount == 1:
                await s.commit()
                return TicketOutcome.OK

            ticket = (
                await s.execute(select(IssueTicket).where(IssueTicket.cid == cid))
            ).scalar_one_or_none()

        if ticket is None:
            return TicketOutcome.NOT_FOUND
        if ticket.tenant_id != tenant_id:
            return TicketOutcome.TENANT_MISMATCH
        if ticket.used:
            return TicketOutcome.ALREADY_USED
        return TicketOutcome.EXPIRED
