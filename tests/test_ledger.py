# tests/test_ledger.py
import asyncio

import pytest

from pdfvc.core.errors import InvalidInput, NotFound
from pdfvc.services.ledger import CreditLedger
from pdfvc.services.tenants import TenantDirectory


@pytest.mark.asyncio
async def test_concurrent_spends_never_overdraw(sessionmaker):
    """N créditos y N+k cobros simultáneos: exactamente N tienen éxito."""
    tenant, _ = await TenantDirectory(sessionmaker).create("t", credits=5)
    ledger = CreditLedger(sessionmaker)

    results = await asyncio.gather(*(ledger.spend(tenant.id) for _ in range(8)))

    assert results.count(True) == 5
    assert results.count(False) == 3
    assert await ledger.balance(tenant.id) == 0


@pytest.mark.asyncio
async def test_spend_without_credits(sessionmaker):
    tenant, _ = await TenantDirectory(sessionmaker).create("t", credits=0)
    ledger = CreditLedger(sessionmaker)
    assert await ledger.spend(tenant.id) is False
    assert await ledger.balance(tenant.id) == 0


@pytest.mark.asyncio
async def test_add_and_balance(sessionmaker):
    tenant, _ = await TenantDirectory(sessionmaker).create("t", credits=2)
    ledger = CreditLedger(sessionmaker)
    assert await ledger.add(tenant.id, 3) == 5
    assert await ledger.add(tenant.id, -4) == 1
    assert await ledger.balance(tenant.id) == 1


@pytest.mark.asyncio
async def test_add_cannot_go_negative(sessionmaker):
    tenant, _ = await TenantDirectory(sessionmaker).create("t", credits=1)
    ledger = CreditLedger(sessionmaker)
    with pytest.raises(InvalidInput):
        await ledger.add(tenant.id, -2)
    assert await ledger.balance(tenant.id) == 1


@pytest.mark.asyncio
async def test_unknown_tenant(sessionmaker):
    ledger = CreditLedger(sessionmaker)
    assert await ledger.spend("nope") is False
    with pytest.raises(NotFound):
        await ledger.add("nope", 1)
    with pytest.raises(NotFound):
        await ledger.balance("nope")
