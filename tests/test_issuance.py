# tests/test_issuance.py
import asyncio
import logging

import jwt
import pytest
from sqlalchemy import func, select

from pdfvc.core.crypto import CredentialSigner
from pdfvc.core.errors import (
    InsufficientCredits,
    InvalidInput,
    InvalidTicket,
    KeyResolutionFailure,
    StorageFailure,
    TicketOutcome,
)
from pdfvc.core.keys import KeyResolver
from pdfvc.db.models import Credential, IssuanceLog
from pdfvc.services.issuance import IssuanceCoordinator, normalize_sha256
from pdfvc.services.ledger import CreditLedger
from pdfvc.services.tenants import TenantDirectory

from tests_helpers import ISSUER_DID

SHA = "ab" * 32


def _coordinator(sm, resolver, ledger=None):
    signer = CredentialSigner(resolver, issuer_did=ISSUER_DID, validity_seconds=3600)
    return IssuanceCoordinator(signer, sm, ledger=ledger)


async def _preinsert_credential(sm, tenant_id: str, cid: str) -> None:
    """Un registro previo con el mismo cid hace fallar el INSERT de finalize."""
    async with sm() as s:
        s.add(Credential(cid=cid, tenant_id=tenant_id, sha256=SHA, vc_jwt="x", exp=0))
        await s.commit()


class LostRaceLedger(CreditLedger):
    """El saldo se ve positivo pero otro proceso se lleva el último crédito."""

    async def spend(self, tenant_id: str) -> bool:
        return False


class BrokenRefundLedger(CreditLedger):
    async def add(self, tenant_id: str, delta: int) -> int:
        raise RuntimeError("ledger offline")


@pytest.mark.asyncio
async def test_finalize_signs_ticket(sessionmaker, resolver):
    tenant, key = await TenantDirectory(sessionmaker).create("t", credits=2)
    coord = _coordinator(sessionmaker, resolver)
    grant = await coord.request_ticket(key)

    done = await coord.finalize(key, grant.cid, SHA.upper(), doc_type="invoice")

    assert done.cid == grant.cid
    assert await coord.ledger.balance(tenant.id) == 1
    payload = jwt.decode(done.token, options={"verify_signature": False})
    assert payload["jti"] == grant.cid
    assert payload["iss"] == ISSUER_DID
    assert payload["sub"] == f"{ISSUER_DID}:tenants:{tenant.id}"
    subject = payload["vc"]["credentialSubject"]
    assert subject["file_sha256"] == SHA
    assert subject["doc_type"] == "invoice"


@pytest.mark.asyncio
async def test_concurrent_finalize_single_credential(sessionmaker, resolver):
    tenant, key = await TenantDirectory(sessionmaker).create("t", credits=5)
    coord = _coordinator(sessionmaker, resolver)
    grant = await coord.request_ticket(key)

    results = await asyncio.gather(
        *(coord.finalize(key, grant.cid, SHA) for _ in range(4)),
        return_exceptions=True,
    )

    ok = [r for r in results if not isinstance(r, Exception)]
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(ok) == 1
    assert all(isinstance(e, InvalidTicket) and e.kind is TicketOutcome.ALREADY_USED for e in errors)
    async with sessionmaker() as s:
        rows = (
            await s.execute(
                select(func.count()).select_from(Credential).where(Credential.cid == grant.cid)
            )
        ).scalar_one()
    assert rows == 1
    assert await coord.ledger.balance(tenant.id) == 4


@pytest.mark.asyncio
async def test_request_ticket_without_credits(sessionmaker, resolver):
    _, key = await TenantDirectory(sessionmaker).create("t", credits=0)
    with pytest.raises(InsufficientCredits):
        await _coordinator(sessionmaker, resolver).request_ticket(key)


@pytest.mark.asyncio
async def test_storage_failure_refunds_credit(sessionmaker, resolver):
    tenant, key = await TenantDirectory(sessionmaker).create("t", credits=1)
    coord = _coordinator(sessionmaker, resolver)
    grant = await coord.request_ticket(key)
    await _preinsert_credential(sessionmaker, tenant.id, grant.cid)

    with pytest.raises(StorageFailure):
        await coord.finalize(key, grant.cid, SHA)
    assert await coord.ledger.balance(tenant.id) == 1


@pytest.mark.asyncio
async def test_failed_refund_goes_to_reconciliation_log(sessionmaker, resolver, caplog):
    tenant, key = await TenantDirectory(sessionmaker).create("t", credits=1)
    coord = _coordinator(sessionmaker, resolver, ledger=BrokenRefundLedger(sessionmaker))
    grant = await coord.request_ticket(key)
    await _preinsert_credential(sessionmaker, tenant.id, grant.cid)

    with caplog.at_level(logging.ERROR, logger="pdfvc.reconciliation"):
        with pytest.raises(StorageFailure):
            await coord.finalize(key, grant.cid, SHA)

    assert await coord.ledger.balance(tenant.id) == 0
    records = [r for r in caplog.records if r.name == "pdfvc.reconciliation"]
    assert len(records) == 1
    assert tenant.id in records[0].getMessage()
    assert grant.cid in records[0].getMessage()


@pytest.mark.asyncio
async def test_signing_key_checked_before_ticket(sessionmaker):
    tenant, key = await TenantDirectory(sessionmaker).create("t", credits=1)
    coord = _coordinator(sessionmaker, KeyResolver([], private_jwk=None, default_kid="k"))
    # request_ticket no firma; finalize sí
    grant = await coord.request_ticket(key)

    with pytest.raises(KeyResolutionFailure):
        await coord.finalize(key, grant.cid, SHA)
    assert await coord.tickets.consume(grant.cid, tenant.id) is TicketOutcome.OK


@pytest.mark.asyncio
async def test_direct_issue(sessionmaker, resolver):
    _, key = await TenantDirectory(sessionmaker).create("t", credits=2)
    out = await _coordinator(sessionmaker, resolver).issue(
        key, "did:example:alice", claims={"name": "Alice"}, vc_types=["EmailCredential"], expires_in_days=2
    )

    assert out.remaining_credits == 1
    payload = jwt.decode(out.token, options={"verify_signature": False})
    assert payload["jti"] == out.jti
    assert payload["exp"] - payload["iat"] == 2 * 24 * 3600
    assert payload["vc"]["type"] == ["VerifiableCredential", "EmailCredential"]
    assert payload["vc"]["credentialSubject"] == {"id": "did:example:alice", "name": "Alice"}
    async with sessionmaker() as s:
        row = (await s.execute(select(IssuanceLog).where(IssuanceLog.jti == out.jti))).scalar_one()
    assert row.subject == "did:example:alice"


@pytest.mark.asyncio
async def test_direct_issue_lost_credit_race(sessionmaker, resolver):
    _, key = await TenantDirectory(sessionmaker).create("t", credits=1)
    coord = _coordinator(sessionmaker, resolver, ledger=LostRaceLedger(sessionmaker))

    with pytest.raises(InsufficientCredits):
        await coord.issue(key, "did:example:bob")
    async with sessionmaker() as s:
        assert (await s.execute(select(func.count()).select_from(IssuanceLog))).scalar_one() == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "subject, claims, types, days",
    [
        ("", None, None, None),
        ("did:example:a", {"id": "did:example:other"}, None, None),
        ("did:example:a", {"when": object()}, None, None),
        ("did:example:a", None, [""], None),
        ("did:example:a", None, None, 0),
    ],
)
async def test_direct_issue_rejects_bad_input(sessionmaker, resolver, subject, claims, types, days):
    tenant, key = await TenantDirectory(sessionmaker).create("t", credits=1)
    coord = _coordinator(sessionmaker, resolver)
    with pytest.raises(InvalidInput):
        await coord.issue(key, subject, claims=claims, vc_types=types, expires_in_days=days)
    assert await coord.ledger.balance(tenant.id) == 1


def test_normalize_sha256():
    assert normalize_sha256(f"  {SHA.upper()} ") == SHA
    for bad in (None, "", "abc", "g" * 64, "a" * 65):
        with pytest.raises(InvalidInput):
            normalize_sha256(bad)
