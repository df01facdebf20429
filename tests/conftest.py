# tests/conftest.py
import json
import os
import sys
import uuid
from pathlib import Path

import pytest
import pytest_asyncio

# --- Asegurar que podemos importar 'pdfvc' desde la raíz del repo ---
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# --- Generación de claves efímeras (Ed25519) ---
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from jwt.algorithms import OKPAlgorithm

from tests_helpers import ADMIN_SECRET, ISSUER_DID, ISSUER_KID


def _generate_ephemeral_jwks() -> tuple[str, str]:
    key = Ed25519PrivateKey.generate()
    priv = json.loads(OKPAlgorithm.to_jwk(key))
    pub = json.loads(OKPAlgorithm.to_jwk(key.public_key()))
    return json.dumps(priv), json.dumps(pub)


def _prepare_test_env() -> None:
    tmp = (ROOT / ".pytest_tmp").absolute()
    tmp.mkdir(exist_ok=True)

    # BD SQLite temporal para pruebas, nueva en cada ejecución
    db_file = tmp / "test.sqlite3"
    if db_file.exists():
        db_file.unlink()
    os.environ["DB_URL"] = f"sqlite+aiosqlite:///{db_file.as_posix()}"

    # Variables mínimas para que Settings funcione sin .env
    os.environ["ISSUER_DID"] = ISSUER_DID
    os.environ["ISSUER_KID"] = ISSUER_KID
    os.environ["SITE_URL"] = "https://issuer.test"
    os.environ["ADMIN_SECRET"] = ADMIN_SECRET
    os.environ["USE_DID_WEB"] = "true"

    priv, pub = _generate_ephemeral_jwks()
    os.environ["PRIVATE_JWK"] = priv
    os.environ["PUBLIC_JWK"] = pub


# Antes de que ningún test importe pdfvc.core.config
_prepare_test_env()


@pytest.fixture(scope="session")
def client():
    """
    Cliente de pruebas con entorno efímero:
    - BD sqlite en .pytest_tmp/test.sqlite3
    - Claves Ed25519 generadas al vuelo
    """
    from fastapi.testclient import TestClient
    from pdfvc.main import app
    # Con 'with' forzamos lifespan: crea tablas en startup y cierra engine en shutdown
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_tenant(client):
    """Crea un tenant vía API de administración y devuelve (tenant_id, headers)."""
    def _make(credits: int = 5):
        r = client.post(
            "/api/admin/tenants",
            json={"name": "Test tenant", "email": f"{uuid.uuid4().hex}@example.test", "credits": credits},
            headers={"x-admin-secret": ADMIN_SECRET},
        )
        assert r.status_code == 200, r.text
        data = r.json()
        return data["tenant_id"], {"x-api-key": data["api_key"]}
    return _make


@pytest_asyncio.fixture
async def sessionmaker(tmp_path):
    """async_sessionmaker sobre una BD SQLite propia del test, con las tablas creadas."""
    from pdfvc.db.models import Base
    from pdfvc.db.session import make_sessionmaker

    engine, sm = make_sessionmaker(f"sqlite+aiosqlite:///{(tmp_path / 'svc.sqlite3').as_posix()}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield sm
    await engine.dispose()


# --- Reset de settings y caché did:web después de cada test (autouse) ---
@pytest.fixture(autouse=True)
def _reset_settings_between_tests():
    from pdfvc.core.config import settings
    from pdfvc.core import keys
    snapshot = (
        settings.use_did_web, settings.issuer_did, settings.issuer_kid, settings.private_jwk, settings.public_jwk
    )
    yield
    (
        settings.use_did_web, settings.issuer_did, settings.issuer_kid, settings.private_jwk, settings.public_jwk
    ) = snapshot
    keys._DID_WEB_PUBKEY_CACHE.clear()


@pytest.fixture
def resolver():
    """KeyResolver con una clave Ed25519 propia del test, sin did:web."""
    from pdfvc.core.keys import KeyResolver, StaticKeySource
    key = Ed25519PrivateKey.generate()
    return KeyResolver(
        [StaticKeySource(ISSUER_DID, key.public_key(), ISSUER_KID)],
        private_jwk=OKPAlgorithm.to_jwk(key),
        default_kid=ISSUER_KID,
    )
