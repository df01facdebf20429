# pdfvc/main.py
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError

from pdfvc.api.issuer import router as issuer_router
from pdfvc.api.verifier import router as verifier_router, did_router
from pdfvc.api.holder import router as holder_router
from pdfvc.api.admin import router as admin_router

from pdfvc.core.config import settings
from pdfvc.core.errors import StorageFailure, VCError
from pdfvc.core.logging_config import configure_logging
from pdfvc.db.session import engine
from pdfvc.db.models import Base

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # === STARTUP ===
    configure_logging(settings.log_level)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    # === SHUTDOWN ===
    await engine.dispose()

app = FastAPI(title="PDF VC issuer", lifespan=lifespan)

app.include_router(issuer_router,   prefix="/api",       tags=["issuer"])
app.include_router(verifier_router, prefix="/api",       tags=["verifier"])
app.include_router(admin_router,    prefix="/api/admin", tags=["admin"])
app.include_router(holder_router,   prefix="/holder",    tags=["holder"])
app.include_router(did_router,                           tags=["did"])


@app.exception_handler(VCError)
async def vc_error_handler(request: Request, exc: VCError):
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        {"error": "invalid_input", "detail": "Invalid request body", "errors": jsonable_encoder(exc.errors())},
        status_code=400,
    )


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    # No se filtran detalles internos al cliente
    log.error("storage error on %s %s", request.method, request.url.path, exc_info=exc)
    err = StorageFailure()
    return JSONResponse(err.to_dict(), status_code=err.status_code)


@app.get("/")
def root():
    return {"ok": True}
