from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from io import BytesIO
import qrcode

from pdfvc.api.deps import get_registry
from pdfvc.core.config import settings
from pdfvc.core.errors import NotFound
from pdfvc.services.credentials import CredentialRegistry

router = APIRouter()


@router.get("/qr/{cid}")
async def qr_for_cid(cid: str, registry: CredentialRegistry = Depends(get_registry)):
    """QR con la URL de verificación, para estampar en el PDF."""
    if await registry.get(cid) is None:
        raise NotFound("Credential not found")
    img = qrcode.make(settings.verify_url(cid))
    buf = BytesIO(); img.save(buf, format="PNG"); buf.seek(0)
    return StreamingResponse(buf, media_type="image/png")
