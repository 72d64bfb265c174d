from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from forumfiles.core.database import get_db
from forumfiles.core.errors import Gone
from forumfiles.core.rate_limit import client_ip
from forumfiles.core.storage import ObjectStorage, get_storage
from forumfiles.schemas.link import LinkInfoResponse, RedeemRequest
from forumfiles.services.link_redemption import LinkInfo, LinkRedemptionEngine
from forumfiles.utils.streaming import file_response

router = APIRouter(prefix="/public", tags=["Public links"])


def get_engine(
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
) -> LinkRedemptionEngine:
    return LinkRedemptionEngine(db, storage)


def _link_info(info: LinkInfo) -> LinkInfoResponse:
    return LinkInfoResponse(
        filename=info.file.filename,
        description=info.file.description or "",
        file_size=info.file.size,
        mime_type=info.file.content_type,
        expires_at=info.link.expires_at,
        download_count=info.link.download_count,
        max_downloads=info.link.max_downloads,
    )


@router.get("/link/{code}", response_model=LinkInfoResponse)
async def link_info(code: str, engine: LinkRedemptionEngine = Depends(get_engine)):
    """Landing-page metadata. Does not consume a download."""
    try:
        info = await engine.resolve(code)
    except Gone as e:
        if e.info is not None:
            e.metadata = _link_info(e.info).model_dump(mode="json", by_alias=True)
        raise
    return _link_info(info)


@router.post("/link/{code}/download")
async def redeem_link(
    code: str,
    body: RedeemRequest,
    request: Request,
    engine: LinkRedemptionEngine = Depends(get_engine),
):
    redemption = await engine.redeem(code, body.password, client_key=client_ip(request))
    return file_response(redemption.file, redemption.stream)
