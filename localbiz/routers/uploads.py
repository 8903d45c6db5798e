from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile, status

from localbiz.core.config import settings
from localbiz.core.deps import get_current_identity, get_storage
from localbiz.core.errors import ForbiddenError, ValidationError
from localbiz.core.rate_limit import rate_limit
from localbiz.core.security import Identity
from localbiz.schemas.uploads import UploadResponse
from localbiz.services.storage import ImageStorage, generate_object_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/uploads", tags=["uploads"])


@router.post(
    "/images",
    response_model=UploadResponse,
    status_code=201,
    dependencies=[rate_limit("uploads", limit=30, window_seconds=60)],
)
async def upload_image(
    file: UploadFile = File(...),
    current: Identity = Depends(get_current_identity),
    storage: ImageStorage = Depends(get_storage),
) -> UploadResponse:
    content_type = file.content_type or ""
    if not content_type.startswith("image/"):
        raise ValidationError("File must be an image")

    data = await file.read(settings.image_max_bytes + 1)
    if not data:
        raise ValidationError("No file provided")
    if len(data) > settings.image_max_bytes:
        raise ValidationError(f"File size must be less than {settings.image_max_bytes // (1024 * 1024)}MB")

    # Objects live under the uploader's id so ownership can be checked on delete.
    name = generate_object_name(current.id, file.filename or "")
    stored = storage.upload(name, data, content_type=content_type)
    logger.info("Image %s uploaded by %s (%s bytes)", stored.path, current.id, len(data))
    return UploadResponse(url=stored.url, path=stored.path, file_name=name.rsplit("/", 1)[-1])


@router.delete("/images", status_code=204)
def delete_image(
    path: str | None = Query(default=None, max_length=1000),
    url: str | None = Query(default=None, max_length=1000),
    current: Identity = Depends(get_current_identity),
    storage: ImageStorage = Depends(get_storage),
) -> Response:
    object_path = path or (storage.path_from_url(url) if url else None)
    if not object_path:
        raise ValidationError("Provide the path or url of an uploaded image")
    if not current.is_admin and not object_path.startswith(f"{current.id}/"):
        raise ForbiddenError("Not authorized to delete this image")

    storage.delete(object_path)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
