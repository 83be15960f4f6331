from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from figurine_api.dependencies import get_upload_store
from figurine_api.schemas.upload import UploadResponse
from figurine_api.services.upload_sessions import ImageUpload, UploadSessionStore

router = APIRouter(prefix="/api/v1/uploads", tags=["uploads"])


@router.post("", response_model=UploadResponse, summary="Upload pet photos", status_code=201)
async def upload_images_endpoint(
    images: list[UploadFile] = File(...),
    store: UploadSessionStore = Depends(get_upload_store),
) -> UploadResponse:
    """Stage up to ``upload_max_images`` photos and return the session that holds them."""
    if len(images) > store.max_images:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"At most {store.max_images} images can be uploaded",
        )

    uploads: list[ImageUpload] = []
    for index, image in enumerate(images, start=1):
        # one byte past the limit is enough for the store to reject the file
        content = await image.read(store.max_image_bytes + 1)
        uploads.append(
            ImageUpload(
                filename=image.filename or f"photo_{index}",
                media_type=image.content_type or "application/octet-stream",
                content=content,
            )
        )

    session = store.create(uploads)
    return UploadResponse(
        session_id=session.session_id,
        image_count=len(session.images),
        expires_at=session.expires_at,
    )
