from datetime import datetime

from pydantic import BaseModel


class UploadResponse(BaseModel):
    session_id: str
    image_count: int
    expires_at: datetime
