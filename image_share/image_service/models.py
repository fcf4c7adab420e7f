from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field
from uuid import uuid4

def new_image_id() -> str:
    """Generates a new unique image ID."""
    return str(uuid4())

class ImageMeta(BaseModel):
    image_id: str = Field(default_factory=new_image_id)
    owner_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    tags: List[str] = []
    original_file_name: str
    stored_file_name: str
    # relative to the media root, e.g. /uploads/<owner>/<stored_file_name>
    stored_path: str
    content_type: str
    size: int
    width: int = 0
    height: int = 0
    uploaded_at: datetime
    thumbnail_path: Optional[str] = None
    thumbnail_ready: bool = False

    def set_thumbnail(self, thumbnail_path: str):
        self.thumbnail_path = thumbnail_path
        self.thumbnail_ready = True
