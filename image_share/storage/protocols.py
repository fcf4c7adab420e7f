"""
    Interfaces the workflow and the worker consume. DynamoDBService
    implements both stores; tests may pass any object with these methods.
"""
from datetime import datetime
from typing import List, Optional, Protocol

from image_share.image_service.models import ImageMeta
from image_share.share_service.models import ShareRequest, ShareRequestStatus

class ImageStore(Protocol):
    def get_image(self, image_id: str) -> Optional[ImageMeta]: ...

    def save_image(self, image: ImageMeta) -> None: ...

    def delete_image(self, image_id: str) -> None: ...

class ShareRequestStore(Protocol):
    def get_share_request(self, share_request_id: str) -> Optional[ShareRequest]: ...

    def save_share_request(self, share_request: ShareRequest) -> None: ...

    def find_share_requests(
        self,
        requester_id: Optional[str] = None,
        owner_id: Optional[str] = None,
        image_id: Optional[str] = None,
        status: Optional[ShareRequestStatus] = None,
    ) -> List[ShareRequest]: ...

    def delete_share_requests_for_image(self, image_id: str) -> int: ...

class Clock(Protocol):
    def now(self) -> datetime: ...
