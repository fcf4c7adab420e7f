import boto3
from boto3.dynamodb.conditions import Attr
from typing import Optional, Dict, Any, List
from botocore.exceptions import BotoCoreError, ClientError
from image_share.image_service.models import ImageMeta
from image_share.share_service.models import ShareRequest, ShareRequestStatus
from image_share.exceptions import DynamoDBException
from image_share.settings import settings
import logging

log = logging.getLogger(__name__)

# -------------------------
# DynamoDB Service
# -------------------------
class DynamoDBService:
    """Image and share-request store. Every call is one self-contained read or write."""
    def __init__(self, images_table: Optional[str] = None, share_requests_table: Optional[str] = None):
        session = boto3.session.Session(region_name=settings.aws_region)
        kwargs = {
            "aws_access_key_id": settings.aws_access_key_id,
            "aws_secret_access_key": settings.aws_secret_access_key,
        }
        if settings.aws_endpoint_url:
            kwargs["endpoint_url"] = settings.aws_endpoint_url

        self.images_table = images_table or settings.dynamodb_images_table
        self.share_requests_table = share_requests_table or settings.dynamodb_share_requests_table

        self.resource = session.resource("dynamodb", **kwargs)
        log.info("Initialized DynamoDB resource")

        # Ensure tables exist at initialization
        self.ensure_table(self.images_table, "image_id", "owner_id", "OwnerIndex")
        self.ensure_table(self.share_requests_table, "share_request_id", "image_id", "ImageIndex")

    # Refer here: https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/dynamodb/client/create_table.html
    def ensure_table(self, table_name: str, hash_key: str, index_key: str, index_name: str):
        try:
            table = self.resource.Table(table_name)
            table.load()
        except ClientError:
            table = self.resource.create_table(
                TableName=table_name,
                KeySchema=[{"AttributeName": hash_key, "KeyType": "HASH"}],
                AttributeDefinitions=[
                    {"AttributeName": hash_key, "AttributeType": "S"},
                    {"AttributeName": index_key, "AttributeType": "S"},
                ],
                GlobalSecondaryIndexes=[
                    {
                        "IndexName": index_name,
                        "KeySchema": [{"AttributeName": index_key, "KeyType": "HASH"}],
                        "Projection": {"ProjectionType": "ALL"},
                        "ProvisionedThroughput": {"ReadCapacityUnits": 5, "WriteCapacityUnits": 5},
                    }
                ],
                ProvisionedThroughput={"ReadCapacityUnits": 5, "WriteCapacityUnits": 5},
            )
            table.wait_until_exists()
            log.info("Created table %s", table_name)

    # -------------------------
    # Images
    # -------------------------
    def get_image(self, image_id: str) -> Optional[ImageMeta]:
        item = self._get(self.images_table, {"image_id": image_id})
        return ImageMeta.model_validate(item) if item else None

    def save_image(self, image: ImageMeta):
        self._put(self.images_table, image.model_dump(mode="json"))
        log.debug("Saved image %s", image.image_id)

    def delete_image(self, image_id: str):
        try:
            self.resource.Table(self.images_table).delete_item(Key={"image_id": image_id})
        except (BotoCoreError, ClientError) as e:
            log.error("DynamoDB delete_item on %s failed: %s", self.images_table, e)
            raise DynamoDBException(f"Failed to delete image {image_id}: {e}")
        log.debug("Deleted image %s", image_id)

    # -------------------------
    # Share requests
    # -------------------------
    def get_share_request(self, share_request_id: str) -> Optional[ShareRequest]:
        item = self._get(self.share_requests_table, {"share_request_id": share_request_id})
        return ShareRequest.model_validate(item) if item else None

    def save_share_request(self, share_request: ShareRequest):
        self._put(self.share_requests_table, share_request.model_dump(mode="json"))
        log.debug("Saved share request %s (%s)", share_request.share_request_id, share_request.status.value)

    def find_share_requests(
        self,
        requester_id: Optional[str] = None,
        owner_id: Optional[str] = None,
        image_id: Optional[str] = None,
        status: Optional[ShareRequestStatus] = None,
    ) -> List[ShareRequest]:
        filters = {}
        if requester_id:
            filters["requester_id"] = requester_id
        if owner_id:
            filters["owner_id"] = owner_id
        if image_id:
            filters["image_id"] = image_id
        if status:
            filters["status"] = status.value
        items = self.scan_all(self.share_requests_table, filters)
        return [ShareRequest.model_validate(it) for it in items]

    def delete_share_requests_for_image(self, image_id: str) -> int:
        requests = self.find_share_requests(image_id=image_id)
        table = self.resource.Table(self.share_requests_table)
        try:
            with table.batch_writer() as batch:
                for req in requests:
                    batch.delete_item(Key={"share_request_id": req.share_request_id})
        except (BotoCoreError, ClientError) as e:
            log.error("DynamoDB batch delete on %s failed: %s", self.share_requests_table, e)
            raise DynamoDBException(f"Failed to delete share requests for image {image_id}: {e}")
        log.debug("Deleted %d share requests for image %s", len(requests), image_id)
        return len(requests)

    # -------------------------
    # Helpers
    # -------------------------
    def scan_all(self, table_name: str, filter_expression: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Scans a table following LastEvaluatedKey until exhausted."""
        table = self.resource.Table(table_name)
        scan_kwargs: Dict[str, Any] = {}
        if filter_expression:
            filters = None
            for k, v in filter_expression.items():
                cond = Attr(k).eq(v)
                filters = cond if filters is None else filters & cond
            scan_kwargs["FilterExpression"] = filters

        items: List[Dict[str, Any]] = []
        try:
            while True:
                resp = table.scan(**scan_kwargs)
                items.extend(resp.get("Items", []))
                last_key = resp.get("LastEvaluatedKey")
                if not last_key:
                    break
                scan_kwargs["ExclusiveStartKey"] = last_key
        except (BotoCoreError, ClientError) as e:
            log.error("DynamoDB scan on %s failed: %s", table_name, e)
            raise DynamoDBException(f"Failed to scan {table_name}: {e}")
        return items

    def _get(self, table_name: str, key: Dict[str, str]) -> Optional[Dict[str, Any]]:
        try:
            resp = self.resource.Table(table_name).get_item(Key=key)
        except (BotoCoreError, ClientError) as e:
            log.error("DynamoDB get_item on %s failed: %s", table_name, e)
            raise DynamoDBException(f"Failed to read from {table_name}: {e}")
        return resp.get("Item")

    def _put(self, table_name: str, item: Dict[str, Any]):
        try:
            self.resource.Table(table_name).put_item(Item=item)
        except (BotoCoreError, ClientError) as e:
            log.error("DynamoDB put_item on %s failed: %s", table_name, e)
            raise DynamoDBException(f"Failed to write to {table_name}: {e}")

    def close(self):
        log.info("Closed DynamoDB resource")
