import io
import os
from datetime import datetime, timedelta, timezone

import pytest
from moto import mock_aws
from PIL import Image

# Set test environment variable BEFORE importing app modules
os.environ["TESTING"] = "true"

# Dummy AWS credentials for moto
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["AWS_SECURITY_TOKEN"] = "testing"
os.environ["AWS_SESSION_TOKEN"] = "testing"
os.environ["AWS_REGION"] = "us-east-1"
os.environ["DYNAMODB_IMAGES_TABLE"] = "Images"
os.environ["DYNAMODB_SHARE_REQUESTS_TABLE"] = "ShareRequests"
# Clear the AWS_ENDPOINT_URL so moto mocks are used instead of localstack
os.environ.pop("AWS_ENDPOINT_URL", None)

from image_share.image_service.models import ImageMeta
from image_share.messaging import bus as bus_module
from image_share.storage.dynamodb import DynamoDBService
from image_share.storage.files import LocalFileStorage


class FixedClock:
    """Clock that only moves when told to."""
    def __init__(self, now: datetime):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)


def make_image_bytes(size=(10, 10), fmt="PNG", mode="RGB", color="red"):
    """Generate a simple valid image in-memory."""
    img = Image.new(mode, size, color=color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture(scope="function")
def aws_credentials():
    """Mocked AWS Credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"


@pytest.fixture(scope="function")
def db(aws_credentials):
    with mock_aws():
        yield DynamoDBService()


@pytest.fixture
def files(tmp_path):
    return LocalFileStorage(str(tmp_path / "wwwroot"))


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 8, 14, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def bus(mocker):
    """Stand-in for MessageBus that records what was published."""
    fake = mocker.Mock()
    fake.publish = mocker.AsyncMock(return_value=True)
    fake.subscribe = mocker.AsyncMock(return_value="ctag-1")
    return fake


@pytest.fixture
def stored_image(db, files):
    """An image owned by u2, saved on disk and in the store, without thumbnail."""
    def _make(owner_id="u2", size=(800, 600), filename="photo.png", fmt="PNG"):
        data = make_image_bytes(size=size, fmt=fmt)
        stored_file_name, stored_path = files.save_upload(owner_id, filename, data)
        image = ImageMeta(
            owner_id=owner_id,
            original_file_name=filename,
            stored_file_name=stored_file_name,
            stored_path=stored_path,
            content_type="image/png",
            size=len(data),
            width=size[0],
            height=size[1],
            uploaded_at=datetime(2025, 8, 14, 11, 0, tzinfo=timezone.utc),
        )
        db.save_image(image)
        return image
    return _make


@pytest.fixture
def amqp(mocker):
    """aio-pika connection, channel, exchanges and queues as AsyncMocks."""
    exchange = mocker.Mock(name="exchange")
    exchange.publish = mocker.AsyncMock()
    dlx = mocker.Mock(name="dlx")

    queues = {}

    def make_queue(name, **kwargs):
        queue = mocker.Mock(name=name)
        queue.bind = mocker.AsyncMock()
        queue.consume = mocker.AsyncMock(return_value=f"ctag-{name}")
        queue.declare_kwargs = kwargs
        queues[name] = queue
        return queue

    channel = mocker.Mock(name="channel")
    channel.is_closed = False
    channel.set_qos = mocker.AsyncMock()
    channel.close = mocker.AsyncMock()
    channel.declare_exchange = mocker.AsyncMock(side_effect=[exchange, dlx])
    channel.declare_queue = mocker.AsyncMock(side_effect=make_queue)

    connection = mocker.Mock(name="connection")
    connection.is_closed = False
    connection.channel = mocker.AsyncMock(return_value=channel)
    connection.close = mocker.AsyncMock()

    connect = mocker.patch.object(bus_module.aio_pika, "connect_robust", mocker.AsyncMock(return_value=connection))

    class Amqp:
        pass

    a = Amqp()
    a.connect, a.connection, a.channel, a.exchange, a.dlx, a.queues = connect, connection, channel, exchange, dlx, queues
    return a
