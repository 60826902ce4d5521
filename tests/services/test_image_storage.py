import pytest
from botocore.exceptions import ClientError

from services import image_storage
from services.image_generation import upload_and_save_image
from services.image_styles import IMAGE_STYLES, get_image_style, is_known_style, style_prompt
from shared.exceptions import StorageError
from tests.factories import make_card


class _FakeS3:
    def __init__(self, fail=False):
        self.fail = fail
        self.objects = {}

    def put_object(self, Bucket, Key, Body, ContentType):
        if self.fail:
            raise ClientError({"Error": {"Code": "500", "Message": "boom"}}, "PutObject")
        self.objects[(Bucket, Key)] = (Body, ContentType)

    def delete_object(self, Bucket, Key):
        self.objects.pop((Bucket, Key), None)


def test_upload_uses_prefix_and_bucket(app, monkeypatch):
    fake = _FakeS3()
    monkeypatch.setattr(image_storage, "get_r2_client", lambda: fake)

    with app.app_context():
        key = image_storage.upload_image(b"png", "c1-1.png", "image/png")
        url = image_storage.public_url(key)

    assert key == "dev/cards/c1-1.png"
    assert fake.objects[("cards", key)] == (b"png", "image/png")
    assert url == "https://img.example.test/dev/cards/c1-1.png"


def test_upload_failure_raises_storage_error(app, monkeypatch):
    monkeypatch.setattr(image_storage, "get_r2_client", lambda: _FakeS3(fail=True))

    with app.app_context(), pytest.raises(StorageError):
        image_storage.upload_image(b"png", "c1.png", "image/png")


def test_missing_settings(app, monkeypatch):
    monkeypatch.setitem(app.config, "R2_BUCKET_NAME", None)
    with app.app_context(), pytest.raises(StorageError, match="R2_BUCKET_NAME"):
        image_storage.get_r2_client()


def test_file_names_keep_card_id():
    name = image_storage.image_file_name("c9", ".webp")
    assert name.startswith("c9-")
    assert name.endswith(".webp")


def test_failed_row_insert_removes_upload(create_user, monkeypatch):
    user, _ = create_user()
    fake = _FakeS3()
    monkeypatch.setattr(image_storage, "get_r2_client", lambda: fake)
    monkeypatch.setattr("services.gemini.generate_embedding", lambda text: [0.1])

    # style is NOT NULL
    with pytest.raises(StorageError):
        upload_and_save_image(user, b"png", "image/png", make_card(card_id="c1"), None, "prompt")

    assert fake.objects == {}


def test_style_registry():
    assert {"classic", "modern", "inked"} <= set(IMAGE_STYLES)
    assert is_known_style("inked")
    assert not is_known_style("vaporwave")
    assert get_image_style(None) is None
    assert style_prompt("vaporwave") == IMAGE_STYLES["classic"].prompt
