import re

import pytest

import config
import db
import images
from errors import NotFoundError, ValidationError


def test_upload_builds_keys_and_urls() -> None:
    stored = images.upload_images([("front.JPG", b"jpeg-bytes")], "Dubai Marina")
    assert len(stored) == 1
    image = stored[0]
    assert re.fullmatch(r"dubai-marina/\d+-[a-z0-9]{6}\.jpg", image.storage_key)
    assert image.s3_url == f"https://{config.S3_BUCKET_NAME}.s3.{config.AWS_REGION}.amazonaws.com/{image.storage_key}"
    assert image.cdn_url == f"https://{config.CLOUDFRONT_DOMAIN}/{image.storage_key}"
    assert db.get_image_folder("Dubai Marina")["image_count"] == 1


def test_failing_images_are_skipped() -> None:
    stored = images.upload_images(
        [("a.png", b"png"), ("notes.txt", b"text"), ("empty.jpg", b""), ("b.webp", b"webp")],
        "JVC",
    )
    assert [img.name for img in stored] == ["a.png", "b.webp"]
    assert len(images.list_images("JVC")) == 2


@pytest.mark.parametrize("files,location", [([], "JVC"), ([("a.jpg", b"x")], "  ")])
def test_invalid_upload(files, location) -> None:
    with pytest.raises(ValidationError):
        images.upload_images(files, location)


def test_next_image_rotates() -> None:
    images.upload_images([("1.jpg", b"1"), ("2.jpg", b"2"), ("3.jpg", b"3")], "Palm Jumeirah")
    picked = [images.next_image_for_location("Palm Jumeirah").name for _ in range(4)]
    assert picked == ["1.jpg", "2.jpg", "3.jpg", "1.jpg"]


def test_next_image_without_images() -> None:
    with pytest.raises(NotFoundError):
        images.next_image_for_location("Nowhere")
