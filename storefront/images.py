import os
from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

from flask import current_app
from werkzeug.utils import secure_filename

from .errors import BadRequest, NotFound, StorageError

IMAGE_PREFIX = "products/"


@dataclass
class ImageUpload:
    filename: str
    content_type: str
    extension: str
    data: bytes


def allowed_image_extension(filename: str, allowed_extensions) -> bool:
    extension = os.path.splitext(filename)[1].lower().lstrip(".")
    if not extension:
        return False
    return extension in allowed_extensions


def collect_uploads(files: Iterable, allowed_extensions) -> List[ImageUpload]:
    """Validate uploaded files and read them into memory.

    Files without a name are ignored. Anything that is not an image with one
    of the allowed extensions rejects the whole request.
    """
    uploads: List[ImageUpload] = []
    for image_file in files:
        if not image_file or not getattr(image_file, "filename", ""):
            continue

        original_filename = secure_filename(image_file.filename)
        content_type = (image_file.mimetype or "").lower()
        if (
            not original_filename
            or not allowed_image_extension(original_filename, allowed_extensions)
            or not content_type.startswith("image/")
        ):
            current_app.logger.warning(
                "Rejected upload %r (%s)", image_file.filename, content_type or "unknown"
            )
            raise BadRequest(
                "Unsupported image format. Upload PNG, JPG, JPEG, GIF, or WEBP files."
            )

        uploads.append(
            ImageUpload(
                filename=original_filename,
                content_type=content_type,
                extension=os.path.splitext(original_filename)[1].lower(),
                data=image_file.read(),
            )
        )
    return uploads


def check_capacity(total: int, maximum: int) -> None:
    if total > maximum:
        raise BadRequest(f"A product can have at most {maximum} images.")


def upload_images(storage, uploads: List[ImageUpload]) -> List[Dict]:
    """Store every upload, removing the ones already stored if any fails."""
    stored: List[Dict] = []
    for upload in uploads:
        try:
            blob = storage.upload(
                upload.data,
                upload.content_type,
                prefix=IMAGE_PREFIX,
                extension=upload.extension,
            )
        except StorageError:
            current_app.logger.exception("Image upload failed for %s", upload.filename)
            delete_blobs(storage, [image["storage_key"] for image in stored])
            raise
        stored.append({"url": blob.url, "storage_key": blob.key, "is_primary": False})
    return stored


def delete_blobs(storage, keys: Iterable[str]) -> int:
    """Best-effort removal; failures are logged and skipped."""
    failures = 0
    for key in keys:
        if not key:
            continue
        try:
            storage.delete(key)
        except StorageError as exc:
            failures += 1
            current_app.logger.warning(
                "Unable to delete blob %s: %s", key, exc.__cause__ or exc
            )
    return failures


def image_keys(images: Iterable[Dict]) -> List[str]:
    return [image.get("storage_key") for image in images or [] if image.get("storage_key")]


def assign_primary(images: List[Dict], index: int = None) -> List[Dict]:
    """Return a copy of ``images`` with exactly one primary entry.

    With an explicit ``index`` that image becomes primary, otherwise the first
    image already flagged keeps the flag and the first image is the fallback.
    """
    if not images:
        return []
    if index is None:
        flagged = [position for position, image in enumerate(images) if image.get("is_primary")]
        index = flagged[0] if flagged else 0
    return [
        {
            "url": image.get("url"),
            "storage_key": image.get("storage_key"),
            "is_primary": position == index,
        }
        for position, image in enumerate(images)
    ]


def _check_index(images: List[Dict], index: int) -> None:
    if index < 0 or index >= len(images):
        raise NotFound("Image not found.")


def remove_image(images: List[Dict], index: int) -> Tuple[List[Dict], Dict]:
    _check_index(images, index)
    removed = images[index]
    remaining = images[:index] + images[index + 1:]
    return assign_primary(remaining), removed


def set_primary(images: List[Dict], index: int) -> List[Dict]:
    _check_index(images, index)
    return assign_primary(images, index)
