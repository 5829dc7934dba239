"""
Retention policy for ECR image cleanup.

Decides which images of a repository can be deleted: the oldest images
beyond the retention count that are not referenced by any running workload.
Everything here is pure; listing and deleting images is done by
utils.ecr_client.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class ImageRecord:
    """A single pushed image and the tags pointing at it"""

    pushed_at: Optional[datetime]
    tags: Tuple[str, ...] = field(default_factory=tuple)
    digest: Optional[str] = None
    repository: Optional[str] = None
    size_bytes: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        return {
            "repository": self.repository,
            "digest": self.digest,
            "tags": list(self.tags),
            "pushed_at": self.pushed_at.isoformat() if self.pushed_at else None,
            "size_bytes": self.size_bytes,
        }


def _push_date_key(image: ImageRecord) -> datetime:
    pushed_at = image.pushed_at
    if pushed_at is None:
        return _EPOCH
    # Naive timestamps are treated as UTC so they compare with aware ones
    if pushed_at.tzinfo is None:
        return pushed_at.replace(tzinfo=timezone.utc)
    return pushed_at


def sort_images_by_push_date(images: List[ImageRecord]) -> List[ImageRecord]:
    """Sort images in place by push date, oldest first.

    Returns the same list object for convenience.
    """
    images.sort(key=_push_date_key)
    return images


def is_image_in_use(image: ImageRecord, tags_in_use: Iterable[str]) -> bool:
    """True if at least one tag of the image is in use"""
    return any(tag in tags_in_use for tag in image.tags)


def select_old_unused_images(
    keep_max: int, images: List[ImageRecord], tags_in_use: Iterable[str]
) -> List[ImageRecord]:
    """Select the images that can be deleted from a repository.

    The newest ``keep_max`` images of the repository are kept. Images carrying
    a tag from ``tags_in_use`` are never selected and still take up one of
    the ``keep_max`` slots, so the remaining slots go to the newest unused
    images. Everything else is returned, oldest first.

    Args:
        keep_max: Number of images to retain (non-negative)
        images: Images of one repository; sorted in place by push date
        tags_in_use: Tags referenced by running workloads

    Returns:
        Deletion candidates, oldest first
    """
    if not images:
        return []

    sort_images_by_push_date(images)
    in_use = set(tags_in_use)

    deletable = len(images) - keep_max
    old_images = []
    for image in images:
        if len(old_images) >= deletable:
            break
        if is_image_in_use(image, in_use):
            continue
        old_images.append(image)

    return old_images
