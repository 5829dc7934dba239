"""
Tests for the image retention policy.

Covers push date ordering and the selection of old images that are not used
by any running workload.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add python directory to path (also handled by conftest.py for pytest)
_python_dir = Path(__file__).parent.parent / "python"
if str(_python_dir.absolute()) not in sys.path:
    sys.path.insert(0, str(_python_dir.absolute()))

from utils.image_retention import (
    ImageRecord,
    is_image_in_use,
    select_old_unused_images,
    sort_images_by_push_date,
)

T0 = datetime.fromtimestamp(0, tz=timezone.utc)
T1 = datetime.fromtimestamp(1, tz=timezone.utc)
T2 = datetime.fromtimestamp(2, tz=timezone.utc)


def pushed_at(images):
    return [image.pushed_at for image in images]


@pytest.fixture
def untagged_images():
    """Three untagged images, newest first"""
    return [ImageRecord(pushed_at=T2), ImageRecord(pushed_at=T1), ImageRecord(pushed_at=T0)]


@pytest.fixture
def tagged_images():
    """Images tagged A(t0), B(t1), C(t2), newest first"""
    return [
        ImageRecord(pushed_at=T2, tags=("C",)),
        ImageRecord(pushed_at=T1, tags=("B",)),
        ImageRecord(pushed_at=T0, tags=("A",)),
    ]


class TestSortImagesByPushDate:
    """Tests for sort_images_by_push_date"""

    def test_sorts_oldest_first(self, untagged_images):
        """Test that images end up in ascending push date order"""
        sort_images_by_push_date(untagged_images)

        assert len(untagged_images) == 3
        assert pushed_at(untagged_images) == [T0, T1, T2]

    def test_sorts_in_place_and_returns_same_list(self, untagged_images):
        """Test that the given list object is reordered and returned"""
        result = sort_images_by_push_date(untagged_images)
        assert result is untagged_images

    def test_missing_timestamp_sorts_as_epoch(self):
        """Test that a record without timestamp sorts like the zero time"""
        images = [ImageRecord(pushed_at=T2), ImageRecord(pushed_at=None), ImageRecord(pushed_at=T1)]

        sort_images_by_push_date(images)

        assert pushed_at(images) == [None, T1, T2]

    def test_naive_and_aware_timestamps_compare(self):
        """Test that naive timestamps are compared as UTC"""
        naive = datetime(2024, 1, 1, 12, 0, 0)
        aware = datetime(2024, 1, 1, 11, 0, 0, tzinfo=timezone.utc)
        images = [ImageRecord(pushed_at=naive), ImageRecord(pushed_at=aware)]

        sort_images_by_push_date(images)

        assert pushed_at(images) == [aware, naive]

    def test_empty_list(self):
        """Test that sorting an empty list is a no-op"""
        assert sort_images_by_push_date([]) == []


class TestSelectOldUnusedImages:
    """Tests for select_old_unused_images"""

    def test_keeps_everything_when_keep_max_covers_all(self, untagged_images):
        """Should return no images"""
        assert select_old_unused_images(3, untagged_images, []) == []

    def test_returns_oldest_image_beyond_keep_max(self, untagged_images):
        """Should return the oldest image"""
        result = select_old_unused_images(2, untagged_images, [])
        assert pushed_at(result) == [T0]

    def test_keep_max_zero_returns_all_sorted(self, untagged_images):
        """Should return all images sorted by date"""
        result = select_old_unused_images(0, untagged_images, [])
        assert pushed_at(result) == [T0, T1, T2]

    def test_all_images_in_use(self, tagged_images):
        """Should return no images as they're all being used"""
        assert select_old_unused_images(0, tagged_images, ["A", "B", "C"]) == []

    def test_in_use_oldest_image_is_kept(self, tagged_images):
        """Should return all images but the oldest one which is in use"""
        result = select_old_unused_images(1, tagged_images, ["A"])
        assert pushed_at(result) == [T1, T2]

    def test_duplicate_tags_are_tolerated(self):
        """Should return the newest image as the two oldest ones are in use"""
        images = [
            ImageRecord(pushed_at=T2, tags=("C", "C")),
            ImageRecord(pushed_at=T1, tags=("B",)),
            ImageRecord(pushed_at=T0, tags=("A",)),
        ]

        result = select_old_unused_images(1, images, ["A", "A", "B", "B"])

        assert pushed_at(result) == [T2]

    def test_empty_images(self):
        """Test that no images means no candidates"""
        assert select_old_unused_images(0, [], ["A"]) == []

    def test_keep_max_larger_than_image_count(self, untagged_images):
        """Test that a generous keep_max keeps everything"""
        assert select_old_unused_images(10, untagged_images, []) == []

    def test_unknown_in_use_tags_are_harmless(self, tagged_images):
        """Test that in-use tags absent from the repository change nothing"""
        result = select_old_unused_images(1, tagged_images, ["X", "Y"])
        assert pushed_at(result) == [T0, T1]

    def test_image_protected_by_any_of_its_tags(self):
        """Test that one matching tag protects an image with several tags"""
        images = [
            ImageRecord(pushed_at=T0, tags=("old", "stable")),
            ImageRecord(pushed_at=T1, tags=("other",)),
        ]

        result = select_old_unused_images(0, images, {"stable"})

        assert pushed_at(result) == [T1]

    def test_untagged_image_is_never_protected(self):
        """Test that an image without tags can always be selected"""
        images = [ImageRecord(pushed_at=T0), ImageRecord(pushed_at=T1, tags=("live",))]

        result = select_old_unused_images(0, images, {"live"})

        assert pushed_at(result) == [T0]

    def test_returns_input_objects(self, untagged_images):
        """Test that candidates are the caller's records, not copies"""
        originals = list(untagged_images)

        result = select_old_unused_images(1, untagged_images, [])

        assert all(any(image is original for original in originals) for image in result)

    def test_accepts_any_iterable_of_tags(self, tagged_images):
        """Test that tags_in_use can be a generator"""
        result = select_old_unused_images(0, tagged_images, (tag for tag in ["A", "B"]))
        assert pushed_at(result) == [T2]


class TestRetentionProperties:
    """Property style checks over a larger repository"""

    @pytest.fixture
    def repository(self):
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        return [
            ImageRecord(pushed_at=base + timedelta(days=day), tags=(f"v{day}",), digest=f"sha256:{day:04d}")
            for day in (5, 1, 9, 3, 7, 0, 8, 2, 6, 4)
        ]

    @pytest.mark.parametrize("keep_max", [0, 1, 3, 5, 10, 15])
    @pytest.mark.parametrize("in_use", [set(), {"v0"}, {"v9", "v8"}, {"v1", "v4", "v7", "v100"}])
    def test_selection_invariants(self, repository, keep_max, in_use):
        """Subset, never in use, oldest first and keep_max newest images survive"""
        total = len(repository)
        result = select_old_unused_images(keep_max, list(repository), in_use)

        assert all(image in repository for image in result)
        assert not any(is_image_in_use(image, in_use) for image in result)
        assert pushed_at(result) == sorted(pushed_at(result))

        unprotected = [image for image in repository if not is_image_in_use(image, in_use)]
        assert len(result) == max(0, min(len(unprotected), total - keep_max))

        # Survivors are never older than a deleted image of the same kind
        survivors = [image for image in unprotected if image not in result]
        if result and survivors:
            assert max(pushed_at(result)) < min(pushed_at(survivors))

    @pytest.mark.parametrize("keep_max", [0, 2, 4])
    def test_second_pass_deletes_nothing(self, repository, keep_max):
        """Re-running the selection on the survivors finds nothing more to delete"""
        in_use = {"v2", "v5"}
        deleted = select_old_unused_images(keep_max, list(repository), in_use)
        survivors = [image for image in repository if image not in deleted]

        assert select_old_unused_images(keep_max, survivors, in_use) == []

    def test_duplicates_do_not_change_outcome(self, repository):
        """Duplicated tags behave like their deduplicated equivalent"""
        duplicated = [
            ImageRecord(pushed_at=image.pushed_at, tags=image.tags * 2, digest=image.digest) for image in repository
        ]

        expected = select_old_unused_images(3, list(repository), ["v1", "v6"])
        actual = select_old_unused_images(3, duplicated, ["v1", "v1", "v6", "v6"])

        assert [image.digest for image in actual] == [image.digest for image in expected]


class TestImageRecord:
    """Tests for ImageRecord"""

    def test_to_dict(self):
        """Test JSON friendly conversion"""
        image = ImageRecord(pushed_at=T1, tags=("a", "b"), digest="sha256:1", repository="app", size_bytes=42)

        assert image.to_dict() == {
            "repository": "app",
            "digest": "sha256:1",
            "tags": ["a", "b"],
            "pushed_at": T1.isoformat(),
            "size_bytes": 42,
        }

    def test_is_immutable(self):
        """Test that records cannot be modified"""
        image = ImageRecord(pushed_at=T0)
        with pytest.raises(AttributeError):
            image.tags = ("x",)
