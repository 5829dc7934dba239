"""Unit tests for utils/ecr_client.py"""

import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

_python_dir = Path(__file__).parent.parent / "python"
if str(_python_dir.absolute()) not in sys.path:
    sys.path.insert(0, str(_python_dir.absolute()))

from utils.ecr_client import EcrClient, Repository
from utils.error_utils import ActionableError, ErrorCategory
from utils.image_retention import ImageRecord

NO_RETRY = {"max_retries": 0, "initial_delay": 0.0, "max_delay": 0.0, "exponential_base": 1.0, "jitter": False}


def client_error(code: str, operation: str = "DescribeRepositories") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{code} raised"}}, operation)


@pytest.fixture
def boto_client():
    """A mock boto3 ECR client"""
    return MagicMock()


@pytest.fixture
def ecr_client(boto_client):
    return EcrClient(region="us-east-1", client=boto_client, retry_settings=NO_RETRY)


def set_pages(boto_client, pages):
    boto_client.get_paginator.return_value.paginate.return_value = pages


class TestEcrClientInit:
    """Tests for EcrClient construction"""

    def test_region_and_retry_settings_default_to_config(self, boto_client):
        """Test that missing arguments are read from the configuration"""
        env = {"CONFIG_FILE": "/nonexistent/config.yaml", "AWS_REGION": "eu-west-1"}
        with patch.dict(os.environ, env):
            client = EcrClient(client=boto_client)

        assert client.region == "eu-west-1"
        assert client.client is boto_client
        assert client.retry_settings["max_retries"] == 3
        assert client.retry_settings["initial_delay"] == 1.0

    def test_explicit_arguments_win(self, boto_client):
        """Test that explicit region and retry settings are used as given"""
        client = EcrClient(region="us-west-2", client=boto_client, retry_settings=NO_RETRY)

        assert client.region == "us-west-2"
        assert client.retry_settings == NO_RETRY


class TestListRepositories:
    """Tests for EcrClient.list_repositories"""

    def test_empty_names_do_not_call_aws(self, ecr_client, boto_client):
        """Test that no repository names returns an empty list without API calls"""
        repos = ecr_client.list_repositories([])

        assert repos == []
        boto_client.get_paginator.assert_not_called()

    def test_collects_repositories_from_every_page(self, ecr_client, boto_client):
        """Test that repositories of all pages are returned"""
        page = {
            "repositories": [
                {
                    "repositoryName": "repo-name",
                    "repositoryUri": "123.dkr.ecr.us-east-1.amazonaws.com/repo-name",
                    "repositoryArn": "arn:aws:ecr:us-east-1:123:repository/repo-name",
                }
            ]
        }
        set_pages(boto_client, [page, page])

        repos = ecr_client.list_repositories(["repo-1"])

        assert len(repos) == 2
        assert repos[0] == Repository(
            name="repo-name",
            uri="123.dkr.ecr.us-east-1.amazonaws.com/repo-name",
            arn="arn:aws:ecr:us-east-1:123:repository/repo-name",
        )
        boto_client.get_paginator.assert_called_once_with("describe_repositories")
        boto_client.get_paginator.return_value.paginate.assert_called_once_with(repositoryNames=["repo-1"])

    def test_api_error_raises_actionable_error(self, ecr_client, boto_client):
        """Test that an API failure is raised, no partial list is returned"""
        boto_client.get_paginator.return_value.paginate.side_effect = client_error("RepositoryNotFoundException")

        with pytest.raises(ActionableError) as exc_info:
            ecr_client.list_repositories(["repo-1"])

        assert exc_info.value.category == ErrorCategory.REGISTRY
        assert exc_info.value.details["error_code"] == "RepositoryNotFoundException"

    def test_access_denied_is_permission_error(self, ecr_client, boto_client):
        """Test that access denied errors are categorized as permission problems"""
        boto_client.get_paginator.return_value.paginate.side_effect = client_error("AccessDeniedException")

        with pytest.raises(ActionableError) as exc_info:
            ecr_client.list_repositories(["repo-1"])

        assert exc_info.value.category == ErrorCategory.PERMISSION

    def test_throttling_is_retried(self, boto_client):
        """Test that a throttled call is retried and then succeeds"""
        page = {"repositories": [{"repositoryName": "app", "repositoryUri": "uri/app"}]}
        boto_client.get_paginator.return_value.paginate.side_effect = [client_error("ThrottlingException"), [page]]
        retry_settings = dict(NO_RETRY, max_retries=2)
        client = EcrClient(region="us-east-1", client=boto_client, retry_settings=retry_settings)

        with patch("utils.retry_utils.time.sleep"):
            repos = client.list_repositories(["app"])

        assert [r.name for r in repos] == ["app"]
        assert boto_client.get_paginator.return_value.paginate.call_count == 2


class TestListImages:
    """Tests for EcrClient.list_images"""

    def test_converts_image_details(self, ecr_client, boto_client):
        """Test that image details become ImageRecords"""
        pushed = datetime(2024, 5, 1, tzinfo=timezone.utc)
        set_pages(
            boto_client,
            [
                {
                    "imageDetails": [
                        {
                            "repositoryName": "app",
                            "imageDigest": "sha256:aaa",
                            "imageTags": ["v1", "latest"],
                            "imagePushedAt": pushed,
                            "imageSizeInBytes": 1024,
                        }
                    ]
                },
                {"imageDetails": [{"imageDigest": "sha256:bbb", "imagePushedAt": pushed}]},
            ],
        )

        images = ecr_client.list_images("app")

        assert images[0] == ImageRecord(
            pushed_at=pushed, tags=("v1", "latest"), digest="sha256:aaa", repository="app", size_bytes=1024
        )
        # Untagged image
        assert images[1].tags == ()
        assert images[1].repository == "app"
        assert images[1].size_bytes == 0
        boto_client.get_paginator.return_value.paginate.assert_called_once_with(repositoryName="app")

    def test_api_error_raises_actionable_error(self, ecr_client, boto_client):
        """Test that list failures name the repository"""
        boto_client.get_paginator.return_value.paginate.side_effect = client_error(
            "RepositoryNotFoundException", "DescribeImages"
        )

        with pytest.raises(ActionableError) as exc_info:
            ecr_client.list_images("missing")

        assert exc_info.value.details["repository"] == "missing"


class TestDeleteImages:
    """Tests for EcrClient.delete_images"""

    @staticmethod
    def images(count):
        return [ImageRecord(pushed_at=None, digest=f"sha256:{i:03d}") for i in range(count)]

    def test_deletes_in_batches(self, ecr_client, boto_client):
        """Test that digests are sent in chunks of batch_size"""
        boto_client.batch_delete_image.side_effect = lambda repositoryName, imageIds: {
            "imageIds": imageIds,
            "failures": [],
        }

        deleted, failures = ecr_client.delete_images("app", self.images(5), batch_size=2)

        assert boto_client.batch_delete_image.call_count == 3
        sizes = [len(c.kwargs["imageIds"]) for c in boto_client.batch_delete_image.call_args_list]
        assert sizes == [2, 2, 1]
        assert deleted == [f"sha256:{i:03d}" for i in range(5)]
        assert failures == []

    def test_batch_size_is_capped_at_100(self, ecr_client, boto_client):
        """Test that BatchDeleteImage never receives more than 100 ids"""
        boto_client.batch_delete_image.return_value = {"imageIds": [], "failures": []}

        ecr_client.delete_images("app", self.images(150), batch_size=500)

        sizes = [len(c.kwargs["imageIds"]) for c in boto_client.batch_delete_image.call_args_list]
        assert sizes == [100, 50]

    def test_reports_failures(self, ecr_client, boto_client):
        """Test that per-image failures are returned"""
        failure = {
            "imageId": {"imageDigest": "sha256:001"},
            "failureCode": "ImageNotFound",
            "failureReason": "Requested image not found",
        }
        boto_client.batch_delete_image.return_value = {
            "imageIds": [{"imageDigest": "sha256:000"}],
            "failures": [failure],
        }

        deleted, failures = ecr_client.delete_images("app", self.images(2))

        assert deleted == ["sha256:000"]
        assert failures == [failure]

    def test_skips_images_without_digest(self, ecr_client, boto_client):
        """Test that records without digest are not sent"""
        deleted, failures = ecr_client.delete_images("app", [ImageRecord(pushed_at=None, tags=("x",))])

        assert deleted == []
        assert failures == []
        boto_client.batch_delete_image.assert_not_called()

    def test_request_error_raises_actionable_error(self, ecr_client, boto_client):
        """Test that a failed request is raised"""
        boto_client.batch_delete_image.side_effect = client_error("AccessDeniedException", "BatchDeleteImage")

        with pytest.raises(ActionableError):
            ecr_client.delete_images("app", self.images(1))
