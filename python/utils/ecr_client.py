"""
Amazon ECR client used by the cleanup runner.

Wraps the boto3 ECR API: paginated repository and image listings and
batched image deletion. API errors are retried with backoff when transient
and raised as ActionableError otherwise.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from utils.config_manager import ConfigManager
from utils.error_utils import create_ecr_error
from utils.image_retention import ImageRecord
from utils.logging_utils import get_logger
from utils.retry_utils import retry_with_backoff

logger = get_logger(__name__)

# Upper bound for the imageIds list of BatchDeleteImage
MAX_DELETE_BATCH_SIZE = 100


@dataclass(frozen=True)
class Repository:
    """An ECR repository"""

    name: str
    uri: str
    arn: Optional[str] = None


def _image_record_from_detail(repository_name: str, detail: Dict[str, Any]) -> ImageRecord:
    return ImageRecord(
        pushed_at=detail.get("imagePushedAt"),
        tags=tuple(detail.get("imageTags") or ()),
        digest=detail.get("imageDigest"),
        repository=detail.get("repositoryName", repository_name),
        size_bytes=detail.get("imageSizeInBytes", 0) or 0,
    )


class EcrClient:
    """Thin wrapper over the boto3 ECR client"""

    def __init__(self, region: Optional[str] = None, client: Any = None, retry_settings: Optional[Dict[str, Any]] = None):
        """Initialize EcrClient.

        Args:
            region: AWS region (defaults to the configured region)
            client: Pre-built boto3 ECR client, mainly for tests
            retry_settings: Keyword arguments for retry_with_backoff (defaults to config)
        """
        if region is None or retry_settings is None:
            cm = ConfigManager(validate=False)
            region = region or cm.get_aws_region()
            retry_settings = retry_settings if retry_settings is not None else cm.get_retry_settings()
        self.region = region
        self.client = client if client is not None else boto3.client("ecr", region_name=self.region)
        self.retry_settings = retry_settings

    def _call(self, func, *args, **kwargs):
        """Run an API call with the configured retry policy"""
        return retry_with_backoff(**self.retry_settings)(func)(*args, **kwargs)

    def _paginate(self, operation: str, result_key: str, **params) -> List[Dict[str, Any]]:
        paginator = self.client.get_paginator(operation)

        def _collect():
            items = []
            for page in paginator.paginate(**params):
                items.extend(page.get(result_key, []))
            return items

        return self._call(_collect)

    def list_repositories(self, names: Iterable[str]) -> List[Repository]:
        """Describe the named repositories across all result pages.

        An empty list of names returns an empty list without calling AWS.

        Raises:
            ActionableError: If the ECR API call fails
        """
        names = list(names)
        if not names:
            return []

        try:
            raw = self._paginate("describe_repositories", "repositories", repositoryNames=names)
        except (ClientError, BotoCoreError) as e:
            raise create_ecr_error("describe_repositories", e) from e

        repositories = [
            Repository(name=r["repositoryName"], uri=r.get("repositoryUri", ""), arn=r.get("repositoryArn"))
            for r in raw
        ]
        logger.debug(f"Found {len(repositories)} repositories for {len(names)} requested names")
        return repositories

    def list_images(self, repository_name: str) -> List[ImageRecord]:
        """List every image of a repository.

        Raises:
            ActionableError: If the ECR API call fails
        """
        try:
            details = self._paginate("describe_images", "imageDetails", repositoryName=repository_name)
        except (ClientError, BotoCoreError) as e:
            raise create_ecr_error("describe_images", e, repository=repository_name) from e

        images = [_image_record_from_detail(repository_name, d) for d in details]
        logger.debug(f"Found {len(images)} images in {repository_name}")
        return images

    def delete_images(
        self, repository_name: str, images: Iterable[ImageRecord], batch_size: int = MAX_DELETE_BATCH_SIZE
    ) -> Tuple[List[str], List[Dict[str, Any]]]:
        """Delete images by digest using BatchDeleteImage.

        Args:
            repository_name: Repository holding the images
            images: Images to delete; images without a digest are skipped
            batch_size: Image ids per request (at most 100)

        Returns:
            Tuple of (deleted digests, failures as returned by ECR)

        Raises:
            ActionableError: If a BatchDeleteImage request fails as a whole
        """
        batch_size = max(1, min(batch_size, MAX_DELETE_BATCH_SIZE))

        digests = []
        for image in images:
            if not image.digest:
                logger.warning(f"Skipping image without digest in {repository_name} (tags: {list(image.tags)})")
                continue
            if image.digest not in digests:
                digests.append(image.digest)

        deleted: List[str] = []
        failures: List[Dict[str, Any]] = []
        for start in range(0, len(digests), batch_size):
            batch = digests[start:start + batch_size]
            try:
                response = self._call(
                    self.client.batch_delete_image,
                    repositoryName=repository_name,
                    imageIds=[{"imageDigest": digest} for digest in batch],
                )
            except (ClientError, BotoCoreError) as e:
                raise create_ecr_error("batch_delete_image", e, repository=repository_name) from e

            for image_id in response.get("imageIds", []):
                digest = image_id.get("imageDigest")
                if digest and digest not in deleted:
                    deleted.append(digest)
            for failure in response.get("failures", []):
                logger.warning(
                    f"Failed to delete {failure.get('imageId', {}).get('imageDigest')} from {repository_name}: "
                    f"{failure.get('failureCode')} {failure.get('failureReason')}"
                )
                failures.append(failure)

        logger.info(f"Deleted {len(deleted)} images from {repository_name} ({len(failures)} failures)")
        return deleted, failures
