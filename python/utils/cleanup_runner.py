"""
Cleanup pass over ECR repositories.

A pass collects the tags used by running pods, lists the images of every
configured repository, selects deletion candidates with the retention
policy and deletes them unless running in dry-run mode.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from utils.ecr_client import MAX_DELETE_BATCH_SIZE, EcrClient, Repository
from utils.error_utils import ActionableError
from utils.image_retention import ImageRecord, is_image_in_use, select_old_unused_images
from utils.logging_utils import get_logger, log_exception
from utils.report_utils import sizeof_fmt

logger = get_logger(__name__)


@dataclass
class RepositoryCleanupResult:
    """Outcome of cleaning one repository"""

    repository: str
    total_images: int = 0
    protected_images: int = 0
    candidates: List[ImageRecord] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)
    dry_run: bool = True
    error: Optional[str] = None

    @property
    def reclaimable_bytes(self) -> int:
        return sum(image.size_bytes for image in self.candidates)

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.failures

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            "repository": self.repository,
            "total_images": self.total_images,
            "protected_images": self.protected_images,
            "candidates": [image.to_dict() for image in self.candidates],
            "deleted": list(self.deleted),
            "failures": list(self.failures),
            "reclaimable_bytes": self.reclaimable_bytes,
            "dry_run": self.dry_run,
            "error": self.error,
        }


class EcrCleanupRunner:
    """Runs cleanup passes over a set of ECR repositories"""

    def __init__(
        self,
        ecr_client: EcrClient,
        scanner: Any,
        keep_max: int,
        repositories: List[str],
        namespaces: Optional[List[str]] = None,
        dry_run: bool = True,
        delete_batch_size: int = MAX_DELETE_BATCH_SIZE,
    ):
        """Initialize the runner

        Args:
            ecr_client: Client used to list and delete images
            scanner: WorkloadImageScanner (anything with collect_tags_by_repository)
            keep_max: Number of newest images to keep per repository
            repositories: ECR repository names to clean
            namespaces: Namespaces whose running pods protect images (empty = all)
            dry_run: If True, only report what would be deleted
            delete_batch_size: Image ids per BatchDeleteImage request
        """
        self.ecr_client = ecr_client
        self.scanner = scanner
        self.keep_max = keep_max
        self.repositories = list(repositories)
        self.namespaces = list(namespaces or [])
        self.dry_run = dry_run
        self.delete_batch_size = delete_batch_size
        self.logger = get_logger(self.__class__.__name__)

    def clean_repository(self, repository: Repository, tags_in_use: Set[str]) -> RepositoryCleanupResult:
        """Select and delete old unused images of one repository"""
        result = RepositoryCleanupResult(repository=repository.name, dry_run=self.dry_run)

        images = self.ecr_client.list_images(repository.name)
        result.total_images = len(images)
        result.protected_images = sum(1 for image in images if is_image_in_use(image, tags_in_use))
        result.candidates = select_old_unused_images(self.keep_max, images, tags_in_use)

        if not result.candidates:
            self.logger.info(f"{repository.name}: nothing to delete ({result.total_images} images)")
            return result

        if self.dry_run:
            self.logger.info(
                f"DRY RUN: {repository.name}: would delete {len(result.candidates)} of {result.total_images} images "
                f"({sizeof_fmt(result.reclaimable_bytes)})"
            )
            for image in result.candidates:
                self.logger.debug(f"  would delete {image.digest} tags={list(image.tags)} pushed_at={image.pushed_at}")
            return result

        result.deleted, result.failures = self.ecr_client.delete_images(
            repository.name, result.candidates, batch_size=self.delete_batch_size
        )
        return result

    def run_once(self) -> List[RepositoryCleanupResult]:
        """Run a single cleanup pass over all configured repositories.

        Failing to list repositories or running pods aborts the pass, since
        deleting without knowing which tags are in use is unsafe. A failure in
        a single repository is recorded and the pass moves on.

        Raises:
            ActionableError: If repositories or running pods cannot be listed
        """
        mode = "DRY RUN" if self.dry_run else "DELETE"
        self.logger.info(f"Starting cleanup pass ({mode}) for {len(self.repositories)} repositories")

        repositories = self.ecr_client.list_repositories(self.repositories)
        if not repositories:
            self.logger.warning("No repositories to clean")
            return []

        tags_by_repository = self.scanner.collect_tags_by_repository(
            self.namespaces, [repository.uri for repository in repositories]
        )

        results = []
        for repository in repositories:
            tags_in_use = tags_by_repository.get(repository.uri, set())
            try:
                results.append(self.clean_repository(repository, tags_in_use))
            except ActionableError as e:
                self.logger.error(f"Cleanup of {repository.name} failed: {e.message}")
                results.append(RepositoryCleanupResult(repository=repository.name, dry_run=self.dry_run, error=e.message))

        self.log_summary(results)
        return results

    def run_forever(self, interval_seconds: int, stop_event: Optional[threading.Event] = None,
                    on_results=None) -> None:
        """Run cleanup passes every interval_seconds until stop_event is set.

        A failed pass is logged and retried on the next interval.

        Args:
            interval_seconds: Pause between the end of a pass and the next one
            stop_event: Event that stops the loop when set
            on_results: Optional callback receiving the results of each pass
        """
        stop_event = stop_event or threading.Event()
        while not stop_event.is_set():
            try:
                results = self.run_once()
                if on_results is not None:
                    on_results(results)
            except ActionableError as e:
                log_exception(self.logger, "Cleanup pass failed", e)
            except Exception as e:
                log_exception(self.logger, "Cleanup pass failed with unexpected error", e)

            self.logger.info(f"Next cleanup pass in {interval_seconds}s")
            stop_event.wait(interval_seconds)

    def log_summary(self, results: List[RepositoryCleanupResult]) -> None:
        """Log a standardized cleanup summary"""
        mode = "DRY RUN: " if self.dry_run else ""
        candidates = sum(len(r.candidates) for r in results)
        self.logger.info(f"\n📊 {mode}Cleanup Summary:")
        self.logger.info(f"   Repositories: {len(results)}")
        self.logger.info(f"   Images: {sum(r.total_images for r in results)}")
        self.logger.info(f"   Skipped (in use): {sum(r.protected_images for r in results)}")
        if self.dry_run:
            self.logger.info(f"   Would delete: {candidates}")
        else:
            self.logger.info(f"   Successfully deleted: {sum(len(r.deleted) for r in results)}")
            self.logger.info(f"   Failed deletions: {sum(len(r.failures) for r in results)}")
        self.logger.info(
            f"   {'Would save' if self.dry_run else 'Saved'}: {sizeof_fmt(sum(r.reclaimable_bytes for r in results))}"
        )
        errors = [r.repository for r in results if r.error]
        if errors:
            self.logger.info(f"   Repositories with errors: {', '.join(errors)}")
