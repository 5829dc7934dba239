"""
Discovery of image tags used by running Kubernetes workloads.

Running pods are the source of truth for which ECR tags are "in use": any
image referenced by a container (or init container) of a running pod is
protected from cleanup.
"""

import os
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from utils.error_utils import create_kubernetes_error
from utils.logging_utils import get_logger
from utils.retry_utils import retry_with_backoff

logger = get_logger(__name__)

RUNNING_PODS_SELECTOR = "status.phase=Running"


def parse_image_reference(image: str) -> Tuple[str, Optional[str], Optional[str]]:
    """Split a container image reference into (repository, tag, digest).

    A reference without tag or digest implies the 'latest' tag, as the
    container runtime does. A digest-only reference has no tag.

    Examples:
        "123.dkr.ecr.us-east-1.amazonaws.com/app:1.2" -> ("123.dkr.ecr.us-east-1.amazonaws.com/app", "1.2", None)
        "registry:5000/app" -> ("registry:5000/app", "latest", None)
        "app@sha256:abc" -> ("app", None, "sha256:abc")
    """
    name, digest = image, None
    if "@" in image:
        name, digest = image.split("@", 1)

    tag = None
    colon = name.rfind(":")
    if colon > name.rfind("/"):
        name, tag = name[:colon], name[colon + 1:]

    if tag is None and digest is None:
        tag = "latest"
    return name, tag, digest


def _load_kubernetes_config(kubeconfig: Optional[str] = None) -> None:
    """Load in-cluster config when running in a pod, the local kubeconfig otherwise"""
    in_cluster = bool(
        os.environ.get("KUBERNETES_SERVICE_HOST")
        or os.path.exists("/var/run/secrets/kubernetes.io/serviceaccount/token")
    )
    if in_cluster and not kubeconfig:
        config.load_incluster_config()
        logger.info("Kubernetes client initialized with in-cluster config")
    else:
        config.load_kube_config(config_file=kubeconfig)
        logger.info("Kubernetes client initialized from local kubeconfig")


class WorkloadImageScanner:
    """Collects image references from running pods"""

    def __init__(self, core_v1: Any = None, kubeconfig: Optional[str] = None):
        if core_v1 is None:
            _load_kubernetes_config(kubeconfig)
            core_v1 = client.CoreV1Api()
        self.core_v1 = core_v1

    @retry_with_backoff(max_retries=3, initial_delay=1.0)
    def _list_running_pods(self, namespace: Optional[str]) -> List[Any]:
        if namespace:
            pods = self.core_v1.list_namespaced_pod(namespace=namespace, field_selector=RUNNING_PODS_SELECTOR)
        else:
            pods = self.core_v1.list_pod_for_all_namespaces(field_selector=RUNNING_PODS_SELECTOR)
        return list(pods.items or [])

    def list_running_images(self, namespaces: Iterable[str]) -> Set[str]:
        """Image references of all containers in running pods.

        Args:
            namespaces: Namespaces to scan; empty means all namespaces

        Raises:
            ActionableError: If pods cannot be listed or the API server is unreachable
        """
        namespaces = list(namespaces)
        images: Set[str] = set()
        for namespace in namespaces or [None]:
            try:
                pods = self._list_running_pods(namespace)
            except (ApiException, HTTPError, OSError) as e:
                raise create_kubernetes_error(f"list running pods in {namespace or 'all namespaces'}", e) from e

            for pod in pods:
                spec = pod.spec
                if spec is None:
                    continue
                for container in (spec.containers or []) + (spec.init_containers or []):
                    if container.image:
                        images.add(container.image)

            logger.debug(f"Scanned {len(pods)} running pods in {namespace or 'all namespaces'}")
        return images

    def collect_tags_by_repository(
        self, namespaces: Iterable[str], repository_uris: Iterable[str]
    ) -> Dict[str, Set[str]]:
        """Tags referenced by running pods, keyed by repository URI.

        Every requested URI is present in the result, possibly with an empty set.
        Only tags protect images: a pod that pins an image by digest alone
        (repo@sha256:...) contributes nothing, so that image can still be
        selected for deletion.
        """
        tags_by_repository: Dict[str, Set[str]] = {uri: set() for uri in repository_uris}
        for image in self.list_running_images(namespaces):
            repository, tag, _ = parse_image_reference(image)
            if repository in tags_by_repository and tag:
                tags_by_repository[repository].add(tag)

        total = sum(len(tags) for tags in tags_by_repository.values())
        logger.info(f"Found {total} tags in use across {len(tags_by_repository)} repositories")
        return tags_by_repository

    def collect_tags_in_use(self, namespaces: Iterable[str], repository_uris: Iterable[str]) -> Set[str]:
        """Tags of the given repositories referenced by running pods"""
        tags_in_use: Set[str] = set()
        for tags in self.collect_tags_by_repository(namespaces, repository_uris).values():
            tags_in_use |= tags
        return tags_in_use
