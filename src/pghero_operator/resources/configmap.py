"""Aggregated PgHero ConfigMap generation.

Every Database resource in a namespace contributes one entry to a single
shared ConfigMap. Sibling resources reconcile concurrently, so writes are
conditional on the ConfigMap's ``resourceVersion`` and retried on conflict.
"""

import logging
from typing import Any, Optional

import yaml
from kubernetes.client.rest import ApiException
from opentelemetry import metrics as otel_metrics

from pghero_operator.config import (
    CONFIGMAP_KEY,
    CONFIGMAP_LABELS,
    CONFIGMAP_NAME,
    DATABASE_COUNT_ANNOTATION,
)
from pghero_operator.observability.otel import create_operator_metrics
from pghero_operator.resources.kube import KubernetesClient
from pghero_operator.resources.secrets import resolve_url
from pghero_operator.utils.errors import AggregationConflictError, SecretResolutionError

logger = logging.getLogger(__name__)


def render_database_yaml(entries: dict[str, str]) -> str:
    """Render the PgHero ``database.yml`` document.

    Args:
        entries: Friendly database name to connection URL

    Returns:
        YAML text of the form ``databases: {<name>: {url: <url>}}``
    """
    databases = {name: {"url": url} for name, url in entries.items()}
    return yaml.safe_dump(
        {"databases": databases},
        default_flow_style=False,
        sort_keys=True,
        width=4096,
    )


def create_configmap(
    namespace: str,
    entries: dict[str, str],
    existing: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Create the aggregated ConfigMap body.

    Args:
        namespace: Namespace
        entries: Friendly database name to connection URL
        existing: Current ConfigMap, if any. Its ``resourceVersion`` is carried
            over so the write fails on a concurrent change; labels and
            annotations owned by others are preserved.

    Returns:
        ConfigMap resource dict
    """
    metadata: dict[str, Any] = {
        "name": CONFIGMAP_NAME,
        "namespace": namespace,
        "labels": dict(CONFIGMAP_LABELS),
        "annotations": {DATABASE_COUNT_ANNOTATION: str(len(entries))},
    }

    if existing is not None:
        current = existing.get("metadata", {})
        metadata["labels"] = {**(current.get("labels") or {}), **CONFIGMAP_LABELS}
        metadata["annotations"] = {
            **(current.get("annotations") or {}),
            DATABASE_COUNT_ANNOTATION: str(len(entries)),
        }
        metadata["resourceVersion"] = current.get("resourceVersion")

    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": metadata,
        "data": {
            CONFIGMAP_KEY: render_database_yaml(entries),
        },
    }


class ConfigAggregator:
    """Recomputes the namespace-wide ConfigMap from all Database resources."""

    def __init__(
        self,
        kube: KubernetesClient,
        max_attempts: int = 5,
        metrics: Optional[dict[str, Any]] = None,
    ) -> None:
        self.kube = kube
        self.max_attempts = max_attempts
        self.metrics = metrics or create_operator_metrics(otel_metrics.get_meter(__name__))

    def collect_entries(
        self,
        namespace: str,
        current: Optional[tuple[str, str]] = None,
        exclude: Optional[str] = None,
    ) -> dict[str, str]:
        """Map friendly names to URLs for every enabled resource in ``namespace``.

        Args:
            namespace: Namespace to scan
            current: ``(resource name, resolved url)`` of the resource being
                reconciled, so its URL is not resolved twice
            exclude: Resource name to leave out

        Resources whose URL cannot be resolved are skipped, as are resources
        already marked for deletion.
        """
        entries: dict[str, str] = {}
        databases = sorted(self.kube.list_databases(namespace), key=lambda db: db["metadata"]["name"])

        for db in databases:
            name = db["metadata"]["name"]
            if name == exclude or db["metadata"].get("deletionTimestamp"):
                continue

            spec = db.get("spec", {})
            if not spec.get("enabled", True):
                continue

            if current is not None and name == current[0]:
                url = current[1]
            else:
                try:
                    url = resolve_url(self.kube, db)
                except SecretResolutionError as e:
                    logger.warning(f"Skipping {namespace}/{name} in {CONFIGMAP_NAME}: {e}")
                    continue

            friendly_name = spec.get("name") or name
            if friendly_name in entries:
                logger.warning(
                    f"Duplicate database name {friendly_name!r} in {namespace}, {name} overrides it"
                )
            entries[friendly_name] = url

        return entries

    def upsert(self, namespace: str, current_name: str, current_url: str) -> str:
        """Create or update the ConfigMap, returning its name.

        Raises:
            AggregationConflictError: If every write attempt hit a conflict
            ApiException: For other API failures
        """
        self._write(namespace, current=(current_name, current_url), create_missing=True)
        return CONFIGMAP_NAME

    def rebuild(self, namespace: str, exclude_name: str) -> None:
        """Recompute the ConfigMap without ``exclude_name``.

        Nothing is written when the ConfigMap does not exist.
        """
        self._write(namespace, exclude=exclude_name, create_missing=False)

    def _write(
        self,
        namespace: str,
        current: Optional[tuple[str, str]] = None,
        exclude: Optional[str] = None,
        create_missing: bool = True,
    ) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            try:
                existing = self.kube.read_config_map(namespace, CONFIGMAP_NAME)
            except ApiException as e:
                if e.status != 404:
                    raise
                existing = None

            if existing is None and not create_missing:
                logger.info(f"ConfigMap {namespace}/{CONFIGMAP_NAME} does not exist, nothing to rebuild")
                return False

            entries = self.collect_entries(namespace, current=current, exclude=exclude)
            body = create_configmap(namespace, entries, existing)

            try:
                if existing is None:
                    logger.info(f"Creating aggregated ConfigMap {namespace}/{CONFIGMAP_NAME}")
                    self.kube.create_config_map(namespace, body)
                else:
                    logger.info(
                        f"Updating aggregated ConfigMap {namespace}/{CONFIGMAP_NAME} "
                        f"with {len(entries)} database(s)"
                    )
                    self.kube.replace_config_map(namespace, CONFIGMAP_NAME, body)
                return True
            except ApiException as e:
                if e.status != 409:
                    raise
                self.metrics["configmap_conflicts"].add(1, {"namespace": namespace})
                logger.info(
                    f"Conflict writing {namespace}/{CONFIGMAP_NAME} "
                    f"(attempt {attempt}/{self.max_attempts}), retrying"
                )

        raise AggregationConflictError(
            f"ConfigMap {namespace}/{CONFIGMAP_NAME} changed concurrently on "
            f"{self.max_attempts} consecutive attempts"
        )
