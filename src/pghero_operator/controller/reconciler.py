"""Database reconciliation.

A reconcile loads one Database resource and drives it through
``Pending -> Configuring -> Ready | Error``:

1. resolve the connection URL
2. provision extensions (PostgreSQL only)
3. upsert the namespace-wide PgHero ConfigMap
4. persist status and report when to look at the resource again

On deletion the ConfigMap is rebuilt without the resource (best-effort).
The finalizer guarding that step is owned by kopf.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from kubernetes.client.rest import ApiException
from opentelemetry import metrics as otel_metrics
from opentelemetry import trace
from urllib3.exceptions import HTTPError

from pghero_operator.config import (
    CONFIGURING_REQUEUE,
    ERROR_REQUEUE,
    READY_REQUEUE,
)
from pghero_operator.observability.otel import create_operator_metrics
from pghero_operator.resources.configmap import ConfigAggregator
from pghero_operator.resources.database import ExtensionProvisioner, is_postgres
from pghero_operator.resources.kube import KubernetesClient
from pghero_operator.resources.secrets import resolve_url
from pghero_operator.utils.conditions import set_ready_condition, utc_now
from pghero_operator.utils.errors import (
    OperatorError,
    ResourceVanished,
    SecretResolutionError,
    redact_credentials,
)

logger = logging.getLogger(__name__)

PENDING = "Pending"
CONFIGURING = "Configuring"
READY = "Ready"
ERROR = "Error"

PHASE_REQUEUE = {
    READY: READY_REQUEUE,
    CONFIGURING: CONFIGURING_REQUEUE,
    ERROR: ERROR_REQUEUE,
}


@dataclass
class ReconcileResult:
    """Outcome of a reconcile; ``requeue_after`` is in seconds."""

    requeue_after: Optional[float] = None
    phase: Optional[str] = None


class Reconciler:
    """Converges Database resources into status and the shared ConfigMap."""

    def __init__(
        self,
        kube: KubernetesClient,
        provisioner: ExtensionProvisioner,
        aggregator: ConfigAggregator,
        tracer: Optional[trace.Tracer] = None,
        metrics: Optional[dict[str, Any]] = None,
    ) -> None:
        self.kube = kube
        self.provisioner = provisioner
        self.aggregator = aggregator
        self.tracer = tracer or trace.get_tracer(__name__)
        self.metrics = metrics or create_operator_metrics(otel_metrics.get_meter(__name__))

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Reconcile one Database resource.

        Expected failures end up in the resource status. Failing to persist
        that status raises, leaving the retry to the caller.
        """
        start = time.monotonic()
        with self.tracer.start_as_current_span(
            "reconcile",
            attributes={"k8s.namespace.name": namespace, "pghero.database": name},
        ) as span:
            try:
                try:
                    database = self.kube.get_database(namespace, name)
                except ApiException as e:
                    if e.status == 404:
                        raise ResourceVanished(f"{namespace}/{name}") from e
                    raise

                if database["metadata"].get("deletionTimestamp"):
                    logger.debug(f"Database {namespace}/{name} is being deleted, skipping reconcile")
                    return ReconcileResult()

                result = self._reconcile_database(database)
                span.set_attribute("pghero.phase", result.phase or "")
                return result
            except ResourceVanished:
                logger.info(f"Database {namespace}/{name} not found, it must have been deleted")
                return ReconcileResult()
            finally:
                self.metrics["reconcile_duration"].record(
                    time.monotonic() - start, {"namespace": namespace}
                )

    def _reconcile_database(self, database: dict[str, Any]) -> ReconcileResult:
        namespace = database["metadata"]["namespace"]
        name = database["metadata"]["name"]
        status: dict[str, Any] = {}

        try:
            url = resolve_url(self.kube, database)
        except SecretResolutionError as e:
            status["lastError"] = str(e)
            return self.update_status(
                database, status, ERROR, f"Failed to get database URL: {e}", "", False
            )

        if is_postgres(database):
            try:
                ready = self.provisioner.ensure(database, url, status)
            except OperatorError as e:
                reason = redact_credentials(e)
                logger.error(f"Failed to set up extensions for {namespace}/{name}, will retry: {reason}")
                return self.update_status(
                    database, status, CONFIGURING, f"Setting up database extensions: {reason}", "", False
                )
            if not ready:
                logger.info(f"Extensions for {namespace}/{name} not ready yet, will retry")
                return self.update_status(
                    database, status, CONFIGURING, "Setting up required database extensions", "", False
                )

        try:
            config_map_ref = self.aggregator.upsert(namespace, name, url)
        except (OperatorError, ApiException, HTTPError) as e:
            reason = redact_credentials(e)
            logger.error(f"Failed to reconcile ConfigMap for {namespace}/{name}: {reason}")
            return self.update_status(
                database, status, ERROR, f"Failed to reconcile ConfigMap: {reason}", "", True
            )

        return self.update_status(
            database, status, READY, "Database configuration synchronized", config_map_ref, True
        )

    def handle_deletion(self, namespace: str, name: str) -> None:
        """Drop a deleted resource from the namespace ConfigMap.

        Never raises, so the finalizer is released whether or not the rebuild
        succeeded.
        """
        logger.info(f"Updating aggregated ConfigMap after deletion of {namespace}/{name}")
        try:
            self.aggregator.rebuild(namespace, name)
        except Exception as e:
            logger.error(f"Failed to rebuild aggregated ConfigMap for {namespace}: {redact_credentials(e)}")

    def update_status(
        self,
        database: dict[str, Any],
        status: dict[str, Any],
        phase: str,
        message: str,
        config_map_ref: str,
        extensions_ready: bool,
    ) -> ReconcileResult:
        """Persist status and pick the requeue interval for ``phase``."""
        meta = database["metadata"]
        now = utc_now()

        status.update(
            phase=phase,
            message=message,
            lastUpdated=now,
            configMapRef=config_map_ref,
            extensionsReady=extensions_ready,
        )
        status["conditions"] = set_ready_condition(
            database.get("status", {}).get("conditions"),
            phase,
            message,
            now,
            meta.get("generation"),
        )

        try:
            self.kube.patch_database_status(meta["namespace"], meta["name"], status)
        except ApiException as e:
            if e.status == 404:
                raise ResourceVanished(f"{meta['namespace']}/{meta['name']}") from e
            raise

        previous_phase = database.get("status", {}).get("phase") or PENDING
        if previous_phase != phase:
            logger.info(f"Database {meta['namespace']}/{meta['name']} status: {previous_phase} -> {phase}")

        self.metrics["reconciles"].add(1, {"phase": phase})
        return ReconcileResult(requeue_after=PHASE_REQUEUE.get(phase), phase=phase)
