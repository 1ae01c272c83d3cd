"""Database resource handlers.

kopf serializes handling per object, owns the finalizer and retries failed
handlers. A reconcile that ends in ``Configuring`` or ``Error`` raises
``kopf.TemporaryError`` with that phase's retry delay; ``Ready`` resources are
revisited by the drift timer.
"""

import logging
from typing import Any

import kopf
from opentelemetry import metrics, trace

from pghero_operator.config import API_GROUP, API_VERSION, PLURAL, READY_REQUEUE, OperatorConfig
from pghero_operator.controller.reconciler import CONFIGURING, ERROR, Reconciler
from pghero_operator.observability.otel import create_operator_metrics
from pghero_operator.resources.configmap import ConfigAggregator
from pghero_operator.resources.database import ExtensionProvisioner
from pghero_operator.resources.kube import KubernetesClient

logger = logging.getLogger(__name__)


def build_reconciler(config: OperatorConfig, tracer: trace.Tracer, meter: metrics.Meter) -> Reconciler:
    """Wire the reconciler and its collaborators from ``config``."""
    operator_metrics = create_operator_metrics(meter)
    kube = KubernetesClient(request_timeout=config.request_timeout)
    return Reconciler(
        kube,
        ExtensionProvisioner(kube, connect_timeout=config.db_connect_timeout, metrics=operator_metrics),
        ConfigAggregator(kube, max_attempts=config.conflict_retries, metrics=operator_metrics),
        tracer=tracer,
        metrics=operator_metrics,
    )


def run_reconcile(reconciler: Reconciler, namespace: str, name: str) -> None:
    """Reconcile and ask kopf to retry unless the resource became ready."""
    result = reconciler.reconcile(namespace, name)
    if result.phase in (CONFIGURING, ERROR):
        raise kopf.TemporaryError(
            f"Database {namespace}/{name} is {result.phase}", delay=result.requeue_after
        )


@kopf.on.resume(API_GROUP, API_VERSION, PLURAL)
@kopf.on.create(API_GROUP, API_VERSION, PLURAL)
@kopf.on.update(API_GROUP, API_VERSION, PLURAL)
def reconcile_database(
    name: str,
    namespace: str,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Handle Database creation, spec changes and operator restarts."""
    logger.info(f"Reconciling Database: {namespace}/{name}")
    run_reconcile(memo.reconciler, namespace, name)


@kopf.timer(API_GROUP, API_VERSION, PLURAL, interval=READY_REQUEUE, initial_delay=READY_REQUEUE)
def check_drift(
    name: str,
    namespace: str,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Periodically re-reconcile to repair drift in the ConfigMap or database."""
    logger.debug(f"Checking Database for drift: {namespace}/{name}")
    run_reconcile(memo.reconciler, namespace, name)


@kopf.on.delete(API_GROUP, API_VERSION, PLURAL)
def delete_database(
    name: str,
    namespace: str,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Drop the Database from the aggregated ConfigMap before kopf releases it."""
    logger.info(f"Deleting Database: {namespace}/{name}")
    memo.reconciler.handle_deletion(namespace, name)
