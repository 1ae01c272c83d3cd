"""Main entry point for the PgHero Kubernetes Operator."""

import logging

import kopf
from kubernetes import config as kube_config

from pghero_operator.config import API_GROUP, FINALIZER, OperatorConfig
from pghero_operator.observability.otel import setup_opentelemetry

operator_config = OperatorConfig.from_env()

# Configure logging
logging.basicConfig(
    level=operator_config.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize Kubernetes client
try:
    kube_config.load_incluster_config()
    logger.info("Loaded in-cluster Kubernetes configuration")
except kube_config.ConfigException:
    kube_config.load_kube_config()
    logger.info("Loaded kubeconfig configuration")

# Initialize OpenTelemetry
tracer, meter = setup_opentelemetry(
    service_name="pghero-operator",
    otlp_endpoint=operator_config.otlp_endpoint,
)


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **_: object) -> None:
    """Configure operator settings on startup."""
    settings.persistence.finalizer = FINALIZER
    # Keep kopf's bookkeeping out of the Database status
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=API_GROUP)
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(prefix=API_GROUP)
    settings.posting.level = logging.INFO
    settings.execution.max_workers = operator_config.max_workers
    settings.networking.request_timeout = operator_config.request_timeout

    memo.reconciler = database.build_reconciler(operator_config, tracer, meter)

    if operator_config.watch_namespace:
        logger.info(f"Watching namespace: {operator_config.watch_namespace}")
    else:
        logger.info("Watching all namespaces")

    logger.info("PgHero Operator started successfully")


@kopf.on.probe(id="health")
def health_check(**_: object) -> dict[str, str]:
    """Health check endpoint for liveness probe."""
    return {"status": "healthy"}


def run() -> None:
    """Run the operator, scoped by ``WATCH_NAMESPACE`` when set."""
    if operator_config.watch_namespace:
        kopf.run(namespaces=[operator_config.watch_namespace])
    else:
        kopf.run(clusterwide=True)


# Import handlers to register them with Kopf
# These imports must come after the kopf setup above
from pghero_operator.handlers import database  # noqa: E402, F401

logger.info("All handlers registered")

if __name__ == "__main__":
    run()
