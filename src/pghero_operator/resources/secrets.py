"""Connection URL resolution from literal values or Secret references."""

import logging
from typing import Any, Optional

from kubernetes.client.rest import ApiException

from pghero_operator.resources.kube import KubernetesClient
from pghero_operator.utils.errors import (
    SecretKeyMissing,
    SecretNotFound,
    SecretResolutionError,
)

logger = logging.getLogger(__name__)

# Secret keys whose trailing newline has already been reported
_stripped_keys: set[tuple[str, str, str]] = set()


def read_secret_value(
    kube: KubernetesClient,
    secret_ref: dict[str, Any],
    default_namespace: str,
) -> str:
    """Read a single key from a Secret.

    Args:
        kube: Kubernetes client
        secret_ref: ``{name, key, namespace?}`` reference
        default_namespace: Namespace used when the reference has none

    Returns:
        The decoded value, without trailing newlines

    Raises:
        SecretNotFound: If the secret does not exist
        SecretKeyMissing: If the key is absent from the secret
        SecretResolutionError: For any other API failure
    """
    namespace = secret_ref.get("namespace") or default_namespace
    name = secret_ref.get("name", "")
    key = secret_ref.get("key", "")

    try:
        data = kube.read_secret(namespace, name)
    except ApiException as e:
        if e.status == 404:
            raise SecretNotFound(namespace, name) from e
        raise SecretResolutionError(f"failed to get secret {namespace}/{name}: {e.reason}") from e

    if key not in data:
        raise SecretKeyMissing(namespace, name, key)

    raw = data[key].decode("utf-8")
    value = raw.rstrip("\n")
    if value != raw and (namespace, name, key) not in _stripped_keys:
        _stripped_keys.add((namespace, name, key))
        logger.info(f"Stripped trailing newline from key {key} of secret {namespace}/{name}")
    return value


def resolve_url(kube: KubernetesClient, resource: dict[str, Any]) -> str:
    """Resolve the connection URL of a Database resource.

    ``urlFromSecret`` takes precedence over the literal ``url``.
    """
    spec = resource.get("spec", {})
    namespace = resource["metadata"]["namespace"]

    secret_ref = spec.get("urlFromSecret")
    if secret_ref:
        return read_secret_value(kube, secret_ref, namespace)

    url = spec.get("url")
    if not url:
        raise SecretResolutionError("no url or urlFromSecret configured")
    return url


def resolve_superuser_url(kube: KubernetesClient, resource: dict[str, Any]) -> Optional[str]:
    """Resolve superuser credentials, or ``None`` when none are configured.

    Raises the same errors as :func:`read_secret_value` when a
    ``superuserUrlFromSecret`` reference cannot be read.
    """
    spec = resource.get("spec", {})
    namespace = resource["metadata"]["namespace"]

    secret_ref = spec.get("superuserUrlFromSecret")
    if secret_ref:
        return read_secret_value(kube, secret_ref, namespace)

    return spec.get("superuserUrl") or None
