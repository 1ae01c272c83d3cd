"""Thin wrapper over the Kubernetes API used by the reconciler.

All objects are exchanged as plain dicts in their wire (camelCase) form.
Failures surface as ``kubernetes.client.rest.ApiException``.
"""

import base64
from typing import Any, Optional

from kubernetes import client

from pghero_operator.config import API_GROUP, API_VERSION, PLURAL


class KubernetesClient:
    """Handles all Kubernetes API interactions."""

    def __init__(
        self,
        api_client: Optional[client.ApiClient] = None,
        request_timeout: float = 30.0,
    ) -> None:
        self.api_client = api_client or client.ApiClient()
        self.core_v1 = client.CoreV1Api(self.api_client)
        self.custom_api = client.CustomObjectsApi(self.api_client)
        self.request_timeout = request_timeout

    def _to_dict(self, obj: Any) -> dict[str, Any]:
        return self.api_client.sanitize_for_serialization(obj)

    # Database custom resources

    def get_database(self, namespace: str, name: str) -> dict[str, Any]:
        return self.custom_api.get_namespaced_custom_object(
            group=API_GROUP,
            version=API_VERSION,
            namespace=namespace,
            plural=PLURAL,
            name=name,
            _request_timeout=self.request_timeout,
        )

    def list_databases(self, namespace: str) -> list[dict[str, Any]]:
        result = self.custom_api.list_namespaced_custom_object(
            group=API_GROUP,
            version=API_VERSION,
            namespace=namespace,
            plural=PLURAL,
            _request_timeout=self.request_timeout,
        )
        return result.get("items", [])

    def patch_database_status(
        self,
        namespace: str,
        name: str,
        status: dict[str, Any],
    ) -> dict[str, Any]:
        return self.custom_api.patch_namespaced_custom_object_status(
            group=API_GROUP,
            version=API_VERSION,
            namespace=namespace,
            plural=PLURAL,
            name=name,
            body={"status": status},
            _request_timeout=self.request_timeout,
        )

    # Secrets

    def read_secret(self, namespace: str, name: str) -> dict[str, bytes]:
        """Return the secret's data with values base64-decoded."""
        secret = self.core_v1.read_namespaced_secret(
            name,
            namespace,
            _request_timeout=self.request_timeout,
        )
        return {key: base64.b64decode(value) for key, value in (secret.data or {}).items()}

    # ConfigMaps

    def read_config_map(self, namespace: str, name: str) -> dict[str, Any]:
        config_map = self.core_v1.read_namespaced_config_map(
            name,
            namespace,
            _request_timeout=self.request_timeout,
        )
        return self._to_dict(config_map)

    def create_config_map(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        config_map = self.core_v1.create_namespaced_config_map(
            namespace=namespace,
            body=body,
            _request_timeout=self.request_timeout,
        )
        return self._to_dict(config_map)

    def replace_config_map(
        self,
        namespace: str,
        name: str,
        body: dict[str, Any],
    ) -> dict[str, Any]:
        """Replace a ConfigMap; conditional on ``body.metadata.resourceVersion``."""
        config_map = self.core_v1.replace_namespaced_config_map(
            name=name,
            namespace=namespace,
            body=body,
            _request_timeout=self.request_timeout,
        )
        return self._to_dict(config_map)
