"""
Kubernetes-backed host repository and secret store.

Reads and writes Metal3 BareMetalHost custom resources through the
CustomObjectsApi and BMC credential secrets through the CoreV1Api.
"""

import base64
import logging
import threading
from typing import Callable, List, Optional

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from .host_repository import ConflictError, HostCallback, HostNotFoundError, HostRepository
from .secret_store import SecretCallback, SecretStore
from ..config import KubernetesConfig
from ..models import FINALIZER, Credentials, Host, HostStatus

logger = logging.getLogger(__name__)

WATCH_RETRY_SECONDS = 5


def build_api_client() -> client.ApiClient:
    """Create an API client from the in-cluster service account or a kubeconfig"""
    if KubernetesConfig.IN_CLUSTER:
        config.load_incluster_config()
        logger.info("Using in-cluster Kubernetes configuration")
    else:
        config.load_kube_config(config_file=KubernetesConfig.KUBECONFIG)
        logger.info(f"Using kubeconfig {KubernetesConfig.KUBECONFIG or '~/.kube/config'}")
    return client.ApiClient()


def _run_watch(name: str, list_call: Callable, stop: threading.Event, handle: Callable[[dict], None],
               timeout: int, **kwargs) -> threading.Thread:
    """Stream watch events in a daemon thread, reconnecting after errors"""

    def loop():
        while not stop.is_set():
            w = watch.Watch()
            try:
                for event in w.stream(list_call, timeout_seconds=timeout, **kwargs):
                    if stop.is_set():
                        break
                    handle(event["object"])
            except ApiException as e:
                logger.warning(f"{name} watch failed: {e.status} - {e.reason}")
                stop.wait(WATCH_RETRY_SECONDS)
            except Exception as e:
                logger.error(f"{name} watch error: {type(e).__name__}: {e}")
                stop.wait(WATCH_RETRY_SECONDS)
            finally:
                w.stop()

    thread = threading.Thread(target=loop, name=f"{name}-watch", daemon=True)
    thread.start()
    return thread


class KubernetesHostRepository(HostRepository):
    """
    BareMetalHost resources stored in the Kubernetes API.

    Status writes use the status subresource and carry the resourceVersion
    read with the host, so the API server rejects stale writes with 409.
    """

    # BareMetalHost CRD details (Metal3)
    BMH_GROUP = "metal3.io"
    BMH_VERSION = "v1alpha1"
    BMH_PLURAL = "baremetalhosts"

    def __init__(self, api_client: client.ApiClient, namespace: Optional[str] = None, timeout: int = 30):
        """
        Args:
            api_client: Configured Kubernetes API client
            namespace: Namespace to manage, None for all namespaces
            timeout: Request timeout in seconds
        """
        self.namespace = namespace
        self.timeout = timeout
        self._custom_api = client.CustomObjectsApi(api_client)

    def get(self, namespace: str, name: str) -> Optional[Host]:
        try:
            resource = self._custom_api.get_namespaced_custom_object(
                group=self.BMH_GROUP,
                version=self.BMH_VERSION,
                namespace=namespace,
                plural=self.BMH_PLURAL,
                name=name,
                _request_timeout=self.timeout
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return Host.from_resource(resource)

    def list(self) -> List[Host]:
        if self.namespace:
            bmh_list = self._custom_api.list_namespaced_custom_object(
                group=self.BMH_GROUP,
                version=self.BMH_VERSION,
                namespace=self.namespace,
                plural=self.BMH_PLURAL,
                _request_timeout=self.timeout
            )
        else:
            bmh_list = self._custom_api.list_cluster_custom_object(
                group=self.BMH_GROUP,
                version=self.BMH_VERSION,
                plural=self.BMH_PLURAL,
                _request_timeout=self.timeout
            )
        return [Host.from_resource(item) for item in bmh_list.get("items", [])]

    def update_status(self, host: Host, status: HostStatus) -> Host:
        updated = host.copy()
        updated.status = status
        try:
            resource = self._custom_api.replace_namespaced_custom_object_status(
                group=self.BMH_GROUP,
                version=self.BMH_VERSION,
                namespace=host.namespace,
                plural=self.BMH_PLURAL,
                name=host.name,
                body=updated.to_resource(),
                _request_timeout=self.timeout
            )
        except ApiException as e:
            raise self._translate(e, host) from e
        return Host.from_resource(resource)

    def add_finalizer(self, host: Host) -> Host:
        if FINALIZER in host.finalizers:
            return host
        return self._patch_finalizers(host, host.finalizers + [FINALIZER])

    def remove_finalizer(self, host: Host) -> None:
        if FINALIZER in host.finalizers:
            self._patch_finalizers(host, [f for f in host.finalizers if f != FINALIZER])

    def start_watch(self, callback: HostCallback, stop: threading.Event) -> None:
        def handle(resource: dict):
            metadata = resource.get("metadata") or {}
            callback((metadata.get("namespace", ""), metadata.get("name", "")))

        if self.namespace:
            _run_watch("baremetalhost", self._custom_api.list_namespaced_custom_object, stop, handle,
                       self.timeout * 10, group=self.BMH_GROUP, version=self.BMH_VERSION,
                       namespace=self.namespace, plural=self.BMH_PLURAL)
        else:
            _run_watch("baremetalhost", self._custom_api.list_cluster_custom_object, stop, handle,
                       self.timeout * 10, group=self.BMH_GROUP, version=self.BMH_VERSION,
                       plural=self.BMH_PLURAL)

    def _patch_finalizers(self, host: Host, finalizers: List[str]) -> Host:
        body = {"metadata": {"finalizers": finalizers, "resourceVersion": host.resource_version}}
        try:
            resource = self._custom_api.patch_namespaced_custom_object(
                group=self.BMH_GROUP,
                version=self.BMH_VERSION,
                namespace=host.namespace,
                plural=self.BMH_PLURAL,
                name=host.name,
                body=body,
                _content_type="application/merge-patch+json",
                _request_timeout=self.timeout
            )
        except ApiException as e:
            raise self._translate(e, host) from e
        return Host.from_resource(resource)

    @staticmethod
    def _translate(e: ApiException, host: Host) -> Exception:
        if e.status == 409:
            return ConflictError(f"Host {host.namespace}/{host.name} changed: {e.reason}")
        if e.status == 404:
            return HostNotFoundError(f"Host {host.namespace}/{host.name} not found")
        return e


class KubernetesSecretStore(SecretStore):
    """BMC credentials read from Kubernetes secrets (keys: username, password)"""

    def __init__(self, api_client: client.ApiClient, namespace: Optional[str] = None, timeout: int = 30):
        self.namespace = namespace
        self.timeout = timeout
        self._core_api = client.CoreV1Api(api_client)

    def lookup(self, name: str, namespace: str) -> Optional[Credentials]:
        try:
            secret = self._core_api.read_namespaced_secret(name, namespace, _request_timeout=self.timeout)
        except ApiException as e:
            if e.status == 404:
                logger.debug(f"Secret {namespace}/{name} not found")
                return None
            raise

        data = secret.data or {}
        return Credentials(
            username=self._decode(data.get("username")),
            password=self._decode(data.get("password")),
            version=secret.metadata.resource_version or "",
        )

    def start_watch(self, callback: SecretCallback, stop: threading.Event) -> None:
        def handle(secret):
            callback((secret.metadata.namespace, secret.metadata.name))

        if self.namespace:
            _run_watch("secret", self._core_api.list_namespaced_secret, stop, handle,
                       self.timeout * 10, namespace=self.namespace)
        else:
            _run_watch("secret", self._core_api.list_secret_for_all_namespaces, stop, handle,
                       self.timeout * 10)

    @staticmethod
    def _decode(value: Optional[str]) -> str:
        if not value:
            return ""
        return base64.b64decode(value).decode("utf-8").strip()
