from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

import urllib3
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException

from .client import NO_OUTPUT, ApiError
from .types import (
    ExecutionUnitDescriptor,
    ExecutionUnitStatus,
    UnitHandle,
    UnitPhase,
    UnitSummary,
)

LOG = logging.getLogger(__name__)

_T = TypeVar("_T")


def load_core_api(*, kubeconfig: str | None = None, in_cluster: bool = False) -> k8s_client.CoreV1Api:
    """Load cluster credentials and return a CoreV1Api.

    Example:
        ```python
        api = load_core_api(kubeconfig="~/.kube/config")
        ```
    """
    try:
        if in_cluster:
            k8s_config.load_incluster_config()
        elif kubeconfig:
            k8s_config.load_kube_config(config_file=kubeconfig)
        else:
            k8s_config.load_kube_config()
    except (ConfigException, OSError) as exc:
        raise RuntimeError(f"Failed to initialize Kubernetes client: {exc}") from exc
    LOG.info("Kubernetes client initialized")
    return k8s_client.CoreV1Api()


def pod_manifest(descriptor: ExecutionUnitDescriptor) -> k8s_client.V1Pod:
    """Translate a unit descriptor into a V1Pod body.

    Example:
        ```python
        pod = pod_manifest(descriptor)
        ```
    """
    container = k8s_client.V1Container(
        name=descriptor.container_name,
        image=descriptor.image,
        command=descriptor.argv,
        resources=k8s_client.V1ResourceRequirements(
            requests={"cpu": descriptor.cpu_request, "memory": descriptor.memory_request},
            limits={"cpu": descriptor.cpu_limit, "memory": descriptor.memory_limit},
        ),
    )
    return k8s_client.V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=k8s_client.V1ObjectMeta(name=descriptor.name, labels=dict(descriptor.labels)),
        spec=k8s_client.V1PodSpec(restart_policy=descriptor.restart_policy, containers=[container]),
    )


def _api_error(exc: Exception) -> ApiError:
    """Convert a client or transport exception into ApiError.

    Example:
        ```python
        err = _api_error(ApiException(status=404, reason="Not Found"))
        ```
    """
    if isinstance(exc, ApiException):
        return ApiError(f"({exc.status}) {exc.reason}", status=exc.status)
    return ApiError(str(exc))


def _phase_of(pod: Any) -> UnitPhase:
    """Extract the phase from a V1Pod, tolerating missing status.

    Example:
        ```python
        phase = _phase_of(pod)
        ```
    """
    status = getattr(pod, "status", None)
    return UnitPhase.from_raw(getattr(status, "phase", None))


class KubernetesClient:
    """Namespace-scoped pod operations over the Kubernetes CoreV1 API.

    Example:
        ```python
        client = KubernetesClient(namespace="default", api=load_core_api())
        ```
    """

    def __init__(
        self,
        *,
        namespace: str,
        api: k8s_client.CoreV1Api,
        request_timeout: float | None = None,
    ) -> None:
        """Bind the client to one namespace and API instance.

        `request_timeout` caps each API round-trip in seconds; `None` waits
        as long as the transport does.

        Example:
            ```python
            client = KubernetesClient(namespace="tasks", api=api, request_timeout=10)
            ```
        """
        self._namespace = namespace
        self._api = api
        self._request_timeout = request_timeout

    @property
    def namespace(self) -> str:
        """Return the namespace every call is scoped to.

        Example:
            ```python
            ns = client.namespace
            ```
        """
        return self._namespace

    def create(self, descriptor: ExecutionUnitDescriptor) -> UnitHandle:
        """Create the pod described by `descriptor`.

        Example:
            ```python
            handle = client.create(descriptor)
            ```
        """
        created = self._call(
            self._api.create_namespaced_pod,
            namespace=self._namespace,
            body=pod_manifest(descriptor),
        )
        name = getattr(getattr(created, "metadata", None), "name", None) or descriptor.name
        return UnitHandle(name=name, namespace=self._namespace)

    def get_status(self, name: str) -> ExecutionUnitStatus:
        """Read the pod and return its phase.

        Example:
            ```python
            status = client.get_status("task-execution-abc-1700000000000")
            ```
        """
        pod = self._call(self._api.read_namespaced_pod, name=name, namespace=self._namespace)
        return ExecutionUnitStatus(phase=_phase_of(pod))

    def get_logs(self, name: str) -> str:
        """Return the pod's container log text.

        Example:
            ```python
            logs = client.get_logs("task-execution-abc-1700000000000")
            ```
        """
        logs = self._call(
            self._api.read_namespaced_pod_log,
            name=name,
            namespace=self._namespace,
        )
        text = (logs or "").strip()
        return text or NO_OUTPUT

    def delete(self, name: str) -> None:
        """Delete the pod by name.

        Example:
            ```python
            client.delete("task-execution-abc-1700000000000")
            ```
        """
        self._call(self._api.delete_namespaced_pod, name=name, namespace=self._namespace)

    def list(self, label_selector: str) -> list[UnitSummary]:
        """List pods matching `label_selector` in the namespace.

        Example:
            ```python
            rows = client.list("app=task-execution")
            ```
        """
        pods = self._call(
            self._api.list_namespaced_pod,
            namespace=self._namespace,
            label_selector=label_selector,
        )
        items: list[UnitSummary] = []
        for pod in getattr(pods, "items", None) or []:
            metadata = pod.metadata
            items.append(
                UnitSummary(
                    name=metadata.name,
                    phase=_phase_of(pod),
                    created_at=metadata.creation_timestamp,
                )
            )
        return items

    def _call(self, method: Callable[..., _T], **kwargs: Any) -> _T:
        """Invoke one API method, translating failures into ApiError.

        Example:
            ```python
            pod = client._call(api.read_namespaced_pod, name="p", namespace="default")
            ```
        """
        try:
            return method(_request_timeout=self._request_timeout, **kwargs)
        except (ApiException, urllib3.exceptions.HTTPError) as exc:
            raise _api_error(exc) from exc
