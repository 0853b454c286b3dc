"""
Kubernetes deployment inspector for Sculptor.

Resolves deployments to their containers and looks for OOMKilled
terminations among the deployment's pods, using the official kubernetes
Python client.
"""

import logging
from typing import Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config import ConfigException
from kubernetes.utils import parse_quantity

from sculptor.core.recommender import (
    DeploymentInspector,
    DeploymentLookupError,
    DeploymentNotFoundError,
    NoContainersError,
)
from sculptor.core.schemas import DeploymentInfo, OOMSignal

logger = logging.getLogger(__name__)

OOM_KILLED_REASON = "OOMKilled"


class K8sConnectionError(Exception):
    """Exception raised when cluster connection fails."""
    pass


def build_api_client(
    kubeconfig: Optional[str] = None,
    context: Optional[str] = None
) -> client.ApiClient:
    """
    Create a Kubernetes API client.

    Loads the given kubeconfig file, the default kubeconfig, or the
    in-cluster service account configuration, in that order.

    Args:
        kubeconfig: Optional path to a kubeconfig file.
        context: Optional kubeconfig context name.

    Returns:
        kubernetes.client.ApiClient instance.

    Raises:
        K8sConnectionError: If no configuration could be loaded.
    """
    configuration = client.Configuration()
    try:
        config.load_kube_config(
            config_file=kubeconfig or None,
            context=context or None,
            client_configuration=configuration,
        )
    except (ConfigException, FileNotFoundError) as e:
        if kubeconfig:
            raise K8sConnectionError(f"Failed to load kubeconfig {kubeconfig}: {e}")
        try:
            config.load_incluster_config(client_configuration=configuration)
        except ConfigException:
            raise K8sConnectionError(f"Failed to load kubeconfig: {e}")
        logger.debug("Using in-cluster Kubernetes configuration")

    return client.ApiClient(configuration)


def format_label_selector(selector) -> Optional[str]:
    """
    Convert a V1LabelSelector into a label selector string.

    Args:
        selector: V1LabelSelector from a deployment spec, or None.

    Returns:
        Selector string such as "app=web,tier in (backend)", or None if empty.
    """
    if selector is None:
        return None

    parts = [f"{key}={value}" for key, value in sorted((selector.match_labels or {}).items())]

    for expression in selector.match_expressions or []:
        operator = expression.operator
        values = ",".join(expression.values or [])
        if operator == "In":
            parts.append(f"{expression.key} in ({values})")
        elif operator == "NotIn":
            parts.append(f"{expression.key} notin ({values})")
        elif operator == "Exists":
            parts.append(expression.key)
        elif operator == "DoesNotExist":
            parts.append(f"!{expression.key}")
        else:
            logger.warning(f"Ignoring unsupported selector operator: {operator}")

    return ",".join(parts) or None


class K8sDeploymentInspector(DeploymentInspector):
    """
    Deployment inspector backed by the Kubernetes API.

    Uses AppsV1Api to read deployments and CoreV1Api to read pods and
    events for OOM-kill detection.
    """

    def __init__(self, api_client: client.ApiClient, timeout: int = 30):
        """
        Initialize the inspector.

        Args:
            api_client: Kubernetes API client.
            timeout: Timeout for API operations in seconds.
        """
        self.timeout = timeout
        self._apps_v1 = client.AppsV1Api(api_client)
        self._core_v1 = client.CoreV1Api(api_client)

    def resolve(self, namespace: str, deployment_name: str) -> DeploymentInfo:
        """
        Fetch a deployment and list its containers.

        Raises:
            DeploymentNotFoundError: If the deployment does not exist.
            DeploymentLookupError: If the API request fails.
            NoContainersError: If the deployment declares no containers.
        """
        try:
            deployment = self._apps_v1.read_namespaced_deployment(
                deployment_name,
                namespace,
                _request_timeout=self.timeout,
            )
        except ApiException as e:
            if e.status == 404:
                raise DeploymentNotFoundError(
                    f"deployment '{deployment_name}' not found in namespace '{namespace}'"
                )
            raise DeploymentLookupError(
                f"could not get deployment '{deployment_name}' in namespace '{namespace}': {e.reason}"
            )
        except Exception as e:
            raise DeploymentLookupError(
                f"could not get deployment '{deployment_name}' in namespace '{namespace}': {e}"
            )

        pod_spec = deployment.spec.template.spec
        containers = [c.name for c in pod_spec.containers or []]
        init_containers = [c.name for c in pod_spec.init_containers or []]

        if not containers:
            raise NoContainersError(
                f"no containers found in deployment spec of {namespace}/{deployment_name}"
            )

        logger.info(f"Deployment {namespace}/{deployment_name} found")
        return DeploymentInfo(
            name=deployment_name,
            namespace=namespace,
            containers=containers,
            init_containers=init_containers,
            selector=format_label_selector(deployment.spec.selector),
        )

    def oom_signal(self, deployment: DeploymentInfo, container_name: str) -> OOMSignal:
        """
        Look for an OOM kill of a container among the deployment's pods.

        A pod counts when the container's current or last terminated state
        has reason OOMKilled. OOMKilled events name the pod, not the
        container, so they only count when the pod runs no other container
        or reports no status for this one.

        Raises:
            ApiException: If the pods of the deployment cannot be listed.
        """
        if not deployment.selector:
            logger.warning(
                f"Deployment {deployment.namespace}/{deployment.name} has no selector, "
                "skipping OOM check"
            )
            return OOMSignal()

        pods = self._core_v1.list_namespaced_pod(
            deployment.namespace,
            label_selector=deployment.selector,
            _request_timeout=self.timeout,
        )

        for pod in pods.items:
            if self._was_oom_killed(pod, container_name):
                return OOMSignal(
                    was_killed=True,
                    pod_name=pod.metadata.name,
                    last_known_limit_bytes=self._memory_limit(pod, container_name),
                )

        return OOMSignal()

    def _was_oom_killed(self, pod, container_name: str) -> bool:
        status = self._container_status(pod, container_name)
        if status is not None:
            for state in (status.last_state, status.state):
                terminated = state.terminated if state else None
                if terminated is not None and terminated.reason == OOM_KILLED_REASON:
                    return True

        containers = list(pod.spec.containers or []) + list(pod.spec.init_containers or [])
        if status is not None and len(containers) > 1:
            return False
        return self._has_oom_events(pod)

    def _container_status(self, pod, container_name: str):
        statuses = list(pod.status.container_statuses or []) if pod.status else []
        for status in statuses:
            if status.name == container_name:
                return status
        return None

    def _has_oom_events(self, pod) -> bool:
        field_selector = (
            f"involvedObject.kind=Pod,involvedObject.name={pod.metadata.name},"
            f"reason={OOM_KILLED_REASON}"
        )
        try:
            events = self._core_v1.list_namespaced_event(
                pod.metadata.namespace,
                field_selector=field_selector,
                _request_timeout=self.timeout,
            )
        except ApiException as e:
            logger.warning(f"Could not get events for pod {pod.metadata.name}: {e.reason}")
            return False
        return len(events.items) > 0

    def _memory_limit(self, pod, container_name: str) -> Optional[int]:
        for container in list(pod.spec.containers or []) + list(pod.spec.init_containers or []):
            if container.name != container_name:
                continue
            limits = container.resources.limits if container.resources else None
            if limits and "memory" in limits:
                try:
                    return int(parse_quantity(limits["memory"]))
                except ValueError:
                    logger.warning(
                        f"Could not parse memory limit '{limits['memory']}' of '{container_name}'"
                    )
            return None
        return None


def create_inspector(
    kubeconfig: Optional[str] = None,
    context: Optional[str] = None,
    timeout: int = 30
) -> K8sDeploymentInspector:
    """
    Convenience function to create an inspector from kubeconfig settings.

    Args:
        kubeconfig: Optional path to a kubeconfig file.
        context: Optional kubeconfig context name.
        timeout: Timeout for API operations in seconds.

    Returns:
        K8sDeploymentInspector instance.
    """
    return K8sDeploymentInspector(build_api_client(kubeconfig, context), timeout=timeout)
