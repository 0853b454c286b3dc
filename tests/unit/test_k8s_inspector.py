"""
Unit tests for the Kubernetes deployment inspector.
"""

from unittest.mock import MagicMock, patch

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException
from kubernetes.config import ConfigException

from sculptor.core.k8s_inspector import (
    K8sConnectionError,
    K8sDeploymentInspector,
    build_api_client,
    format_label_selector,
)
from sculptor.core.recommender import (
    DeploymentLookupError,
    DeploymentNotFoundError,
    NoContainersError,
)
from sculptor.core.schemas import DeploymentInfo


MiB = 1024 * 1024


def make_deployment(containers=("web",), init_containers=(), match_labels=None):
    """Create a V1Deployment with the given container names."""
    return client.V1Deployment(
        metadata=client.V1ObjectMeta(name="web-app", namespace="production"),
        spec=client.V1DeploymentSpec(
            selector=client.V1LabelSelector(match_labels=match_labels or {"app": "web"}),
            template=client.V1PodTemplateSpec(
                spec=client.V1PodSpec(
                    containers=[client.V1Container(name=n) for n in containers],
                    init_containers=[client.V1Container(name=n) for n in init_containers] or None,
                ),
            ),
        ),
    )


def make_pod(name="web-app-7d9f-abc12", container="web", memory_limit="256Mi",
             last_reason=None, current_reason=None):
    """Create a V1Pod whose container status carries the given termination reasons."""
    def state(reason):
        if reason is None:
            return client.V1ContainerState(running=client.V1ContainerStateRunning())
        return client.V1ContainerState(
            terminated=client.V1ContainerStateTerminated(exit_code=137, reason=reason)
        )

    limits = {"memory": memory_limit} if memory_limit else None
    return client.V1Pod(
        metadata=client.V1ObjectMeta(name=name, namespace="production"),
        spec=client.V1PodSpec(
            containers=[
                client.V1Container(
                    name=container,
                    resources=client.V1ResourceRequirements(limits=limits),
                )
            ],
        ),
        status=client.V1PodStatus(
            container_statuses=[
                client.V1ContainerStatus(
                    name=container,
                    image="nginx:1.21",
                    image_id="",
                    ready=True,
                    restart_count=1,
                    last_state=state(last_reason),
                    state=state(current_reason),
                )
            ],
        ),
    )


def add_sidecar(pod, last_reason=None, with_status=True):
    """Add a second container named "sidecar" to a pod built by make_pod."""
    pod.spec.containers.append(client.V1Container(name="sidecar"))
    if with_status:
        terminated = None
        if last_reason is not None:
            terminated = client.V1ContainerStateTerminated(exit_code=137, reason=last_reason)
        pod.status.container_statuses.append(
            client.V1ContainerStatus(
                name="sidecar",
                image="fluentd:v1.14",
                image_id="",
                ready=True,
                restart_count=1,
                last_state=client.V1ContainerState(terminated=terminated),
                state=client.V1ContainerState(running=client.V1ContainerStateRunning()),
            )
        )
    return pod


def oom_events(pod_name="web-app-7d9f-abc12"):
    """Event list holding one OOMKilled event for the pod."""
    return client.CoreV1EventList(items=[
        client.CoreV1Event(
            metadata=client.V1ObjectMeta(name=f"{pod_name}.1"),
            involved_object=client.V1ObjectReference(kind="Pod", name=pod_name),
            reason="OOMKilled",
        )
    ])


@pytest.fixture
def inspector():
    """Create an inspector with mocked API groups."""
    inspector = K8sDeploymentInspector(MagicMock(), timeout=10)
    inspector._apps_v1 = MagicMock()
    inspector._core_v1 = MagicMock()
    inspector._core_v1.list_namespaced_event.return_value = client.CoreV1EventList(items=[])
    return inspector


@pytest.fixture
def deployment_info():
    """Resolved deployment with a simple selector."""
    return DeploymentInfo(
        name="web-app",
        namespace="production",
        containers=["web"],
        init_containers=[],
        selector="app=web",
    )


class TestResolve:
    """Tests for resolving deployments."""

    def test_resolve_deployment(self, inspector):
        """Test resolving containers, init containers and selector."""
        inspector._apps_v1.read_namespaced_deployment.return_value = make_deployment(
            containers=("web", "sidecar"),
            init_containers=("migrate",),
        )

        info = inspector.resolve("production", "web-app")

        assert info.name == "web-app"
        assert info.namespace == "production"
        assert info.containers == ["web", "sidecar"]
        assert info.init_containers == ["migrate"]
        assert info.selector == "app=web"
        inspector._apps_v1.read_namespaced_deployment.assert_called_once_with(
            "web-app", "production", _request_timeout=10
        )

    def test_not_found(self, inspector):
        """Test that a 404 maps to DeploymentNotFoundError."""
        inspector._apps_v1.read_namespaced_deployment.side_effect = ApiException(
            status=404, reason="Not Found"
        )

        with pytest.raises(DeploymentNotFoundError, match="web-app"):
            inspector.resolve("production", "web-app")

    def test_forbidden(self, inspector):
        """Test that other API errors map to DeploymentLookupError."""
        inspector._apps_v1.read_namespaced_deployment.side_effect = ApiException(
            status=403, reason="Forbidden"
        )

        with pytest.raises(DeploymentLookupError, match="Forbidden"):
            inspector.resolve("production", "web-app")

    def test_connection_failure(self, inspector):
        """Test that transport errors map to DeploymentLookupError."""
        inspector._apps_v1.read_namespaced_deployment.side_effect = OSError("connection refused")

        with pytest.raises(DeploymentLookupError):
            inspector.resolve("production", "web-app")

    def test_no_containers(self, inspector):
        """Test that an empty container list is rejected."""
        inspector._apps_v1.read_namespaced_deployment.return_value = make_deployment(containers=())

        with pytest.raises(NoContainersError):
            inspector.resolve("production", "web-app")


class TestOOMSignal:
    """Tests for OOM kill detection."""

    def test_no_oom(self, inspector, deployment_info):
        """Test a healthy pod."""
        inspector._core_v1.list_namespaced_pod.return_value = client.V1PodList(items=[make_pod()])

        signal = inspector.oom_signal(deployment_info, "web")

        assert signal.was_killed is False
        assert signal.last_known_limit_bytes is None
        inspector._core_v1.list_namespaced_pod.assert_called_once_with(
            "production", label_selector="app=web", _request_timeout=10
        )

    def test_oom_in_last_state(self, inspector, deployment_info):
        """Test detection from the last terminated state."""
        inspector._core_v1.list_namespaced_pod.return_value = client.V1PodList(
            items=[make_pod(last_reason="OOMKilled")]
        )

        signal = inspector.oom_signal(deployment_info, "web")

        assert signal.was_killed is True
        assert signal.pod_name == "web-app-7d9f-abc12"
        assert signal.last_known_limit_bytes == 256 * MiB

    def test_oom_in_current_state(self, inspector, deployment_info):
        """Test detection from the current terminated state."""
        inspector._core_v1.list_namespaced_pod.return_value = client.V1PodList(
            items=[make_pod(current_reason="OOMKilled", memory_limit="1Gi")]
        )

        signal = inspector.oom_signal(deployment_info, "web")

        assert signal.was_killed is True
        assert signal.last_known_limit_bytes == 1024 * MiB

    def test_other_termination_reason(self, inspector, deployment_info):
        """Test that non-OOM terminations are ignored."""
        inspector._core_v1.list_namespaced_pod.return_value = client.V1PodList(
            items=[make_pod(last_reason="Error")]
        )

        assert inspector.oom_signal(deployment_info, "web").was_killed is False

    def test_other_container_killed(self, inspector, deployment_info):
        """Test that an OOM kill of another container does not count."""
        inspector._core_v1.list_namespaced_pod.return_value = client.V1PodList(
            items=[make_pod(container="sidecar", last_reason="OOMKilled")]
        )

        assert inspector.oom_signal(deployment_info, "web").was_killed is False

    def test_oom_from_events(self, inspector, deployment_info):
        """Test detection from OOMKilled pod events."""
        inspector._core_v1.list_namespaced_pod.return_value = client.V1PodList(items=[make_pod()])
        inspector._core_v1.list_namespaced_event.return_value = client.CoreV1EventList(
            items=[
                client.CoreV1Event(
                    metadata=client.V1ObjectMeta(name="web-app-7d9f-abc12.1"),
                    involved_object=client.V1ObjectReference(
                        kind="Pod", name="web-app-7d9f-abc12"
                    ),
                    reason="OOMKilled",
                )
            ]
        )

        signal = inspector.oom_signal(deployment_info, "web")

        assert signal.was_killed is True
        _, kwargs = inspector._core_v1.list_namespaced_event.call_args
        assert "involvedObject.name=web-app-7d9f-abc12" in kwargs["field_selector"]
        assert "reason=OOMKilled" in kwargs["field_selector"]

    def test_sidecar_oom_does_not_count_for_other_container(self, inspector, deployment_info):
        """Test that pod-level OOM events are not blamed on a healthy container."""
        pod = add_sidecar(make_pod(), last_reason="OOMKilled")
        inspector._core_v1.list_namespaced_pod.return_value = client.V1PodList(items=[pod])
        inspector._core_v1.list_namespaced_event.return_value = oom_events()

        assert inspector.oom_signal(deployment_info, "web").was_killed is False
        assert inspector.oom_signal(deployment_info, "sidecar").was_killed is True

    def test_events_used_without_container_status(self, inspector, deployment_info):
        """Test that events still count when the container reports no status."""
        pod = make_pod()
        pod.status.container_statuses = []
        add_sidecar(pod)
        inspector._core_v1.list_namespaced_pod.return_value = client.V1PodList(items=[pod])
        inspector._core_v1.list_namespaced_event.return_value = oom_events()

        signal = inspector.oom_signal(deployment_info, "web")

        assert signal.was_killed is True
        assert signal.last_known_limit_bytes == 256 * MiB

    def test_event_lookup_failure(self, inspector, deployment_info):
        """Test that failing event lookups do not count as OOM."""
        inspector._core_v1.list_namespaced_pod.return_value = client.V1PodList(items=[make_pod()])
        inspector._core_v1.list_namespaced_event.side_effect = ApiException(
            status=403, reason="Forbidden"
        )

        assert inspector.oom_signal(deployment_info, "web").was_killed is False

    def test_oom_without_limit(self, inspector, deployment_info):
        """Test an OOM kill of a container without memory limit."""
        inspector._core_v1.list_namespaced_pod.return_value = client.V1PodList(
            items=[make_pod(last_reason="OOMKilled", memory_limit=None)]
        )

        signal = inspector.oom_signal(deployment_info, "web")

        assert signal.was_killed is True
        assert signal.last_known_limit_bytes is None

    def test_pod_list_failure_propagates(self, inspector, deployment_info):
        """Test that failing pod listing is raised to the caller."""
        inspector._core_v1.list_namespaced_pod.side_effect = ApiException(status=500)

        with pytest.raises(ApiException):
            inspector.oom_signal(deployment_info, "web")

    def test_no_selector(self, inspector, deployment_info):
        """Test that a deployment without selector is skipped."""
        info = deployment_info.model_copy(update={"selector": None})

        assert inspector.oom_signal(info, "web").was_killed is False
        inspector._core_v1.list_namespaced_pod.assert_not_called()


class TestFormatLabelSelector:
    """Tests for label selector formatting."""

    def test_match_labels_sorted(self):
        selector = client.V1LabelSelector(match_labels={"tier": "backend", "app": "web"})

        assert format_label_selector(selector) == "app=web,tier=backend"

    def test_match_expressions(self):
        selector = client.V1LabelSelector(
            match_labels={"app": "web"},
            match_expressions=[
                client.V1LabelSelectorRequirement(key="env", operator="In", values=["prod", "staging"]),
                client.V1LabelSelectorRequirement(key="canary", operator="NotIn", values=["true"]),
                client.V1LabelSelectorRequirement(key="team", operator="Exists"),
                client.V1LabelSelectorRequirement(key="legacy", operator="DoesNotExist"),
            ],
        )

        assert format_label_selector(selector) == (
            "app=web,env in (prod,staging),canary notin (true),team,!legacy"
        )

    def test_empty(self):
        assert format_label_selector(None) is None
        assert format_label_selector(client.V1LabelSelector()) is None


class TestBuildApiClient:
    """Tests for Kubernetes client configuration loading."""

    def test_kubeconfig(self):
        """Test loading an explicit kubeconfig and context."""
        with patch("sculptor.core.k8s_inspector.config") as mock_config:
            api_client = build_api_client("/tmp/kubeconfig", "staging")

        assert isinstance(api_client, client.ApiClient)
        _, kwargs = mock_config.load_kube_config.call_args
        assert kwargs["config_file"] == "/tmp/kubeconfig"
        assert kwargs["context"] == "staging"
        mock_config.load_incluster_config.assert_not_called()

    def test_falls_back_to_incluster(self):
        """Test the in-cluster fallback without explicit kubeconfig."""
        with patch("sculptor.core.k8s_inspector.config") as mock_config:
            mock_config.load_kube_config.side_effect = ConfigException("no config")
            build_api_client()

        mock_config.load_incluster_config.assert_called_once()

    def test_explicit_kubeconfig_failure(self):
        """Test that a broken explicit kubeconfig is not silently replaced."""
        with patch("sculptor.core.k8s_inspector.config") as mock_config:
            mock_config.load_kube_config.side_effect = FileNotFoundError("missing")

            with pytest.raises(K8sConnectionError):
                build_api_client("/nonexistent/kubeconfig")

        mock_config.load_incluster_config.assert_not_called()

    def test_no_configuration(self):
        """Test failure when neither kubeconfig nor in-cluster config exists."""
        with patch("sculptor.core.k8s_inspector.config") as mock_config:
            mock_config.load_kube_config.side_effect = ConfigException("no config")
            mock_config.load_incluster_config.side_effect = ConfigException("not in cluster")

            with pytest.raises(K8sConnectionError):
                build_api_client()
