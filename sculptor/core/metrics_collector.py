"""
Prometheus access for Sculptor.

Runs instant PromQL queries for the usage percentiles and peaks of a
single container, either directly against Prometheus or through the
Kubernetes API server service proxy.
"""

import json
import logging
import math
from dataclasses import dataclass
from typing import Optional

import requests
from requests.exceptions import RequestException

from sculptor.core.recommender import MetricsSource

logger = logging.getLogger(__name__)

DEFAULT_PROMETHEUS_URL = "http://prometheus:9090"


class MetricsCollectionError(Exception):
    """Raised when Prometheus cannot be queried or answers garbage."""
    pass


@dataclass
class PrometheusConfig:
    """Where and how to reach Prometheus."""
    base_url: str = DEFAULT_PROMETHEUS_URL
    timeout: int = 30
    verify_ssl: bool = True


class PromQLQueries:
    """
    PromQL templates for one container of a deployment.

    Pods are matched by the "<deployment>-" name prefix. Placeholders:
    quantile, namespace, deployment_name, container_name and lookback
    (a Prometheus range such as "7d").
    """

    # cores, from 5m rates sampled every minute over the lookback
    CPU_USAGE_QUANTILE = """
        max(quantile_over_time({quantile},
            sum by (pod, namespace) (
                rate(container_cpu_usage_seconds_total{{namespace="{namespace}", pod=~"^{deployment_name}-.*", container="{container_name}"}}[5m])
            )[{lookback}:1m]
        ))
    """

    # working set bytes
    MEMORY_USAGE_QUANTILE = """
        max(quantile_over_time({quantile},
            sum by (pod, namespace) (
                container_memory_working_set_bytes{{namespace="{namespace}", pod=~"^{deployment_name}-.*", container="{container_name}"}}
            )[{lookback}:1m]
        ))
    """

    MAX_MEMORY_USAGE = """
        max(max_over_time(
            container_memory_working_set_bytes{{namespace="{namespace}", pod=~"^{deployment_name}-.*", container="{container_name}"}}[{lookback}]
        ))
    """


def _scalar(data: dict) -> Optional[float]:
    """Extract the first sample of an instant vector response."""
    samples = data.get("data", {}).get("result", [])
    if not samples:
        logger.debug("Prometheus query returned no data")
        return None

    # each sample carries [timestamp, "value"]
    pair = samples[0].get("value") or []
    if len(pair) < 2:
        return None
    try:
        number = float(pair[1])
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


class PrometheusClient:
    """Instant query client for the Prometheus HTTP API."""

    def __init__(self, config: Optional[PrometheusConfig] = None):
        self.config = config or PrometheusConfig()
        self._session = requests.Session()

    def query(self, promql: str) -> Optional[float]:
        """
        Run an instant query and return its first sample.

        Returns:
            The sample value, or None when Prometheus rejects the query or
            has no finite data for it.

        Raises:
            MetricsCollectionError: If Prometheus cannot be reached.
        """
        data = self._fetch({"query": promql.strip()})

        if data.get("status") != "success":
            logger.warning(f"Prometheus rejected query: {data.get('error', 'unknown error')}")
            return None
        if data.get("warnings"):
            logger.warning(f"Prometheus query returned warnings: {data['warnings']}")

        return _scalar(data)

    def ping(self) -> bool:
        """Check whether Prometheus answers a trivial query."""
        try:
            return self.query("vector(1)") is not None
        except MetricsCollectionError as e:
            logger.warning(f"Prometheus is not reachable: {e}")
            return False

    def _fetch(self, params: dict) -> dict:
        url = f"{self.config.base_url.rstrip('/')}/api/v1/query"
        try:
            response = self._session.get(
                url,
                params=params,
                timeout=self.config.timeout,
                verify=self.config.verify_ssl,
            )
            response.raise_for_status()
            return response.json()
        except RequestException as e:
            logger.error(f"Prometheus request to {url} failed: {e}")
            raise MetricsCollectionError(f"Failed to query Prometheus: {e}")
        except ValueError as e:
            raise MetricsCollectionError(f"Invalid response from Prometheus: {e}")


class ServiceProxyPrometheusClient(PrometheusClient):
    """
    Prometheus client that goes through the Kubernetes API server.

    Uses the service proxy subresource of the Prometheus service, so no
    direct network access to Prometheus is needed, only kubeconfig access.
    """

    def __init__(
        self,
        api_client,
        namespace: str,
        service: str,
        port: int = 9090,
        timeout: int = 30
    ):
        """
        Initialize the proxied client.

        Args:
            api_client: kubernetes.client.ApiClient with cluster credentials.
            namespace: Namespace of the Prometheus service.
            service: Name of the Prometheus service.
            port: Service port Prometheus listens on.
            timeout: Request timeout in seconds.
        """
        super().__init__(PrometheusConfig(
            base_url=f"{namespace}/{service}:{port}",
            timeout=timeout,
        ))
        self._api_client = api_client
        self._path = (
            f"/api/v1/namespaces/{namespace}/services/{service}:{port}/proxy/api/v1/query"
        )

    def _fetch(self, params: dict) -> dict:
        from kubernetes.client.rest import ApiException
        from urllib3.exceptions import HTTPError

        try:
            response = self._api_client.call_api(
                self._path,
                "GET",
                query_params=list(params.items()),
                header_params={"Accept": "application/json"},
                auth_settings=["BearerToken"],
                _preload_content=False,
                _return_http_data_only=True,
                _request_timeout=self.config.timeout,
            )
            return json.loads(response.data)
        except (ApiException, HTTPError) as e:
            logger.error(f"Prometheus proxy request failed: {e}")
            raise MetricsCollectionError(f"Failed to query Prometheus via service proxy: {e}")
        except ValueError as e:
            raise MetricsCollectionError(f"Invalid response from Prometheus: {e}")


class PrometheusMetricsSource(MetricsSource):
    """
    MetricsSource answering from Prometheus.

    A series without data counts as 0.0. Query failures raise
    MetricsCollectionError for the recommender to degrade.
    """

    QUANTILE_TEMPLATES = {
        "cpu": PromQLQueries.CPU_USAGE_QUANTILE,
        "memory": PromQLQueries.MEMORY_USAGE_QUANTILE,
    }

    def __init__(self, client: PrometheusClient):
        self._client = client

    def percentile(
        self,
        p: float,
        resource: str,
        namespace: str,
        deployment_name: str,
        container_name: str,
        window: str
    ) -> float:
        template = self.QUANTILE_TEMPLATES.get(resource)
        if template is None:
            raise ValueError(f"Unsupported resource: {resource}")

        logger.debug(f"Querying P{int(p * 100)} {resource} of '{container_name}' over {window}")
        return self._run(
            template,
            quantile=p,
            namespace=namespace,
            deployment_name=deployment_name,
            container_name=container_name,
            lookback=window,
        )

    def max_over_window(
        self,
        namespace: str,
        deployment_name: str,
        container_name: str,
        window: str
    ) -> float:
        logger.debug(f"Querying peak memory of '{container_name}' over {window}")
        return self._run(
            PromQLQueries.MAX_MEMORY_USAGE,
            namespace=namespace,
            deployment_name=deployment_name,
            container_name=container_name,
            lookback=window,
        )

    def _run(self, template: str, **values) -> float:
        return self._client.query(template.format(**values)) or 0.0


def create_metrics_source(
    prometheus_url: Optional[str] = None,
    timeout: int = 30,
    verify_ssl: bool = True,
) -> PrometheusMetricsSource:
    """Create a metrics source querying Prometheus at the given URL."""
    return PrometheusMetricsSource(PrometheusClient(PrometheusConfig(
        base_url=prometheus_url or DEFAULT_PROMETHEUS_URL,
        timeout=timeout,
        verify_ssl=verify_ssl,
    )))
