"""
Command line interface for Sculptor.

Analyzes a deployment and prints a resource snippet that can be pasted
into its manifest.

Usage:
    sculptor --deployment web-app --namespace production --range 14d
    sculptor --generate-config
"""

import logging
import sys
from typing import Optional

from sculptor import __version__
from sculptor.config import (
    CLIConfig,
    ConfigError,
    DefaultConfigNotFoundError,
    generate_default_config,
    load_cli_config,
)
from sculptor.core.k8s_inspector import K8sConnectionError, K8sDeploymentInspector, build_api_client
from sculptor.core.metrics_collector import (
    PrometheusClient,
    PrometheusConfig,
    PrometheusMetricsSource,
    ServiceProxyPrometheusClient,
)
from sculptor.core.presenter import YAMLPresenter
from sculptor.core.recommender import RecommendationError, create_recommender
from sculptor.core.schemas import AnalysisParams, AnalysisTarget
from sculptor.logging_config import configure_logging, disable_logging

logger = logging.getLogger(__name__)

LOGO = r"""
  ___  ___ _   _ _    ___ _____ ___  ___
 / __|/ __| | | | |  | _ \_   _/ _ \| _ \
 \__ \ (__| |_| | |__|  _/ | || (_) |   /
 |___/\___|\___/|____|_|   |_| \___/|_|_\
"""


def build_prometheus_client(cfg: CLIConfig, api_client) -> PrometheusClient:
    """
    Create the Prometheus client for the CLI configuration.

    Uses the configured URL when set, otherwise reaches the Prometheus
    service through the Kubernetes API server.
    """
    if cfg.prometheus.url:
        logger.info(f"Using Prometheus at {cfg.prometheus.url}")
        return PrometheusClient(PrometheusConfig(base_url=cfg.prometheus.url))

    logger.info(
        f"Using Prometheus service {cfg.prometheus.namespace}/{cfg.prometheus.service}:"
        f"{cfg.prometheus.port} through the Kubernetes API server"
    )
    return ServiceProxyPrometheusClient(
        api_client,
        namespace=cfg.prometheus.namespace,
        service=cfg.prometheus.service,
        port=cfg.prometheus.port,
    )


def run_analysis(cfg: CLIConfig) -> int:
    """
    Run the recommendation for a resolved configuration and print it.

    Returns:
        Process exit code.
    """
    try:
        api_client = build_api_client(cfg.kubeconfig, cfg.context)
    except K8sConnectionError as e:
        logger.error(f"Failed to create Kubernetes client: {e}")
        return 1

    recommender = create_recommender(
        K8sDeploymentInspector(api_client),
        PrometheusMetricsSource(build_prometheus_client(cfg, api_client)),
        log=logging.getLogger("sculptor.recommender"),
    )
    params = AnalysisParams(
        namespace=cfg.namespace,
        deployment_name=cfg.deployment,
        target_container=cfg.container or None,
        time_range=cfg.range,
    )

    logger.info(
        f"Analyzing deployment '{cfg.deployment}' in namespace '{cfg.namespace}' "
        f"over the last {cfg.range}"
    )
    try:
        recommendations = recommender.calculate(params, AnalysisTarget(cfg.target))
    except RecommendationError as e:
        logger.error(f"Calculation error: {e}")
        return 1

    YAMLPresenter(stream=sys.stdout, silent=cfg.silent).render(recommendations)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """
    Entry point of the sculptor command.

    Args:
        argv: Command line arguments, without the program name.

    Returns:
        Process exit code.
    """
    configure_logging(level="INFO", log_format="text", stream=sys.stderr)

    try:
        cfg = load_cli_config(argv)
    except DefaultConfigNotFoundError as e:
        logger.error(f"Error loading config: {e}. Run 'sculptor --generate-config' to create one.")
        return 1
    except ConfigError as e:
        logger.error(f"Error loading config: {e}")
        return 1

    if cfg.generate_config:
        try:
            path = generate_default_config(cfg.config_path)
        except ConfigError as e:
            logger.error(f"Failed to generate config file: {e}")
            return 1
        print(f"Default config file '{path}' created successfully.")
        return 0

    if cfg.version:
        print(f"sculptor version {__version__}")
        return 0

    if cfg.silent:
        disable_logging()
    else:
        configure_logging(
            level="DEBUG" if cfg.verbose else "INFO",
            log_format="text",
            stream=sys.stderr,
        )
        print(LOGO)

    return run_analysis(cfg)


if __name__ == "__main__":
    sys.exit(main())
