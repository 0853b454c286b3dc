"""
Configuration module for Sculptor.

Two layers of configuration live here:
- BaseConfig and friends, read from environment variables, for the HTTP service
- CLIConfig, read from command line flags and a TOML config file, for the CLI
"""

import argparse
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from sculptor.core.schemas import TIME_RANGE_PATTERN, AnalysisTarget

DEFAULT_CONFIG_PATH = "config.toml"


class BaseConfig:
    """Base configuration with defaults for all environments."""

    DEBUG: bool = False
    TESTING: bool = False

    # Prometheus settings
    PROMETHEUS_BASE_URL: str = os.environ.get(
        "PROMETHEUS_BASE_URL",
        "http://prometheus:9090"
    )
    PROMETHEUS_TIMEOUT: int = int(os.environ.get("PROMETHEUS_TIMEOUT", "30"))
    PROMETHEUS_VERIFY_SSL: bool = os.environ.get("PROMETHEUS_VERIFY_SSL", "true").lower() == "true"

    # Kubernetes settings
    KUBECONFIG: Optional[str] = os.environ.get("KUBECONFIG")
    KUBE_CONTEXT: Optional[str] = os.environ.get("KUBE_CONTEXT")
    KUBE_TIMEOUT: int = int(os.environ.get("KUBE_TIMEOUT", "30"))

    # Analysis settings
    DEFAULT_TIME_RANGE: str = os.environ.get("SCULPTOR_DEFAULT_RANGE", "7d")

    # Application settings
    JSON_SORT_KEYS: bool = False

    # Logging
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = "json"  # 'json' or 'text'


class DevConfig(BaseConfig):
    """Development configuration."""

    DEBUG: bool = True
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "DEBUG")
    LOG_FORMAT: str = "text"


class TestConfig(BaseConfig):
    """Testing configuration."""

    TESTING: bool = True
    DEBUG: bool = True

    PROMETHEUS_BASE_URL: str = "http://prometheus:9090"

    # Shorter timeouts for tests
    PROMETHEUS_TIMEOUT: int = 5
    KUBE_TIMEOUT: int = 5


class ProdConfig(BaseConfig):
    """Production configuration."""

    DEBUG: bool = False

    PROMETHEUS_BASE_URL: str = os.environ.get("PROMETHEUS_BASE_URL", "")

    @classmethod
    def validate(cls) -> None:
        """Validate production configuration."""
        if not cls.PROMETHEUS_BASE_URL:
            raise ValueError("PROMETHEUS_BASE_URL must be set in production")
        if not TIME_RANGE_PATTERN.match(cls.DEFAULT_TIME_RANGE):
            raise ValueError(f"Invalid SCULPTOR_DEFAULT_RANGE: {cls.DEFAULT_TIME_RANGE}")


# Configuration mapping
config_by_name: dict[str, type[BaseConfig]] = {
    "development": DevConfig,
    "dev": DevConfig,
    "testing": TestConfig,
    "test": TestConfig,
    "production": ProdConfig,
    "prod": ProdConfig,
}


def get_config() -> BaseConfig:
    """Get configuration based on FLASK_ENV environment variable."""
    env = os.environ.get("FLASK_ENV", "development").lower()
    config_class = config_by_name.get(env, DevConfig)

    if config_class == ProdConfig:
        ProdConfig.validate()

    return config_class()


# ============================================================================
# Command line configuration
# ============================================================================

class ConfigError(Exception):
    """Exception raised for invalid or unreadable CLI configuration."""
    pass


class DefaultConfigNotFoundError(ConfigError):
    """Raised when the default config.toml is missing."""

    def __init__(self, path: str = DEFAULT_CONFIG_PATH):
        super().__init__(f"default config file ({path}) not found")
        self.path = path


@dataclass
class PrometheusSettings:
    """Where to find Prometheus."""
    url: str = ""
    namespace: str = "monitoring"
    service: str = "kube-prometheus-stack-prometheus"
    port: int = 9090


@dataclass
class CLIConfig:
    """Resolved command line configuration."""
    kubeconfig: str = ""
    context: str = ""
    range: str = "7d"
    namespace: str = "default"
    deployment: str = ""
    container: str = ""
    target: str = AnalysisTarget.ALL.value
    silent: bool = False
    verbose: bool = False
    version: bool = False
    generate_config: bool = False
    config_path: str = DEFAULT_CONFIG_PATH
    prometheus: PrometheusSettings = field(default_factory=PrometheusSettings)


# Keys that may come from the config file or from flags
_SCALAR_KEYS = (
    "kubeconfig", "context", "range", "namespace",
    "deployment", "container", "target", "silent", "verbose",
)

_BOOL_KEYS = ("silent", "verbose")

DEFAULT_CONFIG_CONTENT = """\
# (Optional) The name of the kubeconfig context to use.
# If empty, the currently active context will be used.
context = ""

# (Optional) The absolute path to the kubeconfig file.
# If empty, the default path (~/.kube/config) will be used.
kubeconfig = ""

# The default time range for Prometheus queries.
# Can be overridden by the --range flag.
# Valid units: s (seconds), m (minutes), h (hours), d (days), w (weeks), y (years).
range = "7d"

# Enable verbose/debug logging.
verbose = false

# Prometheus connection settings.
[prometheus]
  # (Optional) Direct URL to Prometheus. If set, the Kubernetes service proxy is not used.
  # url = "http://prometheus.example.com"
  url = ""

  # --- Settings below are used to reach Prometheus through the API server (if url is not set) ---

  # Namespace where the Prometheus service is located.
  namespace = "monitoring"

  # Name of the Prometheus service.
  service = "kube-prometheus-stack-prometheus"

  # The service port Prometheus listens on.
  port = 9090
"""


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser. Unset flags parse to None."""
    parser = argparse.ArgumentParser(
        prog="sculptor",
        description="Recommend CPU and memory requests/limits for a Kubernetes deployment.",
        argument_default=None,
    )
    parser.add_argument("--kubeconfig", help="path to kubeconfig file")
    parser.add_argument("--context", help="the name of the kubeconfig context to use")
    parser.add_argument("--config", dest="config_path", default=DEFAULT_CONFIG_PATH,
                        help="path to config file (default: config.toml)")
    parser.add_argument("--range", help="analysis range for prometheus (e.g. 7d, 24h, 1h)")
    parser.add_argument("--namespace", help="the namespace of the deployment (default: default)")
    parser.add_argument("--deployment", help="the name of the deployment to analyze")
    parser.add_argument("--container",
                        help="the name of the container to analyze (defaults to all containers)")
    parser.add_argument("--target", choices=[t.value for t in AnalysisTarget],
                        help="'all' for all containers, 'main' for primary containers, "
                             "or 'init' for init containers (default: all)")
    parser.add_argument("--prometheus-url", dest="prometheus_url",
                        help="direct URL to Prometheus (overrides the config file)")
    parser.add_argument("--version", action="store_true", default=False,
                        help="print version information and exit")
    parser.add_argument("--silent", action="store_true", default=None,
                        help="disable all logs, only show the YAML output")
    parser.add_argument("--verbose", action="store_true", default=None,
                        help="enable debug logging")
    parser.add_argument("--generate-config", dest="generate_config", action="store_true",
                        default=False, help="generate a default config.toml file and exit")
    return parser


def read_config_file(path: str) -> dict:
    """
    Read a TOML config file.

    Raises:
        DefaultConfigNotFoundError: If the default config.toml does not exist.
        ConfigError: If an explicit file is missing or cannot be parsed.
    """
    config_file = Path(path)
    if not config_file.exists():
        if path == DEFAULT_CONFIG_PATH:
            raise DefaultConfigNotFoundError(path)
        raise ConfigError(f"error reading config file: {path} does not exist")

    try:
        with open(config_file, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"error reading config file: {e}")


def validate_cli_config(cfg: CLIConfig) -> None:
    """
    Validate a resolved CLI configuration.

    Raises:
        ConfigError: If a required value is missing or a value is malformed.
    """
    if not cfg.deployment:
        raise ConfigError("--deployment flag is required")
    if not isinstance(cfg.range, str) or not TIME_RANGE_PATTERN.match(cfg.range):
        raise ConfigError(
            f"invalid format for 'range': {cfg.range}. "
            "Use Prometheus range format like '1h', '7d', '2w'"
        )
    if cfg.target not in {t.value for t in AnalysisTarget}:
        raise ConfigError("invalid value for --target: must be 'all', 'main', or 'init'")


def load_cli_config(argv: Optional[list[str]] = None) -> CLIConfig:
    """
    Resolve the CLI configuration from flags and the config file.

    Flags take precedence over the config file, which takes precedence
    over built-in defaults. --generate-config and --version skip the
    config file and validation.

    Args:
        argv: Command line arguments, without the program name.

    Returns:
        Resolved CLIConfig.

    Raises:
        ConfigError: If the configuration is missing, unreadable or invalid.
    """
    args = build_parser().parse_args(argv)
    cfg = CLIConfig(
        config_path=args.config_path,
        version=args.version,
        generate_config=args.generate_config,
    )

    if cfg.generate_config or cfg.version:
        return cfg

    file_values = read_config_file(args.config_path)

    for key in _SCALAR_KEYS:
        if key in file_values:
            if key in _BOOL_KEYS and not isinstance(file_values[key], bool):
                raise ConfigError(f"error reading config file: '{key}' must be true or false")
            setattr(cfg, key, file_values[key])
        flag_value = getattr(args, key)
        if flag_value is not None:
            setattr(cfg, key, flag_value)

    prometheus_values = file_values.get("prometheus", {})
    if not isinstance(prometheus_values, dict):
        raise ConfigError("error reading config file: [prometheus] must be a table")
    port = prometheus_values.get("port", 9090)
    try:
        if isinstance(port, bool):
            raise ValueError(port)
        port = int(port)
    except (TypeError, ValueError):
        raise ConfigError("error reading config file: [prometheus] port must be an integer")
    cfg.prometheus = PrometheusSettings(
        url=str(prometheus_values.get("url", "")),
        namespace=str(prometheus_values.get("namespace", "monitoring")),
        service=str(prometheus_values.get("service", "kube-prometheus-stack-prometheus")),
        port=port,
    )
    if args.prometheus_url:
        cfg.prometheus.url = args.prometheus_url

    validate_cli_config(cfg)
    return cfg


def generate_default_config(path: str = DEFAULT_CONFIG_PATH) -> Path:
    """
    Write the default config file.

    Raises:
        ConfigError: If the file already exists.
    """
    config_file = Path(path)
    if config_file.exists():
        raise ConfigError(f"file '{path}' already exists, refusing to overwrite")
    config_file.write_text(DEFAULT_CONFIG_CONTENT)
    return config_file
