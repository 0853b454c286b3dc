"""
YAML rendering for Sculptor.

This module renders recommendations as a resource snippet that can be
pasted into a Deployment manifest, along with any warnings worth
reviewing before applying it.
"""

import logging
import math
import sys
from io import StringIO
from typing import Optional, TextIO

from ruamel.yaml import YAML

from sculptor.core.schemas import AllRecommendations, NamedRecommendation

logger = logging.getLogger(__name__)

KiB = 1024
MiB = 1024 * KiB

YELLOW = "\033[33m"
RESET = "\033[0m"

SNIPPET_HEADER = "--- Recommended Resource Snippet (paste into your Deployment YAML) ---"
NO_RECOMMENDATIONS = "No recommendations could be generated for any containers."
SILENT_WARNING = (
    "Warning: Issues like OOMKilled or CPU spikiness were detected. "
    "Review recommendations carefully."
)


def format_memory(num_bytes: int) -> str:
    """
    Format a byte count as a Kubernetes memory quantity.

    Values are rounded up to whole Mi (or Ki below one Mi).

    Examples:
        125829120 -> "120Mi", 1536 -> "2Ki", 0 -> "0"
    """
    if num_bytes <= 0:
        return "0"
    if num_bytes >= MiB:
        return f"{math.ceil(num_bytes / MiB)}Mi"
    if num_bytes >= KiB:
        return f"{math.ceil(num_bytes / KiB)}Ki"
    return str(num_bytes)


def format_cpu(millicores: int) -> str:
    """
    Format millicores as a Kubernetes CPU quantity.

    Examples:
        250 -> "250m", 1000 -> "1", 0 -> "0"
    """
    if millicores % 1000 == 0:
        return str(millicores // 1000)
    return f"{millicores}m"


def collect_warnings(recommendations: AllRecommendations) -> list[str]:
    """List the OOM and spikiness warnings of all recommendations."""
    warnings = []
    for named in recommendations.main_containers + recommendations.init_containers:
        if named.recommendation.is_oom_killed:
            warnings.append(f"OOMKilled event detected for container '{named.container_name}'")
        if named.recommendation.cpu.spikiness_warning:
            warnings.append(f"High CPU spikiness detected for container '{named.container_name}'")
    return warnings


def _container_entry(named: NamedRecommendation) -> dict:
    rec = named.recommendation
    memory = format_memory(rec.memory)
    return {
        "name": named.container_name,
        "resources": {
            "limits": {
                "cpu": format_cpu(rec.cpu.limit),
                "memory": memory,
            },
            "requests": {
                "cpu": format_cpu(rec.cpu.request),
                "memory": memory,
            },
        },
    }


def to_manifest_dict(recommendations: AllRecommendations) -> dict:
    """
    Build the manifest snippet structure.

    Returns:
        Dict with "containers" and/or "initContainers" keys; a key is
        omitted when it would hold no containers.
    """
    manifest = {}
    if recommendations.main_containers:
        manifest["containers"] = [_container_entry(n) for n in recommendations.main_containers]
    if recommendations.init_containers:
        manifest["initContainers"] = [_container_entry(n) for n in recommendations.init_containers]
    return manifest


class YAMLPresenter:
    """
    Writes recommendations as a manifest-ready YAML snippet.

    In silent mode only the YAML is written to the output stream, and a
    single notice goes to stderr when there are warnings.
    """

    def __init__(
        self,
        stream: Optional[TextIO] = None,
        silent: bool = False,
        error_stream: Optional[TextIO] = None,
    ):
        """
        Initialize the presenter.

        Args:
            stream: Output stream for the snippet. Defaults to stdout.
            silent: Suppress everything except the YAML itself.
            error_stream: Stream for the silent-mode notice. Defaults to stderr.
        """
        self._stream = stream or sys.stdout
        self._error_stream = error_stream or sys.stderr
        self._silent = silent
        self._yaml = YAML()
        self._yaml.default_flow_style = False
        self._yaml.indent(mapping=2, sequence=2, offset=0)

    def render(self, recommendations: Optional[AllRecommendations]) -> None:
        """Write warnings and the YAML snippet for the recommendations."""
        if recommendations is None or recommendations.is_empty():
            if not self._silent:
                self._stream.write(f"{NO_RECOMMENDATIONS}\n")
            return

        self._write_warnings(collect_warnings(recommendations))

        if not self._silent:
            self._stream.write(f"\n{SNIPPET_HEADER}\n")
        self._stream.write(self.dump_yaml(to_manifest_dict(recommendations)))

    def dump_yaml(self, data: dict) -> str:
        """
        Dump a dictionary to YAML string.

        Args:
            data: Dictionary to convert to YAML.

        Returns:
            YAML formatted string.
        """
        stream = StringIO()
        self._yaml.dump(data, stream)
        return stream.getvalue()

    def _write_warnings(self, warnings: list[str]) -> None:
        if not warnings:
            return
        if self._silent:
            self._error_stream.write(f"{SILENT_WARNING}\n")
            return
        for warning in warnings:
            self._stream.write(f"{YELLOW}--- WARNING: {warning} ---{RESET}\n")
