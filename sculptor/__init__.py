"""
Sculptor - Kubernetes Resource Recommender

This package analyzes the CPU and memory usage of a Kubernetes deployment,
collected from Prometheus, and recommends resource requests and limits
for its main and init containers.
"""

__version__ = "1.0.0"
__author__ = "Sculptor Team"
