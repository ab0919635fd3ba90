"""Devfile component adapter package."""

from .adapter import ComponentAdapter  # noqa: F401
from .config import AdapterContext, ClusterContext  # noqa: F401
from .devfile import Devfile  # noqa: F401
from .kube import ClusterAPI  # noqa: F401

__all__ = ["AdapterContext", "ClusterAPI", "ClusterContext", "ComponentAdapter", "Devfile"]
