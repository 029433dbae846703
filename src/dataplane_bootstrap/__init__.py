"""CodeNOW data plane bootstrap package."""

from .bootstrap import Bootstrapper, bootstrap  # noqa: F401
from .config import ClusterContext, OperatorConfig  # noqa: F401
from .kube import DataPlaneAPI  # noqa: F401

__all__ = ["Bootstrapper", "bootstrap", "ClusterContext", "OperatorConfig", "DataPlaneAPI"]
