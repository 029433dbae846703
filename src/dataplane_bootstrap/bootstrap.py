"""Orchestration of a complete data plane bootstrap run."""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Optional, Sequence

from .config import ClusterContext, OperatorConfig
from .graph import TaskGraph
from .kube import DataPlaneAPI
from .provisioning.common import provision_custom_ca_secret
from .provisioning.fluxcd import FluxCDProvisioner
from .provisioning.namespaces import NamespaceProvisioner
from .provisioning.operator import OperatorProvisioner
from .provisioning.stack import StackProvisioner
from .readiness import ReadinessWaiter
from .retry import ReadExecutor
from .templates import TemplateLoader

_LOG = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300.0


class Bootstrapper:
    """Installs the operator, its optional FluxCD source and the managed stack.

    Work is expressed as a :class:`TaskGraph`; independent steps run in
    parallel and the first failure aborts the run. Every write is idempotent,
    so a failed run is recovered by running it again.
    """

    def __init__(
        self,
        api: Any,
        config: OperatorConfig,
        loader: Optional[TemplateLoader] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        cancel_event: Optional[threading.Event] = None,
        poll_interval: Optional[float] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.api = api
        self.config = config
        self.loader = loader or TemplateLoader()
        self.timeout = timeout
        self.cancel_event = cancel_event or threading.Event()
        self.max_workers = max_workers

        waiter_options = {"cancel_event": self.cancel_event}
        if poll_interval is not None:
            waiter_options["poll_interval"] = poll_interval
        waiter = ReadinessWaiter(api, **waiter_options)

        self.namespaces = NamespaceProvisioner(api, config)
        self.operator = OperatorProvisioner(api, config, self.loader, waiter)
        self.fluxcd = FluxCDProvisioner(api, config, self.loader, waiter) if config.fluxcd_enabled else None
        self.stack = StackProvisioner(api, config, self.operator.info)

    def _provision_flux_source(self) -> None:
        self.fluxcd.apply_source_controller()
        self.fluxcd.wait_until_ready(self.timeout)

    def build_graph(self) -> TaskGraph:
        config = self.config
        fluxcd = self.fluxcd
        graph = TaskGraph()
        graph.add("ns_system", self.namespaces.provision_system)
        graph.add("ns_cni", self.namespaces.provision_cni)
        graph.add("ns_ci", self.namespaces.provision_ci_pipelines)
        graph.add("crds", self.operator.apply_crds, enabled=config.pulumi.install_crds)
        graph.add(
            "flux_crds",
            fluxcd.apply_crds if fluxcd else _noop,
            enabled=fluxcd is not None and config.fluxcd.install_crds,
        )
        graph.add(
            "custom_ca",
            lambda: provision_custom_ca_secret(self.api, config),
            after=("ns_system",),
            enabled=config.security.has_custom_ca,
        )
        graph.add(
            "flux_source",
            self._provision_flux_source if fluxcd else _noop,
            after=("ns_system", "flux_crds", "custom_ca"),
            enabled=fluxcd is not None,
        )
        graph.add("rbac", self.operator.apply_rbac, after=("ns_system",))
        graph.add("deployment", self.operator.apply_deployment, after=("ns_system", "custom_ca"))
        graph.add(
            "operator_ready",
            lambda: self.operator.wait_until_ready(self.timeout),
            after=("ns_cni", "ns_ci", "rbac", "deployment", "crds", "flux_source"),
        )
        graph.add("stack_rbac", self.stack.apply_rbac, after=("operator_ready",))
        graph.add("config_secret", self.stack.apply_config_secret, after=("operator_ready",))
        graph.add(
            "state_pvc",
            self.stack.apply_state_pvc,
            after=("operator_ready",),
            enabled=not config.s3.enabled,
        )
        graph.add("stack", self.stack.apply_stack, after=("stack_rbac", "config_secret", "state_pvc"))
        return graph

    def run(self) -> Sequence[str]:
        started = time.monotonic()
        _LOG.info("Bootstrapping data plane into namespace %s", self.config.system_namespace)
        completed = self.build_graph().run(max_workers=self.max_workers, cancel_event=self.cancel_event)
        _LOG.info("Data plane bootstrap finished in %.1fs", time.monotonic() - started)
        return completed


def _noop() -> None:
    return None


def bootstrap(
    config: OperatorConfig,
    context: Optional[ClusterContext] = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    loader: Optional[TemplateLoader] = None,
    cancel_event: Optional[threading.Event] = None,
) -> None:
    """Run a full bootstrap against the cluster described by ``context``.

    Returns on success and raises the first fatal error otherwise.
    """

    cancel_event = cancel_event or threading.Event()
    api = DataPlaneAPI(context or ClusterContext(), reads=ReadExecutor(cancel_event=cancel_event))
    Bootstrapper(api, config, loader=loader, timeout=timeout, cancel_event=cancel_event).run()
