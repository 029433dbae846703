"""Command line entry point for the data plane bootstrap."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from kubernetes.client import ApiException
from kubernetes.config import ConfigException
from pydantic import ValidationError
from rich import box
from rich import print as rich_print
from rich.logging import RichHandler
from rich.table import Table

from .bootstrap import DEFAULT_TIMEOUT_SECONDS, bootstrap
from .config import ClusterContext, OperatorConfig
from .errors import DataPlaneError
from .kube import DataPlaneAPI
from .management import StackManager
from .status import StatusReader

_LOG = logging.getLogger(__name__)

app = typer.Typer(help="Bootstrap and inspect a CodeNOW data plane on Kubernetes.")


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, log_time_format="%X")],
    )


def _load_config(config_path: Path) -> OperatorConfig:
    try:
        return OperatorConfig.from_file(config_path)
    except (OSError, ValueError) as exc:
        # pydantic's ValidationError is a ValueError.
        rich_print(f"[red]Invalid configuration {config_path}: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def _cluster_context(kubeconfig: Optional[Path], kube_context: Optional[str], verify_ssl: bool) -> ClusterContext:
    return ClusterContext(
        kubeconfig=str(kubeconfig) if kubeconfig else None,
        context=kube_context,
        verify_ssl=verify_ssl,
    )


def _create_api(context: ClusterContext) -> DataPlaneAPI:
    return DataPlaneAPI(context)


def _connect(kubeconfig: Optional[Path], kube_context: Optional[str], verify_ssl: bool) -> DataPlaneAPI:
    try:
        return _create_api(_cluster_context(kubeconfig, kube_context, verify_ssl))
    except ConfigException as exc:
        rich_print(f"[red]Cannot connect to the cluster: {exc}[/red]")
        raise typer.Exit(code=1) from exc


@app.command("bootstrap")
def bootstrap_command(
    config_path: Path = typer.Argument(..., help="Path to the operator configuration (YAML or JSON)."),
    kubeconfig: Optional[Path] = typer.Option(None, help="Path to kubeconfig file."),
    kube_context: Optional[str] = typer.Option(None, "--context", help="Override kubeconfig context."),
    verify_ssl: bool = typer.Option(True, "--verify-ssl/--no-verify-ssl", help="Verify the API server certificate."),
    timeout: float = typer.Option(DEFAULT_TIMEOUT_SECONDS, help="Seconds to wait for each workload to become ready."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:
    """Install the operator and the data plane stack into the target cluster."""

    _configure_logging(verbose)
    config = _load_config(config_path)
    context = _cluster_context(kubeconfig, kube_context, verify_ssl)
    try:
        bootstrap(config, context, timeout=timeout)
    except (DataPlaneError, ApiException, ConfigException, ValidationError) as exc:
        _LOG.debug("Bootstrap failed", exc_info=True)
        rich_print(f"[red]Bootstrap failed: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    rich_print("[green]Data plane bootstrapped successfully.[/green]")


@app.command("status")
def status_command(
    config_path: Path = typer.Argument(..., help="Path to the operator configuration (YAML or JSON)."),
    kubeconfig: Optional[Path] = typer.Option(None, help="Path to kubeconfig file."),
    kube_context: Optional[str] = typer.Option(None, "--context", help="Override kubeconfig context."),
    verify_ssl: bool = typer.Option(True, "--verify-ssl/--no-verify-ssl", help="Verify the API server certificate."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:
    """Show the operator and stack status."""

    _configure_logging(verbose)
    config = _load_config(config_path)
    api = _connect(kubeconfig, kube_context, verify_ssl)
    reader = StatusReader(api, api.reads)
    operator = reader.operator_status()
    stack = reader.stack_status(config.system_namespace)

    table = Table(
        title="[bold]Data plane status[/bold]",
        show_header=True,
        header_style="bold magenta",
        box=box.ROUNDED,
    )
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")
    table.add_row("Operator namespace", operator.namespace)
    table.add_row("Operator version", operator.version)
    table.add_row("Operator status", operator.status)
    table.add_row("Workspace status", stack.workspace_status)
    table.add_row("Stack ready", stack.ready)
    table.add_row("Reconciling reason", stack.reconciling_reason)
    table.add_row("Dry run", stack.dry_run)
    rich_print(table)


@app.command("reconcile")
def reconcile_command(
    config_path: Path = typer.Argument(..., help="Path to the operator configuration (YAML or JSON)."),
    kubeconfig: Optional[Path] = typer.Option(None, help="Path to kubeconfig file."),
    kube_context: Optional[str] = typer.Option(None, "--context", help="Override kubeconfig context."),
    verify_ssl: bool = typer.Option(True, "--verify-ssl/--no-verify-ssl", help="Verify the API server certificate."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:
    """Ask the operator to reconcile the stack now."""

    _configure_logging(verbose)
    config = _load_config(config_path)
    api = _connect(kubeconfig, kube_context, verify_ssl)
    try:
        requested_at = StackManager(api).request_reconcile(config.system_namespace)
    except (DataPlaneError, ApiException) as exc:
        rich_print(f"[red]Reconcile request failed: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    rich_print(f"[green]Reconciliation requested at {requested_at}.[/green]")


@app.command("preview")
def preview_command(
    config_path: Path = typer.Argument(..., help="Path to the operator configuration (YAML or JSON)."),
    kubeconfig: Optional[Path] = typer.Option(None, help="Path to kubeconfig file."),
    kube_context: Optional[str] = typer.Option(None, "--context", help="Override kubeconfig context."),
    verify_ssl: bool = typer.Option(True, "--verify-ssl/--no-verify-ssl", help="Verify the API server certificate."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:
    """Toggle preview (dry run) mode of the stack."""

    _configure_logging(verbose)
    config = _load_config(config_path)
    api = _connect(kubeconfig, kube_context, verify_ssl)
    namespace = config.system_namespace
    try:
        current = StatusReader(api, api.reads).stack_status(namespace)
        preview = StackManager(api).toggle_preview(current, namespace)
    except (DataPlaneError, ApiException) as exc:
        rich_print(f"[red]Preview toggle failed: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    rich_print(f"[green]Preview {'enabled' if preview else 'disabled'}.[/green]")


if __name__ == "__main__":  # pragma: no cover
    app()
