"""Command line entry point for the devfile adapter."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer
from kubernetes.config import ConfigException
from rich import print as rich_print
from rich.logging import RichHandler

from .adapter import ComponentAdapter
from .config import (
    DEFAULT_DEBUG_PORT,
    AdapterContext,
    BuildParameters,
    ClusterContext,
    ComponentSettings,
    DeployParameters,
    PushParameters,
)
from .devfile import Devfile
from .errors import AdapterError, BuildInterruptedError
from .kube import ClusterAPI, current_namespace
from .manifest import MIRROR_PATH

INTERRUPTED_EXIT_CODE = 130

app = typer.Typer(help="Run devfile components on a Kubernetes or OpenShift cluster.")


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, log_time_format="%X")],
    )


@contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except BuildInterruptedError as exc:
        rich_print(f"[yellow]{exc}[/yellow]")
        raise typer.Exit(code=INTERRUPTED_EXIT_CODE) from exc
    except (AdapterError, ConfigException) as exc:
        rich_print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc


def _create_api(context: ClusterContext) -> ClusterAPI:
    return ClusterAPI(context)


def _create_adapter(
    devfile_path: Path,
    context_dir: Path,
    namespace: Optional[str],
    kube_context: Optional[str],
    kubeconfig: Optional[Path],
) -> ComponentAdapter:
    devfile = Devfile.from_file(devfile_path)
    settings = ComponentSettings.from_context(context_dir)

    name = settings.name if settings else (devfile.metadata.name or context_dir.resolve().name)
    application = settings.application if settings else "app"
    namespace = namespace or (settings.namespace if settings else None)
    if not namespace:
        namespace = current_namespace(str(kubeconfig) if kubeconfig else None, kube_context)

    cluster = ClusterContext(
        namespace=namespace,
        context=kube_context,
        kubeconfig=str(kubeconfig) if kubeconfig else None,
    )
    context = AdapterContext(
        component_name=name,
        application=application,
        namespace=namespace,
        context_dir=context_dir,
    )
    return ComponentAdapter(_create_api(cluster), context, devfile)


def _debug_port(context_dir: Path, debug_port: Optional[int]) -> int:
    if debug_port is not None:
        return debug_port
    settings = ComponentSettings.from_context(context_dir)
    return settings.debug_port if settings else DEFAULT_DEBUG_PORT


DevfileOption = typer.Option(Path("devfile.yaml"), "--devfile", help="Path to the devfile.")
ContextOption = typer.Option(Path("."), "--context", help="Directory holding the component sources.")
NamespaceOption = typer.Option(None, "--namespace", help="Namespace of the component.")
KubeContextOption = typer.Option(None, "--kube-context", help="Override kubeconfig context.")
KubeconfigOption = typer.Option(None, "--kubeconfig", help="Path to kubeconfig file.")
VerboseOption = typer.Option(False, "--verbose", help="Enable debug logging.")


@app.command("push")
def push(
    devfile: Path = DevfileOption,
    context_dir: Path = ContextOption,
    namespace: Optional[str] = NamespaceOption,
    kube_context: Optional[str] = KubeContextOption,
    kubeconfig: Optional[Path] = KubeconfigOption,
    init_command: str = typer.Option("", "--init-command", help="Devfile command to run as init."),
    build_command: str = typer.Option("", "--build-command", help="Devfile command to run as build."),
    run_command: str = typer.Option("", "--run-command", help="Devfile command to run as run."),
    debug_command: str = typer.Option("", "--debug-command", help="Devfile command to run as debug."),
    debug: bool = typer.Option(False, "--debug", help="Start the debug command instead of the run command."),
    debug_port: Optional[int] = typer.Option(None, "--debug-port", help="Port the debugger listens on."),
    force_build: bool = typer.Option(False, "--force-build", help="Push every file and rerun the commands."),
    show_log: bool = typer.Option(False, "--show-log", help="Show the output of the devfile commands."),
    ignore: List[str] = typer.Option([], "--ignore", help="Glob of files not to sync. Repeatable."),
    verbose: bool = VerboseOption,
) -> None:
    """Create or update the component and sync the local sources to it."""

    _configure_logging(verbose)
    with _handle_errors():
        adapter = _create_adapter(devfile, context_dir, namespace, kube_context, kubeconfig)
        params = PushParameters(
            init_command=init_command,
            build_command=build_command,
            run_command=run_command,
            debug_command=debug_command,
            debug=debug,
            debug_port=_debug_port(context_dir, debug_port),
            force_build=force_build,
            show=show_log,
            ignored_files=ignore,
        )
        adapter.push(params)
    rich_print(f"[green]Changes successfully pushed to component {adapter.component_name}.[/green]")


@app.command("build")
def build(
    devfile: Path = DevfileOption,
    context_dir: Path = ContextOption,
    namespace: Optional[str] = NamespaceOption,
    kube_context: Optional[str] = KubeContextOption,
    kubeconfig: Optional[Path] = KubeconfigOption,
    tag: str = typer.Option("", "--tag", help="Image to build, as registry/namespace/repository[:tag]."),
    rootless: bool = typer.Option(False, "--rootless", help="Build with Kaniko instead of a BuildConfig."),
    docker_config: Optional[Path] = typer.Option(None, "--docker-config", help="Registry credentials file."),
    verbose: bool = VerboseOption,
) -> None:
    """Build a container image from the local sources."""

    _configure_logging(verbose)
    with _handle_errors():
        adapter = _create_adapter(devfile, context_dir, namespace, kube_context, kubeconfig)
        params = BuildParameters(tag=tag, rootless=rootless)
        if docker_config:
            params = params.model_copy(update={"docker_config_path": docker_config})
        result = adapter.build(params)
    rich_print(f"[green]Successfully built container image {result.image}.[/green]")


@app.command("deploy")
def deploy(
    manifest: Path = typer.Option(
        ..., "--manifest", exists=True, dir_okay=False, help="Multi-document manifest to deploy."
    ),
    devfile: Path = DevfileOption,
    context_dir: Path = ContextOption,
    namespace: Optional[str] = NamespaceOption,
    kube_context: Optional[str] = KubeContextOption,
    kubeconfig: Optional[Path] = KubeconfigOption,
    tag: str = typer.Option("", "--tag", help="Image to deploy; defaults to the latest built image."),
    port: int = typer.Option(8080, "--port", help="Port the deployed application listens on."),
    verbose: bool = VerboseOption,
) -> None:
    """Deploy the component using a manifest."""

    _configure_logging(verbose)
    with _handle_errors():
        adapter = _create_adapter(devfile, context_dir, namespace, kube_context, kubeconfig)
        params = DeployParameters(manifest_source=manifest.read_bytes(), tag=tag, deployment_port=port)
        result = adapter.deploy(params)
    rich_print(f"[green]Applied {len(result.applied)} resource(s).[/green]")
    if result.url:
        rich_print(f"[green]Application URL: {result.url}[/green]")


@app.command("deploy-delete")
def deploy_delete(
    manifest: Optional[Path] = typer.Option(None, "--manifest", help="Manifest to delete; defaults to the last deploy."),
    devfile: Path = DevfileOption,
    context_dir: Path = ContextOption,
    namespace: Optional[str] = NamespaceOption,
    kube_context: Optional[str] = KubeContextOption,
    kubeconfig: Optional[Path] = KubeconfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Delete the resources created by the last deploy."""

    _configure_logging(verbose)
    with _handle_errors():
        adapter = _create_adapter(devfile, context_dir, namespace, kube_context, kubeconfig)
        source = manifest or context_dir / MIRROR_PATH
        if not source.is_file():
            raise AdapterError(f"manifest {source} not found, nothing to delete")
        deleted = adapter.deploy_delete(source.read_bytes())
    for kind, name in deleted:
        rich_print(f"[green]Deleted {kind} {name}.[/green]")


@app.command("delete")
def delete(
    devfile: Path = DevfileOption,
    context_dir: Path = ContextOption,
    namespace: Optional[str] = NamespaceOption,
    kube_context: Optional[str] = KubeContextOption,
    kubeconfig: Optional[Path] = KubeconfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Delete the component from the cluster."""

    _configure_logging(verbose)
    with _handle_errors():
        adapter = _create_adapter(devfile, context_dir, namespace, kube_context, kubeconfig)
        deleted = adapter.delete()
    if deleted:
        rich_print(f"[green]Component {adapter.component_name} deleted.[/green]")


@app.command("exec")
def exec_command(
    command: List[str] = typer.Argument(..., help="Command to run in the component."),
    devfile: Path = DevfileOption,
    context_dir: Path = ContextOption,
    namespace: Optional[str] = NamespaceOption,
    kube_context: Optional[str] = KubeContextOption,
    kubeconfig: Optional[Path] = KubeconfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Run a command in the container hosting the run command."""

    _configure_logging(verbose)
    with _handle_errors():
        adapter = _create_adapter(devfile, context_dir, namespace, kube_context, kubeconfig)
        adapter.exec(command)


@app.command("test")
def run_test(
    devfile: Path = DevfileOption,
    context_dir: Path = ContextOption,
    namespace: Optional[str] = NamespaceOption,
    kube_context: Optional[str] = KubeContextOption,
    kubeconfig: Optional[Path] = KubeconfigOption,
    test_command: str = typer.Option("", "--test-command", help="Devfile command to run as test."),
    show_log: bool = typer.Option(False, "--show-log", help="Show the output of the test command."),
    verbose: bool = VerboseOption,
) -> None:
    """Run the devfile test command in the component."""

    _configure_logging(verbose)
    with _handle_errors():
        adapter = _create_adapter(devfile, context_dir, namespace, kube_context, kubeconfig)
        adapter.test(test_command, show=show_log)
    rich_print("[green]Test command completed successfully.[/green]")


@app.command("log")
def log(
    devfile: Path = DevfileOption,
    context_dir: Path = ContextOption,
    namespace: Optional[str] = NamespaceOption,
    kube_context: Optional[str] = KubeContextOption,
    kubeconfig: Optional[Path] = KubeconfigOption,
    follow: bool = typer.Option(False, "--follow", help="Keep streaming new log lines."),
    debug: bool = typer.Option(False, "--debug", help="Show the debug command logs."),
    verbose: bool = VerboseOption,
) -> None:
    """Print the logs of the component's run (or debug) container."""

    _configure_logging(verbose)
    with _handle_errors():
        adapter = _create_adapter(devfile, context_dir, namespace, kube_context, kubeconfig)
        for line in adapter.log(follow=follow, debug=debug):
            typer.echo(line, nl=False)
