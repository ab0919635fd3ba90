"""Dispatch of devfile commands into the component's containers."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .. import supervisor
from ..commands import CommandGraph, PushCommands, is_restart_required
from ..config import DEFAULT_DEBUG_PORT
from ..devfile import Command, CommandGroupKind, ExecCommand
from ..kube import ClusterAPI, ComponentInfo

_LOG = logging.getLogger(__name__)

SHELL = ["/bin/sh", "-c"]


@dataclass
class PushContext:
    """State of a single push, passed explicitly through every stage."""

    commands: PushCommands = field(default_factory=dict)
    debug: bool = False
    debug_port: int = DEFAULT_DEBUG_PORT
    show: bool = False
    component_exists: bool = False
    pod_changed: bool = False

    @property
    def supervised_kind(self) -> CommandGroupKind:
        return CommandGroupKind.DEBUG if self.debug else CommandGroupKind.RUN

    @property
    def supervised_command(self) -> Optional[Command]:
        return self.commands.get(self.supervised_kind)


def shell_command(command: ExecCommand) -> List[str]:
    line = command.command_line
    if command.working_dir:
        line = f"cd {command.working_dir} && {line}"
    return SHELL + [line]


class CommandExecutionEngine:
    """Runs resolved devfile commands, recursing through composites.

    Execution is sequential and fail-fast: the first failing command raises and
    nothing after it runs.
    """

    def __init__(self, api: ClusterAPI, graph: CommandGraph) -> None:
        self.api = api
        self.graph = graph

    def execute(self, command: Command, pod_name: str, show: bool = False, path: Tuple[str, ...] = ()) -> None:
        if command.exec_ is not None:
            self._run_exec(command.exec_, pod_name, show)
            return
        if command.composite.parallel:
            _LOG.debug("Running parallel composite command %s sequentially", command.id)
        for child in self.graph.children(command, path):
            self.execute(child, pod_name, show, path + (command.key,))

    def _run_exec(self, command: ExecCommand, pod_name: str, show: bool) -> None:
        info = ComponentInfo(pod_name=pod_name, container_name=command.component)
        _LOG.info("Executing %s command %r", command.id, command.command_line)
        self.api.exec_in_container(info, shell_command(command), show=show)

    def run_push_commands(self, ctx: PushContext, pod: Dict[str, Any]) -> None:
        """Run init (first push only), build, then hand run or debug to the supervisor."""

        pod_name = pod["metadata"]["name"]
        init = ctx.commands.get(CommandGroupKind.INIT)
        if init is not None and not ctx.component_exists:
            self.execute(init, pod_name, ctx.show)

        build = ctx.commands.get(CommandGroupKind.BUILD)
        if build is not None:
            self.execute(build, pod_name, ctx.show)

        command = ctx.supervised_command
        if command is not None:
            self.run_supervised(command, ctx, pod)

    def run_supervised(self, command: Command, ctx: PushContext, pod: Dict[str, Any]) -> None:
        exec_command = command.exec_
        pod_name = pod["metadata"]["name"]
        if not ctx.component_exists:
            self.bootstrap_supervisor(exec_command.component, pod)

        info = ComponentInfo(pod_name=pod_name, container_name=exec_command.component)
        program = supervisor.program_for(ctx.supervised_kind)
        if ctx.component_exists and not is_restart_required(command):
            _LOG.debug("restart:false, not restarting %s command", command.id)
            actions = [supervisor.start_command(program)]
        else:
            actions = [supervisor.stop_command(program), supervisor.start_command(program)]

        _LOG.info("Executing %s command %r", command.id, exec_command.command_line)
        for action in actions:
            self.api.exec_in_container(info, action, show=ctx.show)

    def bootstrap_supervisor(self, container_name: str, pod: Dict[str, Any]) -> bool:
        """Start the supervisor daemon unless it is already the container's entrypoint."""

        for container in (pod.get("spec") or {}).get("containers") or []:
            if container.get("name") != container_name:
                continue
            if supervisor.is_entrypoint(container.get("command") or []):
                return False
            info = ComponentInfo(pod_name=pod["metadata"]["name"], container_name=container_name)
            _LOG.debug("Starting supervisor in container %s", container_name)
            self.api.exec_in_container(info, supervisor.daemon_command())
            return True
        return False

    def run_events(self, event_ids: Iterable[str], pod_name: str) -> None:
        for event_id in event_ids:
            # Ids resolve case-insensitively.
            self.execute(self.graph.get(event_id), pod_name)

    def run_test(self, command: Command, pod_name: str, show: bool = False) -> None:
        self.execute(command, pod_name, show)
