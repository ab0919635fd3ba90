"""Resolution of devfile commands into the commands a push, debug or test runs."""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from .devfile import Command, CommandGroupKind, Devfile, ExecCommand
from .errors import DevfileValidationError

_LOG = logging.getLogger(__name__)

MAX_COMPOSITE_DEPTH = 32

_TRUE_VALUES = {"true", "t", "1", "yes", "y"}
_FALSE_VALUES = {"false", "f", "0", "no", "n"}

PushCommands = Dict[CommandGroupKind, Command]


def is_restart_required(command: Command) -> bool:
    """Return False only when the exec command explicitly sets ``restart: false``."""

    if command.exec_ is None:
        return True
    value = command.exec_.attributes.get("restart")
    if value is None:
        return True
    lowered = str(value).strip().lower()
    if lowered in _FALSE_VALUES:
        return False
    if lowered not in _TRUE_VALUES:
        _LOG.debug("Ignoring unparsable restart attribute %r on command %s", value, command.id)
    return True


class CommandGraph:
    """Lowercase id to command mapping with group queries and composite expansion."""

    def __init__(self, devfile: Devfile) -> None:
        self.commands: Dict[str, Command] = devfile.get_commands()
        self.container_names = {container.name for container in devfile.get_containers()}

    def get(self, command_id: str) -> Command:
        command = self.commands.get(command_id.lower())
        if command is None:
            raise DevfileValidationError(f'the command "{command_id}" is not found in the devfile')
        return command

    def find_by_group(self, kind: CommandGroupKind, override: str = "") -> Optional[Command]:
        """Return the command to run for ``kind``, or None when the group is empty.

        An explicit ``override`` id wins and must belong to the group. Otherwise
        the single default command of the group is used, falling back to the only
        command of the group when none is marked default.
        """

        if override:
            command = self.get(override)
            group = command.group
            if group is None or group.kind != kind:
                found = group.kind.value if group else "none"
                raise DevfileValidationError(
                    f'command group mismatched, command "{override}" is of group "{found}" '
                    f'in devfile, expected "{kind.value}"'
                )
            return command

        candidates = [
            command for command in self.commands.values() if command.group and command.group.kind == kind
        ]
        if not candidates:
            return None
        defaults = [command for command in candidates if command.group.is_default]
        if len(defaults) > 1:
            raise DevfileValidationError(
                f"there should be exactly one default command for command group {kind.value}, "
                "currently there is more than one default command"
            )
        if defaults:
            return defaults[0]
        if len(candidates) == 1:
            return candidates[0]
        raise DevfileValidationError(
            f"there should be exactly one default command for command group {kind.value}, "
            "currently there is no default command"
        )

    def validate_push_commands(self, init: str = "", build: str = "", run: str = "") -> PushCommands:
        """Select and validate the init, build and run commands for a push."""

        selected: PushCommands = {}
        for kind, override in (
            (CommandGroupKind.INIT, init),
            (CommandGroupKind.BUILD, build),
            (CommandGroupKind.RUN, run),
        ):
            command = self.find_by_group(kind, override)
            if command is None:
                if kind is CommandGroupKind.RUN:
                    raise DevfileValidationError('the command group of kind "run" is not found in the devfile')
                _LOG.debug("No %s command found in the devfile", kind.value)
                continue
            self.validate(command)
            selected[kind] = command
        self._require_exec(selected[CommandGroupKind.RUN], CommandGroupKind.RUN)
        return selected

    def validate_debug_command(self, debug: str = "") -> Command:
        command = self.find_by_group(CommandGroupKind.DEBUG, debug)
        if command is None:
            raise DevfileValidationError('the command group of kind "debug" is not found in the devfile')
        self.validate(command)
        self._require_exec(command, CommandGroupKind.DEBUG)
        return command

    def validate_test_command(self, test: str = "") -> Command:
        command = self.find_by_group(CommandGroupKind.TEST, test)
        if command is None:
            raise DevfileValidationError('the command group of kind "test" is not found in the devfile')
        self.validate(command)
        return command

    def validate(self, command: Command) -> None:
        """Check component references and the composite structure below ``command``."""

        for leaf in self.leaves(command):
            if leaf.component not in self.container_names:
                raise DevfileValidationError(
                    f'the command "{leaf.id}" references an unknown container component "{leaf.component}"'
                )

    def children(self, command: Command, path: Tuple[str, ...] = ()) -> List[Command]:
        """Resolve the ids referenced by a composite command.

        ``path`` holds the ids of the composites currently being expanded and is
        used to reject self references, cycles and runaway nesting.
        """

        if command.composite is None:
            return []
        path = path + (command.key,)
        if len(path) > MAX_COMPOSITE_DEPTH:
            raise DevfileValidationError(
                f'composite command "{path[0]}" is nested deeper than {MAX_COMPOSITE_DEPTH} levels'
            )
        resolved: List[Command] = []
        for reference in command.composite.commands:
            key = reference.lower()
            if key in path:
                if key == command.key:
                    raise DevfileValidationError(f'the composite command "{command.id}" cannot reference itself')
                raise DevfileValidationError(
                    f'composite command "{command.id}" has a cyclic reference: {" -> ".join(path + (key,))}'
                )
            if key not in self.commands:
                raise DevfileValidationError(
                    f'the composite command "{command.id}" references an invalid command "{reference}"'
                )
            resolved.append(self.commands[key])
        return resolved

    def leaves(self, command: Command, path: Tuple[str, ...] = ()) -> Iterable[ExecCommand]:
        if command.exec_ is not None:
            yield command.exec_
            return
        for child in self.children(command, path):
            yield from self.leaves(child, path + (command.key,))

    @staticmethod
    def _require_exec(command: Command, kind: CommandGroupKind) -> None:
        if command.is_composite:
            raise DevfileValidationError(
                f'composite commands of {kind.value} kind are not supported currently, command "{command.id}"'
            )
