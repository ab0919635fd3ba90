"""Process supervisor protocol used to run and restart devfile run/debug commands."""
from __future__ import annotations

from typing import List

from .devfile import CommandGroupKind

BINARY_PATH = "/opt/odo/bin/supervisord"
CONF_FILE = "/opt/odo/conf/devfile-supervisor.conf"
CTL_SUBCOMMAND = "ctl"

VOLUME_NAME = "odo-supervisord-shared-data"
MOUNT_PATH = "/opt/odo/"
INIT_CONTAINER_NAME = "copy-supervisord"
INIT_IMAGE = "registry.access.redhat.com/ocp-tools-4/odo-init-container-rhel8:1.1.5"

ENV_COMMAND_RUN = "ODO_COMMAND_RUN"
ENV_COMMAND_RUN_WORKING_DIR = "ODO_COMMAND_RUN_WORKING_DIR"
ENV_COMMAND_DEBUG = "ODO_COMMAND_DEBUG"
ENV_COMMAND_DEBUG_WORKING_DIR = "ODO_COMMAND_DEBUG_WORKING_DIR"
ENV_DEBUG_PORT = "DEBUG_PORT"

RUN_PROGRAM = "devrun"
DEBUG_PROGRAM = "debugrun"


def program_for(kind: CommandGroupKind) -> str:
    return DEBUG_PROGRAM if kind is CommandGroupKind.DEBUG else RUN_PROGRAM


def entrypoint() -> List[str]:
    return [BINARY_PATH]


def entrypoint_args() -> List[str]:
    return ["-c", CONF_FILE]


def daemon_command() -> List[str]:
    """Start the supervisor in the background inside a running container."""

    return [BINARY_PATH, "-c", CONF_FILE, "-d"]


def start_command(program: str) -> List[str]:
    return [BINARY_PATH, CTL_SUBCOMMAND, "start", program]


def stop_command(program: str) -> List[str]:
    return [BINARY_PATH, CTL_SUBCOMMAND, "stop", program]


def is_entrypoint(command: List[str]) -> bool:
    return list(command) == entrypoint()


def init_container() -> dict:
    """Init container that seeds the supervisor binary and configuration."""

    return {
        "name": INIT_CONTAINER_NAME,
        "image": INIT_IMAGE,
        "command": ["/usr/bin/cp"],
        "args": ["-r", "/opt/odo-init/.", MOUNT_PATH],
        "volumeMounts": [{"name": VOLUME_NAME, "mountPath": MOUNT_PATH}],
    }
