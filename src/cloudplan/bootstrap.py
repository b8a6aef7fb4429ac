"""Instance bootstrap scripts.

The bootstrap script is a plain shell string stored in an instance's
``user_data``.  The guest runs it once at first boot; ``cloudplan`` never
executes it.  This module can still read a script step by step, which is
used to flag steps that break when the script runs a second time (e.g. a
container started under a fixed name) and to replay a script against an
in-memory guest.
"""

from __future__ import annotations

import logging
import re
import shlex
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_CONTAINER_NAME = "web"

# Runs once at first boot. Re-running it fails at `docker run` because the
# container name is already taken; kept that way on purpose.
DEFAULT_BOOTSTRAP_SCRIPT = f"""\
#!/bin/bash
yum update -y
yum install -y docker
service docker start
usermod -a -G docker ec2-user
docker run -d --name {DEFAULT_CONTAINER_NAME} -p 80:80 nginx
"""

_PACKAGE_MANAGERS = frozenset({"yum", "dnf", "apt-get", "apt", "apk"})
_DOCKER_VALUE_FLAGS = frozenset(
    {"-p", "--publish", "-e", "--env", "-v", "--volume", "--restart", "--network", "-w"}
)


class BootstrapError(Exception):
    """Raised when a bootstrap step fails on the simulated guest."""

    def __init__(self, step: BootstrapStep, message: str) -> None:
        super().__init__(f"line {step.line_no}: {step.command}: {message}")
        self.step = step


class StepKind(str, Enum):
    PACKAGE_UPDATE = "package_update"
    PACKAGE_INSTALL = "package_install"
    SERVICE_START = "service_start"
    CONTAINER_RUN = "container_run"
    CONTAINER_REMOVE = "container_remove"
    OTHER = "other"


@dataclass(frozen=True)
class BootstrapStep:
    line_no: int
    command: str
    kind: StepKind
    packages: tuple[str, ...] = ()
    service: str | None = None
    container_name: str | None = None
    image: str | None = None
    guarded: bool = False


# `cat <<EOF`, `<<-'EOF'`, ... ; the captured word ends the heredoc body.
_HEREDOC = re.compile(r"(?<!<)<<(?!<)-?\s*(['\"]?)(\w+)\1")


def _tokenize(command: str) -> list[str]:
    try:
        return shlex.split(command)
    except ValueError:
        # Quotes that span lines; classify on whitespace-separated words.
        logger.debug("Unbalanced quoting in %r", command)
        return command.split()


def _strip_sudo(tokens: list[str]) -> list[str]:
    return tokens[1:] if tokens and tokens[0] == "sudo" else tokens


def _parse_docker(line_no: int, command: str, tokens: list[str], guarded: bool) -> BootstrapStep:
    sub = tokens[1] if len(tokens) > 1 else ""
    if sub == "rm":
        names = [t for t in tokens[2:] if not t.startswith("-")]
        return BootstrapStep(
            line_no,
            command,
            StepKind.CONTAINER_REMOVE,
            container_name=names[0] if names else None,
            guarded=guarded,
        )
    if sub != "run":
        return BootstrapStep(line_no, command, StepKind.OTHER, guarded=guarded)

    name: str | None = None
    image: str | None = None
    args = iter(tokens[2:])
    for token in args:
        if token == "--name":
            name = next(args, None)
        elif token.startswith("--name="):
            name = token.removeprefix("--name=")
        elif token in _DOCKER_VALUE_FLAGS:
            next(args, None)
        elif token.startswith("-"):
            continue
        else:
            image = token
            break
    return BootstrapStep(
        line_no,
        command,
        StepKind.CONTAINER_RUN,
        container_name=name,
        image=image,
        guarded=guarded,
    )


def _parse_command(line_no: int, command: str, guarded: bool) -> BootstrapStep:
    tokens = _strip_sudo(_tokenize(command))
    if not tokens:
        return BootstrapStep(line_no, command, StepKind.OTHER, guarded=guarded)

    head = tokens[0]
    if head in _PACKAGE_MANAGERS:
        if "install" in tokens or "add" in tokens:
            verb = "install" if "install" in tokens else "add"
            packages = tuple(
                t for t in tokens[tokens.index(verb) + 1 :] if not t.startswith("-")
            )
            return BootstrapStep(
                line_no, command, StepKind.PACKAGE_INSTALL, packages=packages, guarded=guarded
            )
        if {"update", "upgrade"} & set(tokens):
            return BootstrapStep(line_no, command, StepKind.PACKAGE_UPDATE, guarded=guarded)
    if head == "service" and len(tokens) >= 3 and tokens[2] == "start":
        return BootstrapStep(
            line_no, command, StepKind.SERVICE_START, service=tokens[1], guarded=guarded
        )
    if head == "systemctl" and {"start", "--now"} & set(tokens):
        units = [t for t in tokens[1:] if t not in {"start", "enable", "--now"}]
        service = units[0].removesuffix(".service") if units else None
        return BootstrapStep(
            line_no, command, StepKind.SERVICE_START, service=service, guarded=guarded
        )
    if head == "docker":
        return _parse_docker(line_no, command, tokens, guarded)
    return BootstrapStep(line_no, command, StepKind.OTHER, guarded=guarded)


def parse_steps(script: str) -> list[BootstrapStep]:
    """Split a script into classified steps.

    Blank lines, comments and the shebang are skipped; ``a && b`` chains
    become separate steps.  A command followed by ``|| ...`` is *guarded*:
    its failure does not stop the script.  Heredoc bodies are data and
    produce no steps.
    """
    steps: list[BootstrapStep] = []
    heredoc_end: str | None = None
    for line_no, raw in enumerate(script.splitlines(), start=1):
        line = raw.strip()
        if heredoc_end is not None:
            if line == heredoc_end:
                heredoc_end = None
            continue
        if not line or line.startswith("#"):
            continue
        if match := _HEREDOC.search(line):
            heredoc_end = match.group(2)
        body, sep, _ = line.partition("||")
        guarded = bool(sep)
        for part in body.split("&&"):
            command = part.strip()
            if command:
                steps.append(_parse_command(line_no, command, guarded))
    return steps


def non_idempotent_steps(script: str) -> list[BootstrapStep]:
    """Container runs with a fixed name that nothing removes beforehand.

    Such a step succeeds at first boot and fails on any re-run, because the
    name is still taken by the container from the previous run.
    """
    removed: set[str] = set()
    flagged: list[BootstrapStep] = []
    for step in parse_steps(script):
        if step.kind is StepKind.CONTAINER_REMOVE and step.container_name:
            removed.add(step.container_name)
        elif (
            step.kind is StepKind.CONTAINER_RUN
            and step.container_name
            and not step.guarded
            and step.container_name not in removed
        ):
            flagged.append(step)
    return flagged


@dataclass
class GuestSimulator:
    """In-memory stand-in for a guest OS running a bootstrap script.

    Tracks installed packages, running services and named containers across
    runs, so replaying the same script twice shows what a reboot-triggered
    re-run would do.
    """

    packages: set[str] = field(default_factory=set)
    services: set[str] = field(default_factory=set)
    containers: dict[str, str | None] = field(default_factory=dict)
    runs: int = 0

    def run(self, script: str) -> list[BootstrapStep]:
        """Execute *script*; stops at the first failing unguarded step.

        Returns the steps that ran. Raises :class:`BootstrapError` on failure.
        """
        self.runs += 1
        executed: list[BootstrapStep] = []
        for step in parse_steps(script):
            try:
                self._apply(step)
            except BootstrapError:
                if not step.guarded:
                    raise
                logger.debug("Ignoring guarded failure at line %d", step.line_no)
            executed.append(step)
        return executed

    def _apply(self, step: BootstrapStep) -> None:
        match step.kind:
            case StepKind.PACKAGE_INSTALL:
                self.packages.update(step.packages)
            case StepKind.SERVICE_START:
                if step.service not in self.packages:
                    raise BootstrapError(step, f"Unit {step.service}.service not found")
                self.services.add(step.service)
            case StepKind.CONTAINER_RUN:
                if "docker" not in self.services:
                    raise BootstrapError(step, "Cannot connect to the Docker daemon")
                name = step.container_name
                if name is not None and name in self.containers:
                    raise BootstrapError(
                        step,
                        f'Conflict. The container name "/{name}" is already in use',
                    )
                self.containers[name or f"container_{len(self.containers)}"] = step.image
            case StepKind.CONTAINER_REMOVE:
                if step.container_name not in self.containers:
                    raise BootstrapError(
                        step, f"No such container: {step.container_name}"
                    )
                del self.containers[step.container_name]
            case _:
                pass
