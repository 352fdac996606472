"""
Sequencing of stack operations.

A stack command runs through validation, pre-flight checks (create/update
only), rendering of the tagged template and a single dispatch to
CloudFormation, then reports the outcome to the user and, when enabled,
to GitHub.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import click
import requests

from . import artifacts, git
from . import tags as tagging
from . import template as templates
from .errors import ArtifactsCheckFailedError, MissingStackNameError, OperationFailedError
from .github import GitHubDeployments
from .stack import StackCommands

logger = logging.getLogger(__name__)


class StackCommand(Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    CANCEL = "cancel"


@dataclass
class OperationResult:
    """Outcome of one stack command."""
    command: StackCommand
    stack: str
    succeeded: bool
    message: Optional[str] = None
    aborted: bool = False


@dataclass
class Deployment:
    """Everything a command handler needs."""
    command: StackCommand
    name: str
    creds: Any
    commands: StackCommands
    notifier: GitHubDeployments
    template_path: Path


def validate(command: StackCommand, name: Optional[str]) -> str:
    """
    Raises:
        MissingStackNameError: If no stack name was given
    """
    if not name:
        raise MissingStackNameError(command.value)
    return name


def confirm_git_state(confirm: Callable[..., bool] = click.confirm, cwd: Optional[str] = None) -> bool:
    """
    Ask before deploying uncommitted or unpushed work.

    Returns:
        False if the user declined either question
    """
    if git.uncommitted(cwd):
        if not confirm("You have uncommitted changes! Continue?", default=False):
            return False

    if not git.pushed(cwd):
        if not confirm("You have commits that haven't been pushed! Continue?", default=False):
            return False

    return True


def render_template(creds, tags: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Read the template of ``creds`` and merge ``tags`` into it."""
    return tagging.apply(templates.read(creds.template), tags)


def render(creds, tags: List[Dict[str, Any]], directory: Optional[str] = None) -> Path:
    """Render the tagged template to a temporary JSON file."""
    return templates.write_temp(render_template(creds, tags), directory)


def _notify(notifier: GitHubDeployments, name: str, success: bool) -> None:
    try:
        notifier.finish(name, success)
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"Could not update GitHub deployment for {name}: {e}")


def _unlink(path: Path) -> None:
    if path.exists():
        path.unlink()


def _create(d: Deployment) -> OperationResult:
    try:
        d.commands.create(d.name, d.template_path, {"GitSha": d.creds.sha})
    except OperationFailedError as e:
        click.echo(f"Create failed: {e}", err=True)
        _notify(d.notifier, d.name, False)
        return OperationResult(d.command, d.name, False, str(e))

    _unlink(d.template_path)
    _notify(d.notifier, d.name, True)
    return OperationResult(d.command, d.name, True)


def _update(d: Deployment) -> OperationResult:
    try:
        d.commands.update(d.name, d.template_path, {"GitSha": d.creds.sha})
    except OperationFailedError as e:
        click.echo(f"Update failed: {e}", err=True)
        # A change set that never became executable leaves nothing to fail
        already_failed = e.execution == "UNAVAILABLE" and e.status == "FAILED"
        _notify(d.notifier, d.name, already_failed)
        return OperationResult(d.command, d.name, False, str(e))

    _unlink(d.template_path)
    return OperationResult(d.command, d.name, True)


def _delete(d: Deployment) -> OperationResult:
    try:
        d.commands.delete(d.name)
    except OperationFailedError as e:
        click.echo(f"Delete failed: {e}", err=True)
        return OperationResult(d.command, d.name, False, str(e))

    _unlink(d.template_path)
    return OperationResult(d.command, d.name, True)


def _cancel(d: Deployment) -> OperationResult:
    try:
        d.commands.cancel(d.name)
    except OperationFailedError as e:
        click.echo(f"Cancel failed: {e}", err=True)
        return OperationResult(d.command, d.name, False, str(e))

    _unlink(d.template_path)
    # A cancelled deploy never completed
    _notify(d.notifier, d.name, False)
    return OperationResult(d.command, d.name, True)


HANDLERS: Dict[StackCommand, Callable[[Deployment], OperationResult]] = {
    StackCommand.CREATE: _create,
    StackCommand.UPDATE: _update,
    StackCommand.DELETE: _delete,
    StackCommand.CANCEL: _cancel,
}

_unhandled = set(StackCommand) - set(HANDLERS)
if _unhandled:
    raise RuntimeError(f"No handler for {sorted(c.value for c in _unhandled)}")


def run(
    command: StackCommand,
    creds,
    check_git: bool = True,
    confirm: Callable[..., bool] = click.confirm,
    prompt: Callable[..., str] = click.prompt,
    commands: Optional[StackCommands] = None,
    notifier: Optional[GitHubDeployments] = None,
) -> OperationResult:
    """
    Run one stack command end to end.

    Declining a confirmation or failing the artifact check returns before
    any AWS resource is touched. A failed create or update keeps the
    rendered template on disk for inspection.

    Raises:
        MissingStackNameError: If ``creds.name`` is empty
        TemplateNotFoundError: If the template does not exist
    """
    name = validate(command, creds.name)
    notifier = notifier or GitHubDeployments(creds)

    tags: List[Dict[str, Any]] = []
    if command in (StackCommand.CREATE, StackCommand.UPDATE):
        if check_git and not confirm_git_state(confirm):
            logger.info(f"{command.value} of {name} aborted by user")
            return OperationResult(command, name, False, "aborted", aborted=True)

        try:
            artifacts.check(creds)
        except ArtifactsCheckFailedError as e:
            click.echo(f"Artifacts Check Failed: {e}", err=True)
            return OperationResult(command, name, False, str(e))

        try:
            notifier.start(name)
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Could not register GitHub deployment for {name}: {e}")

        tags = tagging.request(creds.tags, prompt)

    commands = commands or StackCommands(creds, tags, prompt=prompt)
    commands.tags = tags
    commands.ensure_buckets()

    template_path = render(creds, tags)
    logger.info(f"Running {command.value} for {commands.stack_name(name)} with {template_path}")

    deployment = Deployment(command, name, creds, commands, notifier, template_path)
    return HANDLERS[command](deployment)
