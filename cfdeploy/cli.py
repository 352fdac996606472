"""
Click CLI interface for the deploy tool.
"""

import logging
import os
import sys
from typing import Optional

import click
from botocore.exceptions import BotoCoreError, ClientError

from . import __version__
from . import commands
from .creds import load_credentials
from .errors import DeployError, MissingStackNameError
from .orchestrator import StackCommand, run, validate


class DeployGroup(click.Group):
    """Group that reports unknown subcommands with exit code 1."""

    def resolve_command(self, ctx, args):
        if args and self.get_command(ctx, args[0]) is None:
            click.echo("Subcommand not found!", err=True)
            ctx.exit(1)
        return super().resolve_command(ctx, args)


profile_option = click.option("--profile", help="Credentials profile to use")
region_option = click.option("--region", help="AWS region, overrides the profile's region")
template_option = click.option("--template", help="Path to the CloudFormation template")
name_option = click.option("--name", help="Stack name (alternative to the STACK argument)")


def stack_options(func):
    """Options shared by the create, update, delete and cancel subcommands."""
    for option in (region_option, name_option, template_option, profile_option):
        func = option(func)
    return func


@click.group(cls=DeployGroup, invoke_without_command=True)
@click.version_option(__version__, "--version", "-v", message="cfdeploy@%(version)s")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx, debug: bool):
    """
    Deploy CloudFormation stacks from this repository's template.
    """
    debug = debug or os.environ.get("DEPLOY_DEBUG") == "1"
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)


@main.command("help")
@click.pass_context
def help_cmd(ctx):
    """
    Show this message.
    """
    click.echo(ctx.parent.get_help())


def _run_stack(command: StackCommand, stack: Optional[str], name: Optional[str], profile: Optional[str],
               template: Optional[str], region: Optional[str], skip_git_check: bool = False) -> None:
    name = name or stack
    try:
        validate(command, name)
    except MissingStackNameError as e:
        click.echo(str(e), err=True)
        sys.exit(1)

    try:
        creds = load_credentials(profile=profile, name=name, template=template, region=region)
        run(command, creds, check_git=not skip_git_check)
    except (DeployError, ClientError, BotoCoreError) as e:
        click.echo(f"{command.value.capitalize()} failed: {e}", err=True)


@main.command("create")
@click.argument("stack", required=False)
@stack_options
@click.option("--skip-git-check", is_flag=True, help="Do not ask about uncommitted or unpushed changes")
def create_cmd(stack, name, profile, template, region, skip_git_check):
    """
    Create a new stack.
    """
    _run_stack(StackCommand.CREATE, stack, name, profile, template, region, skip_git_check)


@main.command("update")
@click.argument("stack", required=False)
@stack_options
@click.option("--skip-git-check", is_flag=True, help="Do not ask about uncommitted or unpushed changes")
def update_cmd(stack, name, profile, template, region, skip_git_check):
    """
    Update an existing stack with the current template.
    """
    _run_stack(StackCommand.UPDATE, stack, name, profile, template, region, skip_git_check)


@main.command("delete")
@click.argument("stack", required=False)
@stack_options
def delete_cmd(stack, name, profile, template, region):
    """
    Delete a stack.
    """
    _run_stack(StackCommand.DELETE, stack, name, profile, template, region)


@main.command("cancel")
@click.argument("stack", required=False)
@stack_options
def cancel_cmd(stack, name, profile, template, region):
    """
    Cancel an in-progress stack update.
    """
    _run_stack(StackCommand.CANCEL, stack, name, profile, template, region)


@main.command("init")
def init_cmd():
    """
    Add a credentials profile and create its buckets.
    """
    try:
        commands.init()
    except (ClientError, BotoCoreError, OSError) as e:
        click.echo(f"Init failed: {e}", err=True)
        sys.exit(1)


@main.command("list")
@profile_option
@region_option
def list_cmd(profile, region):
    """
    List the stacks of this repository.
    """
    try:
        creds = load_credentials(profile=profile, region=region, with_template=False)
        commands.list_stacks(creds)
    except (DeployError, ClientError, BotoCoreError) as e:
        click.echo(f"Command failed: {e}", err=True)


@main.command("info")
@click.argument("stack", required=False)
@name_option
@profile_option
@region_option
def info_cmd(stack, name, profile, region):
    """
    Show status, parameters and outputs of a stack.
    """
    name = name or stack
    if not name:
        click.echo("Stack name required: run deploy info --help", err=True)
        sys.exit(1)

    try:
        creds = load_credentials(profile=profile, name=name, region=region, with_template=False)
        commands.info(creds)
    except (DeployError, ClientError, BotoCoreError) as e:
        click.echo(f"Command failed: {e}", err=True)


@main.command("json")
@profile_option
@template_option
@region_option
def json_cmd(profile, template, region):
    """
    Print the tagged template as JSON.
    """
    try:
        creds = load_credentials(profile=profile, template=template, region=region)
        commands.render_json(creds)
    except DeployError as e:
        click.echo(f"Command failed: {e}", err=True)


@main.command("env")
@profile_option
@region_option
def env_cmd(profile, region):
    """
    Print shell exports for a profile: eval "$(deploy env)".
    """
    try:
        creds = load_credentials(profile=profile, region=region, with_template=False)
        commands.env(creds)
    except DeployError as e:
        click.echo(f"Command failed: {e}", err=True)


if __name__ == "__main__":
    main()
