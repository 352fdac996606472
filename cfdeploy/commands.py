"""
Subcommands that do not change a stack: init, list, info, json and env.
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional

import boto3
import click

from . import tags as tagging
from .creds import save_profile
from .orchestrator import render_template
from .stack import StackCommands, ensure_buckets

logger = logging.getLogger(__name__)


def init(prompt: Callable[..., Any] = click.prompt, session_factory=boto3.Session) -> Dict[str, Any]:
    """
    Interactively add a profile to the credentials file and create its buckets.

    Returns:
        The saved profile
    """
    name = prompt("Profile name", default="default")
    region = prompt("AWS region", default="us-east-1")
    access_key_id = prompt("AWS access key id")
    secret_access_key = prompt("AWS secret access key", hide_input=True)
    github_token = prompt("GitHub token (optional)", default="", show_default=False, hide_input=True)

    session = session_factory(
        aws_access_key_id=access_key_id,
        aws_secret_access_key=secret_access_key,
        region_name=region,
    )
    account_id = session.client("sts").get_caller_identity()["Account"]

    profile = {
        "region": region,
        "accountId": account_id,
        "accessKeyId": access_key_id,
        "secretAccessKey": secret_access_key,
    }
    if github_token:
        profile["githubToken"] = github_token

    path = save_profile(name, profile)
    logger.info(f"Initialised profile {name} for account {account_id} in {region}")
    click.echo(f"Saved profile {name} to {path}")

    for bucket in ensure_buckets(session.client("s3"), account_id, region):
        click.echo(f"Created bucket {bucket}")

    return profile


def list_stacks(creds, commands: Optional[StackCommands] = None) -> List[Dict[str, Any]]:
    """Print the live stacks of this repository."""
    commands = commands or StackCommands(creds)
    stacks = commands.list()

    if not stacks:
        click.echo(f"No stacks found for {creds.repo} in {creds.region}")
        return stacks

    prefix = f"{creds.repo}-"
    for stack in stacks:
        updated = stack.get("LastUpdatedTime") or stack.get("CreationTime")
        updated = updated.isoformat() if hasattr(updated, "isoformat") else (updated or "")
        click.echo(f"{stack['StackName'][len(prefix):]:<30} {stack['StackStatus']:<30} {updated}")

    return stacks


def info(creds, commands: Optional[StackCommands] = None) -> Dict[str, Any]:
    """Print status, parameters and outputs of one stack as JSON."""
    commands = commands or StackCommands(creds)
    stack = commands.describe(creds.name)

    summary = {
        "StackName": stack["StackName"],
        "StackStatus": stack["StackStatus"],
        "Parameters": {p["ParameterKey"]: p.get("ParameterValue") for p in stack.get("Parameters", [])},
        "Outputs": {o["OutputKey"]: o.get("OutputValue") for o in stack.get("Outputs", [])},
    }
    click.echo(json.dumps(summary, indent=4))
    return summary


def render_json(creds, prompt: Callable[..., str] = click.prompt) -> Dict[str, Any]:
    """Print the tagged template as it would be deployed."""
    template = render_template(creds, tagging.request(creds.tags, prompt))
    click.echo(json.dumps(template, indent=4))
    return template


def env(creds) -> Dict[str, str]:
    """Print shell exports for the resolved profile, for use with eval."""
    variables = creds.env()
    for key, value in variables.items():
        click.echo(f"export {key}={value}")
    return variables
