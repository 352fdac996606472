"""
CloudFormation stack commands.

Stacks are named ``<repo>-<stack name>``. Templates are uploaded to the
``cfn-config-templates-<account>-<region>`` bucket before use and the
parameters of every successful deploy are saved to
``cfn-config-active-<account>-<region>`` so the next create can reuse them.
"""

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import click
from botocore.exceptions import ClientError, WaiterError

from . import template as templates
from .errors import OperationFailedError
from .template import temp_name

logger = logging.getLogger(__name__)

CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM", "CAPABILITY_AUTO_EXPAND"]

LIVE_STATUSES = [
    "CREATE_IN_PROGRESS", "CREATE_FAILED", "CREATE_COMPLETE",
    "ROLLBACK_IN_PROGRESS", "ROLLBACK_FAILED", "ROLLBACK_COMPLETE",
    "DELETE_IN_PROGRESS", "DELETE_FAILED",
    "UPDATE_IN_PROGRESS", "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS", "UPDATE_COMPLETE",
    "UPDATE_FAILED", "UPDATE_ROLLBACK_IN_PROGRESS", "UPDATE_ROLLBACK_FAILED",
    "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS", "UPDATE_ROLLBACK_COMPLETE",
    "REVIEW_IN_PROGRESS", "IMPORT_IN_PROGRESS", "IMPORT_COMPLETE",
    "IMPORT_ROLLBACK_IN_PROGRESS", "IMPORT_ROLLBACK_FAILED", "IMPORT_ROLLBACK_COMPLETE",
]


def config_bucket(account_id: str, region: str) -> str:
    return f"cfn-config-active-{account_id}-{region}"


def template_bucket(account_id: str, region: str) -> str:
    return f"cfn-config-templates-{account_id}-{region}"


def ensure_buckets(s3, account_id: str, region: str) -> List[str]:
    """
    Create the config and template buckets if they do not exist yet.

    Returns:
        Names of the buckets that were created
    """
    created = []
    for bucket in (config_bucket(account_id, region), template_bucket(account_id, region)):
        try:
            s3.head_bucket(Bucket=bucket)
            continue
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") not in ("404", "NoSuchBucket", "NotFound"):
                raise

        logger.info(f"Creating bucket {bucket}")
        kwargs = {"Bucket": bucket}
        if region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}
        s3.create_bucket(**kwargs)
        created.append(bucket)

    return created


@contextmanager
def _failures(action: str):
    """Re-raise AWS errors from a stack operation as OperationFailedError."""
    try:
        yield
    except ClientError as e:
        message = e.response.get("Error", {}).get("Message", str(e))
        raise OperationFailedError(f"{action}: {message}") from e
    except WaiterError as e:
        raise OperationFailedError(f"{action}: {e}") from e


class StackCommands:
    """Create, update, delete and cancel stacks of one repository."""

    def __init__(self, creds, tags: Optional[List[Dict[str, Any]]] = None,
                 prompt: Callable[..., str] = click.prompt):
        self.creds = creds
        self.repo = creds.repo
        self.region = creds.region
        self.tags = tags or []
        self.prompt = prompt

        session = creds.session()
        self.cfn = session.client("cloudformation")
        self.s3 = session.client("s3")

        account_id = creds.account_id()
        self.config_bucket = config_bucket(account_id, self.region)
        self.template_bucket = template_bucket(account_id, self.region)

    def stack_name(self, name: str) -> str:
        return f"{self.repo}-{name}"

    def config_key(self, name: str) -> str:
        return f"{self.repo}/{self.stack_name(name)}.cfn.json"

    def ensure_buckets(self) -> List[str]:
        return ensure_buckets(self.s3, self.creds.account_id(), self.region)

    def upload_template(self, name: str, template_path: Path) -> str:
        """Upload a rendered template and return its S3 URL."""
        key = f"{self.repo}/{self.stack_name(name)}-{temp_name()}.template.json"
        self.s3.upload_file(str(template_path), self.template_bucket, key)
        return f"https://{self.template_bucket}.s3.{self.region}.amazonaws.com/{key}"

    def saved_parameters(self, name: str) -> Dict[str, str]:
        """Parameters saved by the last successful deploy, empty if none."""
        try:
            response = self.s3.get_object(Bucket=self.config_bucket, Key=self.config_key(name))
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404", "NotFound"):
                return {}
            raise
        return json.loads(response["Body"].read())

    def save_parameters(self, name: str, parameters: Dict[str, str]) -> None:
        self.s3.put_object(
            Bucket=self.config_bucket,
            Key=self.config_key(name),
            Body=json.dumps(parameters, indent=4).encode("utf-8"),
        )

    def _tags(self) -> List[Dict[str, str]]:
        # Stack level tags must be plain strings
        return [{"Key": t["Key"], "Value": str(t["Value"])} for t in self.tags if isinstance(t["Value"], (str, int, float))]

    def _create_parameters(self, name: str, declared: Dict[str, Any], given: Dict[str, str]) -> Dict[str, str]:
        saved = self.saved_parameters(name)
        values = {}
        for key, definition in declared.items():
            if key in given:
                values[key] = given[key]
            elif key in saved:
                values[key] = saved[key]
            elif "Default" not in definition:
                values[key] = self.prompt(f"{key}", default="", show_default=False)
        return values

    def _effective_parameters(self, name: str, given: Dict[str, str]) -> Dict[str, str]:
        """Parameter values the stack runs with after an update."""
        saved = self.saved_parameters(name)
        values = {}
        for parameter in self.describe(name).get("Parameters", []):
            key = parameter["ParameterKey"]
            value = parameter.get("ParameterValue", "")
            # NoEcho values come back masked
            if value == "****":
                value = given.get(key, saved.get(key, value))
            values[key] = value
        return values

    def create(self, name: str, template_path: Path, parameters: Optional[Dict[str, str]] = None) -> None:
        """
        Create a stack and wait for it to finish.

        Template parameters that are neither given nor saved from a previous
        deploy and have no Default are prompted for.

        Raises:
            OperationFailedError: If CloudFormation rejects or rolls back the stack
        """
        stack = self.stack_name(name)
        declared = templates.read(template_path).get("Parameters") or {}

        with _failures(f"Could not create {stack}"):
            values = self._create_parameters(name, declared, parameters or {})
            url = self.upload_template(name, template_path)
            logger.info(f"Creating stack {stack}")
            self.cfn.create_stack(
                StackName=stack,
                TemplateURL=url,
                Parameters=[{"ParameterKey": k, "ParameterValue": v} for k, v in values.items()],
                Tags=self._tags(),
                Capabilities=CAPABILITIES,
            )
            self.cfn.get_waiter("stack_create_complete").wait(StackName=stack)
            self.save_parameters(name, values)

    def update(self, name: str, template_path: Path, parameters: Optional[Dict[str, str]] = None) -> None:
        """
        Update a stack through a change set and wait for it to finish.

        Parameters not given keep their previous value. The values the stack
        ends up with are saved for the next deploy.

        Raises:
            OperationFailedError: With ``execution``/``status`` set when the
                change set could not be created (including "no changes")
        """
        stack = self.stack_name(name)
        given = parameters or {}
        declared = templates.read(template_path).get("Parameters") or {}

        with _failures(f"Could not update {stack}"):
            current = self.describe(name)
            previous = {p["ParameterKey"] for p in current.get("Parameters", [])}

            stack_parameters = []
            for key in declared:
                if key in given:
                    stack_parameters.append({"ParameterKey": key, "ParameterValue": given[key]})
                elif key in previous:
                    stack_parameters.append({"ParameterKey": key, "UsePreviousValue": True})

            url = self.upload_template(name, template_path)
            change_set = f"{stack}-{temp_name()}"
            logger.info(f"Creating change set {change_set}")
            self.cfn.create_change_set(
                StackName=stack,
                ChangeSetName=change_set,
                ChangeSetType="UPDATE",
                TemplateURL=url,
                Parameters=stack_parameters,
                Tags=self._tags(),
                Capabilities=CAPABILITIES,
            )

            try:
                self.cfn.get_waiter("change_set_create_complete").wait(
                    StackName=stack, ChangeSetName=change_set
                )
            except WaiterError:
                details = self.cfn.describe_change_set(StackName=stack, ChangeSetName=change_set)
                raise OperationFailedError(
                    details.get("StatusReason", f"Change set {change_set} failed"),
                    execution=details.get("ExecutionStatus"),
                    status=details.get("Status"),
                )

            self.cfn.execute_change_set(StackName=stack, ChangeSetName=change_set)
            self.cfn.get_waiter("stack_update_complete").wait(StackName=stack)

            self.save_parameters(name, self._effective_parameters(name, given))

    def delete(self, name: str) -> None:
        stack = self.stack_name(name)
        with _failures(f"Could not delete {stack}"):
            logger.info(f"Deleting stack {stack}")
            self.cfn.delete_stack(StackName=stack)
            self.cfn.get_waiter("stack_delete_complete").wait(StackName=stack)

    def cancel(self, name: str) -> None:
        """Cancel an in-progress update; CloudFormation rolls the stack back."""
        stack = self.stack_name(name)
        with _failures(f"Could not cancel {stack}"):
            logger.info(f"Cancelling update of {stack}")
            self.cfn.cancel_update_stack(StackName=stack)

    def describe(self, name: str) -> Dict[str, Any]:
        response = self.cfn.describe_stacks(StackName=self.stack_name(name))
        return response["Stacks"][0]

    def list(self) -> List[Dict[str, Any]]:
        """Summaries of all live stacks belonging to this repository."""
        prefix = f"{self.repo}-"
        stacks = []
        paginator = self.cfn.get_paginator("list_stacks")
        for page in paginator.paginate(StackStatusFilter=LIVE_STATUSES):
            for summary in page.get("StackSummaries", []):
                if summary["StackName"].startswith(prefix):
                    stacks.append(summary)
        return stacks
