"""
Exceptions raised by the deploy tool.
"""

from typing import Optional


class DeployError(Exception):
    """Base class for all errors reported to the user."""


class CredentialsNotFoundError(DeployError):
    def __init__(self, path):
        super().__init__(f"No credentials found at {path} - run `deploy init` first")
        self.path = path


class ProfileNotFoundError(DeployError):
    def __init__(self, profile: str):
        super().__init__(f"Profile '{profile}' not found in credentials file")
        self.profile = profile


class AmbiguousProfileError(DeployError):
    def __init__(self, profiles):
        names = ", ".join(sorted(profiles)) or "none"
        super().__init__(
            f"Multiple or no profiles found ({names}) - use --profile or set 'profile' in .deploy"
        )
        self.profiles = list(profiles)


class MissingStackNameError(DeployError):
    def __init__(self, command: str):
        super().__init__(f"Stack name required: run deploy {command} --help")
        self.command = command


class TemplateNotFoundError(DeployError):
    def __init__(self, path):
        super().__init__(f"Template not found: {path}")
        self.path = path


class ArtifactsCheckFailedError(DeployError):
    def __init__(self, missing):
        super().__init__(f"Missing artifacts: {', '.join(missing)}")
        self.missing = list(missing)


class GitError(DeployError):
    """A git command failed or the working directory is not a repository."""


class OperationFailedError(DeployError):
    """
    A create/update/delete/cancel call against CloudFormation failed.

    ``execution`` and ``status`` mirror the change set's ExecutionStatus and
    Status when the failure came from a change set; both are None otherwise.
    """

    def __init__(self, message: str, execution: Optional[str] = None, status: Optional[str] = None):
        super().__init__(message)
        self.execution = execution
        self.status = status
