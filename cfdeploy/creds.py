"""
Credential profile resolution.

Profiles live in a JSON file in the user's home directory (``~/.deployrc.json``
unless ``DEPLOY_CREDENTIALS`` points elsewhere), keyed by profile name. A
repository may pin a profile, tags, GitHub notification and build artifacts in
a ``.deploy`` file at its root.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import boto3

from . import git
from .errors import AmbiguousProfileError, CredentialsNotFoundError, ProfileNotFoundError

logger = logging.getLogger(__name__)

PROJECT_CONFIG = ".deploy"
TEMPLATE_SUFFIXES = (".template.json", ".template.yaml", ".template.yml")


def credentials_path() -> Path:
    return Path(os.environ.get("DEPLOY_CREDENTIALS", "~/.deployrc.json")).expanduser()


def read_profiles(path: Optional[Path] = None) -> Dict[str, Dict[str, Any]]:
    """
    Read all profiles from the credentials file.

    Raises:
        CredentialsNotFoundError: If the file does not exist
    """
    path = path or credentials_path()
    if not path.exists():
        raise CredentialsNotFoundError(path)

    with open(path, "r") as f:
        return json.load(f)


def save_profile(name: str, profile: Dict[str, Any], path: Optional[Path] = None) -> Path:
    """Add or replace a profile in the credentials file, creating it if needed."""
    path = path or credentials_path()

    profiles = {}
    if path.exists():
        with open(path, "r") as f:
            profiles = json.load(f)

    profiles[name] = profile

    with open(path, "w") as f:
        json.dump(profiles, f, indent=4)
    os.chmod(path, 0o600)

    logger.info(f"Saved profile {name} to {path}")
    return path


def read_project_config(root: Path) -> Dict[str, Any]:
    """Read ``.deploy`` from the repository root; missing file means no settings."""
    config_file = root / PROJECT_CONFIG
    if not config_file.exists():
        return {}

    with open(config_file, "r") as f:
        return json.load(f)


def resolve_profile(
    profiles: Dict[str, Dict[str, Any]],
    flag: Optional[str] = None,
    project_default: Optional[str] = None,
) -> Tuple[str, Dict[str, Any]]:
    """
    Pick exactly one profile.

    An explicit flag wins over the project default. Without either, a file
    holding a single profile resolves to it under the label "default".

    Raises:
        ProfileNotFoundError: If the requested profile does not exist
        AmbiguousProfileError: If nothing disambiguates zero or several profiles
    """
    wanted = flag or project_default
    if wanted:
        if wanted not in profiles:
            raise ProfileNotFoundError(wanted)
        return wanted, profiles[wanted]

    if len(profiles) == 1:
        return "default", next(iter(profiles.values()))

    raise AmbiguousProfileError(profiles.keys())


def default_template(root: Path, repo: str) -> Path:
    """First existing ``cloudformation/<repo>.template.*`` file, JSON if none exist."""
    candidates = [root / "cloudformation" / f"{repo}{suffix}" for suffix in TEMPLATE_SUFFIXES]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return candidates[0]


@dataclass(frozen=True)
class Credentials:
    """Resolved profile plus the repository context of one invocation."""
    profile: str
    region: str
    access_key_id: str
    secret_access_key: str
    repo: str
    sha: str
    session_token: Optional[str] = None
    template: Optional[Path] = None
    name: Optional[str] = None
    tags: List[Any] = field(default_factory=list)
    github: bool = False
    github_token: Optional[str] = None
    artifacts: Dict[str, List[str]] = field(default_factory=dict)
    account: Optional[str] = None
    _cache: Dict[str, Any] = field(default_factory=dict, init=False, repr=False, compare=False)

    def session(self) -> boto3.Session:
        """A boto3 session bound to this profile; every AWS call goes through it."""
        if "session" not in self._cache:
            self._cache["session"] = boto3.Session(
                aws_access_key_id=self.access_key_id,
                aws_secret_access_key=self.secret_access_key,
                aws_session_token=self.session_token,
                region_name=self.region,
            )
        return self._cache["session"]

    def account_id(self) -> str:
        if self.account:
            return self.account
        if "account" not in self._cache:
            identity = self.session().client("sts").get_caller_identity()
            self._cache["account"] = identity["Account"]
            logger.debug(f"Resolved account {identity['Account']} for profile {self.profile}")
        return self._cache["account"]

    def env(self) -> Dict[str, str]:
        """Environment variables that make the AWS CLI and SDKs use this profile."""
        env = {
            "AWS_ACCESS_KEY_ID": self.access_key_id,
            "AWS_SECRET_ACCESS_KEY": self.secret_access_key,
            "AWS_REGION": self.region,
            "AWS_DEFAULT_REGION": self.region,
        }
        if self.session_token:
            env["AWS_SESSION_TOKEN"] = self.session_token
        return env


def load_credentials(
    profile: Optional[str] = None,
    name: Optional[str] = None,
    template: Optional[str] = None,
    region: Optional[str] = None,
    with_template: bool = True,
    cwd: Optional[str] = None,
    path: Optional[Path] = None,
) -> Credentials:
    """
    Build the credentials of one invocation.

    Args:
        profile: Value of --profile
        name: Stack name (positional argument or --name)
        template: Value of --template
        region: Value of --region, overriding the profile's region
        with_template: Resolve a template path (stack subcommands only)
        cwd: Directory inside the repository
        path: Credentials file, defaults to ``credentials_path()``

    Raises:
        CredentialsNotFoundError, ProfileNotFoundError, AmbiguousProfileError, GitError
    """
    profiles = read_profiles(path)

    root = git.toplevel(cwd)
    project = read_project_config(root)

    label, data = resolve_profile(profiles, profile, project.get("profile"))
    repo = root.name

    template_path = None
    if with_template:
        if template:
            template_path = Path(template).resolve()
        elif project.get("template"):
            template_path = root / project["template"]
        else:
            template_path = default_template(root, repo)

    creds = Credentials(
        profile=label,
        region=region or data.get("region", "us-east-1"),
        access_key_id=data.get("accessKeyId", ""),
        secret_access_key=data.get("secretAccessKey", ""),
        session_token=data.get("sessionToken"),
        repo=repo,
        sha=git.sha(cwd),
        template=template_path,
        name=name,
        tags=project.get("tags", []),
        github=bool(project.get("github", False)),
        github_token=data.get("githubToken") or os.environ.get("GITHUB_TOKEN"),
        artifacts=project.get("artifacts", {}),
        account=data.get("accountId"),
    )

    logger.info(f"Using profile {creds.profile} ({creds.region}) for {creds.repo}@{creds.sha[:7]}")
    return creds
