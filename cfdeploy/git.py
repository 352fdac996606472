"""
Thin wrappers around the git CLI used for pre-flight checks.
"""

import logging
import re
import subprocess
from pathlib import Path
from typing import List, Optional, Tuple

from .errors import GitError

logger = logging.getLogger(__name__)

# git@github.com:owner/repo.git or https://github.com/owner/repo(.git)
GITHUB_REMOTE = re.compile(r"github\.com[:/](?P<owner>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?/?$")


def _git(args: List[str], cwd: Optional[str] = None, check: bool = True) -> str:
    """
    Run a git command and return its stripped stdout.

    Raises:
        GitError: If git is missing or the command fails while ``check`` is set
    """
    command = ["git", *args]
    logger.debug(f"Running {' '.join(command)}")

    try:
        proc = subprocess.run(command, cwd=cwd, capture_output=True, text=True, check=False)
    except FileNotFoundError as e:
        raise GitError("git executable not found") from e

    if check and proc.returncode != 0:
        raise GitError(f"{' '.join(command)} failed: {proc.stderr.strip()}")

    return proc.stdout.strip()


def toplevel(cwd: Optional[str] = None) -> Path:
    """Absolute path of the repository root."""
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def sha(cwd: Optional[str] = None) -> str:
    """Full sha of HEAD."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def uncommitted(cwd: Optional[str] = None) -> bool:
    """True when the working tree or index has changes."""
    return bool(_git(["status", "--porcelain"], cwd=cwd))


def pushed(cwd: Optional[str] = None) -> bool:
    """
    True when every local commit on the current branch exists on its upstream.

    A branch without an upstream counts as unpushed.
    """
    upstream = _git(["rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}"], cwd=cwd, check=False)
    if not upstream:
        return False

    ahead = _git(["rev-list", "--count", f"{upstream}..HEAD"], cwd=cwd)
    return ahead == "0"


def remote_url(remote: str = "origin", cwd: Optional[str] = None) -> Optional[str]:
    url = _git(["remote", "get-url", remote], cwd=cwd, check=False)
    return url or None


def github_slug(url: Optional[str]) -> Optional[Tuple[str, str]]:
    """
    Extract (owner, repo) from a GitHub remote URL.

    Returns:
        Tuple of owner and repository name, or None for non-GitHub remotes
    """
    if not url:
        return None

    match = GITHUB_REMOTE.search(url)
    if not match:
        return None

    return match.group("owner"), match.group("repo")
