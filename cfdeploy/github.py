"""
GitHub deployment notifications.

Each stack maps to a GitHub deployment environment of the same name. A
deployment is registered for the commit before the stack operation starts
and its status is set to success or failure once the operation finishes.
"""

import logging
import os
from typing import Any, Dict, Optional

import requests

from . import git

logger = logging.getLogger(__name__)

TIMEOUT = 10


class GitHubDeployments:
    """Create deployments and post their statuses through the GitHub REST API."""

    def __init__(self, creds, slug=None, session: Optional[requests.Session] = None):
        self.creds = creds
        self.enabled = bool(creds.github)
        self.api = os.environ.get("GITHUB_API_URL", "https://api.github.com").rstrip("/")
        self.slug = slug
        self.http = session or requests.Session()
        self._deployments: Dict[str, int] = {}

        if self.enabled and not creds.github_token:
            logger.warning("GitHub notifications enabled but no token configured - skipping")
            self.enabled = False

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"token {self.creds.github_token}",
            "Accept": "application/vnd.github+json",
        }

    def _repo_url(self) -> str:
        if self.slug is None:
            self.slug = git.github_slug(git.remote_url())
        if self.slug is None:
            raise ValueError("origin remote is not a GitHub repository")
        owner, repo = self.slug
        return f"{self.api}/repos/{owner}/{repo}"

    def _find(self, environment: str) -> Optional[int]:
        response = self.http.get(
            f"{self._repo_url()}/deployments",
            params={"sha": self.creds.sha, "environment": environment},
            headers=self._headers(),
            timeout=TIMEOUT,
        )
        response.raise_for_status()
        deployments = response.json()
        return deployments[0]["id"] if deployments else None

    def start(self, environment: str) -> Optional[int]:
        """Register a pending deployment of the current sha."""
        if not self.enabled:
            return None

        response = self.http.post(
            f"{self._repo_url()}/deployments",
            json={
                "ref": self.creds.sha,
                "environment": environment,
                "auto_merge": False,
                "required_contexts": [],
                "description": f"{self.creds.repo}-{environment}",
            },
            headers=self._headers(),
            timeout=TIMEOUT,
        )
        response.raise_for_status()

        deployment_id = response.json()["id"]
        self._deployments[environment] = deployment_id
        self._status(deployment_id, "pending")
        logger.info(f"Registered GitHub deployment {deployment_id} for {environment}")
        return deployment_id

    def finish(self, environment: str, success: bool) -> None:
        """Mark the deployment of ``environment`` as succeeded or failed."""
        if not self.enabled:
            return

        deployment_id = self._deployments.get(environment) or self._find(environment)
        if deployment_id is None:
            logger.warning(f"No GitHub deployment found for {environment}@{self.creds.sha[:7]}")
            return

        self._status(deployment_id, "success" if success else "failure")

    def _status(self, deployment_id: int, state: str) -> Dict[str, Any]:
        response = self.http.post(
            f"{self._repo_url()}/deployments/{deployment_id}/statuses",
            json={"state": state},
            headers=self._headers(),
            timeout=TIMEOUT,
        )
        response.raise_for_status()
        logger.debug(f"Deployment {deployment_id} is now {state}")
        return response.json()
