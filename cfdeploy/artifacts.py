"""
Checks that the build artifacts a stack needs already exist in AWS.

Artifacts are declared in ``.deploy``::

    "artifacts": {
        "s3": ["my-bucket/lambda/${sha}.zip"],
        "docker": ["my-repo:${sha}"]
    }

``${sha}`` (or ``${gitsha}``) is replaced by the commit being deployed.
"""

import logging
from typing import List

from botocore.exceptions import ClientError

from .errors import ArtifactsCheckFailedError

logger = logging.getLogger(__name__)


def _render(artifact: str, sha: str) -> str:
    return artifact.replace("${sha}", sha).replace("${gitsha}", sha)


def _s3_exists(s3, artifact: str) -> bool:
    bucket, _, key = artifact.partition("/")
    try:
        s3.head_object(Bucket=bucket, Key=key)
        return True
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound", "403"):
            return False
        raise


def _image_exists(ecr, artifact: str) -> bool:
    repository, _, tag = artifact.partition(":")
    try:
        response = ecr.describe_images(
            repositoryName=repository,
            imageIds=[{"imageTag": tag or "latest"}]
        )
        return bool(response.get("imageDetails"))
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") in ("ImageNotFoundException", "RepositoryNotFoundException"):
            return False
        raise


def check(creds) -> List[str]:
    """
    Verify every declared artifact for the current sha.

    Returns:
        List of the artifacts that were checked

    Raises:
        ArtifactsCheckFailedError: If any artifact is missing
    """
    declared = creds.artifacts or {}
    session = creds.session()
    checked = []
    missing = []

    s3_artifacts = [_render(a, creds.sha) for a in declared.get("s3", [])]
    if s3_artifacts:
        s3 = session.client("s3")
        for artifact in s3_artifacts:
            logger.info(f"Checking s3://{artifact}")
            checked.append(artifact)
            if not _s3_exists(s3, artifact):
                missing.append(f"s3://{artifact}")

    images = [_render(a, creds.sha) for a in declared.get("docker", [])]
    if images:
        ecr = session.client("ecr")
        for artifact in images:
            logger.info(f"Checking image {artifact}")
            checked.append(artifact)
            if not _image_exists(ecr, artifact):
                missing.append(artifact)

    if missing:
        raise ArtifactsCheckFailedError(missing)

    return checked
