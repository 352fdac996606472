"""
Tests for the git wrappers.
"""

from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from cfdeploy import git
from cfdeploy.errors import GitError


def completed(stdout="", returncode=0, stderr=""):
    return Mock(stdout=stdout, returncode=returncode, stderr=stderr)


@patch("cfdeploy.git.subprocess.run")
def test_sha(mock_run):
    mock_run.return_value = completed("abc123\n")

    assert git.sha() == "abc123"
    assert mock_run.call_args.args[0] == ["git", "rev-parse", "HEAD"]


@patch("cfdeploy.git.subprocess.run")
def test_toplevel(mock_run):
    mock_run.return_value = completed("/srv/repo\n")
    assert git.toplevel() == Path("/srv/repo")


@patch("cfdeploy.git.subprocess.run")
def test_uncommitted(mock_run):
    mock_run.return_value = completed(" M cfdeploy/cli.py\n")
    assert git.uncommitted() is True

    mock_run.return_value = completed("")
    assert git.uncommitted() is False


class TestPushed:
    """Test detection of unpushed commits."""

    @patch("cfdeploy.git.subprocess.run")
    def test_up_to_date(self, mock_run):
        mock_run.side_effect = [completed("origin/main\n"), completed("0\n")]
        assert git.pushed() is True
        assert mock_run.call_args_list[1].args[0] == ["git", "rev-list", "--count", "origin/main..HEAD"]

    @patch("cfdeploy.git.subprocess.run")
    def test_ahead(self, mock_run):
        mock_run.side_effect = [completed("origin/main\n"), completed("2\n")]
        assert git.pushed() is False

    @patch("cfdeploy.git.subprocess.run")
    def test_no_upstream(self, mock_run):
        mock_run.return_value = completed("", returncode=128, stderr="fatal: no upstream")
        assert git.pushed() is False


@patch("cfdeploy.git.subprocess.run")
def test_failure_raises(mock_run):
    mock_run.return_value = completed("", returncode=128, stderr="fatal: not a git repository")
    with pytest.raises(GitError, match="not a git repository"):
        git.sha()


@patch("cfdeploy.git.subprocess.run", side_effect=FileNotFoundError)
def test_git_missing(mock_run):
    with pytest.raises(GitError, match="not found"):
        git.sha()


def test_github_slug():
    assert git.github_slug("git@github.com:openaddresses/batch.git") == ("openaddresses", "batch")
    assert git.github_slug("https://github.com/openaddresses/batch") == ("openaddresses", "batch")
    assert git.github_slug("https://gitlab.com/a/b.git") is None
    assert git.github_slug(None) is None
