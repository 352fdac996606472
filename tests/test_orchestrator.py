"""
Tests for stack command sequencing.
"""

import json
import tempfile
from unittest.mock import Mock, patch

import pytest
import requests

from cfdeploy.creds import Credentials
from cfdeploy.errors import (
    ArtifactsCheckFailedError, MissingStackNameError, OperationFailedError, TemplateNotFoundError,
)
from cfdeploy.orchestrator import HANDLERS, StackCommand, confirm_git_state, run


@pytest.fixture(autouse=True)
def temp_dir(tmp_path, monkeypatch):
    rendered = tmp_path / "rendered"
    rendered.mkdir()
    monkeypatch.setattr(tempfile, "gettempdir", lambda: str(rendered))
    return rendered


@pytest.fixture(autouse=True)
def clean_git():
    with patch("cfdeploy.orchestrator.git") as mock_git, \
         patch("cfdeploy.orchestrator.artifacts") as mock_artifacts:
        mock_git.uncommitted.return_value = False
        mock_git.pushed.return_value = True
        yield mock_git, mock_artifacts


@pytest.fixture
def creds(tmp_path):
    template = tmp_path / "maps.template.json"
    template.write_text(json.dumps({
        "Parameters": {"GitSha": {"Type": "String"}},
        "Resources": {"Queue": {"Type": "AWS::SQS::Queue"}},
    }))
    return Credentials(
        profile="default", region="us-east-1", access_key_id="AK", secret_access_key="SK",
        repo="maps", sha="abc123", template=template, name="prod",
        tags=[{"Key": "Project", "Value": "maps"}], github=True, github_token="t",
    )


@pytest.fixture
def commands():
    commands = Mock()
    commands.stack_name.side_effect = lambda name: f"maps-{name}"
    return commands


def rendered_path(commands, method):
    return getattr(commands, method).call_args.args[1]


def test_every_command_has_a_handler():
    assert set(HANDLERS) == set(StackCommand)


def test_missing_stack_name(creds, commands):
    from dataclasses import replace
    with pytest.raises(MissingStackNameError, match="deploy create --help"):
        run(StackCommand.CREATE, replace(creds, name=None), commands=commands, notifier=Mock())
    commands.create.assert_not_called()


class TestPreflight:
    """Test the checks that run before create and update."""

    def test_declined_uncommitted_aborts(self, creds, commands, clean_git):
        mock_git, _ = clean_git
        mock_git.uncommitted.return_value = True
        confirm = Mock(return_value=False)
        notifier = Mock()

        result = run(StackCommand.CREATE, creds, confirm=confirm, commands=commands, notifier=notifier)

        assert result.aborted is True
        assert result.succeeded is False
        commands.ensure_buckets.assert_not_called()
        commands.create.assert_not_called()
        notifier.start.assert_not_called()

    def test_declined_unpushed_aborts(self, creds, commands, clean_git):
        mock_git, _ = clean_git
        mock_git.pushed.return_value = False

        result = run(StackCommand.UPDATE, creds, confirm=Mock(return_value=False), commands=commands, notifier=Mock())

        assert result.aborted is True
        commands.update.assert_not_called()

    def test_accepted_continues(self, creds, commands, clean_git):
        mock_git, _ = clean_git
        mock_git.uncommitted.return_value = True
        mock_git.pushed.return_value = False
        confirm = Mock(return_value=True)

        result = run(StackCommand.CREATE, creds, confirm=confirm, commands=commands, notifier=Mock())

        assert result.succeeded is True
        assert confirm.call_count == 2

    def test_skip_git_check(self, creds, commands, clean_git):
        mock_git, _ = clean_git
        mock_git.uncommitted.return_value = True
        confirm = Mock(return_value=False)

        result = run(StackCommand.CREATE, creds, check_git=False, confirm=confirm, commands=commands, notifier=Mock())

        assert result.succeeded is True
        confirm.assert_not_called()

    def test_artifacts_missing(self, creds, commands, clean_git, capsys):
        _, mock_artifacts = clean_git
        mock_artifacts.check.side_effect = ArtifactsCheckFailedError(["maps:abc123"])

        result = run(StackCommand.CREATE, creds, commands=commands, notifier=Mock())

        assert result.succeeded is False
        assert "Artifacts Check Failed: Missing artifacts: maps:abc123" in capsys.readouterr().err
        commands.ensure_buckets.assert_not_called()
        commands.create.assert_not_called()

    def test_delete_skips_preflight(self, creds, commands, clean_git):
        mock_git, mock_artifacts = clean_git
        mock_git.uncommitted.return_value = True
        confirm = Mock(return_value=False)

        run(StackCommand.DELETE, creds, confirm=confirm, commands=commands, notifier=Mock())

        confirm.assert_not_called()
        mock_artifacts.check.assert_not_called()
        commands.delete.assert_called_once_with("prod")


class TestCreate:
    """Test create dispatch and notification."""

    def test_success(self, creds, commands):
        notifier = Mock()
        result = run(StackCommand.CREATE, creds, commands=commands, notifier=notifier)

        assert result.succeeded is True
        commands.ensure_buckets.assert_called_once()
        name, path, parameters = commands.create.call_args.args
        assert name == "prod"
        assert parameters == {"GitSha": "abc123"}
        assert not path.exists()
        notifier.start.assert_called_once_with("prod")
        notifier.finish.assert_called_once_with("prod", True)

    def test_failure_keeps_template(self, creds, commands, capsys):
        """The rendered template stays on disk, with tags merged."""
        commands.create.side_effect = OperationFailedError("Could not create maps-prod: boom")
        notifier = Mock()

        result = run(StackCommand.CREATE, creds, commands=commands, notifier=notifier)

        assert result.succeeded is False
        assert "Create failed: Could not create maps-prod: boom" in capsys.readouterr().err
        notifier.finish.assert_called_once_with("prod", False)

        path = rendered_path(commands, "create")
        assert path.exists()
        rendered = json.loads(path.read_text())
        assert rendered["Resources"]["Queue"]["Properties"]["Tags"] == [{"Key": "Project", "Value": "maps"}]

    def test_notification_errors_do_not_fail_deploy(self, creds, commands):
        notifier = Mock()
        notifier.start.side_effect = requests.ConnectionError("offline")
        notifier.finish.side_effect = requests.ConnectionError("offline")

        result = run(StackCommand.CREATE, creds, commands=commands, notifier=notifier)
        assert result.succeeded is True

    def test_missing_template(self, creds, commands):
        from dataclasses import replace
        creds = replace(creds, template=creds.template.parent / "missing.json")

        with pytest.raises(TemplateNotFoundError):
            run(StackCommand.CREATE, creds, commands=commands, notifier=Mock())
        commands.create.assert_not_called()


class TestUpdate:
    """Test update dispatch and notification."""

    def test_success(self, creds, commands):
        notifier = Mock()
        result = run(StackCommand.UPDATE, creds, commands=commands, notifier=notifier)

        assert result.succeeded is True
        assert not rendered_path(commands, "update").exists()
        notifier.finish.assert_not_called()

    def test_unavailable_failed_notifies_success(self, creds, commands):
        commands.update.side_effect = OperationFailedError(
            "The submitted information didn't contain changes.", execution="UNAVAILABLE", status="FAILED"
        )
        notifier = Mock()

        result = run(StackCommand.UPDATE, creds, commands=commands, notifier=notifier)

        assert result.succeeded is False
        notifier.finish.assert_called_once_with("prod", True)

    def test_other_failure_notifies_failure(self, creds, commands, capsys):
        commands.update.side_effect = OperationFailedError("Could not update maps-prod: rollback")
        notifier = Mock()

        run(StackCommand.UPDATE, creds, commands=commands, notifier=notifier)

        notifier.finish.assert_called_once_with("prod", False)
        assert rendered_path(commands, "update").exists()
        assert "Update failed" in capsys.readouterr().err


class TestDeleteCancel:
    """Test delete and cancel dispatch."""

    def test_delete_success(self, creds, commands, temp_dir):
        notifier = Mock()
        result = run(StackCommand.DELETE, creds, commands=commands, notifier=notifier)

        assert result.succeeded is True
        assert list(temp_dir.iterdir()) == []
        notifier.finish.assert_not_called()

    def test_delete_failure(self, creds, commands, capsys):
        commands.delete.side_effect = OperationFailedError("Could not delete maps-prod: nope")
        result = run(StackCommand.DELETE, creds, commands=commands, notifier=Mock())

        assert result.succeeded is False
        assert "Delete failed: Could not delete maps-prod: nope" in capsys.readouterr().err

    def test_cancel_notifies_failure(self, creds, commands, temp_dir):
        notifier = Mock()
        result = run(StackCommand.CANCEL, creds, commands=commands, notifier=notifier)

        assert result.succeeded is True
        commands.cancel.assert_called_once_with("prod")
        notifier.finish.assert_called_once_with("prod", False)
        assert list(temp_dir.iterdir()) == []

    def test_cancel_failure_does_not_notify(self, creds, commands, capsys):
        commands.cancel.side_effect = OperationFailedError("Could not cancel maps-prod: idle")
        notifier = Mock()

        run(StackCommand.CANCEL, creds, commands=commands, notifier=notifier)

        notifier.finish.assert_not_called()
        assert "Cancel failed" in capsys.readouterr().err


@patch("cfdeploy.orchestrator.git")
def test_confirm_git_state_clean(mock_git):
    mock_git.uncommitted.return_value = False
    mock_git.pushed.return_value = True
    confirm = Mock()

    assert confirm_git_state(confirm) is True
    confirm.assert_not_called()
