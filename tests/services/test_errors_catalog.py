import pytest

from n8ninstaller.errors_catalog import actionable_error


def test_actionable_error_formats_message_with_suggested_action():
    message = actionable_error("stack_start_failed", stack_dir="/home/pi/n8n")

    assert "n8n containers failed to start." in message
    assert "Suggested action:" in message
    assert "cd /home/pi/n8n && docker-compose logs" in message


def test_actionable_error_rejects_unknown_code():
    with pytest.raises(KeyError):
        actionable_error("no_such_error")
