"""Tests for password resolution: daemon first, then the prompt."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from conftest import PASSWORDS
from shh.errors import AuthError, DaemonUnreachable, WrongPassword
from shh.password import MAX_ATTEMPTS, PasswordSource


def _refuse(prompt):
    raise AssertionError("should not prompt")


class TestCached:

    def test_no_port_means_no_daemon(self):
        with patch("shh.password.daemon.fetch_password") as fetch:
            assert PasswordSource(None).cached() is None
        fetch.assert_not_called()

    def test_returns_daemon_password(self):
        with patch("shh.password.daemon.fetch_password", return_value="pw") as fetch:
            assert PasswordSource(1234).cached() == "pw"
        fetch.assert_called_once_with(1234, reset_timer=True)

    def test_empty_cache(self):
        with patch("shh.password.daemon.fetch_password", return_value=""):
            assert PasswordSource(1234).cached() is None

    def test_unreachable(self):
        with patch("shh.password.daemon.fetch_password", side_effect=DaemonUnreachable("down")):
            assert PasswordSource(1234).cached() is None


class TestUnlock:

    def test_uses_cached_password(self, keyrings):
        with patch("shh.password.daemon.fetch_password", return_value=PASSWORDS["alice"]):
            source = PasswordSource(1234, prompter=_refuse)
            source.unlock(keyrings["alice"])

    def test_prompts_when_nothing_cached(self, keyrings):
        prompter = MagicMock(return_value=PASSWORDS["alice"])
        PasswordSource(None, prompter=prompter).unlock(keyrings["alice"])
        prompter.assert_called_once()

    def test_retries_wrong_password(self, keyrings):
        prompter = MagicMock(side_effect=["wrong", "also-wrong", PASSWORDS["alice"]])
        PasswordSource(None, prompter=prompter).unlock(keyrings["alice"])
        assert prompter.call_count == 3

    def test_gives_up_after_max_attempts(self, keyrings):
        prompter = MagicMock(return_value="wrong")
        with pytest.raises(WrongPassword):
            PasswordSource(None, prompter=prompter).unlock(keyrings["alice"])
        assert prompter.call_count == MAX_ATTEMPTS

    def test_stale_cached_password_falls_back_to_prompt(self, keyrings):
        prompter = MagicMock(return_value=PASSWORDS["alice"])
        with patch("shh.password.daemon.fetch_password", return_value="old-password"):
            PasswordSource(1234, prompter=prompter).unlock(keyrings["alice"])
        prompter.assert_called_once()


class TestNonInteractive:

    def test_uses_cached_password(self, keyrings):
        with patch("shh.password.daemon.fetch_password", return_value=PASSWORDS["alice"]):
            PasswordSource(1234, non_interactive=True, prompter=_refuse).unlock(keyrings["alice"])

    def test_fails_without_daemon(self, keyrings):
        with patch("shh.password.daemon.fetch_password", side_effect=DaemonUnreachable("down")):
            source = PasswordSource(1234, non_interactive=True, prompter=_refuse)
            with pytest.raises(AuthError, match="shh login"):
                source.unlock(keyrings["alice"])

    def test_fails_with_empty_cache(self, keyrings):
        with patch("shh.password.daemon.fetch_password", return_value=""):
            source = PasswordSource(1234, non_interactive=True, prompter=_refuse)
            with pytest.raises(AuthError):
                source.unlock(keyrings["alice"])

    def test_wrong_cached_password_is_not_retried(self, keyrings):
        with patch("shh.password.daemon.fetch_password", return_value="old-password"):
            source = PasswordSource(1234, non_interactive=True, prompter=_refuse)
            with pytest.raises(WrongPassword):
                source.unlock(keyrings["alice"])
