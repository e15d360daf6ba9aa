"""
Unit Tests for the Command Line
===============================
"""

import pytest

from universal_renderer import __version__, cli
from universal_renderer.service.handlers import RenderHandlers

from tests.fixtures import apps


class TestLoadHandlers:
    """Test ``module:attr`` resolution."""

    def test_instance(self):
        assert cli.load_handlers("tests.fixtures.apps:handlers") is apps.handlers

    def test_factory(self):
        """Callables are called to build the handlers."""
        handlers = cli.load_handlers("tests.fixtures.apps:build_handlers")
        assert isinstance(handlers, RenderHandlers)
        assert handlers.supports_streaming

    @pytest.mark.parametrize("target", ["tests.fixtures.apps", ":handlers", "tests.fixtures.apps:"])
    def test_bad_format(self, target):
        with pytest.raises(ValueError, match="module:attr"):
            cli.load_handlers(target)

    def test_wrong_type(self):
        with pytest.raises(TypeError, match="did not resolve to RenderHandlers"):
            cli.load_handlers("tests.fixtures.apps:CLEANED")

    def test_missing_attribute(self):
        with pytest.raises(AttributeError):
            cli.load_handlers("tests.fixtures.apps:nope")


class TestMain:
    """Test subcommand dispatch."""

    @pytest.fixture(autouse=True)
    def quiet_logging(self, monkeypatch):
        monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)

    def test_worker(self, monkeypatch):
        served = []
        monkeypatch.setattr(cli, "run_worker", lambda handlers: served.append(handlers) or 0)

        assert cli.main(["worker", "--app", "tests.fixtures.apps:handlers"]) == 0
        assert served == [apps.handlers]

    def test_serve_overrides(self, monkeypatch):
        from universal_renderer.api import main as api_main

        calls = []
        monkeypatch.setattr(
            api_main, "run_server", lambda handlers, settings: calls.append((handlers, settings))
        )

        assert cli.main(["serve", "--app", "tests.fixtures.apps:handlers", "--port", "4100"]) == 0
        handlers, settings = calls[0]
        assert handlers is apps.handlers
        assert settings.port == 4100

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.main([])

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            cli.main(["--version"])
        assert __version__ in capsys.readouterr().out
