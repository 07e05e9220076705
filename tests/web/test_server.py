"""Tests for web server startup."""

from unittest.mock import patch

from fastapi import FastAPI

from colony.config.loader import ColonyConfig
from colony.web.server import get_server_config, run_server


class TestServerConfig:
    """Test server settings derived from configuration."""

    def test_defaults(self):
        assert get_server_config(ColonyConfig()) == {
            "host": "127.0.0.1",
            "port": 8000,
            "reload": False,
            "log_level": "info",
        }

    def test_follows_config(self):
        config = ColonyConfig(web_host="0.0.0.0", web_port=9100, log_level="DEBUG")

        server_config = get_server_config(config)

        assert server_config["host"] == "0.0.0.0"
        assert server_config["port"] == 9100
        assert server_config["log_level"] == "debug"


class TestRunServer:
    """Test how uvicorn is launched."""

    @patch("colony.web.server.uvicorn.run")
    def test_serves_app_built_from_config(self, mock_run):
        run_server(config=ColonyConfig(), port=9200)

        args, kwargs = mock_run.call_args
        assert isinstance(args[0], FastAPI)
        assert kwargs["port"] == 9200
        assert kwargs["host"] == "127.0.0.1"
        assert kwargs["workers"] == 1
        assert kwargs["factory"] is False

    @patch("colony.web.server.uvicorn.run")
    def test_reload_uses_app_factory(self, mock_run):
        run_server(config=ColonyConfig(), reload=True, log_level="WARNING")

        args, kwargs = mock_run.call_args
        assert args[0] == "colony.web.app:create_app"
        assert kwargs["factory"] is True
        assert kwargs["reload"] is True
        assert kwargs["log_level"] == "warning"
