from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

import webhook_queue.collector.app as collector_app
from webhook_queue.collector.tester import WebhookTester
from webhook_queue.common.config import CollectorConfig, ForwardHandlerConfig
from webhook_queue.queue.stats import WebhookStatsService


@pytest.fixture
def reset_app_state():
    yield
    collector_app._app_config = None
    collector_app._queue_service = None
    collector_app._stats_service = None
    collector_app._tester = None


class TestCollectorApp:

    def test_getters_before_setup(self, reset_app_state):
        with pytest.raises(RuntimeError, match="Application config not initialized"):
            collector_app.get_app_config()
        with pytest.raises(RuntimeError, match="Queue service not initialized"):
            collector_app.get_queue_service()
        with pytest.raises(RuntimeError, match="Stats service not initialized"):
            collector_app.get_stats_service()
        with pytest.raises(RuntimeError, match="Webhook tester not initialized"):
            collector_app.get_tester()

    def test_load_config_from_file(self, tmp_path):
        """Test loading a collector config from YAML."""
        config_file = tmp_path / "collector.yaml"
        config_file.write_text(
            yaml.safe_dump(
                {
                    "port": 8100,
                    "admin_token": "t",
                    "webhook_sources": [{"name": "twilio", "secret": "s", "signature_header": "X-Sig"}],
                    "handlers": [{"source": "twilio", "target_url": "http://inbox/twilio"}],
                }
            )
        )

        config = collector_app.load_config_from_file(str(config_file))

        assert config.port == 8100
        assert config.webhook_sources[0].name == "twilio"
        assert config.handlers[0].target_url == "http://inbox/twilio"

    def test_load_missing_config(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            collector_app.load_config_from_file(str(tmp_path / "missing.yaml"))

    def test_setup_app(self, reset_app_state):
        """Test that setup wires the services together."""
        collector_config = CollectorConfig(
            handlers=[ForwardHandlerConfig(source="twilio", target_url="http://inbox/twilio")]
        )

        with patch("webhook_queue.collector.app.configure_logging"):
            collector_app.setup_app(collector_config)

        service = collector_app.get_queue_service()
        assert collector_app.get_app_config() is collector_config
        assert isinstance(collector_app.get_stats_service(), WebhookStatsService)
        assert isinstance(collector_app.get_tester(), WebhookTester)
        assert "twilio" in service.registry
        assert "twilio-sms" in service.registry

    def test_serve_missing_config(self, tmp_path):
        runner = CliRunner()
        result = runner.invoke(collector_app.cli, ["serve", "--config", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 1

    def test_serve(self, tmp_path, reset_app_state):
        config_file = tmp_path / "collector.yaml"
        config_file.write_text("port: 8200\n")

        with patch("webhook_queue.collector.app.run_server") as mock_run_server, patch(
            "webhook_queue.collector.app.configure_logging"
        ):
            result = CliRunner().invoke(collector_app.cli, ["serve", "-c", str(config_file)])

        assert result.exit_code == 0
        mock_run_server.assert_called_once()
        assert mock_run_server.call_args[0][0].port == 8200
