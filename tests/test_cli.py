"""CLI tests for the generate and batch commands."""

import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from click.testing import CliRunner
from loguru import logger

sys.path.insert(0, str(Path(__file__).parent.parent))

from vite_critical.cli import cli, setup_logging
from vite_critical.config_loader import ConfigError


def fake_results(status="completed", **overrides):
    results = {
        "mode": "single",
        "status": status,
        "started_at": "2026-10-18T00:00:00+00:00",
        "completed_at": "2026-10-18T00:00:05+00:00",
        "sites_processed": 0,
        "sites_skipped": 0,
        "units_planned": 1,
        "units_generated": 1 if status == "completed" else 0,
        "units_failed": 0 if status == "completed" else 1,
        "units_skipped": 0,
        "artifacts": ["assets/acme_home-critical-ab12.css"] if status == "completed" else [],
        "errors": [],
    }
    results.update(overrides)
    return results


class TestCliGenerate(unittest.TestCase):
    def setUp(self):
        self.runner = CliRunner()

    @patch("vite_critical.cli.setup_logging")
    @patch("vite_critical.cli.load_config", return_value={})
    @patch("vite_critical.cli.run_single")
    def test_generate_with_options(self, mock_run_single, *_mocks):
        mock_run_single.return_value = fake_results()

        result = self.runner.invoke(
            cli,
            ["generate", "--site", "acme", "--template", "home", "--env", "Production", "--outputpath", "build/"],
        )

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Status: completed", result.output)
        self.assertIn("assets/acme_home-critical-ab12.css", result.output)
        kwargs = mock_run_single.call_args.kwargs
        self.assertEqual(kwargs["site"], "acme")
        self.assertEqual(kwargs["template"], "home")
        self.assertEqual(kwargs["environment"], "Production")
        self.assertEqual(kwargs["output_path"], "build")

    @patch("vite_critical.cli.setup_logging")
    @patch(
        "vite_critical.cli.load_config",
        return_value={"SITENAME": "acme", "TEMPLATE": "home", "VITE_OUTPUT_PATH": "public/assets/"},
    )
    @patch("vite_critical.cli.run_single")
    def test_generate_falls_back_to_config(self, mock_run_single, *_mocks):
        mock_run_single.return_value = fake_results()

        result = self.runner.invoke(cli, ["generate"])

        self.assertEqual(result.exit_code, 0, result.output)
        kwargs = mock_run_single.call_args.kwargs
        self.assertEqual(kwargs["site"], "acme")
        self.assertEqual(kwargs["template"], "home")
        self.assertEqual(kwargs["environment"], "Development")
        self.assertEqual(kwargs["output_path"], "public/assets")

    @patch("vite_critical.cli.setup_logging")
    @patch("vite_critical.cli.load_config", return_value={})
    @patch("vite_critical.cli.run_single")
    def test_generate_requires_site_and_template(self, mock_run_single, *_mocks):
        result = self.runner.invoke(cli, ["generate", "--site", "acme"])

        self.assertEqual(result.exit_code, 1)
        mock_run_single.assert_not_called()

    @patch("vite_critical.cli.setup_logging")
    @patch("vite_critical.cli.load_config", return_value={})
    @patch("vite_critical.cli.run_single")
    def test_generate_failed_status_exits_with_error(self, mock_run_single, *_mocks):
        mock_run_single.return_value = fake_results(
            "failed",
            errors=[{"site": "acme", "template": "home", "pid": None, "url": "https://acme.test/", "error": "HTTP 500"}],
        )

        result = self.runner.invoke(cli, ["generate", "-s", "acme", "-t", "home"])

        self.assertEqual(result.exit_code, 1)
        self.assertIn("acme/home: HTTP 500", result.output)

    @patch("vite_critical.cli.setup_logging")
    @patch("vite_critical.cli.load_config", return_value={})
    @patch("vite_critical.cli.run_single", side_effect=ConfigError("No base URL for site 'acme'"))
    def test_generate_config_error_exits_with_error(self, *_mocks):
        result = self.runner.invoke(cli, ["generate", "-s", "acme", "-t", "home"])
        self.assertEqual(result.exit_code, 1)

    @patch("vite_critical.cli.load_config", side_effect=ConfigError("Configuration file not found"))
    def test_config_error_at_startup(self, _mock_load_config):
        result = self.runner.invoke(cli, ["generate"])

        self.assertEqual(result.exit_code, 1)
        self.assertIn("Error loading configuration", result.output)


class TestCliBatch(unittest.TestCase):
    def setUp(self):
        self.runner = CliRunner()

    @patch("vite_critical.cli.setup_logging")
    @patch("vite_critical.cli.load_config", return_value={"ENV": "Production"})
    @patch("vite_critical.cli.run_batch")
    def test_batch(self, mock_run_batch, *_mocks):
        mock_run_batch.return_value = fake_results(
            "partial", mode="batch", sites_processed=2, units_planned=3, units_generated=2, units_failed=1
        )

        result = self.runner.invoke(cli, ["batch", "--outputpath", "public/assets/"])

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Sites processed: 2", result.output)
        kwargs = mock_run_batch.call_args.kwargs
        self.assertEqual(kwargs["environment"], "Production")
        self.assertEqual(kwargs["output_path"], "public/assets")

    @patch("vite_critical.cli.setup_logging")
    @patch("vite_critical.cli.load_config", return_value={})
    @patch("vite_critical.cli.run_batch", side_effect=RuntimeError("manifest missing"))
    def test_batch_exception_exits_with_error(self, *_mocks):
        result = self.runner.invoke(cli, ["batch"])
        self.assertEqual(result.exit_code, 1)


class TestSetupLogging(unittest.TestCase):
    def tearDown(self):
        logger.remove()

    def test_file_sink_created(self):
        with tempfile.TemporaryDirectory() as tmp:
            log_file = Path(tmp) / "logs" / "critical.log"

            setup_logging({"LOG_FILE": str(log_file), "LOG_LEVEL": "debug"})
            logger.info("hello")
            logger.remove()

            self.assertIn("hello", log_file.read_text(encoding="utf-8"))


if __name__ == "__main__":
    unittest.main()
