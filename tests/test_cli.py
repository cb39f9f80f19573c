from __future__ import annotations

import io
import json
import unittest
from contextlib import redirect_stdout
from unittest import mock

from price_drop_monitor import cli
from price_drop_monitor.config import Settings
from price_drop_monitor.errors import MonitorNotFoundError
from price_drop_monitor.models import ExtractionResult


class TestCli(unittest.TestCase):
    def setUp(self) -> None:
        patcher = mock.patch("price_drop_monitor.cli.load_settings", return_value=Settings(gemini_api_key="g-key"))
        self.load_settings = patcher.start()
        self.addCleanup(patcher.stop)
        logging_patcher = mock.patch("price_drop_monitor.cli._configure_logging")
        logging_patcher.start()
        self.addCleanup(logging_patcher.stop)

    def test_extract_prints_result_with_effective_price(self) -> None:
        chain = mock.Mock()
        chain.extract.return_value = ExtractionResult(success=True, source="store-locators", title="Nike Air Max 90", retail_price=130.0, sale_price=99.0)
        buf = io.StringIO()

        with mock.patch("price_drop_monitor.cli.build_default_chain", return_value=chain), redirect_stdout(buf):
            code = cli.main(["extract", "https://www.nike.com/t/x"])

        self.assertEqual(code, 0)
        out = json.loads(buf.getvalue())
        self.assertEqual(out["effective_price"], 99.0)
        self.assertEqual(out["source"], "store-locators")

    def test_flags_override_settings(self) -> None:
        chain = mock.Mock()
        chain.extract.return_value = ExtractionResult.failure("none", "Unsupported store: example.com")

        with mock.patch("price_drop_monitor.cli.build_default_chain", return_value=chain) as build, redirect_stdout(io.StringIO()):
            code = cli.main(["--no-ai", "--timeout-seconds", "5", "extract", "https://example.com/x"])

        self.assertEqual(code, 1)
        settings = build.call_args.args[0]
        self.assertIsNone(settings.gemini_api_key)
        self.assertEqual(settings.http_timeout_seconds, 5.0)

    def test_store_commands_require_credentials(self) -> None:
        with self.assertRaises(SystemExit):
            cli.main(["check-now"])

    def test_monitor_errors_exit_with_code_2(self) -> None:
        orch = mock.Mock()
        orch.remove.side_effect = MonitorNotFoundError("m-404")

        with mock.patch("price_drop_monitor.cli._build_orchestrator", return_value=orch):
            code = cli.main(["remove", "m-404"])

        self.assertEqual(code, 2)


if __name__ == "__main__":
    unittest.main()
