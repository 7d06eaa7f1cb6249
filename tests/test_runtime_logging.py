from __future__ import annotations

import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from keyscope.runtime_logging import configure_runtime_logging, get_runtime_logger, parse_level


class RuntimeLoggingTests(unittest.TestCase):
    def tearDown(self) -> None:
        configure_runtime_logging(level="off")

    def test_writes_jsonl_and_filters_by_level(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "runtime.jsonl"
            logger = configure_runtime_logging(level="info", log_file=path)
            logger.debug("debug.hidden", foo="bar")
            logger.info("info.visible", foo="bar")

            lines = path.read_text(encoding="utf-8").splitlines()
            self.assertGreaterEqual(len(lines), 2)  # includes logging.configured event
            payloads = [json.loads(line) for line in lines]
            self.assertTrue(any(item["event"] == "info.visible" for item in payloads))
            self.assertFalse(any(item["event"] == "debug.hidden" for item in payloads))

    def test_uses_environment_variables(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "from-env.jsonl"
            with patch.dict(
                os.environ,
                {"KEYSCOPE_LOG_LEVEL": "debug", "KEYSCOPE_LOG_FILE": str(path)},
                clear=False,
            ):
                logger = configure_runtime_logging()
                logger.debug("env.debug", alpha=1)

            lines = path.read_text(encoding="utf-8").splitlines()
            payloads = [json.loads(line) for line in lines]
            self.assertTrue(any(item["event"] == "env.debug" for item in payloads))

    def test_bound_logger_stamps_context(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "bound.jsonl"
            logger = configure_runtime_logging(level="debug", log_file=path)
            bound = logger.bind(session_id=7)
            bound.warning("scan.batch", pattern="a:*")
            logger.info("plain")

            payloads = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
            batch = next(item for item in payloads if item["event"] == "scan.batch")
            plain = next(item for item in payloads if item["event"] == "plain")
            self.assertEqual((batch["session_id"], batch["pattern"], batch["level"]), (7, "a:*", "warning"))
            self.assertNotIn("session_id", plain)

    def test_off_disables_the_sink(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "never.jsonl"
            logger = configure_runtime_logging(level="off", log_file=path)
            logger.error("dropped")
            logger.bind(x=1).error("dropped.too")

            self.assertFalse(path.exists())
            self.assertIs(get_runtime_logger(), logger)

    def test_parse_level_aliases(self) -> None:
        self.assertEqual(parse_level("WARN"), "warning")
        self.assertEqual(parse_level("disabled"), "off")
        self.assertEqual(parse_level("loud", default="info"), "info")
        self.assertEqual(parse_level(None), "warning")


if __name__ == "__main__":
    unittest.main()
