import io
import json
import logging
import unittest


class TestJsonlLogging(unittest.TestCase):
    def test_record_carries_correlation_keys(self) -> None:
        from relaymux.util.obslog import JsonlFormatter

        stream = io.StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(JsonlFormatter(component="test"))
        log = logging.getLogger("relaymux.test.obslog")
        log.propagate = False
        log.addHandler(handler)
        log.setLevel(logging.INFO)
        try:
            log.warning("relay write failed: %s", "eof", extra={"parent_pane_id": "a", "target_pane_id": "b"})
        finally:
            log.removeHandler(handler)

        doc = json.loads(stream.getvalue().strip())
        self.assertEqual(doc["level"], "WARNING")
        self.assertEqual(doc["component"], "test")
        self.assertEqual(doc["msg"], "relay write failed: eof")
        self.assertEqual(doc["parent_pane_id"], "a")
        self.assertEqual(doc["target_pane_id"], "b")
        self.assertTrue(doc["ts"].endswith("Z"))
        self.assertIn("thread", doc)

    def test_format_clock(self) -> None:
        from relaymux.util.time import format_clock, parse_utc_iso

        self.assertIsNone(parse_utc_iso("garbage"))
        self.assertEqual(format_clock("garbage"), "garbage")
        self.assertRegex(format_clock("2024-01-02T03:04:05Z"), r"^\d\d:\d\d:\d\d$")


if __name__ == "__main__":
    unittest.main()
