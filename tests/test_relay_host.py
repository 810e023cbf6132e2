import threading
import unittest


def _host(**settings):
    from relaymux.kernel.directory import WorkspaceDirectory
    from relaymux.kernel.dispatch_log import MemoryDispatchLog
    from relaymux.kernel.settings import RelaySettings
    from relaymux.relay.dispatch import SessionWriter
    from relaymux.relay.host import RelayHost

    class Writer(SessionWriter):
        def __init__(self) -> None:
            self.lock = threading.Lock()
            self.writes = []

        def write(self, target: str, data: str) -> None:
            with self.lock:
                self.writes.append((target, data))

    d = WorkspaceDirectory()
    d.add_workspace("w")
    for pid in ("a", "b", "c"):
        d.add_pane("w", pid)
    d.add_workspace("solo")
    d.add_pane("solo", "s")

    writer = Writer()
    host = RelayHost(d, writer, MemoryDispatchLog(), RelaySettings(**settings))
    return host, d, writer


class TestRelayHost(unittest.TestCase):
    def test_panes_keep_separate_state(self) -> None:
        host, _, writer = _host()
        fwd_a, fwd_b = [], []
        host.attach_pane("a", fwd_a.append)
        host.attach_pane("b", fwd_b.append)
        try:
            host.handle_input("a", "@3 ma")
            host.handle_input("b", "echo @")
            host.handle_input("b", "x\r")
            host.handle_input("a", "ke\r")
        finally:
            host.shutdown()
        self.assertEqual(fwd_a, [])
        self.assertEqual("".join(fwd_b), "echo @x\r")
        self.assertEqual(writer.writes, [("c", "make\r")])

    def test_output_goes_to_history_and_display_and_status_is_not_rescanned(self) -> None:
        host, _, writer = _host(status_prefix="@2 ")
        shown = []
        host.attach_pane("a", lambda s: None, shown.append)
        try:
            host.handle_output("a", "hello\n@2 ls\n")
        finally:
            host.shutdown()
        # A status line that happens to look like a relay line is not dispatched again.
        self.assertEqual(writer.writes, [("b", "ls\r")])
        self.assertEqual(shown[0], "hello\n@2 ls\n")
        self.assertEqual(shown[1], '\r\n@2 sent=1 failed=0 cmd="ls"\r\n')
        hist = host.history("a")
        self.assertIn("hello\n@2 ls\n", hist.raw)
        self.assertEqual(hist.latest_visible_line(), '@2 sent=1 failed=0 cmd="ls"')

    def test_history_strips_color_split_between_reads(self) -> None:
        host, _, _ = _host()
        host.attach_pane("a", lambda s: None)
        try:
            host.handle_output("a", "build \x1b[3")
            host.handle_output("a", "2mpassed\x1b[0m\n")
        finally:
            host.shutdown()
        self.assertEqual(host.history("a").latest_visible_line(), "build passed")

    def test_send_to_targets(self) -> None:
        host, _, writer = _host(line_terminator="\n")
        host.attach_pane("a", lambda s: None)
        try:
            self.assertIsNone(host.send_to_targets("a", ["b"], "   "))
            self.assertIsNone(host.send_to_targets("a", [], "ls"))
            fut = host.send_to_targets("a", ["b", "c"], "  git pull ")
            assert fut is not None
            result = fut.result(timeout=5)
        finally:
            host.shutdown()
        self.assertEqual(result.sent, 2)
        self.assertEqual(sorted(writer.writes), [("b", "git pull\n"), ("c", "git pull\n")])
        logs = host.logs_for("a")
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0].command, "git pull")
        self.assertEqual(host.logs_for("a", limit=0), [])

    def test_default_targets(self) -> None:
        host, d, _ = _host()
        try:
            self.assertEqual(host.default_targets("a"), ["b", "c"])
            self.assertEqual(host.default_targets("s"), ["s"])
            self.assertEqual(host.default_targets("missing"), [])
            d.remove_pane("c")
            self.assertEqual(host.default_targets("a"), ["b"])
        finally:
            host.shutdown()

    def test_attach_detach(self) -> None:
        from relaymux.kernel.directory import PaneNotFoundError

        host, _, _ = _host()
        try:
            host.attach_pane("a", lambda s: None)
            with self.assertRaises(ValueError):
                host.attach_pane("a", lambda s: None)
            self.assertEqual(host.attached(), ["a"])
            host.detach_pane("a")
            host.detach_pane("a")
            with self.assertRaises(PaneNotFoundError):
                host.handle_input("a", "x")
            with self.assertRaises(PaneNotFoundError):
                host.history("a")
        finally:
            host.shutdown()


class TestPaneHistory(unittest.TestCase):
    def test_bounded_and_searchable(self) -> None:
        from relaymux.kernel.history import NO_OUTPUT_PLACEHOLDER, PaneHistory

        h = PaneHistory(limit=16)
        self.assertEqual(h.latest_visible_line(), NO_OUTPUT_PLACEHOLDER)
        h.append("\x1b[32mfirst\x1b[0m\r\n")
        h.append("second line\r\n  \r\n")
        self.assertLessEqual(len(h.raw), 16)
        self.assertLessEqual(len(h.text), 16)
        self.assertEqual(h.latest_visible_line(), "second line")
        self.assertEqual(h.search("SECOND"), ["second line"])
        self.assertEqual(h.search(""), [])
        h.clear()
        self.assertEqual(h.raw, "")

    def test_escape_split_across_chunks_is_stripped(self) -> None:
        from relaymux.kernel.history import PaneHistory

        h = PaneHistory()
        h.append("\x1b[3")
        self.assertEqual(h.text, "")
        h.append("2mhello\n")
        self.assertEqual(h.text, "hello\n")
        h.append("\x1b]0;title\x1b")
        h.append("\\prompt$ ")
        self.assertEqual(h.text, "hello\nprompt$ ")
        self.assertEqual(h.raw, "\x1b[32mhello\n\x1b]0;title\x1b\\prompt$ ")

    def test_unterminated_escape_is_flushed_past_the_cap(self) -> None:
        from relaymux.kernel.history import MAX_PENDING_ESCAPE, PaneHistory

        h = PaneHistory()
        h.append("ok\x1b]0;")
        h.append("x" * MAX_PENDING_ESCAPE)
        self.assertEqual(h.text, "ok")
        h.append("after\n")
        self.assertEqual(h.text, "okafter\n")
        h.clear()
        h.append("fresh\n")
        self.assertEqual(h.text, "fresh\n")


if __name__ == "__main__":
    unittest.main()
