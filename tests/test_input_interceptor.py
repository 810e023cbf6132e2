import threading
import unittest


def _rig(fail=(), line_terminator="\r"):
    from relaymux.kernel.directory import WorkspaceDirectory
    from relaymux.kernel.dispatch_log import MemoryDispatchLog
    from relaymux.relay.dispatch import DispatchOrchestrator, SessionWriter, WriteError
    from relaymux.relay.interceptor import InputInterceptor

    class Writer(SessionWriter):
        def __init__(self) -> None:
            self.lock = threading.Lock()
            self.writes = []

        def write(self, target: str, data: str) -> None:
            if target in fail:
                raise WriteError(target)
            with self.lock:
                self.writes.append((target, data))

    d = WorkspaceDirectory()
    d.add_workspace("w")
    for pid in ("a", "b", "c"):
        d.add_pane("w", pid)

    writer = Writer()
    log = MemoryDispatchLog()
    orch = DispatchOrchestrator(writer, log, directory=d, line_terminator=line_terminator)
    forwarded = []
    displayed = []
    ic = InputInterceptor(
        "a",
        directory=d,
        orchestrator=orch,
        forward=forwarded.append,
        display=displayed.append,
        line_terminator=line_terminator,
    )
    return ic, orch, writer, log, forwarded, displayed


class TestInputInterceptor(unittest.TestCase):
    def test_plain_typing_passes_through(self) -> None:
        from relaymux.relay.interceptor import Mode

        ic, orch, writer, _, forwarded, _ = _rig()
        try:
            for ch in "ls -la\r":
                ic.feed(ch)
        finally:
            orch.shutdown()
        self.assertEqual("".join(forwarded), "ls -la\r")
        self.assertEqual(ic.mode, Mode.PASSTHROUGH)
        self.assertEqual(writer.writes, [])

    def test_relay_line_is_swallowed_and_dispatched(self) -> None:
        from relaymux.relay.interceptor import Mode

        ic, orch, writer, log, forwarded, displayed = _rig()
        try:
            ic.feed("@")
            self.assertEqual(ic.mode, Mode.COMPOSE)
            for ch in "2 ls\n":
                ic.feed(ch)
        finally:
            orch.shutdown()
        self.assertEqual(forwarded, [])
        self.assertEqual(writer.writes, [("b", "ls\r")])
        self.assertEqual(displayed, ['\r\n[relay] sent=1 failed=0 cmd="ls"\r\n'])
        self.assertEqual(len(log.logs_for("a")), 1)
        self.assertEqual(ic.mode, Mode.PASSTHROUGH)

    def test_parse_failure_forwards_buffer_and_terminator(self) -> None:
        ic, orch, writer, log, forwarded, displayed = _rig()
        try:
            ic.feed("@bogus\n")
        finally:
            orch.shutdown()
        self.assertEqual("".join(forwarded), "@bogus\r")
        self.assertEqual(writer.writes, [])
        self.assertEqual(displayed, [])
        self.assertEqual(log.logs_for("a"), [])

    def test_at_sign_mid_line_is_plain_input(self) -> None:
        from relaymux.relay.interceptor import Mode

        ic, orch, writer, _, forwarded, _ = _rig()
        try:
            ic.feed("git commit -m x@2 ls")
            self.assertEqual(ic.mode, Mode.PASSTHROUGH)
            ic.feed("\r")
        finally:
            orch.shutdown()
        self.assertEqual("".join(forwarded), "git commit -m x@2 ls\r")
        self.assertEqual(writer.writes, [])

    def test_erasing_back_to_line_start_reenables_compose(self) -> None:
        from relaymux.relay.interceptor import Mode

        ic, orch, _, _, forwarded, _ = _rig()
        try:
            ic.feed("x")
            ic.feed("\x7f")
            ic.feed("@")
            self.assertEqual(ic.mode, Mode.COMPOSE)
        finally:
            orch.shutdown()
        self.assertEqual(forwarded, ["x", "\x7f"])

    def test_backspace_in_compose_edits_held_text(self) -> None:
        ic, orch, writer, _, forwarded, _ = _rig()
        try:
            ic.feed("@2 lss\x7f -x\bl\r")
        finally:
            orch.shutdown()
        self.assertEqual(forwarded, [])
        self.assertEqual(writer.writes, [("b", "ls -l\r")])

    def test_pasted_chunk_with_text_after_relay_line(self) -> None:
        from relaymux.relay.interceptor import Mode

        ic, orch, writer, _, forwarded, _ = _rig()
        try:
            ic.feed("@3 make\recho hi\r")
        finally:
            orch.shutdown()
        self.assertEqual(writer.writes, [("c", "make\r")])
        self.assertEqual("".join(forwarded), "echo hi\r")
        self.assertEqual(ic.mode, Mode.PASSTHROUGH)

    def test_chunk_ending_in_new_compose_keeps_composing(self) -> None:
        from relaymux.relay.interceptor import Mode

        ic, orch, writer, _, forwarded, _ = _rig()
        try:
            ic.feed("@2 ls\r@3")
            self.assertEqual(ic.mode, Mode.COMPOSE)
            self.assertEqual(ic.state.compose_buffer, "@3")
            ic.feed(" pwd\r")
        finally:
            orch.shutdown()
        self.assertEqual(forwarded, [])
        self.assertEqual(sorted(writer.writes), [("b", "ls\r"), ("c", "pwd\r")])

    def test_corrupted_compose_state_is_flushed(self) -> None:
        from relaymux.relay.interceptor import Mode

        ic, orch, _, _, forwarded, _ = _rig()
        try:
            ic.feed("@2 l")
            # Simulate a state the character loop never produces: a terminator
            # seen without leaving COMPOSE.
            original = ic._finish_compose
            ic._finish_compose = lambda out: None  # type: ignore[assignment]
            ic.feed("s\r")
            ic._finish_compose = original  # type: ignore[assignment]
        finally:
            orch.shutdown()
        self.assertEqual(forwarded, ["@2 ls"])
        self.assertEqual(ic.mode, Mode.PASSTHROUGH)
        self.assertEqual(ic.state.compose_buffer, "")

    def test_failed_targets_reported_in_status(self) -> None:
        ic, orch, writer, log, _, displayed = _rig(fail={"b"})
        try:
            ic.feed("@all uptime\r")
        finally:
            orch.shutdown()
        self.assertEqual(writer.writes, [("c", "uptime\r")])
        self.assertEqual(displayed, ['\r\n[relay] sent=1 failed=1 cmd="uptime"\r\n'])
        self.assertEqual(log.logs_for("a")[0].status, "partial")

    def test_dispatch_after_shutdown_reports_failure(self) -> None:
        ic, orch, writer, _, forwarded, displayed = _rig()
        orch.shutdown()
        ic.feed("@2 ls\r")
        self.assertEqual(forwarded, [])
        self.assertEqual(writer.writes, [])
        self.assertEqual(displayed, ["\r\n[relay] dispatch failed\r\n"])

    def test_total_failure_reports_dispatch_failed(self) -> None:
        from relaymux.contracts.v1 import ParsedRelayCommand

        ic, orch, _, _, _, displayed = _rig()
        try:
            # Parent vanishes between parse and dispatch.
            orch._directory.remove_pane("a")  # type: ignore[union-attr]
            ic._dispatch(ParsedRelayCommand(targets=["b"], command="ls"))
        finally:
            orch.shutdown()
        self.assertEqual(displayed, ["\r\n[relay] dispatch failed\r\n"])

    def test_reset_drops_compose_state(self) -> None:
        from relaymux.relay.interceptor import Mode

        ic, orch, _, _, forwarded, _ = _rig()
        try:
            ic.feed("@2 half")
            ic.reset()
            ic.feed("ls\r")
        finally:
            orch.shutdown()
        self.assertEqual(ic.mode, Mode.PASSTHROUGH)
        self.assertEqual("".join(forwarded), "ls\r")


if __name__ == "__main__":
    unittest.main()
