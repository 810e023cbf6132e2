import os
import tempfile
import threading
import time
import unittest
from pathlib import Path


def _wait_for(pred, timeout: float = 5.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if pred():
            return True
        time.sleep(0.02)
    return bool(pred())


@unittest.skipIf(os.name == "nt", "POSIX pty only")
class TestPtySupervisor(unittest.TestCase):
    def test_output_is_decoded_and_input_reaches_the_shell(self) -> None:
        from relaymux.runners.pty import PtySupervisor

        sup = PtySupervisor()
        chunks = []
        lock = threading.Lock()

        def on_output(text: str) -> None:
            with lock:
                chunks.append(text)

        def seen() -> str:
            with lock:
                return "".join(chunks)

        with tempfile.TemporaryDirectory() as td:
            try:
                session = sup.start_pane(
                    pane_id="p1",
                    cwd=Path(td),
                    command=["sh", "-c", "printf 'caf\\303\\251\\n'; read line; echo got:$line"],
                    on_output=on_output,
                )
                self.assertTrue(_wait_for(lambda: "café" in seen()), seen())
                self.assertIn("café".encode("utf-8"), session.tail_output())
                self.assertTrue(sup.pane_running("p1"))
                sup.resize("p1", cols=120, rows=40)
                sup.write("p1", "hello\r")
                self.assertTrue(_wait_for(lambda: "got:hello" in seen()), seen())
                self.assertTrue(_wait_for(lambda: not sup.pane_running("p1")))
            finally:
                sup.stop_all()

    def test_stop_reaps_a_child_that_ignores_sigterm(self) -> None:
        from relaymux.runners.pty import PtySupervisor

        sup = PtySupervisor()
        chunks = []
        with tempfile.TemporaryDirectory() as td:
            try:
                session = sup.start_pane(
                    pane_id="stubborn",
                    cwd=Path(td),
                    command=["sh", "-c", "trap '' TERM; echo armed; while :; do sleep 0.1; done"],
                    on_output=chunks.append,
                )
                self.assertTrue(_wait_for(lambda: "armed" in "".join(chunks)))
                session.stop()
                self.assertIsNotNone(session._proc.returncode)
                self.assertFalse(session.is_running())
            finally:
                sup.stop_all()

    def test_write_to_unknown_pane_raises(self) -> None:
        from relaymux.relay.dispatch import WriteError
        from relaymux.runners.pty import PtySupervisor

        sup = PtySupervisor()
        with self.assertRaises(WriteError):
            sup.write("nope", "ls\r")
        self.assertFalse(sup.write_input("nope", b"x"))


@unittest.skipIf(os.name == "nt", "POSIX pty only")
class TestSpawnShell(unittest.TestCase):
    def test_printed_relay_line_is_dispatched(self) -> None:
        from relaymux.kernel.directory import WorkspaceDirectory
        from relaymux.kernel.dispatch_log import MemoryDispatchLog
        from relaymux.relay.dispatch import SessionWriter
        from relaymux.relay.host import RelayHost
        from relaymux.runners.pty import PtySupervisor

        received = threading.Event()
        writes = []

        class Writer(SessionWriter):
            def write(self, target: str, data: str) -> None:
                writes.append((target, data))
                received.set()

        d = WorkspaceDirectory()
        d.add_workspace("w")
        d.add_pane("w", "a")
        d.add_pane("w", "b")
        host = RelayHost(d, Writer(), MemoryDispatchLog())
        sup = PtySupervisor()
        with tempfile.TemporaryDirectory() as td:
            try:
                host.spawn_shell(
                    "a",
                    cwd=Path(td),
                    command=["sh", "-c", "echo '@2 make'; sleep 1"],
                    supervisor=sup,
                )
                self.assertTrue(received.wait(5))
                shown = host.history("a").text
            finally:
                sup.stop_all()
                host.shutdown()
        self.assertEqual(writes, [("b", "make\r")])
        self.assertIn("@2 make", shown)


if __name__ == "__main__":
    unittest.main()
