"""Tests for the server lifecycle: startup, signals and shutdown order."""

import os
import signal
import subprocess
import sys
import textwrap
import threading
import unittest
from pathlib import Path
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from harvest.main import HarvestServer
from harvest.session.models import Event
from harvest.storage.memory import MemoryStore
from harvest.tests.fakes import StaticResolver
from harvest.utils.exceptions import SessionOrderError

REPO_ROOT = Path(__file__).resolve().parents[2]


def body(client_id="A", path="/repo/a.go"):
    return {"clientId": client_id, "os": "linux", "editor": "nvim", "path": path}


class RecordingStore(MemoryStore):
    """Appends "save" and "disconnect" to a shared call log."""

    def __init__(self, calls):
        super().__init__()
        self.calls = calls

    def connect(self):
        disconnect = super().connect()

        def record():
            self.calls.append("disconnect")
            disconnect()

        return record

    def save(self, session):
        self.calls.append("save")
        super().save(session)


class TestHarvestServerRun(unittest.TestCase):
    def setUp(self):
        self.calls = []
        self.store = RecordingStore(self.calls)
        self.harvest = HarvestServer(
            {"development": False, "heartbeat": {"interval_seconds": 0.01}},
            store=self.store,
        )
        self.harvest.engine.resolver = StaticResolver()
        # Stands in for uvicorn, serve() runs in its place
        self.harvest.server = MagicMock()
        self.harvest.server.should_exit = False
        self.harvest.server.force_exit = False

        stop = self.harvest.monitor.stop

        def record_stop(*args, **kwargs):
            self.calls.append("monitor.stop")
            stop(*args, **kwargs)

        self.harvest.monitor.stop = record_stop

    def test_clean_exit_flushes_then_disconnects(self):
        previous = signal.getsignal(signal.SIGTERM)

        def serve():
            self.assertTrue(self.harvest.monitor.is_running)
            self.assertTrue(self.store.connected)
            self.harvest.engine.open_file(Event("A", path="/repo/a.go"))
            # What the process receives on SIGTERM
            signal.getsignal(signal.SIGTERM)(signal.SIGTERM, None)
            self.assertTrue(self.harvest.server.should_exit)

        self.harvest.server.run.side_effect = serve

        self.assertEqual(self.harvest.run(), 0)

        self.assertEqual(self.calls, ["monitor.stop", "save", "disconnect"])
        self.assertFalse(self.harvest.monitor.is_running)
        self.assertEqual(len(self.store.sessions), 1)
        self.assertIn("/repo/a.go", self.store.sessions[0].files)
        self.assertFalse(self.store.connected)
        self.assertIs(signal.getsignal(signal.SIGTERM), previous)

    def test_fatal_exit_skips_flush(self):
        def serve():
            client = TestClient(self.harvest.app)
            client.post("/open-file", json=body("A"))
            response = client.post("/end-session", json=body("B"))
            self.assertEqual(response.status_code, 500)

        self.harvest.server.run.side_effect = serve

        with self.assertLogs("harvest", level="CRITICAL"):
            code = self.harvest.run()

        self.assertEqual(code, 1)
        self.assertEqual(self.calls, ["monitor.stop", "disconnect"])
        self.assertEqual(self.store.sessions, [])
        self.assertIsInstance(self.harvest.fatal_error, SessionOrderError)
        self.assertTrue(self.harvest.server.should_exit)

    def test_server_error_still_shuts_down(self):
        self.harvest.server.run.side_effect = OSError("address already in use")

        with self.assertRaises(OSError):
            self.harvest.run()

        self.assertEqual(self.calls, ["monitor.stop", "disconnect"])

    def test_second_interrupt_forces_exit(self):
        self.harvest._handle_exit(signal.SIGINT, None)
        self.assertTrue(self.harvest.server.should_exit)
        self.assertFalse(self.harvest.server.force_exit)

        self.harvest._handle_exit(signal.SIGINT, None)
        self.assertTrue(self.harvest.server.force_exit)


SERVE_SCRIPT = textwrap.dedent("""
    import sys
    import threading
    import time

    from harvest.main import HarvestServer
    from harvest.session.models import Event
    from harvest.storage.memory import MemoryStore
    from harvest.tests.fakes import StaticResolver


    class PrintingStore(MemoryStore):
        def save(self, session):
            super().save(session)
            print(f"SAVED {len(self.sessions)}", flush=True)


    harvest = HarvestServer(
        {"development": False, "server": {"host": "127.0.0.1", "port": 0}},
        store=PrintingStore(),
    )
    harvest.engine.resolver = StaticResolver()
    harvest.engine.open_file(Event("nvim-1", path="/repo/main.go"))


    def announce():
        while not harvest.server.started:
            time.sleep(0.01)
        print("READY", flush=True)


    threading.Thread(target=announce, daemon=True).start()
    sys.exit(harvest.run())
""")


@unittest.skipIf(sys.platform == "win32", "needs POSIX signals")
class TestServeProcess(unittest.TestCase):
    def serve_until(self, signum):
        env = dict(os.environ)
        env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(REPO_ROOT), env.get("PYTHONPATH")]))
        proc = subprocess.Popen(
            [sys.executable, "-c", SERVE_SCRIPT],
            cwd=REPO_ROOT,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
        watchdog = threading.Timer(30, proc.kill)
        watchdog.start()
        try:
            ready = proc.stdout.readline().strip()
            self.assertEqual(ready, "READY", proc.stderr.read() if ready == "" else ready)
            proc.send_signal(signum)
            out, err = proc.communicate(timeout=20)
        finally:
            watchdog.cancel()
            if proc.poll() is None:
                proc.kill()
                proc.communicate()
        return proc.returncode, out, err

    def test_sigterm_flushes_the_active_session(self):
        code, out, err = self.serve_until(signal.SIGTERM)

        self.assertEqual(code, 0, err)
        self.assertIn("SAVED 1", out)

    def test_sigint_exits_cleanly(self):
        code, out, err = self.serve_until(signal.SIGINT)

        self.assertEqual(code, 0, err)
        self.assertIn("SAVED 1", out)
        self.assertNotIn("KeyboardInterrupt", err)


if __name__ == '__main__':
    unittest.main()
