import shutil
import threading
import time
import uuid
from pathlib import Path

import av
import numpy as np
import pytest
import zmq
from PIL import Image

from engine.fit import TextMetrics
from engine.scheduler import FrameScheduler
from zmq_server import ZMQServer


class ManualFrameScheduler(FrameScheduler):
    """Deterministic frame-tick stub: callbacks run only when tick() is called.

    Tracks the peak number of outstanding callbacks so tests can assert the
    single-pending-callback invariant.
    """

    def __init__(self):
        self._pending: dict[int, object] = {}
        self._next = 1
        self.requests = 0
        self.cancels = 0
        self.max_pending = 0
        self.now = 0.0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def request(self, callback) -> int:
        handle = self._next
        self._next += 1
        self._pending[handle] = callback
        self.requests += 1
        self.max_pending = max(self.max_pending, len(self._pending))
        return handle

    def cancel(self, handle) -> None:
        if handle in self._pending:
            del self._pending[handle]
            self.cancels += 1

    def tick(self, count: int = 1) -> int:
        """Run `count` frame ticks. Returns the number of callbacks run."""
        ran = 0
        for _ in range(count):
            self.now += 1 / 60
            batch, self._pending = self._pending, {}
            for handle in sorted(batch):
                batch[handle](self.now)
                ran += 1
        return ran


class FakeClock:
    """Manually advanced monotonic time source."""

    def __init__(self, start: float = 100.0):
        self.t = start

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float):
        self.t += seconds


@pytest.fixture
def scheduler():
    return ManualFrameScheduler()


@pytest.fixture
def fake_time():
    return FakeClock()


@pytest.fixture
def metrics():
    """Fixed glyph cell so content boxes don't depend on installed fonts."""
    return TextMetrics(char_width=7.0, line_height=12.0)


def _wait_for_server(srv: ZMQServer, timeout: float = 2.0) -> bool:
    """Ping the server until it responds or timeout expires."""
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.setsockopt(zmq.LINGER, 0)
    sock.setsockopt(zmq.RCVTIMEO, 500)
    sock.connect(f"tcp://127.0.0.1:{srv.port}")
    deadline = time.monotonic() + timeout
    alive = False
    while time.monotonic() < deadline:
        try:
            sock.send_json({"cmd": "ping", "id": "health", "_token": srv.token})
            resp = sock.recv_json()
            if resp.get("status") == "alive":
                alive = True
                break
        except zmq.Again:
            time.sleep(0.05)
    sock.close()
    ctx.term()
    return alive


@pytest.fixture(scope="session")
def _zmq_server_session():
    """Start ONE ZMQ server per test session."""
    srv = ZMQServer()
    thread = threading.Thread(target=srv.run, daemon=True)
    thread.start()
    if not _wait_for_server(srv):
        pytest.skip("ZMQ server failed to start within 2s")
    yield srv
    srv.running = False
    # Wait for poller timeout cycle to complete
    time.sleep(0.6)


@pytest.fixture
def zmq_server(_zmq_server_session):
    """Function-scoped wrapper: resets state between tests, shares session server."""
    _zmq_server_session.reset_state()
    _zmq_server_session.running = True
    yield _zmq_server_session


@pytest.fixture
def zmq_server_disposable():
    """Disposable server for shutdown tests that destroy sockets/context."""
    srv = ZMQServer()
    thread = threading.Thread(target=srv.run, daemon=True)
    thread.start()
    if not _wait_for_server(srv):
        pytest.skip("ZMQ server failed to start within 2s")
    yield srv
    srv.running = False
    time.sleep(0.6)


class AuthenticatedZmqClient:
    """Wraps a ZMQ REQ socket and auto-injects the auth token."""

    def __init__(self, sock: zmq.Socket, token: str):
        self._sock = sock
        self._token = token

    def send_json(self, msg: dict) -> None:
        msg["_token"] = self._token
        self._sock.send_json(msg)

    def recv_json(self) -> dict:
        return self._sock.recv_json()

    def request(self, msg: dict) -> dict:
        msg.setdefault("id", str(uuid.uuid4()))
        self.send_json(msg)
        return self.recv_json()

    def close(self) -> None:
        self._sock.close()


@pytest.fixture
def zmq_client(zmq_server):
    """REQ socket connected to the test server (auto-injects auth token)."""
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.connect(f"tcp://127.0.0.1:{zmq_server.port}")
    client = AuthenticatedZmqClient(sock, zmq_server.token)
    yield client
    sock.close()
    ctx.term()


@pytest.fixture
def zmq_ping_client(zmq_server):
    """REQ socket connected to the test server's ping port."""
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.connect(f"tcp://127.0.0.1:{zmq_server.ping_port}")
    client = AuthenticatedZmqClient(sock, zmq_server.token)
    yield client
    sock.close()
    ctx.term()


def _fixture_dir() -> Path:
    # Under ~/ because validate_upload only accepts paths in the home directory
    d = Path.home() / ".cache" / "glyphcast" / "test-fixtures"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(scope="session")
def synthetic_video_path():
    """Synthetic 2s 320x240 @ 30fps video whose brightness rises per frame."""
    path = str(_fixture_dir() / f"test_{uuid.uuid4().hex[:8]}.mp4")

    container = av.open(path, mode="w")
    stream = container.add_stream("libx264", rate=30)
    stream.width = 320
    stream.height = 240
    stream.pix_fmt = "yuv420p"
    for i in range(60):
        frame = np.zeros((240, 320, 3), dtype=np.uint8)
        frame[:, :, :] = int(255 * i / 59)
        vf = av.VideoFrame.from_ndarray(frame, format="rgb24")
        for pkt in stream.encode(vf):
            container.mux(pkt)
    for pkt in stream.encode():
        container.mux(pkt)
    container.close()

    yield path
    Path(path).unlink(missing_ok=True)


@pytest.fixture(scope="session")
def synthetic_image_path():
    """200x100 RGBA PNG: left half white, right half fully transparent."""
    path = _fixture_dir() / f"test_{uuid.uuid4().hex[:8]}.png"
    pixels = np.zeros((100, 200, 4), dtype=np.uint8)
    pixels[:, :100] = (255, 255, 255, 255)
    Image.fromarray(pixels).save(path)
    yield str(path)
    path.unlink(missing_ok=True)


@pytest.fixture
def home_tmp_path():
    """tmp_path equivalent under ~/ for tests that go through validate_upload."""
    base = Path.home() / ".cache" / "glyphcast" / "test-tmp"
    base.mkdir(parents=True, exist_ok=True)
    d = base / f"test_{uuid.uuid4().hex[:8]}"
    d.mkdir()
    yield d
    shutil.rmtree(d, ignore_errors=True)
