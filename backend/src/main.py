import os
import platform
import sys
from pathlib import Path

import sentry_sdk

from _version import __version__
from diagnostics import init_diagnostics
from security import strip_pii
from zmq_server import ZMQServer

CONSENT_PATH = "~/.glyphcast/telemetry_consent"

# SEC-9: Resource limits (Linux/macOS only). Decoded 4K RGBA frames are ~33 MB.
MAX_MEMORY_BYTES = 2 * 1024 * 1024 * 1024  # 2 GB


def init_sentry():
    """Consent-gated Sentry init. Without consent the DSN stays empty (no-op client)."""
    consent_path = os.path.expanduser(CONSENT_PATH)
    dsn = ""
    if os.path.exists(consent_path) and Path(consent_path).read_text().strip() == "yes":
        dsn = os.environ.get("SENTRY_DSN", "")

    sentry_sdk.init(
        dsn=dsn,
        release=f"glyphcast@{__version__}",
        environment=os.environ.get("SENTRY_ENV", "development"),
        traces_sample_rate=0.1,
        before_send=strip_pii,
        max_breadcrumbs=50,
    )


def _apply_resource_limits():
    """Apply SEC-9 memory limits. Skipped on Windows."""
    if platform.system() == "Windows":
        return
    try:
        import resource

        soft, hard = resource.getrlimit(resource.RLIMIT_AS)
        resource.setrlimit(resource.RLIMIT_AS, (MAX_MEMORY_BYTES, hard))
    except (ImportError, ValueError, OSError):
        print("WARNING: Could not set memory limit (SEC-9)", file=sys.stderr)


def main():
    init_sentry()
    init_diagnostics()
    _apply_resource_limits()
    server = ZMQServer()
    print(f"ZMQ_PORT={server.port}", flush=True)
    print(f"ZMQ_PING_PORT={server.ping_port}", flush=True)
    print(f"ZMQ_TOKEN={server.token}", flush=True)
    print(f"TICK_HZ={server.scheduler.fps}", flush=True)
    server.run()


if __name__ == "__main__":
    main()
