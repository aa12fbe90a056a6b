import json
import logging
import time
import uuid

import sentry_sdk
import zmq

from engine.converter import flush_timing, get_conversion_stats
from engine.fit import ContentBox, Viewport, compute_scale
from engine.scheduler import ThreadedFrameScheduler
from engine.session import AsciiSession
from glyphs.ramps import list_ramps
from security import (
    classify_media,
    validate_settings,
    validate_upload,
    validate_viewport,
)
from sources import UnsupportedMediaError
from video.ingest import probe, probe_image

logger = logging.getLogger(__name__)

# UI-facing setting names → ConversionSettings fields
_SETTING_FIELDS = {"grid_width": "grid_width", "ramp": "ramp_key", "invert": "invert"}


class ZMQServer:
    def __init__(self):
        self.context = zmq.Context()
        self.socket = self.context.socket(zmq.REP)
        self.socket.setsockopt(zmq.MAXMSGSIZE, 1_048_576)  # 1 MB limit
        self.port = self.socket.bind_to_random_port("tcp://127.0.0.1")
        # Dedicated ping socket, never blocked by a slow conversion
        self.ping_socket = self.context.socket(zmq.REP)
        self.ping_socket.setsockopt(zmq.MAXMSGSIZE, 4096)  # 4 KB limit (pings only)
        self.ping_port = self.ping_socket.bind_to_random_port("tcp://127.0.0.1")
        # Auth token required from every local client
        self.token = str(uuid.uuid4())
        self.start_time = time.time()
        self.running = False
        self.last_frame_ms = 0.0
        self.scheduler = ThreadedFrameScheduler()
        self.session = AsciiSession(self.scheduler)

    def reset_state(self):
        """Drop loaded media and restore default settings without closing sockets.

        Used by session-scoped test fixtures to reset between tests
        while keeping the server running.
        """
        self.session.close()
        self.session = AsciiSession(self.scheduler, metrics=self.session.metrics)
        flush_timing()
        self.last_frame_ms = 0.0

    def _validate_token(self, message: dict) -> str | None:
        """Validate auth token. Returns error message or None if valid."""
        msg_token = message.get("_token")
        if msg_token != self.token:
            return "invalid or missing auth token"
        return None

    def _make_ping_response(self, msg_id: str | None) -> dict:
        return {
            "id": msg_id,
            "status": "alive",
            "uptime_s": round(time.time() - self.start_time, 1),
            "last_frame_ms": self.last_frame_ms,
        }

    def handle_message(self, message: dict) -> dict:
        cmd = message.get("cmd")
        msg_id = message.get("id")

        # Auth token required on all commands
        token_err = self._validate_token(message)
        if token_err:
            return {"id": msg_id, "ok": False, "error": token_err}

        if cmd == "ping":
            return self._make_ping_response(msg_id)
        elif cmd == "shutdown":
            self.running = False
            return {"id": msg_id, "ok": True}
        elif cmd == "load":
            return self._handle_load(message, msg_id)
        elif cmd == "convert":
            return self._handle_convert(msg_id)
        elif cmd == "frame":
            return {"id": msg_id, "ok": True, **self.session.snapshot()}
        elif cmd == "settings":
            return self._handle_settings(message, msg_id)
        elif cmd == "toggle_invert":
            settings = self.session.toggle_invert()
            return {"id": msg_id, "ok": True, "settings": settings.to_dict()}
        elif cmd == "toggle_ramp":
            settings = self.session.toggle_ramp()
            return {"id": msg_id, "ok": True, "settings": settings.to_dict()}
        elif cmd == "resize":
            return self._handle_resize(message, msg_id)
        elif cmd == "fit":
            return self._handle_fit(message, msg_id)
        elif cmd == "play":
            return {"id": msg_id, "ok": True, "playing": self.session.play()}
        elif cmd == "pause":
            self.session.pause()
            return {"id": msg_id, "ok": True, "playing": False}
        elif cmd == "list_ramps":
            return {"id": msg_id, "ok": True, "ramps": list_ramps()}
        elif cmd == "stats":
            return {"id": msg_id, "ok": True, "stats": get_conversion_stats()}
        elif cmd == "flush_state":
            flush_timing()
            return {"id": msg_id, "ok": True}
        else:
            return {"id": msg_id, "ok": False, "error": f"unknown: {cmd}"}

    def _handle_load(self, message: dict, msg_id: str | None) -> dict:
        path = message.get("path")
        if not path:
            return {"id": msg_id, "ok": False, "error": "missing path"}

        # SEC-5: Validate upload
        errors = validate_upload(path)
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}

        media_type = classify_media(path)
        result = probe_image(path) if media_type == "image" else probe(path)
        if not result.get("ok"):
            # Bad file: keep whatever was loaded before
            return {"id": msg_id, **result}

        try:
            t0 = time.time()
            loaded = self.session.load(path)
            self.last_frame_ms = round((time.time() - t0) * 1000, 2)
        except UnsupportedMediaError as e:
            return {"id": msg_id, "ok": False, "error": str(e)}
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error("Load handler error: %s", type(e).__name__)
            return {"id": msg_id, "ok": False, "error": "Internal processing error"}

        if not loaded:
            return {"id": msg_id, "ok": False, "error": f"Failed to decode {media_type}"}

        result["id"] = msg_id
        result["playing"] = self.session.playback.is_playing
        return result

    def _handle_convert(self, msg_id: str | None) -> dict:
        try:
            t0 = time.time()
            text = self.session.refresh()
            self.last_frame_ms = round((time.time() - t0) * 1000, 2)
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error("Convert handler error: %s", type(e).__name__)
            return {"id": msg_id, "ok": False, "error": "Internal processing error"}
        snapshot = self.session.snapshot()
        return {"id": msg_id, "ok": True, **snapshot, "text": text}

    def _handle_settings(self, message: dict, msg_id: str | None) -> dict:
        changes = {
            field: message[name] for name, field in _SETTING_FIELDS.items() if name in message
        }
        if not changes:
            return {
                "id": msg_id,
                "ok": True,
                "settings": self.session.settings.snapshot().to_dict(),
            }

        errors = validate_settings(changes)
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}

        try:
            settings = self.session.update_settings(**changes)
        except ValueError as e:
            return {"id": msg_id, "ok": False, "error": str(e)}
        return {"id": msg_id, "ok": True, "settings": settings.to_dict()}

    def _handle_resize(self, message: dict, msg_id: str | None) -> dict:
        width = message.get("width", 0)
        height = message.get("height", 0)
        errors = validate_viewport(width, height)
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}
        self.session.resize(width, height)
        return {"id": msg_id, "ok": True}

    def _handle_fit(self, message: dict, msg_id: str | None) -> dict:
        try:
            content = ContentBox(
                float(message.get("content_width", 0)),
                float(message.get("content_height", 0)),
            )
            viewport = Viewport(
                float(message.get("viewport_width", 0)),
                float(message.get("viewport_height", 0)),
            )
        except (TypeError, ValueError):
            return {"id": msg_id, "ok": False, "error": "fit dimensions must be numbers"}
        return {"id": msg_id, "ok": True, "scale": compute_scale(content, viewport)}

    def run(self):
        self.running = True
        poller = zmq.Poller()
        poller.register(self.socket, zmq.POLLIN)
        poller.register(self.ping_socket, zmq.POLLIN)
        while self.running:
            events = dict(poller.poll(timeout=500))

            # Handle ping socket first (lightweight, never blocked)
            if self.ping_socket in events:
                try:
                    raw = self.ping_socket.recv()
                    message = json.loads(raw)
                    msg_id = message.get("id")
                    token_err = self._validate_token(message)
                    if token_err:
                        self.ping_socket.send_json(
                            {"id": msg_id, "ok": False, "error": token_err}
                        )
                    else:
                        self.ping_socket.send_json(self._make_ping_response(msg_id))
                except json.JSONDecodeError:
                    self.ping_socket.send_json(
                        {"ok": False, "error": "Invalid message format"}
                    )
                except zmq.ZMQError:
                    logger.error("ZMQ error on ping socket")
                    break  # socket state is unrecoverable

            # Handle main command socket
            if self.socket in events:
                try:
                    raw = self.socket.recv()
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    # MUST send reply before next recv (REP protocol)
                    self.socket.send_json(
                        {"ok": False, "error": "Invalid message format"}
                    )
                    continue
                except zmq.ZMQError:
                    logger.error("ZMQ error on main socket")
                    break

                try:
                    response = self.handle_message(message)
                except Exception as e:
                    sentry_sdk.capture_exception(e)
                    logger.error("Unhandled handler error: %s", type(e).__name__)
                    response = {"ok": False, "error": "Internal processing error"}

                self.socket.send_json(response)
        self.close()

    def close(self):
        self.session.close()
        self.scheduler.close()
        self.ping_socket.close()
        self.socket.close()
        self.context.term()
