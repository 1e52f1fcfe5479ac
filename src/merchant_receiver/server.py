import json
import threading
import time
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Self

from src.utils.crypto import verify_signature
from src.webhook_dispatcher.envelope import EVENT_ID_HEADER, SIGNATURE_HEADER

REQUIRED_FIELDS = ("id", "eventType", "payload", "timestamp")


@dataclass
class _ReceiverState:
    """Behaviour and recorded traffic shared by the handler threads."""

    response_code: int = 200
    response_sequence: list[int] = field(default_factory=list)
    response_delay: float = 0
    secret: str | None = None
    received: list[dict] = field(default_factory=list)
    acknowledged: set[str] = field(default_factory=set)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def next_code(self) -> int:
        if self.response_sequence:
            return self.response_sequence.pop(0)
        return self.response_code


def _is_success(code: int) -> bool:
    return 200 <= code < 300


class _WebhookHandler(BaseHTTPRequestHandler):
    """Accepts signed webhook envelopes the way a merchant backend would."""

    @property
    def state(self) -> _ReceiverState:
        return self.server.state  # type: ignore[attr-defined]

    def _reply(self, code: int, body: dict) -> None:
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.end_headers()
        self.wfile.write(json.dumps(body).encode())

    def _reject(self, raw_body: bytes) -> tuple[int, str] | None:
        try:
            envelope = json.loads(raw_body)
        except ValueError:
            return 400, "invalid JSON"
        missing = [name for name in REQUIRED_FIELDS if name not in envelope]
        if missing:
            return 400, f"missing fields: {missing}"

        # Signatures are checked against the raw bytes, never a re-serialization
        if self.state.secret:
            signature = self.headers.get(SIGNATURE_HEADER, "")
            if not signature:
                return 401, "missing signature"
            if not verify_signature(raw_body, self.state.secret, signature):
                return 401, "invalid signature"
        return None

    def do_POST(self):
        raw_body = self.rfile.read(int(self.headers.get("Content-Length", 0)))
        if self.state.response_delay > 0:
            time.sleep(self.state.response_delay)

        rejection = self._reject(raw_body)
        if rejection is not None:
            code, reason = rejection
            self._reply(code, {"error": reason})
            return

        event_id = self.headers.get(EVENT_ID_HEADER, "")
        with self.state.lock:
            code = self.state.next_code()
            duplicate = event_id in self.state.acknowledged
            self.state.received.append({
                "event_id": event_id,
                "envelope": json.loads(raw_body),
                "raw_body": raw_body,
                "headers": dict(self.headers),
                "response_code": code,
            })
            if _is_success(code) and event_id:
                self.state.acknowledged.add(event_id)

        if not _is_success(code):
            self._reply(code, {"error": "simulated failure"})
        else:
            self._reply(code, {"status": "already_processed" if duplicate else "ok"})

    def log_message(self, format, *args):
        """Keep test output quiet."""


class MerchantWebhookServer:
    """Local merchant endpoint with scripted responses, used by tests and load runs.

    Events are deduplicated by ``X-Webhook-Event-Id``: a redelivery of an
    acknowledged event is answered with ``already_processed`` and recorded,
    but not counted as processed twice.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 0, secret: str | None = None):
        self._address = (host, port)
        self._state = _ReceiverState(secret=secret)
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def set_response_code(self, code: int) -> Self:
        self._state.response_code = code
        return self

    def set_response_sequence(self, codes: list[int]) -> Self:
        """Answer the next requests with ``codes`` in order, then fall back to the response code."""
        with self._state.lock:
            self._state.response_sequence = list(codes)
        return self

    def set_response_delay(self, seconds: float) -> Self:
        self._state.response_delay = seconds
        return self

    def enable_signature_verification(self, secret: str) -> Self:
        self._state.secret = secret
        return self

    def start(self) -> None:
        self._server = ThreadingHTTPServer(self._address, _WebhookHandler)
        self._server.state = self._state  # type: ignore[attr-defined]
        # port=0 binds an ephemeral port
        self._address = self._server.server_address[:2]
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    @property
    def url(self) -> str:
        host, port = self._address
        return f"http://{host}:{port}/webhook"

    @property
    def port(self) -> int:
        return self._address[1]

    def get_received_events(self) -> list[dict]:
        with self._state.lock:
            return list(self._state.received)

    def get_request_count(self) -> int:
        with self._state.lock:
            return len(self._state.received)

    def was_event_processed(self, event_id: str) -> bool:
        with self._state.lock:
            return event_id in self._state.acknowledged

    def clear_events(self) -> None:
        with self._state.lock:
            self._state.received.clear()
            self._state.acknowledged.clear()
