"""Off-thread rendering for a single view and consumer-side supersession."""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from typing import Callable, Iterator, Optional

import numpy as np

from .config import EngineConfig
from .protocol import Bitmap, Chunk, Done, RenderError, RenderPayload, RenderRequest, RenderResponse, is_terminal
from .scheduler import RenderScheduler

logger = logging.getLogger(__name__)

_STOP = object()


class RenderWorker:
    """A single background thread that renders the newest submitted payload.

    Responses go to ``on_response`` when given (called on the worker
    thread), otherwise into a queue read with :meth:`get`.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        on_response: Optional[Callable[[RenderResponse], None]] = None,
        scheduler: Optional[RenderScheduler] = None,
    ):
        self.scheduler = scheduler or RenderScheduler(config)
        self._on_response = on_response
        self._requests: queue.Queue = queue.Queue()
        self._responses: queue.Queue = queue.Queue()
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()
        self._closed = False
        self._thread = threading.Thread(target=self._run, name="fractal-render", daemon=True)
        self._thread.start()

    def submit(self, payload: RenderPayload) -> RenderRequest:
        """Queue ``payload`` under a fresh id, superseding everything before it."""

        if self._closed:
            raise RuntimeError("render worker is closed")
        with self._id_lock:
            request = RenderRequest(next(self._ids), payload)
            self.scheduler.supersede(request.id)
        self._requests.put(request)
        return request

    def get(self, timeout: Optional[float] = None) -> RenderResponse:
        return self._responses.get(timeout=timeout)

    def responses(self, timeout: Optional[float] = None) -> Iterator[RenderResponse]:
        """Yield queued responses up to the terminal one of the newest request."""

        while True:
            response = self.get(timeout)
            yield response
            if is_terminal(response) and response.id >= self.scheduler.latest_id:
                return

    def render(self, payload: RenderPayload, compositor: Optional["FrameCompositor"] = None) -> "FrameCompositor":
        """Submit ``payload`` and block until its terminal response has been composited."""

        if self._on_response is not None:
            raise RuntimeError("render() needs the internal response queue")
        compositor = compositor or FrameCompositor()
        request = self.submit(payload)
        compositor.begin(request)
        for response in self.responses():
            compositor.apply(response)
        return compositor

    def close(self, timeout: Optional[float] = None) -> None:
        if self._closed:
            return
        self._closed = True
        self._requests.put(_STOP)
        self._thread.join(timeout)

    def __enter__(self) -> "RenderWorker":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _newest(self, request: RenderRequest) -> Optional[RenderRequest]:
        while True:
            try:
                item = self._requests.get_nowait()
            except queue.Empty:
                return request
            if item is _STOP:
                self._requests.put(_STOP)
                return None
            request = item

    def _run(self) -> None:
        while True:
            item = self._requests.get()
            if item is _STOP:
                return
            request = self._newest(item)
            if request is None:
                return
            try:
                for response in self.scheduler.render(request):
                    self._emit(response)
            except Exception as exc:
                logger.exception("Render worker failed on request %d", request.id)
                self._emit(RenderError(request.id, f"{type(exc).__name__}: {exc}"))

    def _emit(self, response: RenderResponse) -> None:
        if self._on_response is None:
            self._responses.put(response)
            return
        try:
            self._on_response(response)
        except Exception:
            logger.exception("Response callback failed for request %d", response.id)


class FrameCompositor:
    """Assembles responses into an RGBA frame, ignoring superseded requests.

    Only responses carrying the latest id are applied. Seeing a response with
    a newer id than any known one makes that id the latest, so once any
    message of request ``n`` has been observed nothing older is applied.
    """

    def __init__(self) -> None:
        self.latest_id = 0
        self.frame: Optional[np.ndarray] = None
        self.complete = False
        self.elapsed_ms: Optional[float] = None
        self.error: Optional[str] = None
        self.warnings: tuple[str, ...] = ()

    def begin(self, request: RenderRequest) -> None:
        if request.id < self.latest_id:
            return
        self._advance(request.id)
        shape = (request.payload.height, request.payload.width, 4)
        if self.frame is None or self.frame.shape != shape:
            self.frame = np.zeros(shape, dtype=np.uint8)

    def _advance(self, request_id: int) -> None:
        self.latest_id = request_id
        self.complete = False
        self.elapsed_ms = None
        self.error = None
        self.warnings = ()

    def apply(self, response: RenderResponse) -> bool:
        """Apply ``response`` if it belongs to the latest request; return whether it did."""

        if response.id < self.latest_id:
            return False
        if response.id > self.latest_id:
            self._advance(response.id)

        if isinstance(response, Chunk):
            self._paste(response)
        elif isinstance(response, Bitmap):
            self.frame = np.array(response.pixels, dtype=np.uint8, copy=True)
            self._finish(response.elapsed_ms, response.warnings)
        elif isinstance(response, Done):
            self._finish(response.elapsed_ms, response.warnings)
        elif isinstance(response, RenderError):
            self.error = response.message
            self.complete = True
        return True

    def _finish(self, elapsed_ms: float, warnings: tuple[str, ...]) -> None:
        self.elapsed_ms = elapsed_ms
        self.warnings = warnings
        self.complete = True

    def _paste(self, chunk: Chunk) -> None:
        end = chunk.start_y + chunk.rows
        frame = self.frame
        if frame is None or frame.shape[1] != chunk.width or frame.shape[0] < end:
            height = end if frame is None or frame.shape[1] != chunk.width else max(frame.shape[0], end)
            grown = np.zeros((height, chunk.width, 4), dtype=np.uint8)
            if frame is not None and frame.shape[1] == chunk.width:
                grown[: frame.shape[0]] = frame
            self.frame = frame = grown
        frame[chunk.start_y:end] = chunk.pixels.reshape(chunk.rows, chunk.width, 4)
