"""
Scheduling helpers: debounced validation triggers, progressive reveal of large
field lists and frame-paced waiting used by error navigation.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

FRAME_INTERVAL = 1 / 60
DEFAULT_DEBOUNCE_MS = 150
DEFAULT_CHUNK_THRESHOLD = 48
DEFAULT_FIRST_CHUNK = 16
DEFAULT_CHUNK_STEP = 24


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


async def wait_frames(count: int = 1, interval: float = FRAME_INTERVAL) -> None:
    """Yield to the loop for roughly `count` display frames."""
    for _ in range(max(count, 0)):
        await asyncio.sleep(interval)


class TriggerQueue:
    """
    Coalesce validation requests into one debounced flush.

    Queued names accumulate until `delay` passes without new requests, then the
    flush callback receives them once. Outside a running event loop nothing is
    timed: names wait for an explicit flush(), which the owner calls at a point
    that suits it (end of a render pass, before submit).
    """

    def __init__(self, flush_callback: Callable[[List[str]], Any], delay_ms: int = DEFAULT_DEBOUNCE_MS):
        self._flush_callback = flush_callback
        self.delay = delay_ms / 1000.0
        self._pending: Dict[str, None] = {}
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> List[str]:
        return list(self._pending)

    def queue(self, names: Iterable[str]) -> None:
        for name in names:
            if name:
                self._pending[name] = None

        loop = _running_loop()
        if loop is None:
            return
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self.delay, self.flush)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def discard(self) -> None:
        """Drop queued names without validating them."""
        self.cancel()
        self._pending.clear()

    def flush(self) -> List[str]:
        """Run the callback now with everything queued so far."""
        self.cancel()
        names = list(self._pending)
        self._pending.clear()
        if names:
            logger.debug(f"Flushing {len(names)} queued validation trigger(s)")
            self._flush_callback(names)
        return names

    async def settle(self) -> List[str]:
        """Flush pending triggers and give scheduled callbacks a turn."""
        names = self.flush()
        await asyncio.sleep(0)
        return names


class ProgressiveReveal:
    """
    Chunked mounting of a long list of items.

    Lists longer than `threshold` start with `first_chunk` items and grow by `step`
    on each idle tick. ensure_visible() jumps straight to a given index, taking
    priority over the idle schedule.
    """

    def __init__(self, total: int, threshold: int = DEFAULT_CHUNK_THRESHOLD,
                 first_chunk: int = DEFAULT_FIRST_CHUNK, step: int = DEFAULT_CHUNK_STEP,
                 count: Optional[int] = None):
        self.total = total
        self.step = step
        self.needs_chunking = total > threshold
        if count is not None:
            self.count = min(max(count, 0), total)
        else:
            self.count = min(first_chunk, total) if self.needs_chunking else total

    @property
    def done(self) -> bool:
        return self.count >= self.total

    def tick(self) -> bool:
        """Reveal the next chunk; returns True while items remain hidden."""
        if not self.done:
            self.count = min(self.count + self.step, self.total)
        return not self.done

    def ensure_visible(self, index: int) -> None:
        if index >= self.count:
            self.count = min(index + 1, self.total)

    def ensure_path_visible(self, names: Sequence[Optional[Sequence[str]]], path: str) -> bool:
        """
        Reveal the item whose field names contain `path`.

        Args:
            names: Per item, the field names it renders (None for items without fields)
            path: Field path that must become mounted

        Returns:
            True if a matching item was found
        """
        for index, item_names in enumerate(names):
            for name in item_names or ():
                if path == name or path.startswith(name + ".") or path.endswith("." + name):
                    self.ensure_visible(index)
                    return True
        return False

    async def run(self, interval: float = FRAME_INTERVAL) -> None:
        while self.tick():
            await asyncio.sleep(interval)
