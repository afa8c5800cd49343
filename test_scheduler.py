"""
Unit tests for debounced triggers and progressive reveal.
"""

import asyncio

from formengine.scheduler import ProgressiveReveal, TriggerQueue, wait_frames


class TestTriggerQueue:
    """Test cases for TriggerQueue."""

    def test_without_loop_names_wait_for_flush(self):
        flushed = []
        queue = TriggerQueue(flushed.append, delay_ms=10)

        queue.queue(['a', 'b'])
        queue.queue(['a', ''])

        assert flushed == []
        assert queue.pending == ['a', 'b']
        assert queue.flush() == ['a', 'b']
        assert flushed == [['a', 'b']]

    def test_flush_with_nothing_pending_skips_callback(self):
        flushed = []
        TriggerQueue(flushed.append).flush()
        assert flushed == []

    def test_discard_drops_pending(self):
        flushed = []
        queue = TriggerQueue(flushed.append)
        queue.queue(['a'])
        queue.discard()
        queue.flush()
        assert flushed == []

    def test_debounce_coalesces_within_window(self):
        async def scenario():
            flushed = []
            queue = TriggerQueue(flushed.append, delay_ms=20)
            queue.queue(['a'])
            await asyncio.sleep(0.005)
            queue.queue(['b'])
            queue.queue(['a'])
            assert flushed == []
            await asyncio.sleep(0.1)
            return flushed

        assert asyncio.run(scenario()) == [['a', 'b']]

    def test_settle_flushes_immediately(self):
        async def scenario():
            flushed = []
            queue = TriggerQueue(flushed.append, delay_ms=1000)
            queue.queue(['x'])
            names = await queue.settle()
            return names, flushed

        names, flushed = asyncio.run(scenario())
        assert names == ['x']
        assert flushed == [['x']]


class TestProgressiveReveal:
    """Test cases for chunked mounting."""

    def test_short_lists_are_fully_visible(self):
        reveal = ProgressiveReveal(10)
        assert reveal.count == 10
        assert reveal.done

    def test_long_lists_grow_by_step(self):
        reveal = ProgressiveReveal(100)
        assert reveal.count == 16
        assert reveal.tick() is True
        assert reveal.count == 40

    def test_ensure_visible_jumps_ahead(self):
        reveal = ProgressiveReveal(100)
        reveal.ensure_visible(90)
        assert reveal.count == 91
        reveal.ensure_visible(5)
        assert reveal.count == 91

    def test_ensure_path_visible(self):
        reveal = ProgressiveReveal(5, threshold=2, first_chunk=1, step=1)
        names = [['title'], None, ['items', 'items.name'], ['notes']]

        assert reveal.ensure_path_visible(names, 'items.0.name') is True
        assert reveal.count == 3
        assert reveal.ensure_path_visible(names, 'unknown') is False

    def test_persisted_count_is_clamped(self):
        assert ProgressiveReveal(10, count=50).count == 10

    def test_run_reveals_everything(self):
        reveal = ProgressiveReveal(100)
        asyncio.run(reveal.run(interval=0))
        assert reveal.done

    def test_wait_frames(self):
        asyncio.run(wait_frames(2, interval=0))
