"""Tests for weaver.replay.controller — playback state machine and timer."""

import asyncio

import pytest

from weaver.market.models import Candle, Timeframe
from weaver.market.synthetic import make_rng
from weaver.replay.controller import PlaybackMode, ReplayController


def _hourly(n: int) -> list[Candle]:
    return [
        Candle(1_704_067_200 + i * 3600, 1.1, 1.1 + 0.001, 1.1 - 0.001, 1.1 + (i % 3) * 0.0002, 100.0)
        for i in range(n)
    ]


def _make_controller(n: int = 100, **kwargs) -> ReplayController:
    return ReplayController(_hourly(n), rng=make_rng(42), **kwargs)


# ── State machine ────────────────────────────────────────────────────────


class TestIdle:
    def test_idle_shows_history(self):
        ctrl = _make_controller(10)
        assert ctrl.mode is PlaybackMode.IDLE
        assert len(ctrl.visible_candles) == 10
        assert ctrl.is_live is False
        assert ctrl.progress == 100.0

    def test_idle_prefers_external_candles(self):
        ctrl = _make_controller(10)
        live = _hourly(3)
        ctrl.set_external(live)
        assert ctrl.visible_candles == live

    def test_play_without_history_is_ignored(self):
        ctrl = ReplayController()
        ctrl.play()
        assert ctrl.mode is PlaybackMode.IDLE


class TestManualTicks:
    """Without a running loop, play() sets the mode and tick() drives playback."""

    def test_play_starts_at_first_bar(self):
        ctrl = _make_controller()
        ctrl.play()
        assert ctrl.mode is PlaybackMode.PLAYING
        assert ctrl.cursor_index == 0
        assert len(ctrl.visible_candles) == 1
        assert ctrl.timer_task is None

    def test_monotonic_ticks(self):
        ctrl = _make_controller()
        ctrl.play()
        for n in range(1, 11):
            ctrl.tick()
            assert ctrl.cursor_index == n
            assert len(ctrl.visible_candles) == ctrl.cursor_index + 1

    def test_ticks_past_history_generate_synthetic_bars(self):
        ctrl = _make_controller(3)
        ctrl.play()
        for _ in range(5):
            ctrl.tick()
        assert ctrl.cursor_index == 5
        assert ctrl.synthetic_count == 3
        assert ctrl.is_live is True
        assert ctrl.progress == 100.0
        visible = ctrl.visible_candles
        assert len(visible) == 6
        assert all(b.time - a.time == 3600 for a, b in zip(visible, visible[1:]))

    def test_sub_hour_timeframe_keeps_history_spacing(self):
        ctrl = _make_controller(5, timeframe="1M")
        ctrl.step_forward()
        ctrl.step_forward(7)
        visible = ctrl.visible_candles
        assert ctrl.synthetic_count == 3
        assert all(b.time - a.time == 3600 for a, b in zip(visible, visible[1:]))

    def test_session_gap_does_not_stretch_synthetic_bars(self):
        history = _hourly(6)
        last = history[-1]
        history.append(Candle(last.time + 64 * 3600, 1.1, 1.101, 1.099, 1.1, 100.0))
        ctrl = ReplayController(history, timeframe="15M", rng=make_rng(1))
        ctrl.seek(len(history) - 1)
        ctrl.step_forward(2)
        synthetic = ctrl.visible_candles[-3:]
        assert [b.time - a.time for a, b in zip(synthetic, synthetic[1:])] == [3600, 3600]

    def test_aggregated_timeframe_uses_nominal_spacing(self):
        ctrl = _make_controller(8, timeframe="4H")
        ctrl.step_forward()
        ctrl.step_forward(3)
        visible = ctrl.visible_candles
        assert ctrl.synthetic_count == 2
        assert visible[-1].time - visible[-2].time == 4 * 3600

    def test_tick_while_idle_does_nothing(self):
        ctrl = _make_controller()
        ctrl.tick()
        assert ctrl.cursor_index == 0
        assert ctrl.mode is PlaybackMode.IDLE

    def test_pause_and_resume_keep_cursor(self):
        ctrl = _make_controller()
        ctrl.play()
        ctrl.tick()
        ctrl.tick()
        ctrl.pause()
        assert ctrl.mode is PlaybackMode.PAUSED
        ctrl.play()
        assert ctrl.cursor_index == 2


class TestStepping:
    def test_step_forward_from_idle_enters_paused_at_start(self):
        ctrl = _make_controller()
        ctrl.step_forward(5)
        assert ctrl.mode is PlaybackMode.PAUSED
        assert ctrl.cursor_index == 0

    def test_step_backward_clamps(self):
        ctrl = _make_controller()
        ctrl.seek(3)
        ctrl.step_backward(10)
        assert ctrl.cursor_index == 0

    def test_step_back_keeps_synthetic_cache(self):
        ctrl = _make_controller(3)
        ctrl.step_forward()
        ctrl.step_forward(5)
        before = ctrl.visible_candles
        ctrl.step_backward(2)
        ctrl.step_forward(2)
        assert ctrl.visible_candles == before

    def test_progress(self):
        ctrl = _make_controller(100)
        ctrl.seek(49)
        assert ctrl.progress == pytest.approx(50.0)


class TestSeek:
    def test_seek_five(self):
        ctrl = _make_controller(100)
        ctrl.seek(5)
        assert len(ctrl.visible_candles) == 6
        assert ctrl.is_live is False

    def test_seek_after_synthetic_generation(self):
        ctrl = _make_controller(100)
        ctrl.seek(99)
        ctrl.step_forward(10)
        assert ctrl.is_live is True
        ctrl.seek(5)
        assert len(ctrl.visible_candles) == 6
        assert ctrl.is_live is False
        assert ctrl.synthetic_count == 0

    def test_seek_clamps(self):
        ctrl = _make_controller(10)
        ctrl.seek(500)
        assert ctrl.cursor_index == 9
        ctrl.seek(-3)
        assert ctrl.cursor_index == 0


class TestResetAndSettings:
    def test_reset_returns_to_idle(self):
        ctrl = _make_controller(3)
        ctrl.play()
        for _ in range(4):
            ctrl.tick()
        ctrl.reset()
        assert ctrl.mode is PlaybackMode.IDLE
        assert ctrl.cursor_index == 0
        assert ctrl.synthetic_count == 0

    def test_timeframe_switch_restarts_paused(self):
        ctrl = _make_controller(100)
        ctrl.seek(40)
        ctrl.set_timeframe("4H")
        assert ctrl.timeframe is Timeframe.H4
        assert ctrl.historical_length == 25
        assert ctrl.mode is PlaybackMode.PAUSED
        assert ctrl.cursor_index == 0

    def test_timeframe_switch_while_idle_stays_idle(self):
        ctrl = _make_controller(48)
        ctrl.set_timeframe(Timeframe.D1)
        assert ctrl.mode is PlaybackMode.IDLE
        assert len(ctrl.visible_candles) == 2

    def test_unknown_timeframe(self):
        with pytest.raises(ValueError):
            _make_controller().set_timeframe("3H")

    def test_speed_validation(self):
        ctrl = _make_controller(base_interval=1.0)
        ctrl.set_speed(4)
        assert ctrl.tick_interval == pytest.approx(0.25)
        with pytest.raises(ValueError):
            ctrl.set_speed(3.0)

    def test_listener_receives_visible_candles(self):
        ctrl = _make_controller()
        seen: list[int] = []
        ctrl.add_listener(lambda candles: seen.append(len(candles)))
        ctrl.play()
        ctrl.tick()
        ctrl.seek(9)
        assert seen == [1, 2, 10]


# ── Timer ────────────────────────────────────────────────────────────────


class TestTimer:
    @pytest.mark.asyncio
    async def test_timer_advances_one_bar_per_interval(self):
        holder: list[ReplayController] = []
        delays: list[float] = []

        async def fake_sleep(delay: float) -> None:
            delays.append(delay)
            if len(delays) > 5:
                holder[0].pause()
            await asyncio.sleep(0)

        ctrl = _make_controller(3, base_interval=2.0, sleep=fake_sleep)
        holder.append(ctrl)
        ctrl.set_speed(2.0)
        ctrl.play()
        task = ctrl.timer_task
        assert task is not None
        await task
        assert ctrl.cursor_index == 5
        assert ctrl.synthetic_count == 3
        assert len(ctrl.visible_candles) == 6
        assert delays == [1.0] * 6

    @pytest.mark.asyncio
    async def test_reset_cancels_pending_tick(self):
        gate = asyncio.Event()

        async def blocked_sleep(_delay: float) -> None:
            await gate.wait()

        ctrl = _make_controller(sleep=blocked_sleep)
        ctrl.play()
        task = ctrl.timer_task
        await asyncio.sleep(0)
        ctrl.reset()
        gate.set()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert ctrl.mode is PlaybackMode.IDLE
        assert ctrl.cursor_index == 0

    @pytest.mark.asyncio
    async def test_speed_change_restarts_timer(self):
        gate = asyncio.Event()

        async def blocked_sleep(_delay: float) -> None:
            await gate.wait()

        ctrl = _make_controller(sleep=blocked_sleep)
        ctrl.play()
        first = ctrl.timer_task
        ctrl.set_speed(8)
        second = ctrl.timer_task
        assert second is not first
        await ctrl.stop()
        assert ctrl.mode is PlaybackMode.PAUSED
        assert first.cancelled() or first.done()
