"""Replay controller — speed-controlled playback over historical candles.

State machine::

    idle --play()--> playing --pause()--> paused --play()--> playing
    playing/paused --reset()--> idle
    step_forward/step_backward/seek from idle --> paused

While playing, a single asyncio task advances the cursor one bar every
``base_interval / speed`` seconds.  Each tick runs synchronously to
completion, listeners included, before the task sleeps again, so ticks
never overlap.  ``pause()``/``reset()`` cancel the task before touching
any other state.

Once the cursor passes the last historical bar, synthetic bars are
generated and cached so stepping back and forth shows the same bars.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

import numpy as np

from weaver.market.aggregator import aggregate_candles, aggregation_multiplier
from weaver.market.models import Candle, Timeframe
from weaver.market.synthetic import extend_history, make_rng

logger = logging.getLogger("weaver.replay")

PLAYBACK_SPEEDS: tuple[float, ...] = (0.5, 1.0, 2.0, 4.0, 8.0)
BAR_SPACING_WINDOW = 20

CandleListener = Callable[[list[Candle]], None]


class PlaybackMode(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class ReplayController:
    """Owns the playback cursor over one historical candle series.

    Args:
        base_candles: Base-resolution (hourly) history to replay.
        timeframe: Initial display timeframe.
        base_interval: Tick period in seconds at speed 1.
        rng: Random generator for synthetic bars (seed it for tests).
        sleep: Awaitable sleep used by the timer (injectable for tests).
    """

    def __init__(
        self,
        base_candles: Optional[list[Candle]] = None,
        timeframe: "Timeframe | str" = Timeframe.H1,
        base_interval: float = 1.0,
        rng: Optional[np.random.Generator] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._base: list[Candle] = list(base_candles or [])
        self._timeframe = Timeframe.parse(timeframe)
        self._historical: list[Candle] = aggregate_candles(self._base, self._timeframe)
        self._external: list[Candle] = []
        self._synthetic: list[Candle] = []
        self._mode = PlaybackMode.IDLE
        self._cursor = 0
        self._speed = 1.0
        self._base_interval = base_interval
        self._rng = rng if rng is not None else make_rng()
        self._sleep = sleep
        self._timer: Optional[asyncio.Task] = None
        self._listeners: list[CandleListener] = []

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def mode(self) -> PlaybackMode:
        return self._mode

    @property
    def cursor_index(self) -> int:
        return self._cursor

    @property
    def timeframe(self) -> Timeframe:
        return self._timeframe

    @property
    def speed(self) -> float:
        return self._speed

    @property
    def tick_interval(self) -> float:
        """Seconds between timer ticks at the current speed."""
        return self._base_interval / self._speed

    @property
    def historical(self) -> list[Candle]:
        """History aggregated to the current timeframe."""
        return list(self._historical)

    @property
    def historical_length(self) -> int:
        return len(self._historical)

    @property
    def synthetic_count(self) -> int:
        """Synthetic bars currently cached."""
        return len(self._synthetic)

    @property
    def is_live(self) -> bool:
        """``True`` while the cursor sits on a synthetic bar."""
        return self._mode is not PlaybackMode.IDLE and self._cursor >= len(self._historical)

    @property
    def has_external(self) -> bool:
        return bool(self._external)

    @property
    def timer_task(self) -> Optional[asyncio.Task]:
        return self._timer

    @property
    def visible_candles(self) -> list[Candle]:
        """Bars on screen: ``cursor + 1`` bars while replaying.

        When idle this is the externally supplied live set, or the whole
        history when there is none.
        """
        if self._mode is PlaybackMode.IDLE:
            return list(self._external or self._historical)
        h = len(self._historical)
        if self._cursor < h:
            return self._historical[: self._cursor + 1]
        return self._historical + self._synthetic[: self._cursor - h + 1]

    @property
    def current_candle(self) -> Optional[Candle]:
        visible = self.visible_candles
        return visible[-1] if visible else None

    @property
    def progress(self) -> float:
        """Replay progress in percent, capped at 100."""
        h = len(self._historical)
        if self._mode is PlaybackMode.IDLE or h == 0 or self.is_live:
            return 100.0
        return min((self._cursor + 1) / h * 100.0, 100.0)

    def to_dict(self) -> dict:
        return {
            "mode": self._mode.value,
            "cursor_index": self._cursor,
            "timeframe": self._timeframe.value,
            "speed": self._speed,
            "is_live": self.is_live,
            "progress": self.progress,
            "historical_length": len(self._historical),
            "synthetic_count": len(self._synthetic),
            "visible_count": len(self.visible_candles),
        }

    # ── Listeners ────────────────────────────────────────────────────────

    def add_listener(self, listener: CandleListener) -> None:
        """Call *listener* with the visible bars after every transition."""
        self._listeners.append(listener)

    def _notify(self) -> None:
        visible = self.visible_candles
        for listener in list(self._listeners):
            listener(visible)

    # ── Data ─────────────────────────────────────────────────────────────

    def load_history(self, base_candles: list[Candle]) -> None:
        """Replace the replay history.  An active replay restarts paused at 0."""
        self._base = list(base_candles)
        self._historical = aggregate_candles(self._base, self._timeframe)
        self._synthetic = []
        if self._mode is not PlaybackMode.IDLE:
            self._cancel_timer()
            self._mode = PlaybackMode.PAUSED
            self._cursor = 0
        self._notify()

    def set_external(self, candles: list[Candle]) -> None:
        """Set the live (non-replay) bars shown while idle."""
        self._external = list(candles)
        if self._mode is PlaybackMode.IDLE:
            self._notify()

    # ── Timer ────────────────────────────────────────────────────────────

    def _start_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop: the caller drives playback with tick().
            return
        self._timer = loop.create_task(self._run_timer())

    def _cancel_timer(self) -> None:
        task = self._timer
        self._timer = None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    async def _run_timer(self) -> None:
        me = _current_task()
        while self._mode is PlaybackMode.PLAYING and self._timer is me:
            await self._sleep(self.tick_interval)
            if self._mode is not PlaybackMode.PLAYING or self._timer is not me:
                break
            try:
                self.tick()
            except Exception as exc:
                logger.error("Replay tick error at cursor %d: %s", self._cursor, exc)

    async def stop(self) -> None:
        """Pause playback and wait for the timer task to finish."""
        task = self._timer
        self.pause()
        if task is not None and task is not _current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ── Cursor movement ──────────────────────────────────────────────────

    def _enter_paused_at_start(self) -> None:
        self._mode = PlaybackMode.PAUSED
        self._cursor = 0
        self._synthetic = []

    def _bar_seconds(self) -> int:
        """Spacing of synthetic bars.

        Timeframes at or below the base resolution pass base bars through
        unchanged, so the smallest gap among the trailing bars is used
        there instead of the nominal timeframe length.  Session gaps such as
        weekends are ignored.
        """
        if aggregation_multiplier(self._timeframe) == 1:
            tail = self._historical[-BAR_SPACING_WINDOW:]
            gaps = [b.time - a.time for a, b in zip(tail, tail[1:]) if b.time > a.time]
            if gaps:
                return min(gaps)
        return self._timeframe.seconds

    def _advance(self, n: int) -> None:
        target = self._cursor + n
        h = len(self._historical)
        needed = target - h + 1 - len(self._synthetic)
        if needed > 0:
            self._synthetic.extend(extend_history(
                self._historical + self._synthetic, needed,
                self._bar_seconds(), self._rng,
            ))
            logger.debug("Generated synthetic bars up to %d", len(self._synthetic))
        self._cursor = target

    def tick(self) -> None:
        """Advance one bar; the timer's step."""
        if self._mode is PlaybackMode.IDLE or not self._historical:
            return
        self._advance(1)
        self._notify()

    def play(self) -> None:
        """Start or resume playback.  From idle, begins at the first bar."""
        if not self._historical:
            logger.info("No history loaded; play ignored")
            return
        if self._mode is PlaybackMode.PLAYING:
            return
        if self._mode is PlaybackMode.IDLE:
            self._cursor = 0
            self._synthetic = []
        self._mode = PlaybackMode.PLAYING
        logger.info("Replay playing at %.1fx from bar %d", self._speed, self._cursor)
        self._start_timer()
        self._notify()

    def pause(self) -> None:
        self._cancel_timer()
        if self._mode is PlaybackMode.PLAYING:
            self._mode = PlaybackMode.PAUSED
            logger.info("Replay paused at bar %d", self._cursor)

    def step_forward(self, n: int = 1) -> None:
        """Advance *n* bars, generating synthetic bars past the history.

        From idle this only enters paused mode on the first bar.
        """
        if not self._historical:
            return
        if self._mode is PlaybackMode.IDLE:
            self._enter_paused_at_start()
        elif n > 0:
            self._advance(n)
        self._notify()

    def step_backward(self, n: int = 1) -> None:
        """Retreat *n* bars, clamped at the first bar.

        Cached synthetic bars are kept for the next step forward.
        """
        if not self._historical:
            return
        if self._mode is PlaybackMode.IDLE:
            self._enter_paused_at_start()
        elif n > 0:
            self._cursor = max(0, self._cursor - n)
        self._notify()

    def seek(self, index: int) -> None:
        """Jump to bar *index*, clamped to the history; drops synthetic bars."""
        if not self._historical:
            return
        if self._mode is PlaybackMode.IDLE:
            self._mode = PlaybackMode.PAUSED
        self._cursor = max(0, min(index, len(self._historical) - 1))
        self._synthetic = []
        self._notify()

    def reset(self) -> None:
        """Stop playback and return to the idle (live) view."""
        self._cancel_timer()
        self._mode = PlaybackMode.IDLE
        self._cursor = 0
        self._synthetic = []
        logger.info("Replay reset")
        self._notify()

    # ── Settings ─────────────────────────────────────────────────────────

    def set_timeframe(self, timeframe: "Timeframe | str") -> None:
        """Switch timeframe, re-aggregating the history.

        An active replay cannot keep its cursor across resolutions, so it
        restarts paused at bar 0.  Idle mode is left unchanged.

        Raises ``ValueError`` for an unknown timeframe.
        """
        tf = Timeframe.parse(timeframe)
        if tf is self._timeframe:
            return
        self._timeframe = tf
        self._historical = aggregate_candles(self._base, tf)
        if self._mode is not PlaybackMode.IDLE:
            self._cancel_timer()
            self._enter_paused_at_start()
        logger.info("Timeframe set to %s (%d bars)", tf.value, len(self._historical))
        self._notify()

    def set_speed(self, speed: float) -> None:
        """Set the playback speed multiplier.

        Raises ``ValueError`` unless *speed* is one of ``PLAYBACK_SPEEDS``.
        """
        speed = float(speed)
        if speed not in PLAYBACK_SPEEDS:
            raise ValueError(
                f"Unsupported speed {speed}; choose from {PLAYBACK_SPEEDS}"
            )
        self._speed = speed
        if self._mode is PlaybackMode.PLAYING and self._timer is not _current_task():
            self._cancel_timer()
            self._start_timer()
