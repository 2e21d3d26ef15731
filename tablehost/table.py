from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from holdem.errors import DealError, InsufficientChips, InvalidAction, StaleTransition, StuckRound, SyncFailure
from holdem.machine import (
    AbortHand,
    Event,
    HoleCardsPersisted,
    NextHand,
    PlayerAction,
    StartHand,
    TableState,
    make_hand_id,
    reduce,
    settle,
    snapshot,
)
from holdem.models import BETTING_PHASES, ActionResult, ActionSource, ActionType, Phase, Seat, SeatSpec, TableConfig
from holdem.scheduler import StallWatchdog, Verdict, automated_action, default_action
from tablesync.reconciler import Reconciler
from tablesync.store import Notification, TableStore

LOGGER = logging.getLogger("table_host")

# Table drives one client's view of a shared table: it owns the reducer state,
# pushes every change through the reconciler and replays store notifications.
# All dispatches run under self.lock, so the reducer never sees two at once.

Listener = Callable[[TableState, List[Dict[str, object]]], Awaitable[None]]
TurnKey = Tuple[str, int, int]


@dataclass
class PendingTurn:
    key: TurnKey
    source: ActionSource
    deadline: float
    timer_task: Optional[asyncio.Task] = None


class TurnClock:
    """One timer for whoever holds the turn, plus the stall watchdog loop."""

    def __init__(self, table: Table) -> None:
        self.table = table
        self.pending: Optional[PendingTurn] = None
        self.watchdog_task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self.table.config.watchdog_ms > 0 and self.watchdog_task is None:
            self.watchdog_task = asyncio.create_task(self._watch())

    def rearm(self, state: TableState) -> None:
        hand = state.hand
        if hand.turn is None or hand.phase not in BETTING_PHASES:
            self.cancel()
            return
        key = (hand.hand_id, hand.turn, hand.version)
        if self.pending and self.pending.key == key:
            return
        self.cancel()
        seat = state.seats[hand.turn]
        delay_ms = self.table.turn_delay_ms(seat)
        if delay_ms is None:
            return
        source = ActionSource.AUTOMATED if seat.automated else ActionSource.TIMEOUT
        pending = PendingTurn(key=key, source=source, deadline=time.monotonic() + delay_ms / 1000)
        pending.timer_task = asyncio.create_task(self._fire(pending, delay_ms / 1000))
        self.pending = pending

    def time_remaining_ms(self) -> Optional[int]:
        if self.pending is None:
            return None
        return max(int((self.pending.deadline - time.monotonic()) * 1000), 0)

    def cancel(self) -> None:
        pending, self.pending = self.pending, None
        # A timer that fires re-arms the clock from inside its own task.
        if pending and pending.timer_task and pending.timer_task is not asyncio.current_task():
            pending.timer_task.cancel()

    async def stop(self) -> None:
        tasks = [task for task in (self.watchdog_task, self.pending and self.pending.timer_task) if task]
        self.cancel()
        if self.watchdog_task:
            self.watchdog_task.cancel()
            self.watchdog_task = None
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _fire(self, pending: PendingTurn, delay: float) -> None:
        await asyncio.sleep(delay)
        if self.pending is pending:
            self.pending = None
        await self.table.force_action(pending.key, pending.source)

    async def _watch(self) -> None:
        interval = self.table.config.watchdog_ms / 1000
        while True:
            await asyncio.sleep(interval)
            await self.table.check_progress()


class Table:
    def __init__(
        self,
        config: TableConfig,
        store: TableStore,
        players: Sequence[SeatSpec],
        *,
        viewer: Optional[int] = None,
        run_automated: bool = True,
        reconciler: Optional[Reconciler] = None,
        hand_id: Optional[str] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.state = TableState.create(config, players, hand_id=hand_id, viewer=viewer)
        self.reconciler = reconciler or Reconciler(store)
        # Only one client should drive the house seats; the others just watch them.
        self.run_automated = run_automated
        self.lock = asyncio.Lock()
        self.clock = TurnClock(self)
        self.watchdog = StallWatchdog(config.stall_limit)
        self.listeners: List[Listener] = []
        self._feed: Optional["asyncio.Queue[Notification]"] = None
        self._feed_task: Optional[asyncio.Task] = None

    # Lifecycle -----------------------------------------------------------------

    async def open(self, *, consume: bool = True) -> None:
        """Join the table: load the hand from the store or publish ours, then follow the feed."""
        self._feed = self.store.subscribe(self.config.room_id)
        async with self.lock:
            events = await self.reconciler.hydrate(self.state.hand.hand_id)
            if events:
                await self._merge_locked(events)
                self.reconciler.acknowledge(self.state)
            else:
                await self.reconciler.submit(self.state)
        if consume:
            self._feed_task = asyncio.create_task(self._consume())
        self.clock.start()
        self.clock.rearm(self.state)
        LOGGER.info(
            "Table open in room %s (hand %s, viewer=%s)",
            self.config.room_id,
            self.state.hand.hand_id,
            self.state.viewer,
        )

    async def close(self) -> None:
        tasks = [self._feed_task] if self._feed_task else []
        if self._feed_task:
            self._feed_task.cancel()
            self._feed_task = None
        await self.clock.stop()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._feed is not None:
            self.store.unsubscribe(self.config.room_id, self._feed)
            self._feed = None

    # Command surface -----------------------------------------------------------

    async def start_hand(self, seed: Optional[int] = None) -> ActionResult:
        async with self.lock:
            hand = self.state.hand
            if hand.phase == Phase.COMPLETE:
                result = await self._dispatch_locked(NextHand(hand.hand_id, make_hand_id()))
                if not result.ok:
                    return result
                hand = self.state.hand
            if hand.phase != Phase.WAITING:
                return ActionResult.failure(InvalidAction(f"Hand {hand.hand_id} is already {hand.phase.value}"))
            result = await self._dispatch_locked(StartHand(hand.hand_id, seed))
            if not result.applied:
                return result
            # Betting opens only once every client can read the hole cards.
            if not self.reconciler.has_pending:
                await self._dispatch_locked(HoleCardsPersisted(hand.hand_id))
            return result

    async def act(
        self,
        seat: int,
        action: Union[ActionType, str],
        amount: Optional[int] = None,
    ) -> ActionResult:
        try:
            action_type = ActionType(action)
        except ValueError:
            return ActionResult.failure(InvalidAction(f"Unknown action {action!r}"))
        async with self.lock:
            event = PlayerAction(
                hand_id=self.state.hand.hand_id,
                seat=seat,
                action=action_type,
                amount=amount,
                source=ActionSource.PLAYER,
            )
            return await self._dispatch_locked(event)

    def current_state(self, viewer: Optional[int] = None) -> Dict[str, object]:
        return snapshot(self.state, self.state.viewer if viewer is None else viewer)

    def seat_of(self, player_id: str) -> Optional[int]:
        return self.state.seat_of(player_id)

    # Timers --------------------------------------------------------------------

    def turn_delay_ms(self, seat: Seat) -> Optional[int]:
        if seat.automated:
            return self.config.bot_delay_ms if self.run_automated else None
        if not self._controls(seat):
            return None
        return self.config.move_time_ms or None

    def _controls(self, seat: Seat) -> bool:
        if seat.automated:
            return self.run_automated
        return self.state.viewer is None or self.state.viewer == seat.seat

    async def force_action(self, key: TurnKey, source: ActionSource) -> ActionResult:
        hand_id, seat_idx, version = key
        async with self.lock:
            seat = self.state.seats[seat_idx]
            if source == ActionSource.AUTOMATED:
                action, amount = automated_action(self.state.hand, seat, self.config.bot_call_threshold)
            else:
                action, amount = default_action(self.state.hand, seat)
            LOGGER.info("Seat %s %s action: %s", seat_idx, source.value, action.value)
            event = PlayerAction(
                hand_id=hand_id,
                seat=seat_idx,
                action=action,
                amount=amount,
                source=source,
                expected_version=version,
            )
            return await self._dispatch_locked(event)

    async def check_progress(self) -> None:
        """Watchdog tick: nudge a stalled hand, abort one that stays stuck."""
        async with self.lock:
            hand = self.state.hand
            if hand.phase in (Phase.WAITING, Phase.COMPLETE):
                self.watchdog.reset()
                return
            try:
                verdict = self.watchdog.check((hand.hand_id, hand.phase, hand.version))
            except StuckRound as exc:
                LOGGER.error("Hand %s is stuck in %s: %s", hand.hand_id, hand.phase.value, exc.msg)
                result = await self._dispatch_locked(AbortHand(hand.hand_id, reason=exc.msg))
                if result.applied:
                    await self._dispatch_locked(NextHand(hand.hand_id, make_hand_id()))
                return
            if verdict != Verdict.STALLED:
                return

            LOGGER.warning("Hand %s stalled at v%d (%s)", hand.hand_id, hand.version, hand.phase.value)
            if hand.phase == Phase.DEALING:
                if await self.reconciler.flush():
                    await self._dispatch_locked(HoleCardsPersisted(hand.hand_id))
                return
            if hand.turn is None:
                await self._settle_locked()
                return
            seat = self.state.seats[hand.turn]
            if not self._controls(seat):
                return
            action, amount = default_action(hand, seat)
            await self._dispatch_locked(
                PlayerAction(
                    hand_id=hand.hand_id,
                    seat=seat.seat,
                    action=action,
                    amount=amount,
                    source=ActionSource.TIMEOUT,
                    expected_version=hand.version,
                )
            )

    # Store feed ----------------------------------------------------------------

    async def on_notification(self, note: Notification) -> None:
        async with self.lock:
            if self.reconciler.has_pending:
                await self.reconciler.flush()
            try:
                events = await self.reconciler.to_events(note, self.state)
            except SyncFailure as exc:
                LOGGER.warning("Dropping %s row for hand %s: %s", note.table, note.hand_id, exc.msg)
                return
            await self._merge_locked(events)

    async def drain(self) -> int:
        """Process every queued notification now; returns how many were handled."""
        handled = 0
        while self._feed is not None and not self._feed.empty():
            await self.on_notification(self._feed.get_nowait())
            handled += 1
        return handled

    async def _consume(self) -> None:
        assert self._feed is not None
        while True:
            note = await self._feed.get()
            try:
                await self.on_notification(note)
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("Failed to apply %s row for hand %s: %s", note.table, note.hand_id, exc)

    # Internals -----------------------------------------------------------------

    async def _dispatch_locked(self, event: Event) -> ActionResult:
        name = type(event).__name__
        try:
            next_state = reduce(self.state, event)
        except StaleTransition as exc:
            LOGGER.debug("Ignoring stale %s: %s", name, exc.msg)
            return ActionResult.success(applied=False)
        except (InvalidAction, InsufficientChips) as exc:
            LOGGER.warning("Rejected %s: %s", name, exc.msg)
            return ActionResult.failure(exc)
        except DealError as exc:
            LOGGER.error("Cannot deal hand %s: %s", self.state.hand.hand_id, exc.msg)
            return ActionResult.failure(exc)

        self.state = next_state
        LOGGER.debug("Applied %s; hand %s now v%d", name, next_state.hand.hand_id, next_state.hand.version)
        await self.reconciler.submit(next_state)
        await self._changed(next_state)
        return ActionResult.success()

    async def _settle_locked(self) -> None:
        settled = settle(self.state)
        if settled.hand.version == self.state.hand.version:
            return
        self.state = settled
        await self.reconciler.submit(settled)
        await self._changed(settled)

    async def _merge_locked(self, events: Sequence[Event]) -> None:
        merged = self.state
        for event in events:
            try:
                merged = reduce(merged, event)
            except StaleTransition as exc:
                LOGGER.debug("Skipping %s: %s", type(event).__name__, exc.msg)
            except SyncFailure as exc:
                LOGGER.warning("Dropping %s: %s", type(event).__name__, exc.msg)
        if merged is self.state:
            return
        self.state = merged
        self.reconciler.acknowledge(merged)
        await self._changed(merged)

    async def _changed(self, state: TableState) -> None:
        self.clock.rearm(state)
        for listener in list(self.listeners):
            await listener(state, list(state.events))
