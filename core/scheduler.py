"""
scheduler.py — Code session and countdown/refresh scheduler.

CodeSession is the single owner of the shared secret and of the last code
generated from it. CountdownScheduler holds a reference to the session (never
a copy of the secret), ticks once per second and asks the session for exactly
one new code each time the 30-second counter rolls over.

Usage:
    session = CodeSession(config.secret, digits=config.digits)
    scheduler = CountdownScheduler(session, on_tick=print_countdown)
    asyncio.run(scheduler.run())
"""

import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import ClockUnavailable, InvalidSecretFormat, SmartDropError
from .otp_core import (
    DEFAULT_DIGITS,
    TIME_STEP,
    Secret,
    generate_code,
    mask_secret,
    normalize_secret,
    read_clock,
    seconds_remaining,
    time_counter,
    verify_code,
)

logger = logging.getLogger(__name__)

TICK_INTERVAL = 1.0


@dataclass(frozen=True)
class CodeSnapshot:
    """Code and countdown source, always produced together from one secret."""

    code: str
    expires_at: int
    counter: int
    generation: int

    def seconds_remaining(self, now: float) -> int:
        return max(0, self.expires_at - int(math.floor(now)))


@dataclass(frozen=True)
class GenerationOutcome:
    """Tagged result handed across the timer boundary."""

    ok: bool
    snapshot: Optional[CodeSnapshot] = None
    error: Optional[SmartDropError] = None

    @classmethod
    def success(cls, snapshot: CodeSnapshot) -> "GenerationOutcome":
        return cls(ok=True, snapshot=snapshot)

    @classmethod
    def failure(cls, error: SmartDropError) -> "GenerationOutcome":
        return cls(ok=False, error=error)


class CodeSession:
    """
    Owner of the current secret and current code.

    - `set_secret` validates the new secret, bumps the generation and
      regenerates right away.
    - `snapshot` is replaced as a whole under a lock, so a reader never sees
      a code from one secret paired with the expiry of another.
    """

    def __init__(
        self,
        secret: Optional[Secret] = None,
        digits: int = DEFAULT_DIGITS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.digits = digits
        self.clock = clock
        self._lock = threading.Lock()
        self._secret: Optional[Secret] = None
        self._generation = 0
        self._snapshot: Optional[CodeSnapshot] = None
        if secret:
            self.set_secret(secret, regenerate=False)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def snapshot(self) -> Optional[CodeSnapshot]:
        return self._snapshot

    @property
    def has_secret(self) -> bool:
        return self._secret is not None

    def set_secret(self, secret: Secret, regenerate: bool = True) -> Optional[GenerationOutcome]:
        """
        Replace the secret. Any code tied to the old secret is dropped.

        Raises:
            InvalidSecretFormat: the new secret has no usable key material;
                the old secret stays in place.
        """
        normalize_secret(secret)
        with self._lock:
            self._secret = secret
            self._generation += 1
            self._snapshot = None
        if isinstance(secret, str):
            logger.info("Secret replaced (%s), generation %d", mask_secret(secret), self._generation)
        else:
            logger.info("Secret replaced (%d raw bytes), generation %d", len(secret), self._generation)
        if regenerate:
            return self.refresh()
        return None

    def clear_secret(self) -> None:
        with self._lock:
            self._secret = None
            self._generation += 1
            self._snapshot = None

    def refresh(self, now: Optional[float] = None) -> GenerationOutcome:
        """
        Generate a code for `now` from the current secret.

        Never raises SmartDropError: failures come back as
        GenerationOutcome.failure(error).
        """
        try:
            if now is None:
                now = read_clock(self.clock)
            with self._lock:
                if self._secret is None:
                    raise InvalidSecretFormat("No secret configured")
                newer = self._snapshot
                if (newer is not None and newer.generation == self._generation
                        and newer.counter > time_counter(now)):
                    # a late reader never rolls the session back to an older window
                    return GenerationOutcome.success(newer)
                access = generate_code(self._secret, now, self.digits)
                snapshot = CodeSnapshot(
                    code=access.code,
                    expires_at=access.expires_at,
                    counter=access.counter,
                    generation=self._generation,
                )
                self._snapshot = snapshot
        except SmartDropError as e:
            logger.error("Code generation failed: %s", e)
            return GenerationOutcome.failure(e)
        logger.debug("Generated code %s valid until %d", snapshot.code, snapshot.expires_at)
        return GenerationOutcome.success(snapshot)

    def verify(self, code: str, window: int = 1, now: Optional[float] = None) -> bool:
        """
        Constant-time check of a code typed at the box against the current secret.

        Raises:
            InvalidSecretFormat: no secret configured
            ClockUnavailable: `now` is None and the clock cannot be read
        """
        if now is None:
            now = read_clock(self.clock)
        with self._lock:
            secret = self._secret
        if secret is None:
            raise InvalidSecretFormat("No secret configured")
        return verify_code(secret, code, now, self.digits, window)

    def is_stale(self, now: float) -> bool:
        snapshot = self._snapshot
        return (
            snapshot is None
            or snapshot.generation != self._generation
            or snapshot.counter != time_counter(now)
        )

    def current(self, now: Optional[float] = None) -> GenerationOutcome:
        """Current snapshot, regenerating only when it is stale."""
        try:
            if now is None:
                now = read_clock(self.clock)
        except ClockUnavailable as e:
            logger.error("Code generation failed: %s", e)
            return GenerationOutcome.failure(e)
        if self.is_stale(now):
            return self.refresh(now)
        return GenerationOutcome.success(self._snapshot)


class CountdownScheduler:
    """
    Cooperative 1-second ticker driving the countdown and code rollover.

    - tick(now) returns seconds_remaining = 30 - (floor(now) mod 30).
    - A regeneration is requested only when the session's snapshot no longer
      matches the current counter (or the secret changed), so each rollover
      produces exactly one new code.
    - At most one asyncio task is registered; start() supersedes any
      previous registration, cancel() removes it.
    """

    def __init__(
        self,
        session: CodeSession,
        on_tick: Optional[Callable[[Optional[CodeSnapshot], int], None]] = None,
        on_code: Optional[Callable[[CodeSnapshot], None]] = None,
        on_error: Optional[Callable[[SmartDropError], None]] = None,
        clock: Optional[Callable[[], float]] = None,
        interval: float = TICK_INTERVAL,
    ) -> None:
        self.session = session
        self.on_tick = on_tick
        self.on_code = on_code
        self.on_error = on_error
        self.clock = clock or session.clock
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self._reported_failure = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def tick(self, now: float) -> int:
        """One countdown step. Returns the seconds left in the current window."""
        remaining = seconds_remaining(now)
        if self.session.is_stale(now):
            failure_key = (time_counter(now), self.session.generation)
            if failure_key != self._reported_failure:
                previous = self.session.snapshot
                outcome = self.session.refresh(now)
                if outcome.ok:
                    self._reported_failure = None
                    if self.on_code and outcome.snapshot is not previous:
                        self.on_code(outcome.snapshot)
                else:
                    # one report per window; the next rollover tries again
                    self._reported_failure = failure_key
                    self._report(outcome.error)
        if self.on_tick:
            self.on_tick(self.session.snapshot, remaining)
        return remaining

    def _report(self, error: SmartDropError) -> None:
        if self.on_error:
            self.on_error(error)
        else:
            logger.warning("Unhandled generation error at tick: %s", error)

    async def run(self) -> None:
        """Tick until cancelled. A clock failure is reported and ends the loop."""
        while True:
            try:
                now = read_clock(self.clock)
            except ClockUnavailable as e:
                self._report(e)
                raise
            self.tick(now)
            await asyncio.sleep(max(0.0, self.interval - (now % self.interval)))

    def start(self) -> "asyncio.Task":
        """Register the ticker on the running loop, replacing any previous one."""
        self.cancel()
        self._reported_failure = None
        self._task = asyncio.get_running_loop().create_task(self.run())
        logger.debug("Countdown scheduler started (interval=%.2fs, step=%ds)", self.interval, TIME_STEP)
        return self._task

    def cancel(self) -> None:
        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
            self._task = None
            logger.debug("Countdown scheduler cancelled")

    def restart(self, secret: Secret) -> "asyncio.Task":
        """
        Swap the secret and re-register.

        The old task is cancelled before the secret changes, so no tick can
        generate one more code from the stale secret.
        """
        self.cancel()
        self.session.set_secret(secret)
        return self.start()
