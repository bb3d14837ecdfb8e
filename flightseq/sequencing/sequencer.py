"""
Timed action sequencer

Runs a sequence of actions strictly in order against a drone client. Client
actions must be acknowledged before the next step is dispatched, waits delay
the next step. A run that ends early (failure or cancel) always ends with a
safety landing.
"""

import math
from enum import Enum
from threading import Thread, Lock, Event, TIMEOUT_MAX
from typing import Callable, Optional
from loguru import logger as log

from flightseq.sequencing.actions import Action, Land, Wait, Sequence, make_sequence


DEFAULT_SAFETY_TIMEOUT_MS = 10000


def _check_timeout(name, timeout_ms):
    """ None (no timeout) or a positive number of ms that Event.wait accepts """
    if timeout_ms is None:
        return None
    if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, (int, float)):
        raise ValueError(f"{name} must be a number, got {timeout_ms!r}")
    if not math.isfinite(timeout_ms) or timeout_ms <= 0 or timeout_ms > TIMEOUT_MAX * 1000:
        raise ValueError(f"{name} must be a positive finite number of ms, got {timeout_ms}")
    return timeout_ms


class ErrorKind(Enum):
    ALREADY_RUNNING = "already_running"
    STEP_FAILED = "step_failed"
    CANCELLED_BY_CALLER = "cancelled_by_caller"
    UNSAFE_TERMINATION = "unsafe_termination"


class SequencerError(Exception):
    def __init__(self, kind: ErrorKind, message: str = ""):
        super().__init__(message or kind.value)
        self.kind = kind


class AlreadyRunningError(SequencerError):
    def __init__(self):
        super().__init__(ErrorKind.ALREADY_RUNNING, "A sequence is already running")


class _PendingAck():
    """ Completion of one dispatched client action """

    def __init__(self):
        self.event = Event()
        self.ok = None

    def acknowledge(self, ok=True):
        # only the first ack counts, duplicates and late acks are dropped
        if self.event.is_set():
            return
        self.ok = bool(ok)
        self.event.set()

    def wake(self):
        """ Wakes the waiter without acknowledging """
        self.event.set()


class _SequenceRun():
    """ Transient state of one run """

    def __init__(self, sequence: Sequence, on_complete, on_error):
        self.sequence = sequence
        self.on_complete = on_complete
        self.on_error = on_error
        self.step_index = -1
        self.error: Optional[ErrorKind] = None
        self.cancelled = Event()
        self.finished = Event()
        self.lock = Lock()
        self.pending: Optional[_PendingAck] = None
        self.terminating = False

    def request_cancel(self):
        with self.lock:
            if self.terminating or self.cancelled.is_set():
                return False
            self.cancelled.set()
            if self.pending is not None:
                self.pending.wake()
        return True


class Handle():
    """ Returned by `TimedActionSequencer.run`, used to follow or cancel a run """

    def __init__(self, run: _SequenceRun):
        self._run = run

    def cancel(self):
        """ Cancel the run (no-op if it already ended) """
        if self._run.request_cancel():
            log.warning("Sequence cancel requested")

    def wait(self, timeout: float = None) -> bool:
        """ Blocks until the run's terminal callback has returned """
        return self._run.finished.wait(timeout)

    @property
    def done(self):
        return self._run.finished.is_set()

    @property
    def error(self) -> Optional[ErrorKind]:
        return self._run.error

    @property
    def step_index(self):
        return self._run.step_index


class TimedActionSequencer():
    def __init__(self, client, step_timeout_ms: float = None,
                 safety_timeout_ms: float = None):
        """Sequences timed actions on a drone client

        Args:
            client (DroneClient): Drone to command, owned by the caller
            step_timeout_ms (float, optional): Max time to wait for an action's ack. Defaults to None (wait forever).
            safety_timeout_ms (float, optional): Max time to wait for the safety landing ack. Defaults to step_timeout_ms or 10s.
        """
        self._client = client
        self._step_timeout_ms = _check_timeout("step_timeout_ms", step_timeout_ms)
        if safety_timeout_ms is None:
            safety_timeout_ms = step_timeout_ms if step_timeout_ms is not None else DEFAULT_SAFETY_TIMEOUT_MS
        self._safety_timeout_ms = _check_timeout("safety_timeout_ms", safety_timeout_ms)
        self._lock = Lock()
        self._active: Optional[_SequenceRun] = None

    @property
    def is_running(self):
        with self._lock:
            return self._active is not None

    def run(self, sequence, on_complete: Callable[[], None] = None,
            on_error: Callable[[ErrorKind], None] = None) -> Handle:
        """ Start running a sequence, returns a handle to follow/cancel it """
        sequence = make_sequence(sequence)
        with self._lock:
            if self._active is not None:
                log.error("Refusing to start a sequence while another is running")
                raise AlreadyRunningError()
            run = _SequenceRun(sequence, on_complete, on_error)
            self._active = run

        log.info(f"Starting sequence of {len(sequence)} steps")
        Thread(target=self._drive, args=(run,), daemon=True).start()
        return Handle(run)

    def cancel(self, handle: Handle):
        handle.cancel()

##########
# Driver
##########

    def _drive(self, run: _SequenceRun):
        """ Runs the steps, then the safety landing if needed, then the terminal callback """
        error = None
        try:
            error = self._run_steps(run)
        except Exception as e:
            log.exception(e)
            log.error("Sequence driver crashed, aborting sequence")
            error = ErrorKind.STEP_FAILED
        finally:
            self._terminate(run, error)

    def _run_steps(self, run: _SequenceRun) -> Optional[ErrorKind]:
        """ Advances the run one step at a time, returns the failure if any """
        for index, action in enumerate(run.sequence):
            if run.cancelled.is_set():
                break
            run.step_index = index

            if isinstance(action, Wait):
                log.debug(f"Step {index}: waiting {action.duration_ms}ms")
                if run.cancelled.wait(action.seconds):
                    break
                continue

            log.info(f"Step {index}: {action.name}")
            if not self._dispatch_and_wait(run, action, self._step_timeout_ms):
                if run.cancelled.is_set():
                    break
                log.error(f"Step {index} ({action.name}) failed, aborting sequence")
                return ErrorKind.STEP_FAILED
        return None

    def _terminate(self, run: _SequenceRun, error: Optional[ErrorKind]):
        with run.lock:
            # past this point cancel requests are no-ops
            run.terminating = True
            if error is None and run.cancelled.is_set():
                error = ErrorKind.CANCELLED_BY_CALLER

        if error is not None:
            try:
                landed = self._safety_land(run)
            except Exception as e:
                log.exception(e)
                landed = False
            if not landed:
                error = ErrorKind.UNSAFE_TERMINATION

        self._finish(run, error)

    def _dispatch_and_wait(self, run: _SequenceRun, action: Action, timeout_ms) -> bool:
        """ Dispatch a client action and block for its ack, returns if it was acknowledged ok """
        pending = _PendingAck()
        with run.lock:
            # the safety landing is dispatched after terminating is set and must not be woken by cancel
            if not run.terminating and run.cancelled.is_set():
                return False
            run.pending = pending

        try:
            action.dispatch(self._client, pending.acknowledge)
        except Exception as e:
            log.exception(e)
            log.error(f"Drone client raised while dispatching {action.name}")
            pending.acknowledge(False)

        timeout = None if timeout_ms is None else timeout_ms / 1000.0
        acked = pending.event.wait(timeout)

        with run.lock:
            run.pending = None
        if not acked:
            log.warning(f"No ack for {action.name} after {timeout_ms}ms")
            pending.acknowledge(False)  # drop anything that arrives late
            return False
        if pending.ok is None:
            return False  # woken by cancel
        if not pending.ok:
            log.warning(f"Drone reported failure for {action.name}")
        return pending.ok

    def _safety_land(self, run: _SequenceRun) -> bool:
        """ Stop then land, returns if the landing was acknowledged """
        log.warning("Sequence ended early, issuing safety landing")
        try:
            self._client.stop()
        except Exception as e:
            log.exception(e)
            log.error("Drone client raised on stop, landing anyway")

        landed = self._dispatch_and_wait(run, Land(), self._safety_timeout_ms)
        if not landed:
            log.critical("Safety landing failed, vehicle state is unknown!")
        return landed

    def _finish(self, run: _SequenceRun, error: Optional[ErrorKind]):
        """ Releases the sequencer and fires the terminal callback once """
        run.error = error
        with self._lock:
            self._active = None

        try:
            if error is None:
                log.success("Sequence complete")
                if run.on_complete is not None:
                    run.on_complete()
            else:
                log.error(f"Sequence ended with {error.name}")
                if run.on_error is not None:
                    run.on_error(error)
        except Exception as e:
            log.exception(e)
        finally:
            run.finished.set()
