"""Background execution helpers.

Provides:
    - await_condition: bounded poll-until-true primitive used to confirm component states
    - AsyncWorker: QThread running a blocking function and reporting through signals
    - start_asynchronous: start an AsyncWorker without blocking the caller
"""
import logging
import time
from typing import Any, Callable, Optional, Set

from PySide6 import QtCore

from ..status import status

# Workers are kept referenced until they finish
_running_workers: Set['AsyncWorker'] = set()


def await_condition(
        predicate: Callable[[], bool],
        poll_interval: float,
        timeout: float,
        sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Poll a predicate until it holds or the timeout elapses.

    Elapsed time is counted in poll intervals, so a patched ``sleep`` gives
    deterministic behaviour.

    Args:
        predicate: Called once per poll.
        poll_interval: Seconds between polls.
        timeout: Maximum seconds to wait.
        sleep: The sleep function.

    Returns:
        True if the predicate held before the timeout.
    """
    if poll_interval <= 0:
        raise ValueError('poll_interval must be positive')

    waited = 0.0
    while True:
        if predicate():
            return True
        if waited >= timeout:
            return False
        sleep(poll_interval)
        waited += poll_interval


class AsyncWorker(QtCore.QThread):
    """
    Generic worker thread for blocking functions.

    Status exceptions are reported immediately. Other exceptions are retried up to
    ``max_attempts`` times, which defaults to a single attempt.

    Signals:
        resultReady (object): Emitted with the function's result on success.
        errorOccurred (object): Emitted with the exception on failure.
    """
    resultReady = QtCore.Signal(object)
    errorOccurred = QtCore.Signal(object)

    def __init__(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        super().__init__()
        self.func = func
        self.args = args

        self.max_attempts = kwargs.pop('max_attempts', 1)
        self.wait_seconds = kwargs.pop('wait_seconds', 2.0)
        self.kwargs = kwargs

        self.result: Any = None
        self.error: Optional[BaseException] = None

    def run(self) -> None:
        attempts = 0
        last_exception = None
        while attempts < self.max_attempts:
            attempts += 1
            try:
                self.result = self.func(*self.args, **self.kwargs)
                self.resultReady.emit(self.result)
                return
            except status.BaseStatusException as ex:
                self.error = ex
                self.errorOccurred.emit(ex)
                return
            except Exception as ex:
                last_exception = ex
                if attempts < self.max_attempts:
                    time.sleep(self.wait_seconds)
        self.error = last_exception
        self.errorOccurred.emit(last_exception)


def start_asynchronous(func: Callable[..., Any], *args: Any, **kwargs: Any) -> AsyncWorker:
    """
    Run a blocking function on an AsyncWorker and return immediately.

    Args:
        func: The blocking function to run.
        *args, **kwargs: Arguments passed to func (and AsyncWorker options).

    Returns:
        The started worker. Connect to its signals or call ``wait()`` on it.
    """
    worker = AsyncWorker(func, *args, **kwargs)
    _running_workers.add(worker)
    worker.finished.connect(lambda: _running_workers.discard(worker))
    worker.errorOccurred.connect(
        lambda err: logging.debug(f'Background task {getattr(func, "__name__", func)} failed: {err}'))
    worker.start()
    return worker
