"""Clock sources for liveness and request timestamps."""

import time


class Timer:
    """Wall-clock time in whole seconds."""

    def get_current_time(self) -> int:
        return int(time.time())


class ManualTimer(Timer):
    """
    Settable clock used by simulations and tests.

    Liveness windows are never waited on; callers advance the clock and
    then invoke the operation that becomes valid.
    """

    def __init__(self, current_time: int = 1_700_000_000):
        self.current_time = current_time

    def get_current_time(self) -> int:
        return self.current_time

    def set_current_time(self, current_time: int) -> None:
        self.current_time = current_time

    def advance(self, seconds: int) -> int:
        self.current_time += seconds
        return self.current_time
