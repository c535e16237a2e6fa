import time
from typing import Callable

Clock = Callable[[], int]


def unix_now() -> int:
    return int(time.time())
