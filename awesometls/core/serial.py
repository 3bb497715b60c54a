import time
import itertools
from typing import Optional


class SerialAllocator:
    """Hands out strictly increasing certificate serial numbers.

    Seeded once from wall-clock seconds, so serials are only loosely unique
    across separate runs. ``next()`` goes through ``itertools.count``, which
    advances atomically without taking a lock.
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = int(time.time()) if seed is None else seed
        self._counter = itertools.count(self.seed + 1)

    def next(self) -> int:
        return next(self._counter)
