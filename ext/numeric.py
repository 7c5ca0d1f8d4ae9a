"""VeryBasic Extension: classic numeric functions.

Adds INT, SGN and RND, which most home-computer BASICs had built in.
"""

from __future__ import annotations

import math
import random
from typing import Union

from extensions import ExtensionAPI


VERYBASIC_EXTENSION_NAME = "numeric"
VERYBASIC_EXTENSION_API_VERSION = 1

Number = Union[int, float]

_rng = random.Random()
_last_rnd = 0.0


def _int(value: Number) -> int:
    return math.floor(value)


def _sgn(value: Number) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


def _rnd(value: Number) -> float:
    # RND(n): n > 0 next number, n = 0 repeat the last one, n < 0 reseed with n.
    global _last_rnd
    if value < 0:
        _rng.seed(value)
    elif value == 0:
        return _last_rnd
    _last_rnd = _rng.random()
    return _last_rnd


def verybasic_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="numeric", version="0.1.0")
    ext.register_function("INT", _int, doc="INT(x) -> largest integer <= x")
    ext.register_function("SGN", _sgn, doc="SGN(x) -> -1, 0 or 1")
    ext.register_function("RND", _rnd, doc="RND(n) -> pseudo-random float in [0, 1)")
