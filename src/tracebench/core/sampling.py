"""Per-iteration telemetry sampling decision."""

from __future__ import annotations

import random


class SamplingGate:
    """Decides whether a request's result is captured as telemetry.

    Exactly one uniform draw is consumed per call, whatever the rate, so the
    sequence of draws from a seeded generator does not depend on how often
    sampling was switched on.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def admit(self, sampling_rate: float) -> bool:
        draw = self._rng.random()
        if sampling_rate >= 1:
            return True
        if sampling_rate <= 0:
            return False
        return draw < sampling_rate
