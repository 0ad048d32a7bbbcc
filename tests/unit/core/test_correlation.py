"""Tests for correlation id and traceparent synthesis."""

import re
import uuid

import pytest

from tracebench.core.correlation import CorrelationGenerator, make_traceparent
from tracebench.core.sampling import SamplingGate

TRACEPARENT_RE = re.compile(r"^00-[0-9a-f]{32}-[0-9a-f]{16}-01$")


class TestMakeTraceparent:
    """Tests for make_traceparent."""

    def test_known_value(self) -> None:
        """Trace id is the undashed uuid, span id its first 16 digits."""
        corr = "0af76519-16cd-43dd-8448-eb211c80319c"

        assert make_traceparent(corr) == (
            "00-0af7651916cd43dd8448eb211c80319c-0af7651916cd43dd-01"
        )

    def test_length_and_pattern(self) -> None:
        """Every traceparent is 55 characters of the W3C shape."""
        for _ in range(100):
            value = make_traceparent(str(uuid.uuid4()))
            assert len(value) == 55
            assert TRACEPARENT_RE.match(value)

    def test_deterministic(self) -> None:
        """The same id always yields the same traceparent."""
        corr = str(uuid.uuid4())
        assert make_traceparent(corr) == make_traceparent(corr)

    def test_uppercase_id_is_normalized(self) -> None:
        """Upper-case hex digits are lower-cased."""
        corr = "0AF76519-16CD-43DD-8448-EB211C80319C"
        assert TRACEPARENT_RE.match(make_traceparent(corr))

    def test_short_id_is_padded(self) -> None:
        """Ids shorter than 32 hex digits are right padded with zeros."""
        value = make_traceparent("0123456789abcdef01")
        assert value == "00-0123456789abcdef0100000000000000-0123456789abcdef-01"

    @pytest.mark.parametrize("bad", ["", "not-a-uuid-at-all", "0123456789"])
    def test_malformed_id_raises(self, bad: str) -> None:
        """Non-hex or too-short ids are rejected."""
        with pytest.raises(ValueError):
            make_traceparent(bad)


class TestCorrelationGenerator:
    """Tests for CorrelationGenerator."""

    def test_next_returns_pair(self) -> None:
        """next() yields a uuid and its derived traceparent."""
        corr, traceparent = CorrelationGenerator().next()

        assert str(uuid.UUID(corr)) == corr
        assert traceparent == make_traceparent(corr)

    def test_ids_are_unique(self) -> None:
        """Ids do not repeat across many calls."""
        gen = CorrelationGenerator()
        ids = {gen.next()[0] for _ in range(10_000)}
        assert len(ids) == 10_000


class TestSamplingGate:
    """Tests for SamplingGate."""

    def test_full_rate_always_admits(self) -> None:
        gate = SamplingGate()
        assert all(gate.admit(1) for _ in range(1000))

    def test_zero_rate_never_admits(self) -> None:
        gate = SamplingGate()
        assert not any(gate.admit(0) for _ in range(1000))

    def test_negative_rate_never_admits(self) -> None:
        gate = SamplingGate()
        assert not any(gate.admit(-0.5) for _ in range(100))

    def test_partial_rate_is_approximate(self) -> None:
        """A 0.25 rate admits roughly a quarter of calls."""
        import random

        gate = SamplingGate(random.Random(42))
        admitted = sum(gate.admit(0.25) for _ in range(20_000))
        assert 4500 < admitted < 5500

    def test_one_draw_per_call_regardless_of_rate(self) -> None:
        """Draw count is the same whether sampling is on or off."""
        import random

        rng_a = random.Random(99)
        rng_b = random.Random(99)
        gate_a = SamplingGate(rng_a)
        gate_b = SamplingGate(rng_b)

        for rate in (1, 0, 0.5, 1, 0):
            gate_a.admit(rate)
        for _ in range(5):
            gate_b.admit(0.5)

        assert rng_a.random() == rng_b.random()
