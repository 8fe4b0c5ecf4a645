"""Tests for the backoff window (pure function, jitter and state)."""

from hypothesis import given, settings
from hypothesis import strategies as st

from edgelog.backoff import JITTER_RANGE_MS, BackoffState, JitterSource, next_backoff_ms
from tests.strategies import backoff_settings, failure_counts, jitter_seeds


class TestNextBackoff:
    """Tests for next_backoff_ms."""

    def test_starts_at_base(self):
        """No current window starts at the base value."""
        assert next_backoff_ms(0, 2000, 60000) == 2000

    def test_doubles(self):
        """Each failure doubles the window."""
        assert next_backoff_ms(2000, 2000, 60000) == 4000
        assert next_backoff_ms(4000, 2000, 60000) == 8000

    def test_capped_at_max(self):
        """Window never exceeds the ceiling."""
        assert next_backoff_ms(32000, 2000, 60000) == 60000
        assert next_backoff_ms(60000, 2000, 60000) == 60000

    def test_sequence_from_defaults(self):
        """Defaults give 2s, 4s, ... 32s, then 60s forever."""
        windows = []
        current = 0
        for _ in range(8):
            current = next_backoff_ms(current, 2000, 60000)
            windows.append(current)
        assert windows == [2000, 4000, 8000, 16000, 32000, 60000, 60000, 60000]

    @given(backoff_settings, failure_counts)
    def test_window_is_capped_power_of_two(self, base_and_max, failures):
        """After n failures the window is min(base * 2**(n-1), max)."""
        base, maximum = base_and_max
        current = 0
        for _ in range(failures):
            current = next_backoff_ms(current, base, maximum)
        assert current == min(base * 2 ** (failures - 1), maximum)


class TestJitterSource:
    """Tests for JitterSource."""

    @given(jitter_seeds)
    @settings(max_examples=50)
    def test_draws_within_range(self, seed):
        """Every draw is an integer in [0, 500)."""
        jitter = JitterSource(seed)
        for _ in range(20):
            value = jitter.draw()
            assert isinstance(value, int)
            assert 0 <= value < JITTER_RANGE_MS

    def test_seeded_sources_repeat(self):
        """Same seed gives the same sequence."""
        a = JitterSource(seed=42)
        b = JitterSource(seed=42)
        assert [a.draw() for _ in range(10)] == [b.draw() for _ in range(10)]

    def test_custom_limit(self):
        """Limit is configurable."""
        jitter = JitterSource(seed=1, limit_ms=1)
        assert {jitter.draw() for _ in range(10)} == {0}


class TestBackoffState:
    """Tests for BackoffState."""

    def test_initially_inactive(self):
        state = BackoffState()
        assert state.active is False
        assert state.holds(0) is False

    def test_extend_sets_window_and_deadline(self):
        """First failure opens a base-length window plus jitter."""
        state = BackoffState()
        until = state.extend(1000, 2000, 60000, jitter_ms=123)
        assert state.backoff_ms == 2000
        assert until == state.backoff_until == 1000 + 2000 + 123

    def test_holds_until_deadline(self):
        """Flushes are held strictly before the deadline."""
        state = BackoffState(backoff_ms=2000, backoff_until=5000)
        assert state.holds(4999) is True
        assert state.holds(5000) is False

    def test_clear_resets_both_fields(self):
        state = BackoffState(backoff_ms=4000, backoff_until=9000)
        state.clear()
        assert state == BackoffState(0, 0)
        assert state.active is False

    @given(backoff_settings, failure_counts, st.integers(min_value=0, max_value=2**40))
    def test_zero_iff_invariant(self, base_and_max, failures, now):
        """backoff_ms == 0 exactly when backoff_until == 0."""
        base, maximum = base_and_max
        state = BackoffState()
        jitter = JitterSource(seed=failures)
        for i in range(failures):
            state.extend(now + i, base, maximum, jitter.draw())
            assert state.backoff_ms > 0
            assert state.backoff_until > 0
            deadline_offset = state.backoff_until - (now + i)
            assert state.backoff_ms <= deadline_offset < state.backoff_ms + JITTER_RANGE_MS
        state.clear()
        assert state.backoff_ms == 0 and state.backoff_until == 0
