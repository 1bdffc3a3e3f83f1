"""
Tests for the AMRR reevaluation state machine.

Tests:
- Promotion after enough successful periods
- Demotion and the threshold doubling / reset rules
- Floor and ceiling guards
- Counter persistence when a period has too few samples
- Bounds invariants over random outcome sequences
"""

import logging
import random

import pytest

from amrr.config import Config
from amrr.peer_state import PeerRateState
from amrr.reevaluation import ReevaluationEngine, ReevaluationOutcome

PEER = "00:00:00:00:00:01"
NUM_RATES = 8


def make_state(**kwargs) -> PeerRateState:
    state = PeerRateState.fresh(min_success_threshold=1, update_period=1.0, now=0.0)
    for key, value in kwargs.items():
        setattr(state, key, value)
    return state


@pytest.fixture
def engine(config):
    return ReevaluationEngine(config)


class TestClassification:
    """enough / success / failure predicates."""

    def test_enough_needs_more_than_ten_samples(self, engine):
        """A window needs more than ten samples to count as enough."""
        assert not engine.is_enough(make_state(ok_count=10))
        assert engine.is_enough(make_state(ok_count=11))
        assert engine.is_enough(make_state(ok_count=5, err_count=3, retry_count=3))

    def test_success_ratio(self, engine):
        """Success requires errors plus retries below ok times the success ratio."""
        # 1 error against 11 ok: 1 < 1.1
        assert engine.is_success(make_state(ok_count=11, err_count=1))
        # 2 errors against 11 ok: 2 >= 1.1
        assert not engine.is_success(make_state(ok_count=11, retry_count=2))

    def test_failure_ratio(self, engine):
        """Failure requires errors plus retries above ok times the failure ratio."""
        # 2 errors against 3 ok: 2 > 1.0
        assert engine.is_failure(make_state(ok_count=3, err_count=2))
        # 1 error against 3 ok: 1 > 1.0 is false
        assert not engine.is_failure(make_state(ok_count=3, err_count=1))

    def test_no_traffic_is_neither(self, engine):
        """An empty window is neither success nor failure."""
        state = make_state()
        assert not engine.is_success(state)
        assert not engine.is_failure(state)


class TestDeadline:
    """Reevaluation runs only once the deadline has elapsed."""

    def test_not_due_before_deadline(self, engine):
        """Calls before the deadline leave the state untouched."""
        state = make_state(ok_count=20, next_reevaluation_deadline=1.0)
        result = engine.maybe_reevaluate(PEER, state, NUM_RATES, now=0.99)
        assert not result.ran
        assert result.outcome == ReevaluationOutcome.NOT_DUE
        assert state.ok_count == 20
        assert state.next_reevaluation_deadline == 1.0

    def test_due_exactly_at_deadline(self, engine):
        """A call exactly at the deadline runs the decision."""
        state = make_state(ok_count=20, next_reevaluation_deadline=1.0)
        result = engine.maybe_reevaluate(PEER, state, NUM_RATES, now=1.0)
        assert result.ran
        assert state.next_reevaluation_deadline == 2.0

    def test_late_call_runs_once_and_rebases_deadline(self, engine):
        """A late call decides once and sets the deadline from now."""
        state = make_state(ok_count=20, next_reevaluation_deadline=1.0)
        result = engine.maybe_reevaluate(PEER, state, NUM_RATES, now=7.5)
        assert result.ran
        assert state.rate_index == 1
        assert state.reevaluation_count == 1
        assert state.next_reevaluation_deadline == 8.5

    def test_deadline_advances_even_without_decision(self, engine):
        """The deadline moves even when nothing can be decided."""
        state = make_state(ok_count=2, next_reevaluation_deadline=1.0)
        result = engine.maybe_reevaluate(PEER, state, NUM_RATES, now=1.2)
        assert result.outcome == ReevaluationOutcome.INSUFFICIENT
        assert state.next_reevaluation_deadline == pytest.approx(2.2)


class TestPromotion:
    """Rate increases."""

    def test_scenario_a_promotes_and_enters_recovery(self, engine):
        """Reaching the threshold promotes one step and starts recovery."""
        state = make_state(rate_index=2, success_threshold=1, ok_count=11)

        result = engine.reevaluate(PEER, state, NUM_RATES)

        assert result.outcome == ReevaluationOutcome.INCREASE
        assert state.rate_index == 3
        assert state.recovering is True
        assert state.success_streak == 0
        assert (state.ok_count, state.err_count, state.retry_count) == (0, 0, 0)
        assert result.counters_reset

    def test_streak_below_threshold_holds(self, engine):
        """A success below the threshold only extends the streak."""
        state = make_state(rate_index=2, success_threshold=3, ok_count=11, recovering=True)

        result = engine.reevaluate(PEER, state, NUM_RATES)

        assert result.outcome == ReevaluationOutcome.HOLD
        assert state.rate_index == 2
        assert state.success_streak == 1
        assert state.recovering is False
        assert state.ok_count == 0

    def test_promotes_after_threshold_periods(self, engine):
        """Promotion happens after threshold successful periods."""
        state = make_state(rate_index=0, success_threshold=3)
        for expected_streak in (1, 2):
            state.ok_count = 11
            engine.reevaluate(PEER, state, NUM_RATES)
            assert state.success_streak == expected_streak
            assert state.rate_index == 0

        state.ok_count = 11
        engine.reevaluate(PEER, state, NUM_RATES)
        assert state.rate_index == 1
        assert state.success_streak == 0

    def test_no_promotion_past_last_rate(self, engine):
        """The highest rate is never exceeded."""
        state = make_state(rate_index=NUM_RATES - 1, ok_count=50)

        result = engine.reevaluate(PEER, state, NUM_RATES)

        assert state.rate_index == NUM_RATES - 1
        assert result.outcome == ReevaluationOutcome.HOLD
        assert state.recovering is False
        assert state.success_streak == 1

    def test_success_without_enough_samples_does_nothing(self, engine):
        """A sparse successful window changes nothing."""
        state = make_state(rate_index=2, ok_count=10, success_streak=4)

        result = engine.reevaluate(PEER, state, NUM_RATES)

        assert result.outcome == ReevaluationOutcome.INSUFFICIENT
        assert state.rate_index == 2
        assert state.success_streak == 4


class TestDemotion:
    """Rate decreases and threshold adaptation."""

    def test_scenario_b_failure_after_recovery_doubles_threshold(self, engine):
        """Failing right after a promotion doubles the threshold."""
        state = make_state(rate_index=3, success_threshold=1, recovering=True,
                           ok_count=3, err_count=8)

        result = engine.reevaluate(PEER, state, NUM_RATES)

        assert result.outcome == ReevaluationOutcome.DECREASE
        assert state.rate_index == 2
        assert state.success_threshold == 2
        assert state.recovering is False
        assert state.window_total == 0

    def test_threshold_doubling_is_capped(self, engine):
        """The doubled threshold never exceeds the maximum."""
        state = make_state(rate_index=4, success_threshold=8, recovering=True,
                           ok_count=3, err_count=8)

        engine.reevaluate(PEER, state, NUM_RATES)

        assert state.success_threshold == 10

    def test_failure_without_recovery_resets_threshold(self, engine):
        """Failing outside recovery resets the threshold to the minimum."""
        state = make_state(rate_index=4, success_threshold=8, recovering=False,
                           ok_count=3, err_count=8)

        engine.reevaluate(PEER, state, NUM_RATES)

        assert state.rate_index == 3
        assert state.success_threshold == 1

    def test_failure_resets_streak(self, engine):
        """Any failure clears the success streak."""
        state = make_state(rate_index=4, success_streak=3, ok_count=3, retry_count=9)
        engine.reevaluate(PEER, state, NUM_RATES)
        assert state.success_streak == 0

    def test_sparse_failure_still_demotes_and_resets(self, engine):
        """Failure demotes and resets counters even on a sparse window."""
        # Failure does not need enough samples; the rate change resets counters
        state = make_state(rate_index=4, ok_count=1, err_count=2)

        result = engine.reevaluate(PEER, state, NUM_RATES)

        assert result.outcome == ReevaluationOutcome.DECREASE
        assert state.rate_index == 3
        assert state.window_total == 0

    def test_scenario_c_floor(self, engine):
        """Failures at the lowest rate leave the index at zero."""
        state = make_state(rate_index=0, recovering=True)
        for _ in range(5):
            state.err_count = 11
            result = engine.reevaluate(PEER, state, NUM_RATES)
            assert result.outcome == ReevaluationOutcome.FLOOR
            assert state.rate_index == 0
            assert state.recovering is False
            assert state.success_threshold == 1
            assert state.window_total == 0

    def test_sparse_failure_at_floor_keeps_counters(self, engine):
        """A sparse failure at the floor carries its counters over."""
        state = make_state(rate_index=0, err_count=3)
        engine.reevaluate(PEER, state, NUM_RATES)
        assert state.err_count == 3

    def test_intermediate_failures_count_toward_failure(self, engine):
        """Retries of frames that later succeed still count as failures."""
        # 9 frames acknowledged, 4 of them only after one retry
        state = make_state(rate_index=3, ok_count=9, retry_count=4)

        result = engine.reevaluate(PEER, state, NUM_RATES)

        assert result.outcome == ReevaluationOutcome.DECREASE
        assert state.rate_index == 2


class TestCounterPersistence:
    """Scenario D: sparse periods accumulate."""

    def test_counters_persist_until_enough(self, engine):
        """Sparse windows accumulate until they can be classified."""
        state = make_state(rate_index=2, ok_count=5)

        first = engine.reevaluate(PEER, state, NUM_RATES)
        assert first.outcome == ReevaluationOutcome.INSUFFICIENT
        assert not first.counters_reset
        assert state.ok_count == 5
        assert state.rate_index == 2

        state.ok_count += 6
        second = engine.reevaluate(PEER, state, NUM_RATES)
        assert second.outcome == ReevaluationOutcome.INCREASE
        assert state.rate_index == 3
        assert state.ok_count == 0

    def test_enough_but_unclassified_resets(self, engine):
        """A full window that is neither success nor failure is cleared."""
        # 11 ok, 2 errors: not success (2 >= 1.1), not failure (2 <= 3.67)
        state = make_state(rate_index=2, ok_count=11, err_count=2, success_streak=2,
                           recovering=True)

        result = engine.reevaluate(PEER, state, NUM_RATES)

        assert result.outcome == ReevaluationOutcome.INSUFFICIENT
        assert result.counters_reset
        assert state.window_total == 0
        assert state.success_streak == 2
        assert state.recovering is True


class TestInvariants:
    """Bounds hold for all reachable states."""

    def test_random_outcome_sequences_stay_in_bounds(self, config):
        """Random traffic never moves the index out of range or by more than one."""
        engine = ReevaluationEngine(config)
        rng = random.Random(1234)
        state = make_state()

        for _ in range(2000):
            state.ok_count += rng.randint(0, 30)
            state.err_count += rng.randint(0, 6)
            state.retry_count += rng.randint(0, 10)
            before = state.rate_index

            engine.reevaluate(PEER, state, NUM_RATES)

            assert 0 <= state.rate_index < NUM_RATES
            assert config.min_success_threshold <= state.success_threshold <= config.max_success_threshold
            assert abs(state.rate_index - before) <= 1

    def test_out_of_range_index_clamped(self, config, mock_logger):
        """Out-of-range state is clamped and logged at warn."""
        engine = ReevaluationEngine(config, mock_logger)
        state = make_state(rate_index=12, success_threshold=50)

        engine.check_bounds(PEER, state, NUM_RATES)

        assert state.rate_index == NUM_RATES - 1
        assert state.success_threshold == config.max_success_threshold
        levels = [call.args[0] for call in mock_logger.log.call_args_list]
        assert logging.WARNING in levels

    def test_strict_mode_asserts(self, strict_config):
        """Strict mode raises instead of clamping."""
        engine = ReevaluationEngine(strict_config)
        state = make_state(rate_index=12)

        with pytest.raises(AssertionError):
            engine.check_bounds(PEER, state, NUM_RATES)

    def test_in_range_state_untouched(self, strict_config):
        """Valid state passes the bounds check unchanged."""
        engine = ReevaluationEngine(strict_config)
        state = make_state(rate_index=7, success_threshold=10)
        engine.check_bounds(PEER, state, NUM_RATES)
        assert state.rate_index == 7

    def test_custom_threshold_bounds(self):
        """Configured threshold bounds are honoured."""
        cfg = Config(min_success_threshold=2, max_success_threshold=5)
        engine = ReevaluationEngine(cfg)
        state = PeerRateState.fresh(cfg.min_success_threshold, cfg.update_period, 0.0)
        state.rate_index = 3
        state.recovering = True
        state.success_threshold = 4
        state.ok_count, state.err_count = 3, 8

        engine.reevaluate(PEER, state, NUM_RATES)
        assert state.success_threshold == 5

        state.ok_count, state.err_count = 3, 8
        engine.reevaluate(PEER, state, NUM_RATES)
        assert state.success_threshold == 2
