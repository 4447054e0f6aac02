from __future__ import annotations

from slotbot.pacing import JITTER_MS, ThrottlePolicy, compute_delay_ms


def test_disabled_throttling_uses_fixed_delay() -> None:
    assert compute_delay_ms(ThrottlePolicy(enabled=False, fixed_delay_ms=5000), total_targets=5) == 5000


def test_single_target_is_not_throttled() -> None:
    assert compute_delay_ms(ThrottlePolicy(enabled=True, fixed_delay_ms=5000), total_targets=1) == 5000


def test_throttled_delay_spreads_window_over_targets() -> None:
    policy = ThrottlePolicy(enabled=True, threshold_per_window=10, window_minutes=1)
    assert compute_delay_ms(policy, total_targets=3) == 18100


def test_throttled_delay_rounds_per_request_budget_up() -> None:
    # 5 min / 100 = 3000 ms exactly; 1 min / 7 = 8571.43 -> 8572.
    assert compute_delay_ms(ThrottlePolicy(enabled=True), total_targets=2) == 3000 * 2 + JITTER_MS
    policy = ThrottlePolicy(enabled=True, threshold_per_window=7, window_minutes=1)
    assert compute_delay_ms(policy, total_targets=2) == 8572 * 2 + JITTER_MS
