from __future__ import annotations

import math
from dataclasses import dataclass

# Keeps us off the provider's exact window boundaries.
JITTER_MS = 100


@dataclass(frozen=True)
class ThrottlePolicy:
    enabled: bool = False
    fixed_delay_ms: int = 3000
    # CoWIN public API: 100 calls per 5 minutes per IP.
    threshold_per_window: int = 100
    window_minutes: int = 5


def compute_delay_ms(policy: ThrottlePolicy, total_targets: int) -> int:
    """Pause between two attempts for a run querying `total_targets` targets.

    With throttling on, the window budget per request is spread over every
    target queried in one attempt, so the whole attempt stays under the limit.
    """
    if not policy.enabled or total_targets <= 1:
        return policy.fixed_delay_ms

    window_ms = policy.window_minutes * 60 * 1000
    per_request_ms = math.ceil(window_ms / policy.threshold_per_window)
    return per_request_ms * total_targets + JITTER_MS
