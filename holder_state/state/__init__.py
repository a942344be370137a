"""
State Reconstruction Package for holder_state

Turns the sparse, append-only balance log into per-entity transitions,
holding episodes and dense daily state. The reconstructor is the primary
interface; the transition primitive is also used directly by the holder
analytics, which run at a different granularity.
"""

# Import the primary entry points to make them accessible
# directly from the `state` package.
from .transitions import build_transitions, TransitionOrderError
from .episodes import episode_bounds, expand_episodes
from .reconstructor import StateReconstructor, ReconstructionResult


__all__ = [
    "build_transitions",
    "TransitionOrderError",
    "episode_bounds",
    "expand_episodes",
    "StateReconstructor",
    "ReconstructionResult",
]
