from .nelder_mead import NMSample, NMState, SimplexOptimizer
from .player_ai import PlayerAI

__all__ = ["NMSample", "NMState", "PlayerAI", "SimplexOptimizer"]
