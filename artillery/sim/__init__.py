from .ballistics import compute_trajectory, from_spherical, muzzle_parameters, split_mirv, to_spherical
from .board import GameBoard
from .tank import Player, Tank

__all__ = [
    "GameBoard",
    "Player",
    "Tank",
    "compute_trajectory",
    "from_spherical",
    "muzzle_parameters",
    "split_mirv",
    "to_spherical",
]
