from .codec import decode_cells, encode_cells
from .editor import CraterLayers, TerrainEditor, fluid_depth_at
from .fluid import FluidResult, FluidSegment, Puddle, find_puddles, fluid_schedule, simulate_fluid
from .heightfield import HeightField, is_power_of_two

__all__ = [
    "CraterLayers",
    "FluidResult",
    "FluidSegment",
    "HeightField",
    "Puddle",
    "TerrainEditor",
    "decode_cells",
    "encode_cells",
    "find_puddles",
    "fluid_depth_at",
    "fluid_schedule",
    "is_power_of_two",
    "simulate_fluid",
]
