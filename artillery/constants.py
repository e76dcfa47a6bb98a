from __future__ import annotations

# ==============================================================================
# Physics
# ==============================================================================

# Gravity in board units per second squared (one board unit per heightfield cell)
GRAVITY = 9.81

# Default integration step for trajectories (seconds)
TIME_STEP = 1.0 / 60.0

# Hard cap on simulated flight time so trajectories are always finite
MAX_FLIGHT_TIME_S = 120.0

# Muzzle sits this far above the tank's surface elevation
MUZZLE_HEIGHT = 2.0

# ==============================================================================
# Material / color indices stored in GameBoard.colors
# ==============================================================================

COLOR_GRASS = 0
COLOR_DIRT = 1  # craters and dirt piles
COLOR_SCORCHED = 2  # burnt by napalm

# ==============================================================================
# Fluids (mud / napalm)
# ==============================================================================

# Fluid volume per cubic unit of weapon radius
FLUID_VOLUME_SCALE = 2.0

# Volume left behind wetting each cell of a descending drain pipe
PIPE_WETTING_LOSS = 1.0

# Playback rates used to schedule fluid animation (volume per second)
DRAIN_RATE = 5000.0
FILL_RATE = 5000.0

# Upper bound on total puddle fill time, raises the fill rate for huge volumes
MAX_FILL_TIME_S = 20.0

# Upper bound on a single drain pipe segment's duration
MAX_DRAIN_SEGMENT_S = 0.5

# Napalm damage per unit of fluid depth under a tank
NAPALM_DAMAGE_PER_DEPTH = 20.0

# ==============================================================================
# Scoring
# ==============================================================================

HIT_POINTS = 1000.0

# Blast damage at ground zero per unit of blast radius
BLAST_DAMAGE_PER_RADIUS = 10.0

# Score bonus for eliminating an opponent
KILL_BONUS = 1000

# Extra cost for using the targeting computer on a shot
COMPUTER_COST = 500

# ==============================================================================
# MIRV
# ==============================================================================

MIRV_WARHEADS = 5

# Horizontal spread speed given to each warhead at the apex
MIRV_SPREAD_SPEED = 6.0
