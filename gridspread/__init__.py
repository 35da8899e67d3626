"""gridspread: grid-based population dispersal for stage-structured models.

Moves the population held in each life-stage layer of a habitat grid
across the landscape once per timestep, using one of three engines:
  - Fourier (fast) dispersal: kernel convolution on a toroidal embedding
  - Kernel dispersal: exact pairwise distance weighting with arrival
    probabilities from suitability and carrying capacity
  - Cellular-automata dispersal: ring-by-ring local movement with
    barriers and carrying-capacity ceilings
"""

__version__ = "0.1.0"
