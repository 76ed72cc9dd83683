"""nmacore - Network Meta-Analysis Engine.

Geometry, consistency and ranking analyses over networks of pairwise
treatment comparisons.
"""

__version__ = "1.0.0"
