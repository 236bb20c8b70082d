"""BounceBack trainer backend.

Vision pipeline for a rebounder-goal training station: detects scoring
targets and the goal boundary, tracks the ball and decides impacts.
"""

__version__ = "0.1.0"
