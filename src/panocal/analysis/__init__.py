"""
Neighborhood analysis of control points.

Pairs of grid-adjacent images are scanned for local clusters of consistent control
points; clusters sharing an offset distance across pairs form groups, and the best
group of each orientation drives the cleaner and the optimizer.
"""
