"""Numerical optimisation methods: dense linear solvers, PGM image utilities, image smoothing and phase unwrapping."""

__version__ = "0.1.0"