"""
Feature table assembly.

Joins presence and background points against the covariate stack.
"""
