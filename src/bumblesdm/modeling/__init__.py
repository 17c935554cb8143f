"""
Modeling layer for Maxent training, inference and persistence.
"""
