"""
Pipeline orchestration.

Runs the stages in order and collects their results.
"""
