"""Evaluation metrics and report rendering."""
