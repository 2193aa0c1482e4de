"""Learner dashboard and per-site training analytics."""
