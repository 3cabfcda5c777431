"""Prometheus metrics for the tick loop."""
