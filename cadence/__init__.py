"""Cadence — scheduled report and task dispatcher."""
