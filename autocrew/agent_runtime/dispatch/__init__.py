"""Polling loops that decide when units of work run.

- **scheduler**: time-based triggers for scheduled units
- **dispatcher**: approved work items -> task-driven executions
- **ticks**: APScheduler interval-job wiring shared by both
"""
