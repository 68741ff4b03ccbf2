"""Execution pipeline for the agent runtime.

This package contains the core execution components:

- **prompt**: System / user prompt rendering (Jinja2 templates)
- **writer**: Bounded, batched log persistence per execution
- **coordinator**: Admission, run, and finalization of executions
"""
