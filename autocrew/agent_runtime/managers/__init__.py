"""Data access managers for the agent runtime.

Each module provides async functions that encapsulate the write paths and
business rules of one resource.  Managers accept a ``DispatchStore`` as a
parameter and raise domain exceptions (``LookupError``, ``ValueError``),
never HTTP exceptions -- that translation is the router's responsibility.
"""
