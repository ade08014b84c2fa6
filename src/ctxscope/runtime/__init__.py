"""
Ambient context runtime.

Scope stores are tracked per scope root, and the unit of work code runs in is
identified through contextvars so it follows asyncio's own scheduling.
"""
