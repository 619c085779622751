"""
Utility functions and helpers for Modledger.

This package provides reusable utilities:

- **logger.py**: Centralized logging configuration with colored console output,
  per-session log files, and a global exception hook. Uses prompt_toolkit
  so log lines do not clobber an interactive prompt.

- **time_utils.py**: UTC clock helpers and the epoch-millisecond conversions
  used by the record store.

- **format_utils.py**: Human-readable durations and timestamps for result
  messages.

- **keyed_lock.py**: Per-key asyncio locks used to serialise escalation
  decisions for one target while other targets proceed in parallel.

- **dispatch.py**: Bridges engine coroutines to callers that live on other
  threads and want their continuation on a specific executor.
"""
