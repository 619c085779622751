"""
Background scheduling for modledger.

Modules:
    - expiry_scheduler: lifts live enforcement of timed sanctions at their expiry
"""
