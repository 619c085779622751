"""
Modledger - Moderation Punishment Ledger and Escalation Engine

Modledger decides, records and audits the sanctions staff apply to players
(warnings, mutes, bans, kicks), keeps their violation history queryable, and
escalates repeat offenses automatically.

Core Components:

- **Moderation Records**: Immutable-once-issued audit entries persisted in
  SQLite with optimistic concurrency on the few mutable fields
- **Escalation Policy**: Deterministic, time-decayed violation scoring that
  maps a target's history onto the WARNING -> MUTE -> TEMP_BAN ->
  PERMANENT_BAN ladder
- **Action Processing**: Validated issuance with a per-target critical
  section, best-effort effect application and revocation
- **Appeals**: State machine for contesting a punishment; approval lifts it
- **Statistics**: Read-side aggregates for dashboards and history views

Usage:
    from modledger.main import main
    main()  # Opens the ledger and runs the expiry scheduler
"""
