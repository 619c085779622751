"""
Configuration management for Modledger.

- **app_configuration.py**: YAML configuration loader guarded by fcntl file
  locks. Falls back to defaults on missing or malformed files.

- **settings.py**: Typed wrappers for the database, escalation, actions,
  appeals, statistics and staff sections.
"""
