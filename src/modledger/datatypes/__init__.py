"""
Shared value types for Modledger.

- **moderation_datatypes.py**: ModerationRecord, the action/severity/appeal
  enums, RecordMutation, SearchCriteria and the engine result types.
- **staff_datatypes.py**: Rank levels, capability sets and the Issuer of an action.
"""
