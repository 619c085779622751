"""
Record storage for modledger.

Modules:
    - moderation_repo: ModerationRepository contract and its SQLite implementation
    - query_builder: SearchCriteria to SQL, and row to ModerationRecord mapping
"""
