"""
Moderation engine for modledger.

Modules:
    - collaborators: identity, rank and effect boundaries plus default implementations
    - escalation_policy: history to recommended sanction
    - action_processor: issue and revoke sanctions
    - appeal_workflow: appeal state machine
    - statistics: read-side aggregates and their cached service
"""
