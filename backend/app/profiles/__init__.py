"""
profiles — The user's aggregate root and its collaborators.

Sub-modules:
    profile        — Profile (owns a ContactDirectory and an AlertStore)
    directory      — trusted contacts, emergency flag, eligibility query
    session_store  — in-memory accounts and bearer-token sessions
"""
