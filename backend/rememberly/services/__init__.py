"""
Rememberly Backend — Services Package

    guest_store.py     local single-guest store (JSON snapshot, quotas)
    quota.py           pure quota decisions
    mode_controller.py identity mode state machine + unified CRUD
    migration.py       guest → account transfer
    remote_store.py    SQLAlchemy RemoteStore
    auth.py            in-process AuthObserver
    analysis.py        Gemini TextAnalyzer + circuit breaker
    interfaces.py      collaborator ABCs
"""
