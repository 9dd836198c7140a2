"""
Rememberly Backend — Application Package
==========================================

Notes and reminders with a limited guest mode that becomes a full account
on sign-in, carrying the guest's data along.

    ┌─────────────────────────────────────────────┐
    │           Routes (API Layer)                │  ← HTTP concerns only
    ├─────────────────────────────────────────────┤
    │   ModeController (guest / authenticated)    │  ← one owner of the mode
    ├──────────────────────┬──────────────────────┤
    │ GuestStore + quota   │ RemoteStore (SQL)    │  ← one store per mode
    ├──────────────────────┴──────────────────────┤
    │ MigrationEngine (guest → account, once)     │
    └─────────────────────────────────────────────┘
"""

__version__ = "1.0.0"
