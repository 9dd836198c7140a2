"""
Rememberly Backend — API Routes Package
=========================================

Route Inventory:
    - mode.py:       GET /api/mode, /api/usage, /api/migration
                     POST /api/auth/events, /api/guest/reset
    - notes.py:      GET/POST /api/notes, PATCH/DELETE /api/notes/{id}
                     POST /api/notes/analyze
    - reminders.py:  GET/POST /api/reminders, POST /api/reminders/{id}/complete
                     DELETE /api/reminders/{id}
    - health.py:     GET /health

Routes stay thin: they call the ModeController and never pick a store
themselves.
"""
