# Models package: importing it registers every table on Base.metadata (Alembic relies on this)
from rememberly.models.remote import RemoteNote, RemoteReminder  # noqa: F401
