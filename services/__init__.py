"""Service layer for the court hearing notifier.

Submodules are imported explicitly by callers; ``hearings_config`` depends on
``services.settings``, so the package does not import its modules eagerly.
"""

__all__ = [
    "settings",
    "db",
    "system_settings",
    "cases",
    "hearings",
    "ledger",
    "email",
    "scheduler",
]
