"""Libratech - library management backend

This package contains the application modules:
- Settings (config.py)
- SQLite store plumbing (database.py)
- Records (models.py)
- Catalog store and loan ledger (catalog.py, ledger.py)
- Borrow/return inventory logic (inventory.py)
- Session tokens and roles (access.py)
- HTTP API (api.py) and CLI (main.py)
"""

__version__ = "1.0.0"
