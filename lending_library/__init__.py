"""Lending Library - Core Application Package

This package contains the core application modules including:
- API endpoints (api.py)
- Reservation lifecycle logic (reservations.py)
- Book stock tracking and catalog import (books.py)
- User directory (users.py)
- CLI interface (main.py)
- Data models (models.py)
- Database layer (database.py)
"""

__version__ = "1.0.0"
