"""
Asset API - FastAPI service for the clinical asset browser.

This package exposes the asset_explorer core over HTTP:
- POST /api/v1/assets/query for the filtered flat view
- /api/v1/sites/... for the Site → Subject → Event → Procedure → Asset tree
- SQLAlchemy persistence (PostgreSQL, SQLite for local runs)
- clients: portal API client and hierarchy explorer configured from settings
"""

__version__ = "1.0.0"
