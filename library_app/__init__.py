"""Library Circulation API - Core Application Package

This package contains the core application modules including:
- API endpoints and policy middleware (api.py)
- Access policy table (access_policy.py)
- Authentication helpers (security.py)
- Data models (models.py)
- Database layer (database.py)
- Typed failures (errors.py)
- Settings (config.py)
- CLI interface and output helpers (cli.py, ui_helpers.py)
- Services (services/)
"""

__version__ = "1.0.0"
