"""
LiveMorph API Package.

FastAPI application: streaming endpoint, static files and lifecycle.
Requires Python 3.11+.
"""

# Import app factory lazily to avoid circular imports
# Use: from api.main import create_app
