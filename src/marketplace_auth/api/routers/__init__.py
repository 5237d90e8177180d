"""
marketplace_auth.api.routers

Route modules mounted by `api.app.create_app`.
"""

# Package marker.
