"""HTTP server for ability execution."""

from unbrowse.server.app import UnbrowseServer, create_app

__all__ = [
    "UnbrowseServer",
    "create_app",
]
