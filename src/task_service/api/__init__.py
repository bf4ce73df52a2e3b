"""HTTP interface."""

from task_service.api.http_server import create_app, create_http_server

__all__ = ["create_app", "create_http_server"]
