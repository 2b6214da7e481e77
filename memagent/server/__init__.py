"""
Memory Agent Server
====================
FastAPI WebSocket surface; one ConversationController per connection.
"""

from memagent.server.app import Services, build_services, create_app, serve

__all__ = ["Services", "build_services", "create_app", "serve"]
