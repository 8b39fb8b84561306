from channel_studio.api.server import create_app

__all__ = ["create_app"]
