from .client import EngineClient

__all__ = ["EngineClient"]
