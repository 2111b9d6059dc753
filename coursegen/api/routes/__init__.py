from . import generation, progress

__all__ = ["generation", "progress"]
