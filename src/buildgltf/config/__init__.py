from .settings import ExportConfig

__all__ = ["ExportConfig"]
