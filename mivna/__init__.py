"""
Mivna - AI architecture diagrams and READMEs for GitHub repositories

Connects GitHub repositories to a hosted backend whose Edge Functions
generate Mermaid architecture diagrams and README files.
"""

__version__ = "0.3.0"


def __getattr__(name: str):
    """Lazy imports for public API - avoids loading httpx/pydantic at import time."""
    if name == "MivnaClient":
        from mivna.client import MivnaClient
        return MivnaClient
    if name == "load_config":
        from mivna.config import load_config
        return load_config
    if name == "ApiError":
        from mivna.errors import ApiError
        return ApiError
    if name == "BackendError":
        from mivna.backend import BackendError
        return BackendError
    raise AttributeError(f"module 'mivna' has no attribute {name!r}")


__all__ = [
    "__version__",
    "MivnaClient",
    "load_config",
    "ApiError",
    "BackendError",
]
