"""Application wiring."""

from .container import MFAContainer, create_container

__all__ = ["MFAContainer", "create_container"]
