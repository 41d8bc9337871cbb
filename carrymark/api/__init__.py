"""
API module for the REST API implementation.
"""

from .rest_api import CarryMarkRestAPI

__all__ = [
    "CarryMarkRestAPI",
]
