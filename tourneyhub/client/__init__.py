"""Python client for the TourneyHub API with a tag-invalidated query cache."""

from .api import ApiClient, ApiError
from .cache import OptimisticUpdate, QueryCache
from .tourney_client import TourneyClient

__all__ = ["ApiClient", "ApiError", "OptimisticUpdate", "QueryCache", "TourneyClient"]
