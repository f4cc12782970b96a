"""
Core request orchestration.
"""
from .dispatcher import RequestDispatcher
from .feedback import ConsoleFeedback, ErrorThrottle, LoadingTracker, NullFeedback
from .interceptors import InterceptorPipeline, build_url
from .registry import InFlightEntry, RequestRegistry

__all__ = [
    "RequestDispatcher",
    "InterceptorPipeline",
    "build_url",
    "RequestRegistry",
    "InFlightEntry",
    "LoadingTracker",
    "ErrorThrottle",
    "ConsoleFeedback",
    "NullFeedback",
]
