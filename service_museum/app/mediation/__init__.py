"""Mediation pipeline: retry controller and facade."""

from .retry_controller import RetryController, RetryState
from .facade import MediationFacade

__all__ = ["RetryController", "RetryState", "MediationFacade"]
