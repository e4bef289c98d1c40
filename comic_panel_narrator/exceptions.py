"""
Custom exceptions for comic-panel-narrator.

Geometry and detection problems never raise; these cover the external model
boundary, lookups into the state store and export.
"""

from typing import List, Optional


class PanelNarratorError(Exception):
    """Base exception for all comic-panel-narrator errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class UnknownEntityError(PanelNarratorError):
    """Raised when a chapter, page or panel id is not in the project."""

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"Unknown {kind}: '{entity_id}'", {"kind": kind, "id": entity_id})
        self.kind = kind
        self.entity_id = entity_id


class MissingCropError(PanelNarratorError):
    """Raised when panels are submitted for narration before they were cropped."""

    def __init__(self, panel_ids: List[str]):
        super().__init__(
            f"Panels have no cropped image yet: {', '.join(panel_ids)}",
            {"panel_ids": list(panel_ids)},
        )
        self.panel_ids = list(panel_ids)


# =============================================================================
# EXTERNAL MODEL ERRORS
# =============================================================================

class ModelCallError(PanelNarratorError):
    """Raised when a single call to an external model fails."""

    def __init__(self, model: str, reason: str):
        super().__init__(f"Model '{model}' call failed: {reason}", {"model": model})
        self.model = model
        self.reason = reason


class NarrativeContractError(PanelNarratorError):
    """Raised when a narrative response is malformed or misses submitted panels."""

    def __init__(self, reason: str, missing_ids: Optional[List[str]] = None):
        details = {}
        if missing_ids:
            details["missing_ids"] = list(missing_ids)
        super().__init__(reason, details)
        self.missing_ids = list(missing_ids or [])


class AudioGenerationError(PanelNarratorError):
    """Raised when the speech model returns no audio part."""

    def __init__(self, finish_reason: Optional[str] = None):
        reason = finish_reason or "Unknown"
        super().__init__(
            f"No audio data was generated. Reason: {reason}.",
            {"finish_reason": reason},
        )
        self.finish_reason = reason


class ModelExhaustedError(PanelNarratorError):
    """Raised when every model in a fallback list has failed all of its retries."""

    def __init__(self, models: List[str], last_error: Optional[BaseException] = None):
        last_model = models[-1] if models else "<none>"
        message = f"All fallback models failed. Last error on model {last_model}: {last_error}"
        details = {"models": list(models)}
        missing_ids = getattr(last_error, "missing_ids", None)
        if missing_ids:
            details["missing_ids"] = list(missing_ids)
        super().__init__(message, details)
        self.models = list(models)
        self.last_error = last_error

    @property
    def missing_ids(self) -> List[str]:
        return list(getattr(self.last_error, "missing_ids", None) or [])

    @property
    def finish_reason(self) -> Optional[str]:
        return getattr(self.last_error, "finish_reason", None)


class ExportError(PanelNarratorError):
    """Raised when a chapter has nothing to export."""
    pass
