from __future__ import annotations


class CompositorError(Exception):
    """Base class for every error raised by the compositing pipeline."""


class ModelInitError(CompositorError):
    """The segmentation service could not be initialized."""


class CameraAccessError(CompositorError):
    """The camera could not be opened (permission denied or device failure)."""


class MaskUnavailable(CompositorError):
    """No usable mask for this cycle; the frame is skipped."""


class InferenceTimeout(CompositorError):
    """The segmentation service did not answer within the cycle timeout."""


class BackgroundLoadError(CompositorError):
    """A selected background could not be loaded or decoded."""


class InvalidTransition(CompositorError):
    """A readiness transition that the state machine does not allow."""
