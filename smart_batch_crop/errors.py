"""
Exception types.

Failures that concern a single image (decode, analysis, rasterization) are
caught at the batch boundary and reported; only whole-batch preconditions
reach the user as blocking errors.
"""


class SmartCropError(Exception):
    """Base class for all errors raised by this package."""


class InvalidImage(SmartCropError):
    """Image has zero or negative dimensions."""


class DecodeFailed(SmartCropError):
    """Source bytes could not be decoded into pixels."""


class AnalysisFailed(SmartCropError):
    """The saliency detector could not produce a suggestion."""


class PersistenceFailed(SmartCropError):
    """Reading or writing local persisted data failed."""


class RasterizationFailed(SmartCropError):
    """Cropping, resizing or encoding one image failed."""

    def __init__(self, name: str, reason: str):
        super().__init__(f"{name}: {reason}")
        self.name = name
        self.reason = reason


class NoImagesToExport(SmartCropError):
    """Export was requested on an empty collection."""

    def __init__(self):
        super().__init__("No images to export")


class UnknownImage(SmartCropError, KeyError):
    """An operation referenced an image identity that is not in the collection."""

    def __init__(self, image_id: str):
        super().__init__(image_id)
        self.image_id = image_id

    def __str__(self) -> str:
        return f"Unknown image: {self.image_id}"
