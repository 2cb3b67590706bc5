from __future__ import annotations


class BeautyAppError(Exception):
    """Base class for all errors raised by the app.

    ``user_message`` is what ends up in the ``error`` field of the state.
    """

    user_message = "Something went wrong. Please retry shortly."

    def __init__(self, message: str | None = None, user_message: str | None = None) -> None:
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class ConfigurationError(BeautyAppError):
    user_message = "The AI service is not configured. Set GEMINI_API_KEY and retry."


# Capture

class CaptureError(BeautyAppError):
    user_message = "Could not capture an image."


class PermissionDenied(CaptureError):
    user_message = "Unable to access camera. Please check permissions or use file upload."


class FileTooLarge(CaptureError):
    user_message = "Image size too large. Please use an image under 5MB."


class DecodeFailure(CaptureError):
    user_message = "Could not read that image. Please choose a JPEG, PNG or WebP file."


# Gemini gateway

class GatewayError(BeautyAppError):
    user_message = "Failed to run the facial report. Please try a clearer portrait or retry shortly."


class TransportError(GatewayError):
    pass


class NoImageGenerated(GatewayError):
    pass


class MalformedResponse(GatewayError):
    pass


class DiagnosisError(GatewayError):
    pass


# Share link

class CodecError(BeautyAppError):
    pass


class ShareDecodeError(CodecError):
    pass


# Snapshot export

class ExportError(BeautyAppError):
    user_message = "Could not save the snapshot."


class RasterizeFailure(ExportError):
    pass
