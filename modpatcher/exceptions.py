#!/usr/bin/env python3
# -*-coding: utf-8-*-
"""
modpatcher - Consolidated Exception Classes

All errors raised by the patching pipeline derive from BaseError so that the
entry points can report them uniformly (error code, details, timestamp).
"""

from datetime import datetime
from typing import Dict, Any, Optional


class BaseError(Exception):
    """Base class for all project-specific errors."""

    def __init__(self, message: str, error_code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.error_code = error_code or "ERROR"
        self.details = details or {}
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Converts the exception to a dictionary for structured logging."""
        return {
            'error_code': self.error_code,
            'message': str(self),
            'details': self.details,
            'timestamp': self.timestamp.isoformat()
        }


# =====================================================================================================
# Configuration errors
# =====================================================================================================

class ConfigurationError(BaseError):
    """Raised when the configuration cannot be loaded or is invalid."""

    def __init__(self, message: str, file_path: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        config_details = details or {}
        if file_path:
            config_details['file_path'] = str(file_path)
        super().__init__(message, "CONFIG_ERROR", config_details)


# =====================================================================================================
# Diff / patch errors
# =====================================================================================================

class PatchError(BaseError):
    """Base class for errors while applying a binary diff."""

    def __init__(self, message: str, error_code: Optional[str] = None,
                 diff_name: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        patch_details = details or {}
        if diff_name:
            patch_details['diff_name'] = diff_name
        super().__init__(message, error_code or "PATCH_ERROR", patch_details)


class DiffMissingError(PatchError):
    """Raised when the diff payload was never downloaded."""

    def __init__(self, message: str, diff_name: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DIFF_MISSING", diff_name, details)


class InvalidDiffError(PatchError):
    """Raised when the diff payload is not a well-formed patch."""

    def __init__(self, message: str, diff_name: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "INVALID_DIFF", diff_name, details)


class UnexpectedSourceError(PatchError):
    """Raised when the file to patch is not in the expected base state."""

    def __init__(self, message: str, diff_name: Optional[str] = None,
                 expected_crc: Optional[int] = None,
                 actual_crc: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        crc_details = details or {}
        if expected_crc is not None:
            crc_details['expected_crc'] = expected_crc
        if actual_crc is not None:
            crc_details['actual_crc'] = actual_crc
        super().__init__(message, "UNEXPECTED_SOURCE", diff_name, crc_details)


class OutputMismatchError(PatchError):
    """Raised when a patched file does not have the advertised checksum."""

    def __init__(self, message: str, diff_name: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "OUTPUT_MISMATCH", diff_name, details)


class DiffDownloadError(BaseError):
    """Raised when a diff could not be downloaded."""

    def __init__(self, message: str, diff_name: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        download_details = details or {}
        if diff_name:
            download_details['diff_name'] = diff_name
        super().__init__(message, "DOWNLOAD_ERROR", download_details)


class ResourceFetchError(BaseError):
    """Raised when diff metadata or auxiliary assets cannot be fetched."""

    def __init__(self, message: str, url: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        fetch_details = details or {}
        if url:
            fetch_details['url'] = url
        super().__init__(message, "RESOURCE_FETCH_ERROR", fetch_details)


# =====================================================================================================
# APK errors
# =====================================================================================================

class ContainerError(BaseError):
    """Raised when the APK container is malformed or misused."""

    def __init__(self, message: str, entry: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        container_details = details or {}
        if entry:
            container_details['entry'] = entry
        super().__init__(message, "CONTAINER_ERROR", container_details)


class ManifestError(BaseError):
    """Raised when the manifest cannot be decoded, transformed or encoded."""

    def __init__(self, message: str, error_code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code or "MANIFEST_ERROR", details)


class AxmlError(ManifestError):
    """Raised for malformed binary XML."""

    def __init__(self, message: str, offset: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        axml_details = details or {}
        if offset is not None:
            axml_details['offset'] = offset
        super().__init__(message, "AXML_ERROR", axml_details)


class ResourceIdError(ManifestError):
    """Raised when a symbolic resource name has no known ID."""

    def __init__(self, message: str, name: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        res_details = details or {}
        if name:
            res_details['name'] = name
        super().__init__(message, "UNKNOWN_RESOURCE", res_details)


class SigningError(BaseError):
    """Raised when signing or signature verification fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SIGNING_ERROR", details)


# =====================================================================================================
# Environment errors
# =====================================================================================================

class FileOperationError(BaseError):
    """Raised when file operation errors occur."""

    def __init__(self, message: str, file_path: Optional[str] = None,
                 operation: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        file_details = details or {}
        if file_path:
            file_details['file_path'] = str(file_path)
        if operation:
            file_details['operation'] = operation
        super().__init__(message, "FILE_OP_ERROR", file_details)


class PlatformCommandError(BaseError):
    """Raised when a package manager / appops command fails."""

    def __init__(self, message: str, command: Optional[str] = None,
                 exit_code: Optional[int] = None,
                 stderr: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        cmd_details = details or {}
        if command:
            cmd_details['command'] = command
        if exit_code is not None:
            cmd_details['exit_code'] = exit_code
        if stderr:
            cmd_details['stderr'] = stderr.strip()
        super().__init__(message, "PLATFORM_COMMAND_ERROR", cmd_details)


# =====================================================================================================
# Pipeline errors
# =====================================================================================================

class PipelineStageError(BaseError):
    """Raised when a stage of the install pipeline fails.

    The underlying error is chained as ``__cause__``; ``stage`` names the step
    that failed and ``rollback`` holds the compensation report, if any.
    """

    def __init__(self, message: str, stage: str,
                 rollback: Optional[Any] = None,
                 details: Optional[Dict[str, Any]] = None):
        stage_details = details or {}
        stage_details['stage'] = stage
        super().__init__(message, "PIPELINE_ERROR", stage_details)
        self.stage = stage
        self.rollback = rollback


class InvalidRequestError(BaseError):
    """Raised for a malformed or unserviceable frontend request."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "INVALID_REQUEST", details)
