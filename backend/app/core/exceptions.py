"""
Custom Exceptions for Buildora
==============================

Every pipeline stage raises one of these instead of a generic Exception so the
orchestrator can decide whether a failure is fatal, degradable, or only fatal
to deployment.

Usage:
    from app.core.exceptions import GenerationParseError

    if not files:
        raise GenerationParseError("No files found", raw_output=text)
"""

from typing import Optional, Any, Dict


class BuildoraError(Exception):
    """Base exception for all Buildora errors"""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Identity Resolution Errors
# ============================================

class UserResolutionError(BuildoraError):
    """The user referenced by a request could not be verified or created"""

    def __init__(self, message: str, user_id: Optional[str] = None):
        super().__init__(message, code="USER_RESOLUTION_FAILED")
        if user_id:
            self.details["user_id"] = user_id


class IdentityAmbiguityError(BuildoraError):
    """A project lookup strategy failed; the resolver falls through to the next one"""

    def __init__(self, strategy: str, message: str = "Lookup failed"):
        super().__init__(f"{strategy}: {message}", code="IDENTITY_AMBIGUOUS")
        self.details["strategy"] = strategy


class ProjectNotFoundError(BuildoraError):
    """Project not found"""

    def __init__(self, project_id: str):
        super().__init__(
            f"Project with ID '{project_id}' not found",
            code="PROJECT_NOT_FOUND",
            details={"resource_type": "Project", "resource_id": project_id}
        )


# ============================================
# Pipeline Errors
# ============================================

class InvalidPipelineTransitionError(BuildoraError):
    """A stage tried to move the pipeline into a state it cannot reach"""

    def __init__(self, from_state: str, to_state: str):
        super().__init__(
            f"Invalid pipeline transition: {from_state} -> {to_state}",
            code="INVALID_TRANSITION",
            details={"from_state": from_state, "to_state": to_state}
        )


class WorkspaceMaterializationError(BuildoraError):
    """A prior archive could not be downloaded or extracted"""

    def __init__(self, message: str, archive_url: Optional[str] = None):
        super().__init__(message, code="WORKSPACE_MATERIALIZATION_FAILED")
        if archive_url:
            self.details["archive_url"] = archive_url


class GenerationParseError(BuildoraError):
    """No parser strategy could extract files from the generation output"""

    def __init__(self, message: str = "Failed to parse generated files", raw_output: str = ""):
        super().__init__(message, code="GENERATION_PARSE_FAILED")
        self.raw_output = raw_output
        self.details["raw_output_preview"] = raw_output[:500]
        self.details["raw_output_length"] = len(raw_output)


class ModificationError(BuildoraError):
    """The AST modification engine reported a failure"""

    def __init__(self, message: str, approach: Optional[str] = None, reasoning: Optional[str] = None):
        super().__init__(message, code="MODIFICATION_FAILED")
        if approach:
            self.details["approach"] = approach
        if reasoning:
            self.details["reasoning"] = reasoning


# ============================================
# AI/Claude Errors
# ============================================

class AIServiceError(BuildoraError):
    """AI service (Claude) error"""

    def __init__(self, message: str):
        super().__init__(message, code="AI_SERVICE_ERROR")


# ============================================
# Storage / Build / Deploy Errors
# ============================================

class StorageError(BuildoraError):
    """Object storage operation failed"""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message, code="STORAGE_ERROR")
        if key:
            self.details["key"] = key


class BuildError(BuildoraError):
    """Remote build failed"""

    def __init__(self, message: str, build_id: Optional[str] = None, logs: Optional[str] = None):
        super().__init__(message, code="BUILD_FAILED")
        if build_id:
            self.details["build_id"] = build_id
        if logs:
            self.details["logs"] = logs[:1000]  # Truncate long logs


class DeployError(BuildoraError):
    """Deployment to the hosting platform failed"""

    def __init__(self, message: str, build_id: Optional[str] = None):
        super().__init__(message, code="DEPLOY_FAILED")
        if build_id:
            self.details["build_id"] = build_id


class PipelineTimeoutError(BuildoraError):
    """A run outlived its workspace cleanup timer"""

    def __init__(self, build_id: str, timeout_seconds: float):
        super().__init__(
            f"Pipeline timed out after {timeout_seconds:g}s",
            code="PIPELINE_TIMEOUT",
            details={"build_id": build_id, "timeout_seconds": timeout_seconds},
        )


# ============================================
# Cache Errors
# ============================================

class CacheUnavailableError(BuildoraError):
    """The session cache could not be reached; callers degrade instead of failing"""

    def __init__(self, operation: str, message: str = "Cache unavailable"):
        super().__init__(f"{message} ({operation})", code="CACHE_UNAVAILABLE")
        self.details["operation"] = operation


# ============================================
# Helper function for API responses
# ============================================

def error_response(error: BuildoraError) -> Dict[str, Any]:
    """Convert exception to API error response format"""
    return {
        "success": False,
        "error": error.to_dict()
    }
