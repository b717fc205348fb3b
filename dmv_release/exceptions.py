"""
Custom exceptions for release automation error handling
"""

from typing import Optional


class AutomationError(Exception):
    """Base exception class for all release-automation errors"""

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "AUTOMATION_ERROR"
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} (Code: {self.error_code}, Details: {self.details})"
        return f"{self.message} (Code: {self.error_code})"


class BrowserInitializationError(AutomationError):
    """Exception raised when a browser session cannot be acquired"""

    def __init__(self, message: str, backend: str = "unknown", details: Optional[dict] = None):
        super().__init__(message, "BROWSER_INIT_ERROR", details)
        self.backend = backend


class ElementNotFoundError(AutomationError):
    """Exception raised when a required form field cannot be found on the page"""

    def __init__(self, selector: str, element_type: str = "element", timeout: Optional[float] = None):
        message = f"Could not find {element_type} with selector: {selector}"
        if timeout:
            message += f" (timeout: {timeout}s)"

        details = {
            "selector": selector,
            "element_type": element_type,
            "timeout": timeout
        }
        super().__init__(message, "ELEMENT_NOT_FOUND", details)
        self.selector = selector
        self.element_type = element_type
        self.timeout = timeout


class PageNavigationError(AutomationError):
    """Exception raised when the release form cannot be loaded"""

    def __init__(self, url: str, last_error: Optional[str] = None):
        message = f"Failed to navigate to {url}"
        if last_error:
            message += f": {last_error}"

        details = {
            "url": url,
            "last_error": last_error
        }
        super().__init__(message, "NAVIGATION_ERROR", details)
        self.url = url
        self.last_error = last_error


class FormInteractionError(AutomationError):
    """Exception raised when filling, selecting or clicking a field fails"""

    def __init__(self, action: str, field: str, details: Optional[dict] = None):
        message = f"Failed to {action} on field: {field}"
        error_details = {"action": action, "field": field}
        if details:
            error_details.update(details)

        super().__init__(message, "FORM_INTERACTION_ERROR", error_details)
        self.action = action
        self.field = field


class StepTimeoutError(AutomationError):
    """Exception raised when a driver action or sequencer step exceeds its timeout"""

    def __init__(self, operation: str, timeout: float, details: Optional[dict] = None):
        message = f"Operation '{operation}' timed out after {timeout:g} seconds"
        error_details = {
            "operation": operation,
            "timeout": timeout
        }
        if details:
            error_details.update(details)

        super().__init__(message, "TIMEOUT_ERROR", error_details)
        self.operation = operation
        self.timeout = timeout


class SubmissionRejectedError(AutomationError):
    """Exception raised when the release form refuses a submission"""

    def __init__(self, reason: str, details: Optional[dict] = None):
        super().__init__(f"Submission rejected: {reason}", "SUBMISSION_REJECTED", details)
        self.reason = reason


class JobStoreError(AutomationError):
    """Exception raised when the job record store cannot be read or written"""

    def __init__(self, operation: str, reason: str, vehicle_id: Optional[str] = None):
        message = f"Job store {operation} failed: {reason}"
        details = {"operation": operation}
        if vehicle_id:
            details["vehicle_id"] = vehicle_id

        super().__init__(message, "JOB_STORE_ERROR", details)
        self.operation = operation
        self.reason = reason
        self.vehicle_id = vehicle_id


class NoEligibleVehiclesError(AutomationError):
    """Exception raised when a batch has no vehicles eligible for release"""

    def __init__(self, requested: int):
        super().__init__(
            "No eligible vehicles found for DMV submission",
            "NO_ELIGIBLE_VEHICLES",
            {"requested": requested},
        )
        self.requested = requested


class ReleaseServiceError(AutomationError):
    """Exception raised by the client when the release service rejects a request"""

    def __init__(self, status_code: int, reason: str):
        super().__init__(
            f"Release service returned {status_code}: {reason}",
            "RELEASE_SERVICE_ERROR",
            {"status_code": status_code},
        )
        self.status_code = status_code
        self.reason = reason
