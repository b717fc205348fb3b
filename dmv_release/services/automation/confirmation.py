"""
Confirmation detection for the release result page

The DMV result page is free text. The confirmation token is found by a
pluggable matcher; the default looks for the literal word "Number"
followed by an alphanumeric/hyphen token. When no token is found the job
still succeeds with an ``UNKNOWN-<epoch millis>`` placeholder, so an
operator reconciles it later instead of resubmitting to the DMV.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from ...exceptions import SubmissionRejectedError

ConfirmationMatcher = Callable[[str], Optional[str]]

DEFAULT_CONFIRMATION_PATTERN = r"Number\s*[:#]?\s*([A-Za-z0-9][A-Za-z0-9-]*)"

PLACEHOLDER_PREFIX = "UNKNOWN-"


class RegexConfirmationMatcher:
    """Extract the first capture group of a pattern from page text"""

    def __init__(self, pattern: str = DEFAULT_CONFIRMATION_PATTERN):
        self.pattern = re.compile(pattern)

    def __call__(self, text: str) -> Optional[str]:
        match = self.pattern.search(text or "")
        if not match:
            return None
        return match.group(1) if match.groups() else match.group(0)


def placeholder_confirmation(now: datetime) -> str:
    return f"{PLACEHOLDER_PREFIX}{int(now.timestamp() * 1000)}"


def is_placeholder(code: Optional[str]) -> bool:
    return bool(code) and code.startswith(PLACEHOLDER_PREFIX)


@dataclass(frozen=True)
class ConfirmationResult:
    code: str
    placeholder: bool


class ConfirmationDetector:
    """Detects the submission result from the result page text"""

    # Messages the form shows when it sends the submission back
    REJECTION_MESSAGES = [
        "Please correct the following",
        "The following errors occurred",
        "We are unable to process your request",
    ]

    def __init__(self, matcher: Optional[ConfirmationMatcher] = None):
        self.matcher = matcher or RegexConfirmationMatcher()

    def detect(self, page_text: str, now: datetime) -> ConfirmationResult:
        """
        Classify the result page

        Raises:
            SubmissionRejectedError: If the form reported validation errors
        """
        for message in self.REJECTION_MESSAGES:
            if message in page_text:
                raise SubmissionRejectedError(message, {"page_excerpt": page_text[:200]})

        code = self.matcher(page_text)
        if code:
            return ConfirmationResult(code, False)
        return ConfirmationResult(placeholder_confirmation(now), True)
