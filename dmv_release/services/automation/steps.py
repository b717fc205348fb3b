"""
The fixed release sequence

Each vehicle job walks these twelve steps in order. Steps flagged with
``screenshot`` report a capture of the page once they succeed, so the
operator can audit the initial form, the populated form and the result
page without a retry.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class SequenceStep:
    index: int
    name: str
    message: str
    screenshot: bool = False

    @property
    def state(self) -> str:
        """State name in the sequencer's machine"""
        return self.name.replace("-", "_")


RELEASE_STEPS = (
    SequenceStep(1, "mark-processing", "Marked as processing"),
    SequenceStep(2, "launch-browser", "Browser session started"),
    SequenceStep(3, "navigate", "Release form loaded", screenshot=True),
    SequenceStep(4, "fill-seller", "Seller information entered"),
    SequenceStep(5, "fill-buyer", "Buyer information entered"),
    SequenceStep(6, "fill-vehicle", "Vehicle information entered"),
    SequenceStep(7, "fill-sale", "Sale information entered", screenshot=True),
    SequenceStep(8, "submit", "Form submitted"),
    SequenceStep(9, "await-confirmation", "Result page loaded"),
    SequenceStep(10, "parse-confirmation", "Confirmation captured", screenshot=True),
    SequenceStep(11, "persist-result", "Release recorded"),
    SequenceStep(12, "teardown", "Browser session closed"),
)

TOTAL_STEPS = len(RELEASE_STEPS)

# Steps that do work before the unconditional teardown
WORK_STEPS = RELEASE_STEPS[:-1]
TEARDOWN_STEP = RELEASE_STEPS[-1]
