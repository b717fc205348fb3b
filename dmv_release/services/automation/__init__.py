"""
Automation module for DMV release-of-liability submissions

Drives a headless browser through the Notice of Release of Liability form
for a batch of vehicles, one browser session per vehicle, and reports
step-by-step progress as it goes.

Architecture Overview:
======================

    HTTP API / CLI
                    │
                    ▼
    ┌───────────────────────────────────────────────────┐
    │            ReleaseOrchestrator                    │ ← Batch coordinator
    │  (DriverFactory + BatchRun + concurrency bound)   │
    └───────────┬───────────────────────┬───────────────┘
                │                       │
                ▼                       ▼
    ┌───────────────────────┐   ┌───────────────────────┐
    │  ReleaseStateMachine  │   │   ProgressEventBus    │ ← One per batch
    │  (12 fixed steps,     │──►│  (non-blocking,       │
    │   one per vehicle)    │   │   detachable)         │
    └───────────┬───────────┘   └───────────────────────┘
                │
                ▼
    ┌─────────────────────────────────────────────────┐
    │            AutomationDriver                     │ ← Abstract interface
    └─────────────────┬─────────────┬─────────────────┘
                      │             │
                      ▼             ▼
    ┌─────────────────────┐  ┌─────────────────────────┐
    │  PlaywrightDriver   │  │     SeleniumDriver      │
    └─────────────────────┘  └─────────────────────────┘

    Supporting Components:
    ├── form_helpers   ← Versioned form selectors
    ├── confirmation   ← Confirmation number detection
    └── steps          ← The fixed release sequence

Usage Patterns:
===============

# Streaming
orchestrator = ReleaseOrchestrator(store, settings)
async for event in orchestrator.run(["veh-1", "veh-2"]):
    print(event.to_dict())

# Synchronous
outcomes = await orchestrator.run_sync(["veh-1", "veh-2"])
"""

from .automation_service import BatchRun, DriverFactory, ReleaseOrchestrator
from .base_driver import AutomationDriver
from .confirmation import ConfirmationDetector, RegexConfirmationMatcher
from .playwright_driver import PlaywrightDriver
from .release_state_machine import ReleaseStateMachine
from .selenium_driver import SeleniumDriver
from .steps import RELEASE_STEPS, TOTAL_STEPS

__all__ = [
    'BatchRun',
    'DriverFactory',
    'ReleaseOrchestrator',
    'AutomationDriver',
    'ConfirmationDetector',
    'RegexConfirmationMatcher',
    'PlaywrightDriver',
    'ReleaseStateMachine',
    'SeleniumDriver',
    'RELEASE_STEPS',
    'TOTAL_STEPS',
]
