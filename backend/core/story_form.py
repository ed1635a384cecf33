"""
Story-creation wizard state.

Models the six-step wizard that collects the story choices, the credit check
that gates submission, and the bridge that turns the collected values into a
form payload for the generation endpoint. Framework-free so any client (web,
CLI, tests) can drive it.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from .story_options import validate_field

logger = logging.getLogger(__name__)

REQUIRED_FIELDS: tuple[str, ...] = (
    "storySubject",
    "storyType",
    "ageGroup",
    "imageStyle",
    "language1",
    "language2",
    "genre",
)

STEP_FIELD_MAP: dict[int, str] = {
    0: "storySubject",
    1: "storyType",
    2: "ageGroup",
    3: "imageStyle",
    4: "language1",
    5: "genre",
}

LANGUAGE_STEP = 4

CREDITS_UNAVAILABLE_MESSAGE = "Unable to verify credits. Please refresh the page."
NO_CREDITS_MESSAGE = "You don't have enough credits to create stories."
INCOMPLETE_SUBMISSION_MESSAGE = (
    "Please complete all required fields and ensure you have credits."
)


@dataclass
class CreditCheck:
    """Result of a credit balance lookup."""

    has_credits: bool
    credit_count: int
    error: str | None = None


@dataclass
class ActionState:
    """Outcome of a submitted story generation request."""

    success: bool = False
    message: str = ""
    story_id: str | None = None
    errors: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class StoryFormState:
    """Field values, per-field validity and the current wizard step."""

    values: dict[str, str] = field(default_factory=dict)
    validity: dict[str, bool] = field(default_factory=dict)
    current_step: int = 0
    total_steps: int = len(STEP_FIELD_MAP)
    pending: bool = False

    def select(self, field_name: str, value: str, is_valid: bool) -> None:
        """Record a user selection for a field."""
        self.values[field_name] = value
        self.validity[field_name] = is_valid

    def select_with_validation(self, field_name: str, value: str) -> str | None:
        """
        Validate a value against the option catalog, then record it.

        Returns:
            The validation error message, or None when the value is valid
        """
        error = validate_field(field_name, value)
        self.select(field_name, value, error is None)
        if field_name in ("language1", "language2"):
            self._sync_language_validity()
        return error

    def _sync_language_validity(self) -> None:
        lang1 = self.values.get("language1", "")
        lang2 = self.values.get("language2", "")
        if not lang1 or not lang2:
            return
        if lang1 == lang2:
            self.validity["language1"] = False
            self.validity["language2"] = False
        elif validate_field("language1", lang1) is None and validate_field("language2", lang2) is None:
            self.validity["language1"] = True
            self.validity["language2"] = True

    @property
    def current_field(self) -> str | None:
        return STEP_FIELD_MAP.get(self.current_step)

    def _is_filled(self, field_name: str) -> bool:
        return bool(self.values.get(field_name)) and bool(self.validity.get(field_name))

    @property
    def is_current_step_valid(self) -> bool:
        if self.current_step == LANGUAGE_STEP:
            return (
                self._is_filled("language1")
                and self._is_filled("language2")
                and self.values.get("language1") != self.values.get("language2")
            )

        current = self.current_field
        return current is not None and self._is_filled(current)

    @property
    def is_form_complete(self) -> bool:
        all_fields_valid = all(
            self.values.get(name, "").strip() != "" and self.validity.get(name, False)
            for name in REQUIRED_FIELDS
        )
        return all_fields_valid and self.values.get("language1") != self.values.get("language2")

    @property
    def progress(self) -> float:
        return (self.current_step + 1) / max(self.total_steps, 1) * 100

    @property
    def is_last_step(self) -> bool:
        return self.current_step == self.total_steps - 1

    def step_status(self, index: int) -> str:
        """Indicator state of a step: completed, current or upcoming."""
        if index < self.current_step:
            return "completed"
        if index == self.current_step:
            return "current"
        return "upcoming"

    def next_step(self) -> int:
        if not self.pending:
            self.current_step = min(self.current_step + 1, self.total_steps - 1)
        return self.current_step

    def previous_step(self) -> int:
        if not self.pending:
            self.current_step = max(self.current_step - 1, 0)
        return self.current_step


class CreditsGate:
    """Tracks whether the user has credits available for a new story."""

    def __init__(self):
        self.has_credits = True
        self.credit_count = 0
        self.loading = True
        self.error: str | None = None

    async def load(self, fetcher: Callable[[], Awaitable[CreditCheck]]) -> CreditCheck:
        """Fetch the credit balance and open or close the gate."""
        self.loading = True
        try:
            check = await fetcher()
            self.credit_count = check.credit_count
            self.has_credits = check.has_credits
            self.error = check.error
            if not check.has_credits and not check.error:
                self.error = NO_CREDITS_MESSAGE
            return check
        except Exception as e:
            logger.error("Error checking credits: %s", e)
            self.has_credits = False
            self.error = CREDITS_UNAVAILABLE_MESSAGE
            return CreditCheck(has_credits=False, credit_count=self.credit_count, error=self.error)
        finally:
            self.loading = False

    def can_submit(self, state: StoryFormState) -> bool:
        return (
            state.is_form_complete
            and self.has_credits
            and not state.pending
            and not self.loading
        )


class SubmissionBridge:
    """Serializes the wizard values and invokes the generation action."""

    def __init__(self):
        self.last_state = ActionState()

    @staticmethod
    def build_payload(state: StoryFormState) -> dict[str, str]:
        """Flat form payload of the required fields, missing ones empty."""
        return {name: state.values.get(name, "") for name in REQUIRED_FIELDS}

    async def submit(
        self,
        state: StoryFormState,
        gate: CreditsGate,
        action: Callable[[dict[str, str]], Awaitable[ActionState]],
    ) -> ActionState:
        if not gate.can_submit(state):
            self.last_state = ActionState(success=False, message=INCOMPLETE_SUBMISSION_MESSAGE)
            return self.last_state

        state.pending = True
        try:
            self.last_state = await action(self.build_payload(state))
        finally:
            state.pending = False
        return self.last_state
