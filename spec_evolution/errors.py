"""Exceptions raised by the evolution engine.

Validation failures are never raised; see SpecGenerator.validate_suggestion.
Failures from collaborators (model, analytics, storage) propagate unchanged.
"""


class EvolutionError(Exception):
    """Base class for engine errors."""
    pass


class ConfigurationError(EvolutionError):
    """A required collaborator or capability was not supplied."""
    pass


class NotFoundError(EvolutionError):
    """A referenced identity does not exist."""
    pass


class SuggestionNotFoundError(NotFoundError):
    def __init__(self, suggestion_id: str):
        super().__init__(f"Suggestion {suggestion_id} not found")
        self.suggestion_id = suggestion_id


class SpecNotFoundError(NotFoundError):
    def __init__(self, operation: object):
        super().__init__(f"Spec {operation} not found")
        self.operation = operation


class DuplicateSuggestionError(EvolutionError):
    def __init__(self, suggestion_id: str):
        super().__init__(f"Suggestion {suggestion_id} already exists")
        self.suggestion_id = suggestion_id


class InvalidTransitionError(EvolutionError):
    """Requested change is not allowed from the suggestion's current status."""

    def __init__(self, suggestion_id: str, current: str, requested: str):
        super().__init__(
            f"Cannot move suggestion {suggestion_id} from {current} to "
            f"{requested}."
        )
        self.suggestion_id = suggestion_id
        self.current = current
        self.requested = requested
