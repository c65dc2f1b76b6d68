"""Custom exceptions for configuration management."""

from typing import List, Optional

from pydantic import ValidationError


class ConfigurationError(Exception):
    """Configuration could not be loaded or validated.

    Carries a list of specific problems and hints for fixing them; ``str()``
    renders all of it for the console.
    """

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        suggestions: Optional[List[str]] = None,
    ):
        self.message = message
        self.errors = list(errors or [])
        self.suggestions = list(suggestions or [])
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        lines = [self.message]
        if self.errors:
            lines.append("\nValidation Errors:")
            lines.extend(f"  {i}. {error}" for i, error in enumerate(self.errors, 1))
        if self.suggestions:
            lines.append("\nSuggestions:")
            lines.extend(f"  - {suggestion}" for suggestion in self.suggestions)
        return "\n".join(lines)

    @classmethod
    def from_validation_error(cls, exc: ValidationError) -> "ConfigurationError":
        """Translate a pydantic ValidationError into readable field errors."""
        errors = []
        for error in exc.errors():
            field_path = " -> ".join(str(loc) for loc in error["loc"]) or "<root>"
            error_type = error["type"]
            if error_type == "missing":
                errors.append(f"Missing required field: {field_path}")
            elif error_type.endswith("_type") or error_type.endswith("_parsing"):
                errors.append(
                    f"Invalid type for '{field_path}': {error['msg']} (got {error.get('input')!r})"
                )
            else:
                errors.append(f"{field_path}: {error['msg']}")

        return cls(
            "Configuration validation failed",
            errors=errors,
            suggestions=[
                "Review config.example.yaml for the expected layout",
                "Durations accept forms like '30s', '2m' or 'PT2M'",
            ],
        )
