from typing import Optional


class ExportAborted(Exception):
    """Raised when a caller cancels a long running export.

    This is a distinct outcome rather than a failure: export entry points catch it
    and return quietly without notifying the user.
    """

    def __init__(self, stage: Optional[str] = None) -> None:
        super().__init__(f"Export aborted during {stage}" if stage else "Export aborted")
        self.stage = stage


class ExportError(Exception):
    """Raised when an export cannot be written."""


class DeclarationNotFoundError(Exception):
    """Raised when a declaration is missing or belongs to an inaccessible company."""

    def __init__(self, declaration_id: str) -> None:
        super().__init__(f"Declaration not found: {declaration_id}")
        self.declaration_id = declaration_id


class CompanyAccessError(Exception):
    """Raised when the session user has no access to the requested companies."""

    def __init__(self, message: str = "No accessible company", company_ids: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.company_ids = company_ids or []
