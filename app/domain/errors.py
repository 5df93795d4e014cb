class DomainError(Exception):
    def __init__(
        self,
        detail: str,
        *,
        title: str = "Domain Error",
        errors: list[dict[str, str]] | None = None,
        type: str | None = None,
    ) -> None:
        super().__init__(detail)
        self.detail = detail
        self.title = title
        self.errors = errors
        self.type = type


class ValidationError(DomainError):
    def __init__(self, detail: str, *, field: str | None = None) -> None:
        errors = [{"field": field, "message": detail}] if field else None
        super().__init__(
            detail,
            title="Validation Error",
            errors=errors,
            type="https://example.com/problems/validation-error",
        )
