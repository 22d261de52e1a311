"""Input validation utilities."""
import bleach


class ValidationError(Exception):
    """Raised when input validation fails.

    Attributes:
        fields (list): Offending field paths (wire names), may be empty
    """

    def __init__(self, message, fields=None):
        super().__init__(message)
        self.message = message
        self.fields = list(fields or [])


def validation_error_from_pydantic(exc, prefix=None):
    """Convert a pydantic ValidationError into a ValidationError listing the offending fields.

    Args:
        exc: pydantic.ValidationError
        prefix (str, optional): Field path prefix (e.g. 'assessments.2')

    Returns:
        ValidationError
    """
    errors = []
    fields = []
    for error in exc.errors():
        field = '.'.join(str(x) for x in error['loc'])
        if prefix:
            field = f"{prefix}.{field}" if field else prefix
        msg = error['msg']
        errors.append(f"{field}: {msg}" if field else msg)
        if field and field not in fields:
            fields.append(field)
    return ValidationError('; '.join(errors), fields=fields)


class Validator:
    """Input sanitization for rich-text fields."""

    ALLOWED_TAGS = ['p', 'br', 'strong', 'em', 'u', 'ul', 'ol', 'li', 'blockquote', 'h3', 'h4']

    @staticmethod
    def sanitize_html(text):
        """Secure HTML sanitization using bleach library.

        Plain text (no tags or entities) is returned as-is.
        """
        if not text:
            return text

        if '<' not in text and '>' not in text and '&' not in text:
            return text

        return bleach.clean(text, tags=Validator.ALLOWED_TAGS, attributes={}, strip=True)


sanitize_html = Validator.sanitize_html
