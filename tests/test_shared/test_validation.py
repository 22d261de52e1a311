"""Tests for shared validation utilities."""
import pytest
from pydantic import BaseModel, ValidationError as PydanticValidationError
from fca_shared.validation import Validator, ValidationError, sanitize_html, validation_error_from_pydantic


class Sample(BaseModel):
    name: str
    count: int


class TestValidationError:

    def test_carries_message_and_fields(self):
        error = ValidationError("bad input", fields=['a', 'b'])
        assert str(error) == "bad input"
        assert error.message == "bad input"
        assert error.fields == ['a', 'b']

    def test_fields_default_to_empty(self):
        assert ValidationError("bad").fields == []

    def test_from_pydantic(self):
        with pytest.raises(PydanticValidationError) as exc_info:
            Sample.model_validate({'count': 'many'})

        error = validation_error_from_pydantic(exc_info.value)

        assert error.fields == ['name', 'count']
        assert error.message.startswith('name: Field required')

    def test_from_pydantic_with_prefix(self):
        with pytest.raises(PydanticValidationError) as exc_info:
            Sample.model_validate({'name': 'x'})
        error = validation_error_from_pydantic(exc_info.value, prefix='assessments.2')
        assert error.fields == ['assessments.2.count']


class TestSanitizeHtml:

    def test_plain_text_is_unchanged(self):
        assert sanitize_html("Rust at base plate") == "Rust at base plate"

    def test_allowed_tags_survive(self):
        assert sanitize_html("<p><strong>Rust</strong></p>") == "<p><strong>Rust</strong></p>"

    def test_scripts_and_attributes_are_stripped(self):
        assert sanitize_html('<p class="x">a<script>b</script></p>') == '<p>ab</p>'

    def test_empty_values(self):
        assert sanitize_html("") == ""
        assert sanitize_html(None) is None

    def test_module_alias(self):
        assert sanitize_html is Validator.sanitize_html
