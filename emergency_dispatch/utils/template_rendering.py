"""
Template rendering and validation for notification bodies.
"""
import re
from typing import Any, List, Mapping, Optional, Set, Tuple
import structlog

from emergency_dispatch.core.exceptions import ValidationError
from emergency_dispatch.models.template import NotificationTemplate, TemplateValidationResult

logger = structlog.get_logger(__name__)

MAX_TEMPLATE_LENGTH = 1600
SINGLE_SMS_LENGTH = 160
TEMPLATE_KEY_PATTERN = re.compile(r"^[a-z_]+$")


def _tokenize(body: str) -> List[Tuple[str, Optional[str]]]:
    """Split a body into (literal, placeholder name) pairs."""
    parts: List[Tuple[str, Optional[str]]] = []
    position = 0
    while True:
        start = body.find("{", position)
        if start == -1:
            parts.append((body[position:], None))
            return parts

        end = body.find("}", start + 1)
        next_open = body.find("{", start + 1)
        if end == -1 or (next_open != -1 and next_open < end):
            raise ValidationError(
                f"Unterminated placeholder at position {start}", field="template"
            )

        parts.append((body[position:start], body[start + 1:end]))
        position = end + 1


def find_placeholders(body: str) -> Set[str]:
    """Names of all {placeholder} tokens in a template body."""
    return {name for _, name in _tokenize(body) if name is not None}


def render(template_body: str, variables: Mapping[str, Any]) -> str:
    """
    Replace every {name} token with the stringified variable value.

    Args:
        template_body: Body containing {placeholder} tokens
        variables: Values keyed by placeholder name

    Returns:
        Rendered text; missing or None variables render as an empty string

    Raises:
        ValidationError: If the body has an unterminated placeholder
    """
    rendered = []
    missing = []
    for literal, name in _tokenize(template_body):
        rendered.append(literal)
        if name is None:
            continue
        value = variables.get(name)
        if name not in variables:
            missing.append(name)
        rendered.append("" if value is None else str(value))

    if missing:
        logger.warning(
            "Template rendered with missing variables",
            missing_variables=sorted(set(missing)),
        )

    return "".join(rendered)


def validate_template(template: NotificationTemplate) -> TemplateValidationResult:
    """
    Check a template for structural errors and common authoring mistakes.

    Declared variables that do not match the body only produce warnings.
    """
    errors: List[str] = []
    warnings: List[str] = []

    if not template.template_key:
        errors.append("Template key is required")
    elif not TEMPLATE_KEY_PATTERN.match(template.template_key):
        errors.append("Template key must contain only lowercase letters and underscores")

    if not template.body:
        errors.append("Template content is required")
    elif len(template.body) > MAX_TEMPLATE_LENGTH:
        errors.append(f"Template content exceeds maximum length ({MAX_TEMPLATE_LENGTH} characters)")
    elif len(template.body) > SINGLE_SMS_LENGTH:
        warnings.append(f"Template content exceeds single SMS length ({SINGLE_SMS_LENGTH} characters)")

    if "{{" in template.body or "}}" in template.body:
        warnings.append("Template may contain double braces")
    if "{ " in template.body or " }" in template.body:
        warnings.append("Template may contain spaced placeholders")

    try:
        placeholders = find_placeholders(template.body)
    except ValidationError:
        errors.append("Template contains an unterminated placeholder")
    else:
        if placeholders != set(template.variables):
            warnings.append("Template variables may not match placeholders in content")

    if warnings:
        logger.warning(
            "Template validation warnings",
            template_key=template.template_key,
            language=template.language_code.value,
            warnings=warnings,
        )

    return TemplateValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
