"""Read binding descriptors from ``lua-config`` fenced blocks in markdown."""

import logging
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from config_link.core.paths import try_parse_path
from config_link.models import BindingDescriptor, DeclaredType

logger = logging.getLogger(__name__)

_BLOCK = re.compile(r"```lua-config\s*\n(.*?)```", re.DOTALL)

# dashed and camelCase spellings found in documents
_FIELD_ALIASES = {
    "max-rows": "max_rows",
    "maxRows": "max_rows",
    "tail-rows": "tail_rows",
    "tailRows": "tail_rows",
    "filter-column": "filter_column",
    "filterColumn": "filter_column",
    "filter-values": "filter_values",
    "filterValues": "filter_values",
}

_KNOWN_FIELDS = set(BindingDescriptor.model_fields) | {"key", "type"}


class DescriptorError(ValueError):
    pass


def _line_number(text: str, offset: int) -> int:
    return text.count("\n", 0, offset) + 1


def parse_block(content: str) -> BindingDescriptor | None:
    """Build a descriptor from the YAML body of one block.

    Returns None for blocks whose value lives in the markdown itself.

    Raises:
        DescriptorError: if the YAML is malformed or a required field is missing.
    """
    try:
        parsed = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise DescriptorError(f"Parse error: {exc}") from exc
    if not isinstance(parsed, dict):
        raise DescriptorError("Invalid config content")
    if parsed.get("storage") == "markdown":
        return None

    for field in ("file", "key", "type"):
        if not parsed.get(field):
            raise DescriptorError(f"Missing required field: {field}")
    valid_types = {t.value for t in DeclaredType}
    if parsed["type"] not in valid_types:
        raise DescriptorError(f"Invalid type: {parsed['type']}")

    data: dict[str, Any] = {}
    for name, value in parsed.items():
        name = _FIELD_ALIASES.get(name, name)
        if name in _KNOWN_FIELDS:
            data[name] = value
    limits = parsed.get("range")
    if isinstance(limits, list) and len(limits) == 2:
        data["min"], data["max"] = limits
    values = data.get("filter_values")
    if values is not None:
        if not isinstance(values, list):
            values = [values]
        data["filter_values"] = [str(v) for v in values]

    try:
        return BindingDescriptor.model_validate(data)
    except ValidationError as exc:
        raise DescriptorError(str(exc)) from exc


def parse_markdown(text: str) -> list[BindingDescriptor]:
    """Extract every valid descriptor from ``text`` in document order.

    Blocks that fail to parse are logged and skipped.
    """
    descriptors: list[BindingDescriptor] = []
    for match in _BLOCK.finditer(text):
        start_line = _line_number(text, match.start())
        try:
            descriptor = parse_block(match.group(1))
        except DescriptorError as exc:
            logger.warning("Skipping lua-config block at line %d: %s", start_line, exc)
            continue
        if descriptor is None:
            continue
        descriptors.append(
            descriptor.model_copy(update={"start_line": start_line, "end_line": _line_number(text, match.end())})
        )
    return descriptors


def load_descriptors(path: str | Path) -> list[BindingDescriptor]:
    return parse_markdown(Path(path).read_text(encoding="utf-8"))


def validate_descriptor(descriptor: BindingDescriptor) -> list[str]:
    """Return human-readable problems with ``descriptor``; empty when it is usable."""
    errors: list[str] = []
    if not descriptor.file:
        errors.append("file must be a valid file path")

    parsed = try_parse_path(descriptor.path)
    if not parsed.ok:
        errors.append(f"Invalid key format: {parsed.error}")

    kind = descriptor.declared_type
    if kind in (DeclaredType.NUMBER, DeclaredType.SLIDER):
        if descriptor.min is not None and descriptor.max is not None and descriptor.min > descriptor.max:
            errors.append("min cannot be greater than max")
    elif kind is DeclaredType.SELECT:
        if not descriptor.options:
            errors.append("select type requires options array")
    elif kind is DeclaredType.TABLE:
        if descriptor.max_rows is not None and descriptor.max_rows <= 0:
            errors.append("max_rows must be a positive integer")
        if descriptor.tail_rows is not None and descriptor.tail_rows <= 0:
            errors.append("tail_rows must be a positive integer")
    return errors
