from __future__ import annotations

from dataclasses import dataclass

from ledger_resolver.core.ids import normalize


@dataclass(slots=True, frozen=True)
class TypeTag:
    address: str
    module: str
    name: str
    arguments: tuple[TypeTag, ...]


def parse_type_tag(raw: str | None) -> TypeTag | None:
    """Parse ``0xpkg::module::Name<Arg, ...>``; returns None for primitives and garbage."""
    if not raw:
        return None
    text = raw.strip()
    head, arguments_text = _split_generics(text)
    if head is None:
        return None
    segments = head.split("::")
    if len(segments) != 3 or not all(segment.strip() for segment in segments):
        return None
    arguments: list[TypeTag] = []
    for argument in _split_arguments(arguments_text):
        parsed = parse_type_tag(argument)
        if parsed is not None:
            arguments.append(parsed)
    address, module, name = (segment.strip() for segment in segments)
    return TypeTag(address=normalize(address).lstrip("0"), module=module, name=name, arguments=tuple(arguments))


def type_matches(raw_type: str | None, type_filter: str, *, include_arguments: bool = False) -> bool:
    """Compare struct identity, never substrings.

    ``type_filter`` is either a bare struct name (``Project``), ``module::Name`` or a
    fully qualified ``0xpkg::module::Name``. With ``include_arguments`` a wrapper such as
    ``0x2::dynamic_field::Field<u64, 0xpkg::devhub::Project>`` also matches on its
    type arguments.
    """
    tag = parse_type_tag(raw_type)
    if tag is None:
        return False
    if _tag_matches(tag, type_filter):
        return True
    if include_arguments:
        return any(_tag_matches(argument, type_filter) for argument in tag.arguments)
    return False


def _tag_matches(tag: TypeTag, type_filter: str) -> bool:
    segments = [segment.strip() for segment in type_filter.strip().split("::")]
    if not segments or not all(segments):
        return False
    if segments[-1] != tag.name:
        return False
    if len(segments) >= 2 and segments[-2] != tag.module:
        return False
    if len(segments) >= 3 and normalize(segments[-3]).lstrip("0") != tag.address:
        return False
    return True


def _split_generics(text: str) -> tuple[str | None, str]:
    if "<" not in text:
        return (text if ">" not in text else None), ""
    if not text.endswith(">"):
        return None, ""
    start = text.index("<")
    return text[:start], text[start + 1 : -1]


def _split_arguments(text: str) -> list[str]:
    if not text.strip():
        return []
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for char in text:
        if char == "<":
            depth += 1
        elif char == ">":
            depth -= 1
        if char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    parts.append("".join(current).strip())
    return [part for part in parts if part]
