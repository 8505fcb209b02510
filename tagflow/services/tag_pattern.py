"""
Tag pattern expansion.

A pattern is a literal string with placeholders:

    {TYPE}        short code of the equipment type ("Pump" -> "P")
    {AREA}        the equipment area, "00" when empty
    {SEQ:000}     sequence number zero-padded to the mask width
    {SEQ}         sequence number without padding

Everything here is pure: no state, no I/O.
"""
import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from tagflow.models.enums import TaggingMode

DEFAULT_AREA = "00"

DEFAULT_TYPE_CODES: Dict[str, str] = {
    "Pump": "P",
    "Tank": "T",
    "Vessel": "V",
    "Heat Exchanger": "HX",
    "Valve": "VLV",
    "Filter": "F",
    "Compressor": "C",
    "Separator": "S",
}

# One pass over the pattern so substituted text is never rescanned
_PLACEHOLDER_RE = re.compile(r"\{(TYPE|AREA|SEQ)(?::([0-9#]+))?\}")
_ANY_PLACEHOLDER_RE = re.compile(r"\{([^{}]*)\}")


def type_code(equipment_type: Optional[str], overrides: Optional[Mapping[str, str]] = None) -> str:
    """
    Map an equipment type to its tag code.

    Known types match case-insensitively. Anything else falls back to the
    first three characters uppercased (or the whole type when shorter).
    """
    equipment_type = equipment_type or ""
    codes = dict(DEFAULT_TYPE_CODES)
    if overrides:
        codes.update(overrides)

    lowered = equipment_type.lower()
    for known, code in codes.items():
        if known.lower() == lowered:
            return code

    return equipment_type[:3].upper()


def format_sequence(sequence_number: int, width: int = 0) -> str:
    """
    Zero-pad a sequence number to ``width`` digits.

    Numbers wider than the mask are emitted in full, never truncated. The
    sign of a negative number sits in front of the padded digits.
    """
    digits = str(abs(sequence_number)).zfill(width)
    return f"-{digits}" if sequence_number < 0 else digits


@dataclass(frozen=True)
class ExpansionContext:
    """What a pattern needs to know about the item being tagged."""
    equipment_type: Optional[str] = None
    area: Optional[str] = None
    type_codes: Mapping[str, str] = field(default_factory=dict)

    @property
    def type_code(self) -> str:
        return type_code(self.equipment_type, self.type_codes)

    @property
    def area_code(self) -> str:
        return self.area or DEFAULT_AREA


def expand(pattern: str, ctx: ExpansionContext, sequence_number: int) -> str:
    """
    Expand ``pattern`` for one item.

    Unknown placeholders are left verbatim so a live preview shows them to
    the operator. Same inputs always give the same output.
    """
    def substitute(match: "re.Match[str]") -> str:
        name, mask = match.group(1), match.group(2)
        if name == "TYPE":
            return match.group(0) if mask else ctx.type_code
        if name == "AREA":
            return match.group(0) if mask else ctx.area_code
        return format_sequence(sequence_number, len(mask) if mask else 0)

    return _PLACEHOLDER_RE.sub(substitute, pattern)


def find_placeholders(pattern: str) -> List[str]:
    """Every ``{...}`` token in the pattern, in order of appearance."""
    return [match.group(0) for match in _ANY_PLACEHOLDER_RE.finditer(pattern)]


def unknown_placeholders(pattern: str) -> List[str]:
    """Tokens that are not a TYPE, AREA or SEQ placeholder."""
    return [
        token for token in find_placeholders(pattern)
        if not _PLACEHOLDER_RE.fullmatch(token)
    ]


def example_tag(pattern: str) -> str:
    """Render the pattern for a sample pump in area A01, sequence 1."""
    sample = ExpansionContext(equipment_type="PMP", area="A01", type_codes={"PMP": "PMP"})
    return expand(pattern.strip(), sample, 1)


def default_pattern(tagging_mode: TaggingMode) -> str:
    """Suggested renumbering pattern for a project's tagging convention."""
    if tagging_mode == TaggingMode.KKS:
        return "={AREA}-{TYPE}-{SEQ:000}"
    return "{TYPE}-{SEQ:001}"
