# ============================================================================
# apps/reconcile/document.py - Section based config document with managed blocks
# ============================================================================

import re
import logging
from typing import Dict, Iterable, List, Optional, Tuple, Union

from shared.exceptions import ParseError, ValidationError

logger = logging.getLogger(__name__)

BEGIN_PREFIX = "; BEGIN MANAGED - "
END_PREFIX = "; END MANAGED - "
SENTINEL_MARKERS = ("BEGIN MANAGED", "END MANAGED")

SECTION_HEADER = re.compile(r'^\[([^\]]+)\](?:\(([^)]*)\))?')


class TextSegment:
    """Lines outside any managed block, kept verbatim"""

    def __init__(self, lines: List[str]):
        self.lines = lines

    def render_lines(self) -> List[str]:
        return list(self.lines)


class ManagedBlock:
    """Sentinel delimited region owned by this system"""

    def __init__(self, label: str, body: List[str]):
        self.label = label
        self.body = body

    def render_lines(self) -> List[str]:
        return [BEGIN_PREFIX + self.label] + list(self.body) + [END_PREFIX + self.label]

    @property
    def text(self) -> str:
        return "\n".join(self.body)


Segment = Union[TextSegment, ManagedBlock]


class Section:
    """A `[name]` section and its options in file order"""

    def __init__(self, name: str, template: Optional[str] = None,
                 managed_label: Optional[str] = None, line_number: int = 0):
        self.name = name
        self.template = template
        self.managed_label = managed_label
        self.line_number = line_number
        self.options: List[Tuple[str, str]] = []

    @property
    def type(self) -> Optional[str]:
        return self.get("type")

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        for option_key, value in self.options:
            if option_key == key:
                return value
        return default

    def get_all(self, key: str) -> List[str]:
        return [value for option_key, value in self.options if option_key == key]

    def key(self) -> Tuple:
        return (self.name, self.template, self.managed_label, tuple(self.options))

    def __eq__(self, other) -> bool:
        return isinstance(other, Section) and self.key() == other.key()

    def __repr__(self) -> str:
        return f"Section({self.name!r}, type={self.type!r}, managed={self.managed_label!r})"


def split_option(line: str) -> Optional[Tuple[str, str]]:
    """Split `key=value` or `key => value`; None for anything else"""
    if '=' not in line:
        return None
    key, value = line.split('=', 1)
    key = key.strip()
    if not key:
        return None
    if value.startswith('>'):
        value = value[1:]
    return key, value.strip()


def validate_label(label: str) -> None:
    if not label or not label.strip():
        raise ValidationError("Managed block label must not be empty")
    if '\n' in label or '\r' in label:
        raise ValidationError(f"Managed block label {label!r} must be a single line")
    if label != label.strip():
        raise ValidationError(f"Managed block label {label!r} has surrounding whitespace")
    for marker in SENTINEL_MARKERS:
        if marker in label:
            raise ValidationError(f"Managed block label {label!r} contains sentinel text")


def _body_lines(text: str) -> List[str]:
    lines = text.splitlines()
    while lines and not lines[-1].strip():
        lines.pop()
    return lines


class ConfigDocument:
    """In-memory view of a configuration file.

    The file is held as an ordered list of segments: verbatim text and managed
    blocks. Sections are derived from the lines on demand, so unknown content
    always survives a render.
    """

    def __init__(self, segments: Optional[List[Segment]] = None, trailing_newline: bool = True):
        self.segments: List[Segment] = segments or []
        self.trailing_newline = trailing_newline

    # ------------------------------------------------------------------
    # parse / render
    # ------------------------------------------------------------------

    @classmethod
    def parse(cls, text: str) -> "ConfigDocument":
        segments: List[Segment] = []
        buffer: List[str] = []
        open_block: Optional[ManagedBlock] = None
        open_line = 0
        seen_labels: Dict[str, int] = {}

        for line_number, line in enumerate(text.splitlines(), 1):
            stripped = line.rstrip()
            if stripped.startswith(BEGIN_PREFIX):
                label = stripped[len(BEGIN_PREFIX):]
                if open_block is not None:
                    raise ParseError(
                        f"managed block '{label}' opened inside '{open_block.label}'", line_number
                    )
                if label in seen_labels:
                    raise ParseError(
                        f"duplicate managed block '{label}' (first at line {seen_labels[label]})",
                        line_number
                    )
                seen_labels[label] = line_number
                if buffer:
                    segments.append(TextSegment(buffer))
                    buffer = []
                open_block = ManagedBlock(label, [])
                open_line = line_number
                continue

            if stripped.startswith(END_PREFIX):
                label = stripped[len(END_PREFIX):]
                if open_block is None:
                    raise ParseError(f"end of managed block '{label}' without a beginning", line_number)
                if label != open_block.label:
                    raise ParseError(
                        f"managed block '{open_block.label}' overlaps '{label}'", line_number
                    )
                segments.append(open_block)
                open_block = None
                continue

            if open_block is not None:
                open_block.body.append(line)
            else:
                buffer.append(line)

        if open_block is not None:
            raise ParseError(f"managed block '{open_block.label}' is never closed", open_line)
        if buffer:
            segments.append(TextSegment(buffer))

        return cls(segments, trailing_newline=text.endswith('\n') or not text)

    def render(self) -> str:
        lines = self.lines()
        if not lines:
            return ""
        return "\n".join(lines) + ("\n" if self.trailing_newline else "")

    def lines(self) -> List[str]:
        result: List[str] = []
        for segment in self.segments:
            result.extend(segment.render_lines())
        return result

    # ------------------------------------------------------------------
    # sections
    # ------------------------------------------------------------------

    def sections(self) -> List[Section]:
        """All sections in file order; sections never cross a block boundary"""
        sections: List[Section] = []
        line_number = 0
        for segment in self.segments:
            label = segment.label if isinstance(segment, ManagedBlock) else None
            lines = segment.body if isinstance(segment, ManagedBlock) else segment.lines
            if label is not None:
                line_number += 1  # BEGIN sentinel
            current: Optional[Section] = None
            for line in lines:
                line_number += 1
                stripped = line.strip()
                if not stripped or stripped.startswith(';') or stripped.startswith('#'):
                    continue
                header = SECTION_HEADER.match(stripped)
                if header:
                    current = Section(header.group(1).strip(), header.group(2), label, line_number)
                    sections.append(current)
                    continue
                option = split_option(stripped)
                if option and current is not None:
                    current.options.append(option)
            if label is not None:
                line_number += 1  # END sentinel
        return sections

    def find_section(self, name: str, section_type: Optional[str] = None) -> Optional[Section]:
        for section in self.find_sections(name):
            if section_type is None or section.type == section_type:
                return section
        return None

    def find_sections(self, name: str) -> List[Section]:
        return [section for section in self.sections() if section.name == name]

    # ------------------------------------------------------------------
    # managed blocks
    # ------------------------------------------------------------------

    def managed_labels(self) -> List[str]:
        return [segment.label for segment in self.segments if isinstance(segment, ManagedBlock)]

    def get_managed_block(self, label: str) -> Optional[ManagedBlock]:
        for segment in self.segments:
            if isinstance(segment, ManagedBlock) and segment.label == label:
                return segment
        return None

    def replace_managed_block(self, label: str, text: str) -> bool:
        """Replace the body of `label`, inserting a new block when absent.

        Returns True when the rendered document changed.
        """
        validate_label(label)
        body = _body_lines(text)
        existing = self.get_managed_block(label)
        if existing is not None:
            if existing.body == body:
                return False
            existing.body = body
            return True

        self._insert_block(ManagedBlock(label, body))
        return True

    def remove_managed_block(self, label: str) -> bool:
        """Delete the block and the blank line separating it from its neighbour"""
        for index, segment in enumerate(self.segments):
            if isinstance(segment, ManagedBlock) and segment.label == label:
                break
        else:
            return False

        del self.segments[index]
        following = self.segments[index] if index < len(self.segments) else None
        if following is None:
            # the block ended the file: drop the separator written before it
            previous = self.segments[index - 1] if index > 0 else None
            if isinstance(previous, TextSegment) and previous.lines and not previous.lines[-1].strip():
                del previous.lines[-1]
        elif isinstance(following, TextSegment) and following.lines and not following.lines[0].strip():
            del following.lines[0]
        self._normalize()
        return True

    def _insert_block(self, block: ManagedBlock) -> None:
        """Insert before the first unmanaged section header, or at end of file"""
        for index, segment in enumerate(self.segments):
            if not isinstance(segment, TextSegment):
                continue
            position = self._first_header(segment.lines)
            if position is None:
                continue
            # keep a comment written directly above the header attached to it
            while position > 0 and segment.lines[position - 1].strip().startswith(';'):
                position -= 1
            before, after = segment.lines[:position], segment.lines[position:]
            replacement: List[Segment] = []
            if before:
                replacement.append(TextSegment(before))
            replacement.append(block)
            replacement.append(TextSegment([""] + after))
            self.segments[index:index + 1] = replacement
            self._normalize()
            return

        if self.lines():
            self.segments.append(TextSegment([""]))
        self.segments.append(block)
        self._normalize()

    @staticmethod
    def _first_header(lines: List[str]) -> Optional[int]:
        for position, line in enumerate(lines):
            if SECTION_HEADER.match(line.strip()):
                return position
        return None

    def _normalize(self) -> None:
        merged: List[Segment] = []
        for segment in self.segments:
            if isinstance(segment, TextSegment):
                if not segment.lines:
                    continue
                if merged and isinstance(merged[-1], TextSegment):
                    merged[-1].lines.extend(segment.lines)
                    continue
            merged.append(segment)
        self.segments = merged

    # ------------------------------------------------------------------
    # unmanaged sections
    # ------------------------------------------------------------------

    def unmanaged_section_names(self) -> List[str]:
        return [section.name for section in self.sections() if section.managed_label is None]

    def remove_unmanaged_sections(self, names: Iterable[str]) -> int:
        """Remove hand written sections with the given names, returning the count removed"""
        names = set(names)
        removed = 0
        for segment in self.segments:
            if not isinstance(segment, TextSegment):
                continue
            kept: List[str] = []
            pending: List[str] = []
            skipping = False
            for line in segment.lines:
                stripped = line.strip()
                header = SECTION_HEADER.match(stripped)
                if header:
                    if skipping:
                        # comments directly above the next header belong to it
                        tail: List[str] = []
                        while pending and pending[-1].strip().startswith(';'):
                            tail.insert(0, pending.pop())
                        kept.extend(tail)
                        pending = []
                    skipping = header.group(1).strip() in names
                    if skipping:
                        while kept and kept[-1].strip().startswith(';'):
                            kept.pop()
                        removed += 1
                        continue
                if not skipping:
                    kept.append(line)
                elif not stripped or stripped.startswith(';') or stripped.startswith('#'):
                    pending.append(line)
                else:
                    pending = []
            if skipping and pending and not pending[-1].strip():
                kept.append("")
            segment.lines = kept
        if removed:
            self._normalize()
        return removed


def parse(text: str) -> ConfigDocument:
    return ConfigDocument.parse(text)


def render(document: ConfigDocument) -> str:
    return document.render()
