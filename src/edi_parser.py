import re
from typing import List, Tuple

from cdm import CdmDelimiters, CdmDocument, CdmElement, CdmSegment, ParseResult
from log_sink import LogSink, no_op_sink

ISA_HEADER_LENGTH = 106
DEFAULT_DELIMITERS = CdmDelimiters(element='*', segment='~', component=':')

# Typical X12 segment IDs: 2 or 3 uppercase letters/digits.
SEGMENT_ID_PATTERN = re.compile(r'[A-Z0-9]{2,3}')
_ALPHANUMERIC = re.compile(r'[a-z0-9]', re.IGNORECASE)


def _show(ch: str) -> str:
    return '\\n' if ch == '\n' else ch

def normalize_line_endings(edi_string: str) -> str:
    return re.sub(r'\r\n|\r', '\n', edi_string)

def detect_delimiters(edi_string: str, log: LogSink = no_op_sink) -> Tuple[CdmDelimiters, bool]:
    """
    Reads the element (position 3), component (104) and segment (105) delimiters from the ISA header.

    Falls back to the X12 defaults when there is no ISA, when the header is too short,
    or when the detected characters are not pairwise distinct. In the last case all three
    revert, never just the offending one.
    """
    if not edi_string.startswith('ISA'):
        log("[PARSE] ISA segment not found at start. Using default delimiters.", 'warn')
        return DEFAULT_DELIMITERS.model_copy(), False

    if len(edi_string) < ISA_HEADER_LENGTH:
        log(f"[PARSE] ISA segment found, but too short (length {len(edi_string)}) to reliably detect all delimiters. Using defaults.", 'warn')
        return DEFAULT_DELIMITERS.model_copy(), False

    # Positions are fixed in the X12 standard
    element = edi_string[3]
    component = edi_string[104]
    segment = edi_string[105]
    log(f"[PARSE] Attempting detection from raw string indices - Element:'{element}', Segment:'{_show(segment)}', Component:'{component}'", 'debug')

    if _ALPHANUMERIC.fullmatch(element) or _ALPHANUMERIC.fullmatch(segment):
        log(f"[PARSE] Warning: Detected Element ('{element}') or Segment ('{_show(segment)}') delimiter is alphanumeric. Check EDI validity.", 'warn')

    if element == segment or element == component or segment == component:
        log(f"[PARSE] Error: Detected delimiters are not unique (Elem:'{element}', Seg:'{_show(segment)}', Comp:'{component}'). Cannot parse reliably. Reverting to defaults.", 'error')
        log("[PARSE] Reverted to default delimiters due to validation failure.", 'info')
        return DEFAULT_DELIMITERS.model_copy(), False

    log("[PARSE] Delimiters successfully detected and assigned.", 'info')
    return CdmDelimiters(element=element, segment=segment, component=component), True


class EdiParser:
    def __init__(self, edi_string: str, log: LogSink = no_op_sink):
        self.edi_string = edi_string or ''
        self.log = log
        self.normalized = normalize_line_endings(self.edi_string)
        self.delimiters = DEFAULT_DELIMITERS.model_copy()
        self.delimiters_detected = False

    @property
    def element_delimiter(self) -> str:
        return self.delimiters.element

    @property
    def segment_terminator(self) -> str:
        return self.delimiters.segment

    @property
    def component_separator(self) -> str:
        return self.delimiters.component

    def _segment_separator(self) -> re.Pattern:
        # The separator also swallows whitespace following the terminator (typically a line break).
        if self.delimiters.segment == '\n':
            return re.compile(r'(\n\s*)')
        return re.compile('(' + re.escape(self.delimiters.segment) + r'\s*)')

    def _segmentize(self) -> List[CdmSegment]:
        pieces = self._segment_separator().split(self.normalized.strip())
        fragments = pieces[0::2]
        separators = pieces[1::2] + ['']

        if fragments and fragments[-1] == '':
            fragments.pop()

        self.log(f"[PARSE] Found {len(fragments)} potential segment strings after split", 'debug')

        segments: List[CdmSegment] = []
        line_number = 1
        for fragment, separator in zip(fragments, separators):
            approx_line = line_number
            # Embedded line breaks plus the ones consumed by the separator itself.
            line_number += fragment.count('\n') + separator.count('\n')

            clean_seg = fragment.strip()
            if not clean_seg: continue

            parts = clean_seg.split(self.delimiters.element)
            segment_id = parts[0]

            if not segment_id or not SEGMENT_ID_PATTERN.fullmatch(segment_id):
                self.log(f"[PARSE] Invalid or non-standard segment ID \"{segment_id}\" found at approx line {approx_line}. Skipping. Raw Trimmed: \"{clean_seg}\"", 'warn')
                continue

            self.log(f"[PARSE-VALID] Identified segment {segment_id} (Line {approx_line})", 'info')
            elements = [CdmElement(value=value) for value in parts[1:]]
            segments.append(CdmSegment(segment_id=segment_id, elements=elements, line_number=approx_line, raw_segment=clean_seg))
        return segments

    def parse(self) -> ParseResult:
        self.log("[PARSE] Starting EDI document parsing", 'info')

        if not self.edi_string.strip():
            self.log("[PARSE] Input string is empty", 'warn')
            return ParseResult(error="EDI string is empty.")

        self.log(f"[PARSE] Normalized string (length: {len(self.normalized)})", 'debug')
        self.delimiters, self.delimiters_detected = detect_delimiters(self.normalized, self.log)

        try:
            self.log(f"[PARSE] Using Delimiters - Element: '{self.delimiters.element}', Segment: '{_show(self.delimiters.segment)}'", 'info')
            segments = self._segmentize()
        except Exception as e:
            error_msg = f"Parsing failed during segment processing: {e}"
            self.log(f"[PARSE] {error_msg}", 'error')
            return ParseResult(error=error_msg)

        if not segments:
            error_msg = "No valid segments found after parsing"
            self.log(f"[PARSE] {error_msg}", 'error')
            return ParseResult(error=error_msg)

        self.log(f"[PARSE] Successfully parsed {len(segments)} total segments", 'info')
        return ParseResult(data=CdmDocument(segments=segments, delimiters=self.delimiters, raw_edi=self.normalized))


def parse_edi(edi_string: str, log: LogSink = no_op_sink) -> ParseResult:
    return EdiParser(edi_string, log).parse()

def format_edi_segments(segments: List[CdmSegment], segment_delimiter: str) -> str:
    """Re-joins segments one per line for display, each closed by the segment delimiter."""
    if not segments:
        return ''
    if segment_delimiter == '\n':
        return '\n'.join(seg.raw_segment.strip() for seg in segments)
    joined = (segment_delimiter + '\n').join(seg.raw_segment.strip() for seg in segments)
    if segments[-1].raw_segment.strip().endswith(segment_delimiter):
        return joined
    return joined + segment_delimiter
