# Lookups against a loaded TransactionSchema, used by anything that renders segments
# and elements with their schema names.
from typing import List, Optional, Union

from pydantic import BaseModel

from cdm import CdmSegment
from edi_schema_models import (
    TransactionSchema, SegmentDefinition, ElementAttribute, CompositeAttribute, StructureLoop,
)

_USAGE_TEXT = {'R': 'Required', 'S': 'Situational', 'N': 'Not Used'}

class ElementDescription(BaseModel):
    element_id: str
    name: str
    data_ele: Optional[str] = None
    usage: str
    usage_text: str
    is_composite: bool = False
    valid_codes: List[str] = []
    value: str

def usage_text(usage: Optional[str]) -> str:
    return _USAGE_TEXT.get((usage or '').upper(), 'Unknown Usage')

def get_segment_definition(schema: Optional[TransactionSchema], segment_id: str) -> Optional[SegmentDefinition]:
    if not schema or not segment_id:
        return None
    return schema.segmentDefinitions.get(segment_id)

def get_element_definition(
    segment_def: Optional[SegmentDefinition], element_index: int
) -> Optional[Union[ElementAttribute, CompositeAttribute]]:
    """
    Finds the element definition for a 0-based element index.

    Schema sequence numbers are two-digit strings ("01", "02", ...), so index 0 maps to "01".
    """
    if not segment_def or not segment_def.elements:
        return None
    target_seq = str(element_index + 1).zfill(2)
    return next((el for el in segment_def.elements if str(el.seq).zfill(2) == target_seq), None)

def get_segment_display_name(
    schema: Optional[TransactionSchema], segment_id: str, parent_loop: Optional[StructureLoop] = None
) -> str:
    # The same segment code carries different names in different loops (NM1 is
    # "BILLING PROVIDER NAME" in 2010AA and "SUBSCRIBER NAME" in 2010BA).
    if parent_loop:
        link = next(
            (c for c in parent_loop.children if c.type == 'segment' and c.xid == segment_id), None
        )
        if link and link.name:
            return link.name
    generic = get_segment_definition(schema, segment_id)
    if generic and generic.name:
        return generic.name
    return f"Segment {segment_id}"

def describe_element(schema: Optional[TransactionSchema], segment: CdmSegment, element_index: int) -> ElementDescription:
    position = str(element_index + 1).zfill(2)
    definition = get_element_definition(get_segment_definition(schema, segment.segment_id), element_index)
    value = segment.get_element(element_index + 1) or ''

    if not definition:
        return ElementDescription(
            element_id=f"{segment.segment_id}{position}",
            name=f"Element {position}",
            usage='?',
            usage_text=usage_text(None),
            value=value,
        )

    codes = []
    if isinstance(definition, ElementAttribute) and definition.valid_codes:
        codes = definition.valid_codes.as_list()
    usage = (definition.usage or '?').upper()
    return ElementDescription(
        element_id=f"{segment.segment_id}{position}",
        name=definition.name or f"Element {position}",
        data_ele=definition.data_ele or None,
        usage=usage,
        usage_text=usage_text(usage),
        is_composite=definition.is_composite,
        valid_codes=codes,
        value=value,
    )
