from pydantic import BaseModel, Discriminator, Field, Tag
from typing import Any, Dict, List, Optional, Union, Literal, Annotated

# Models for the pre-built JSON transaction schemas (837P, 837I, 835, 277CA, ...).
# Keys not modelled here (e.g. 'elementsByXid') are ignored on load.

UNBOUNDED_REPEAT = '>1'

# --- Models for Element and Segment Definitions ---
class ValidCodes(BaseModel):
    code: Union[str, int, float, List[Union[str, int, float]]]

    def as_list(self) -> List[str]:
        if isinstance(self.code, list):
            return [str(c) for c in self.code]
        return [str(self.code)]

class ElementAttribute(BaseModel):
    xid: str
    data_ele: str = ''
    name: str = ''
    usage: str = 'S'
    seq: Union[str, int]
    valid_codes: Optional[ValidCodes] = None
    regex: Optional[str] = None
    repeat: Optional[Union[str, int]] = None

    @property
    def is_composite(self) -> bool:
        return False

class CompositeAttribute(BaseModel):
    xid: str
    data_ele: str = ''
    name: str = ''
    usage: str = 'S'
    seq: Union[str, int]
    repeat: Optional[Union[str, int]] = None
    elements: List[ElementAttribute]

    @property
    def is_composite(self) -> bool:
        return len(self.elements) > 0

def _element_kind(value: Any) -> str:
    elements = value.get('elements') if isinstance(value, dict) else getattr(value, 'elements', None)
    return 'composite' if elements else 'simple'

ElementDefinition = Annotated[
    Union[Annotated[CompositeAttribute, Tag('composite')], Annotated[ElementAttribute, Tag('simple')]],
    Discriminator(_element_kind),
]

class SegmentDefinition(BaseModel):
    name: str
    usage: str = 'S'
    pos: Optional[str] = None
    max_use: Union[str, int] = 1
    syntax: Optional[Union[str, List[str]]] = None
    elements: List[ElementDefinition] = Field(default_factory=list)

# --- Structural Models ---
class StructureSegment(BaseModel):
    """A segment link: a segment as it appears at one position of a loop, with its contextual name."""
    type: Literal['segment']
    xid: str
    pos: Optional[str] = None
    usage: str = 'S'
    max_use: Union[str, int] = 1
    name: str = ''

class StructureLoop(BaseModel):
    type: Literal['loop']
    xid: str
    name: str = ''
    usage: str = 'S'
    pos: Optional[str] = None
    repeat: Union[str, int] = 1
    children: List['StructureChild'] = Field(default_factory=list)

StructureChild = Annotated[Union[StructureLoop, StructureSegment], Field(discriminator='type')]

class TransactionSchema(BaseModel):
    transactionName: str
    segmentDefinitions: Dict[str, SegmentDefinition] = Field(default_factory=dict)
    structure: List[StructureChild] = Field(default_factory=list)

# Rebuild models to resolve forward references.
StructureLoop.model_rebuild()
TransactionSchema.model_rebuild()


def _parse_leading_int(value: Union[str, int, None]) -> Optional[int]:
    if isinstance(value, int):
        return value
    digits = ''
    for ch in str(value or '').strip():
        if not ch.isdigit(): break
        digits += ch
    return int(digits) if digits else None

def parse_repeat(value: Union[str, int, None]) -> Optional[int]:
    """Loop repeat cardinality. None means unbounded; unparseable or zero values count as 1."""
    if str(value).strip() == UNBOUNDED_REPEAT:
        return None
    return _parse_leading_int(value) or 1

def parse_max_use(value: Union[str, int, None]) -> int:
    return _parse_leading_int(value) or 1
