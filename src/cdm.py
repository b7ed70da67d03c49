from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Iterator, List, Literal, Optional, Union, Annotated

from edi_schema_models import StructureLoop

# Canonical Data Model (CDM) for a tokenized EDI document and the hierarchical
# tree the structure builder produces from it.

class CdmElement(BaseModel):
    """A single data element. Composite values are kept raw."""
    model_config = ConfigDict(frozen=True)

    value: str

class CdmSegment(BaseModel):
    """Represents a single EDI segment."""
    model_config = ConfigDict(frozen=True)

    type: Literal['segment'] = 'segment'
    segment_id: str
    elements: List[CdmElement] = Field(default_factory=list)
    line_number: int
    raw_segment: str # Store the original (trimmed) segment string for reference

    def get_element(self, position: int) -> Optional[str]:
        """Retrieves the value of an element by its position (1-based index)."""
        if 1 <= position <= len(self.elements):
            return self.elements[position - 1].value
        return None

    def element_values(self) -> List[str]:
        return [element.value for element in self.elements]

class CdmDelimiters(BaseModel):
    element: str = '*'
    segment: str = '~'
    component: Optional[str] = ':'

class CdmDocument(BaseModel):
    """The tokenizer output: every accepted segment, the delimiters used and the normalized source."""
    segments: List[CdmSegment]
    delimiters: CdmDelimiters
    raw_edi: str

class ParseResult(BaseModel):
    """Carries either the parsed document or an error message, never both."""
    data: Optional[CdmDocument] = None
    error: Optional[str] = None

    @model_validator(mode='after')
    def _exactly_one_slot(self) -> 'ParseResult':
        if (self.data is None) == (self.error is None):
            raise ValueError("ParseResult needs exactly one of data or error")
        return self

    @property
    def ok(self) -> bool:
        return self.data is not None and self.error is None

class CdmLoopInstance(BaseModel):
    """
    One realized occurrence of a schema loop (e.g. the second 2400 service line of a claim).
    Children are segments and nested loop instances in document order.
    """
    type: Literal['loop'] = 'loop'
    definition: StructureLoop = Field(exclude=True)
    loop_id: str
    instance_number: int
    children: List['CdmNode'] = Field(default_factory=list)

    @property
    def name(self) -> str:
        return self.definition.name

CdmNode = Annotated[Union[CdmLoopInstance, CdmSegment], Field(discriminator='type')]

CdmLoopInstance.model_rebuild()


def iter_segments(nodes: List[CdmNode]) -> Iterator[CdmSegment]:
    """Yields every segment reachable from `nodes`, depth-first in document order."""
    for node in nodes:
        if node.type == 'segment':
            yield node
        else:
            yield from iter_segments(node.children)

def count_segments(nodes: List[CdmNode]) -> int:
    return sum(1 for _ in iter_segments(nodes))
