# FILE: edi-structure-viewer/tests/conftest.py

import pytest
import json
import sys
import os
import logging
from pathlib import Path
from typing import List, Optional

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from cdm import CdmDelimiters, CdmDocument, CdmElement, CdmSegment
from edi_schema_models import TransactionSchema
from log_sink import CollectingSink

PROJECT_ROOT = Path(__file__).parent.parent
SCHEMA_DIR = PROJECT_ROOT / "schemas"

# ==============================================================================
# PYTEST CONFIGURATION & HOOKS
# ==============================================================================

def pytest_configure(config):
    """Configure pytest settings and markers."""
    config.addinivalue_line("markers", "unit: Pure unit tests with no external dependencies.")
    config.addinivalue_line("markers", "integration: Tests that load schema files or run the full pipeline.")

@pytest.fixture(scope="session", autouse=True)
def setup_test_environment(pytestconfig):
    """Set up test environment with logging configuration."""
    # Use pytest's log_cli_level if available, otherwise default to INFO
    log_level = pytestconfig.getoption("log_cli_level") or "INFO"
    logging.basicConfig(
        level=log_level.upper(),
        format="[%(asctime)s] [%(levelname)s] [%(name)s:%(lineno)d] - %(message)s",
        stream=sys.stdout,
        force=True,
    )
    logging.info(f"Test logging configured with level: {log_level.upper()}")
    yield

# ==============================================================================
# TEST DATA UTILITIES
# ==============================================================================

def make_segment(segment_id: str, line: int, elements: Optional[List[str]] = None) -> CdmSegment:
    """Builds a segment the way the tokenizer would, without going through parsing."""
    elements = elements or []
    return CdmSegment(
        segment_id=segment_id,
        elements=[CdmElement(value=v) for v in elements],
        line_number=line,
        raw_segment='*'.join([segment_id] + elements),
    )

def make_document(segments: List[CdmSegment]) -> CdmDocument:
    return CdmDocument(segments=segments, delimiters=CdmDelimiters(), raw_edi='...')

# ==============================================================================
# UNIT TEST FIXTURES (Completely isolated, no external dependencies)
# ==============================================================================

@pytest.fixture(scope="session")
def segment_factory():
    """Builds segments without going through the tokenizer."""
    return make_segment

@pytest.fixture(scope="session")
def document_factory():
    return make_document

@pytest.fixture
def log_sink() -> CollectingSink:
    """A fresh sink that records every parser/builder message."""
    return CollectingSink(limit=10000)

@pytest.fixture(scope="session")
def mock_segments() -> List[CdmSegment]:
    """
    Envelope, one billing provider, two subscribers.
    Subscriber 1 has a claim with two service lines, subscriber 2 a claim with one.
    """
    return [
        make_segment('ISA', 1), make_segment('GS', 2), make_segment('ST', 3, ['837']),
        make_segment('BHT', 4), make_segment('HL', 5, ['1', '', '20', '1']),
        make_segment('NM1', 6, ['85']), make_segment('HL', 7, ['2', '1', '22', '0']),
        make_segment('SBR', 8, ['P']), make_segment('NM1', 9, ['IL']),
        make_segment('CLM', 10, ['PATCTRL01', '100.00']), make_segment('LX', 11, ['1']),
        make_segment('SV1', 12), make_segment('LX', 13, ['2']), make_segment('SV1', 14),
        make_segment('HL', 15, ['3', '1', '22', '0']), make_segment('SBR', 16, ['S']),
        make_segment('NM1', 17, ['IL']), make_segment('CLM', 18, ['PATCTRL02', '250.00']),
        make_segment('LX', 19, ['1']), make_segment('SV1', 20),
        make_segment('SE', 21, ['XX', '1239']), make_segment('GE', 22, ['1', '101']),
        make_segment('IEA', 23, ['1', '000000101']),
    ]

@pytest.fixture(scope="session")
def mock_parsed_document(mock_segments) -> CdmDocument:
    return make_document(mock_segments)

@pytest.fixture(scope="session")
def mock_schema_data() -> dict:
    """Raw schema JSON for a trimmed-down 837 with nested 2000A > 2000B > 2300 > 2400 loops."""
    segment_ids = ['ISA', 'GS', 'ST', 'BHT', 'HL', 'NM1', 'SBR', 'CLM', 'LX', 'SV1', 'SE', 'GE', 'IEA']
    return {
        "transactionName": "Test 837",
        "segmentDefinitions": {
            seg_id: {"name": seg_id, "usage": "R", "pos": "000", "max_use": 1, "elements": []}
            for seg_id in segment_ids
        },
        "structure": [
            {"type": "segment", "xid": "ISA", "pos": "010", "usage": "R", "max_use": 1, "name": "ISA"},
            {"type": "segment", "xid": "GS", "pos": "020", "usage": "R", "max_use": 1, "name": "GS"},
            {"type": "segment", "xid": "ST", "pos": "030", "usage": "R", "max_use": 1, "name": "ST"},
            {"type": "segment", "xid": "BHT", "pos": "040", "usage": "R", "max_use": 1, "name": "BHT"},
            {
                "type": "loop", "xid": "2000A", "name": "Billing Provider Loop", "pos": "100", "usage": "R", "repeat": 1, "children": [
                    {"type": "segment", "xid": "HL", "pos": "010", "usage": "R", "max_use": 1, "name": "Billing HL"},
                    {"type": "segment", "xid": "NM1", "pos": "020", "usage": "R", "max_use": 1, "name": "Billing Name"},
                    {
                        "type": "loop", "xid": "2000B", "name": "Subscriber Loop", "pos": "200", "usage": "R", "repeat": ">1", "children": [
                            {"type": "segment", "xid": "HL", "pos": "010", "usage": "R", "max_use": 1, "name": "Subscriber HL"},
                            {"type": "segment", "xid": "SBR", "pos": "020", "usage": "R", "max_use": 1, "name": "Subscriber Info"},
                            {"type": "segment", "xid": "NM1", "pos": "030", "usage": "R", "max_use": 1, "name": "Subscriber Name"},
                            {
                                "type": "loop", "xid": "2300", "name": "Claim Loop", "pos": "300", "usage": "S", "repeat": ">1", "children": [
                                    {"type": "segment", "xid": "CLM", "pos": "010", "usage": "R", "max_use": 1, "name": "Claim Info"},
                                    {
                                        "type": "loop", "xid": "2400", "name": "Service Line Loop", "pos": "020", "usage": "S", "repeat": ">1", "children": [
                                            {"type": "segment", "xid": "LX", "pos": "010", "usage": "R", "max_use": 1, "name": "Service Line #"},
                                            {"type": "segment", "xid": "SV1", "pos": "020", "usage": "R", "max_use": 1, "name": "Service Line Info"},
                                        ]
                                    },
                                ]
                            },
                        ]
                    },
                ]
            },
            {"type": "segment", "xid": "SE", "pos": "970", "usage": "R", "max_use": 1, "name": "SE"},
            {"type": "segment", "xid": "GE", "pos": "980", "usage": "R", "max_use": 1, "name": "GE"},
            {"type": "segment", "xid": "IEA", "pos": "990", "usage": "R", "max_use": 1, "name": "IEA"},
        ]
    }

@pytest.fixture(scope="session")
def mock_schema(mock_schema_data) -> TransactionSchema:
    return TransactionSchema.model_validate(mock_schema_data)

@pytest.fixture(scope="session")
def standalone_schema() -> Optional[TransactionSchema]:
    """
    Loads the bundled 837P schema directly from its file path,
    bypassing the schema manager. Skips when the file is missing or malformed.
    """
    schema_path = SCHEMA_DIR / "837.5010.X222.A1.json"
    if not schema_path.exists():
        pytest.skip(f"Unit test schema file not found at: {schema_path}")
    try:
        with open(schema_path, 'r') as f:
            return TransactionSchema.model_validate(json.load(f))
    except Exception as e:
        pytest.skip(f"Failed to load or parse the schema for unit tests: {e}")

@pytest.fixture(scope="session")
def bundled_schema_dir() -> Path:
    return SCHEMA_DIR

# ==============================================================================
# EDI STRINGS
# ==============================================================================

@pytest.fixture(scope="session")
def simple_837p_edi_string() -> str:
    """Single-line interchange with default delimiters and eight segments."""
    return (
        "ISA*00*          *00*          *ZZ*123456789      *ZZ*11111          *170508*1141*^*00501*000000101*1*P*:~"
        "GS*HC*123456789*11111*20170617*1741*101*X*005010X222A1~"
        "ST*837*1239*005010X222A1~"
        "BHT*0019*00*010*20170617*1741*CH~"
        "NM1*41*2*SUBMITTER*****46*ABC123~"
        "SE*5*1239~"
        "GE*1*101~"
        "IEA*1*000000101~"
    )

@pytest.fixture(scope="session")
def valid_837p_edi_string() -> str:
    """Provides a shared, compliant 837P EDI string, one segment per line."""
    return """
ISA*00*          *00*          *ZZ*SENDERID       *ZZ*RECEIVERID     *240715*1200*^*00501*000000001*0*P*>~
GS*HC*SENDER*RECEIVER*20240715*1200*1*X*005010X222A1~
ST*837*0001*005010X222A1~
BHT*0019*00*1234*20240715*1200*CH~
NM1*41*2*PREMIER BILLING*****46*SUBMITTER1~
PER*IC*JOHN DOE*TE*8005551212~
NM1*40*2*PAYER A*****46*RECEIVER1~
HL*1**20*1~
NM1*85*2*BILLING PROVIDER*****XX*1234567890~
N3*123 MAIN ST~
N4*ANYTOWN*CA*90210~
REF*EI*123456789~
HL*2*1*22*0~
SBR*P*18*GRP123******CI~
NM1*IL*1*DOE*JOHN****MI*SUBID123~
NM1*PR*2*PAYER A*****PI*PAYERID123~
CLM*PATCTRL123*500***11>B>1*Y*A*Y*Y~
DTP*431*D8*20240715~
PWK*OZ*BM***AC*CONTROL123~
HI*BK>87340~
LX*1~
SV1*HC>99213*125*UN*1***1**Y~
DTP*472*D8*20240715~
SE*25*0001~
GE*1*1~
IEA*1*000000001~
""".strip()

@pytest.fixture(scope="session")
def multiple_claims_837p_edi_string() -> str:
    """
    One billing provider and one subscriber with two claims.
    The first claim has two service lines, the second has one.
    """
    return """
ISA*00*          *00*          *ZZ*SENDERID       *ZZ*RECEIVERID     *240715*1200*^*00501*000000001*0*P*>~
GS*HC*SENDER*RECEIVER*20240715*1200*1*X*005010X222A1~
ST*837*0002*005010X222A1~
BHT*0019*00*TXN002*20240715*1200*CH~
NM1*41*2*PREMIER BILLING*****46*SUBMITTER1~
PER*IC*JOHN DOE*TE*8005551212~
NM1*40*2*PAYER B*****46*RECEIVER2~
HL*1**20*1~
NM1*85*2*BILLING PROVIDER 2*****XX*9876543210~
N3*456 OAK AVE~
N4*OTHERCITY*TX*75001~
REF*EI*987654321~
HL*2*1*22*0~
SBR*P*18*GRP456******ZZ~
NM1*IL*1*JOHNSON*MIKE****MI*SUBID002~
NM1*PR*2*PAYER B*****PI*PAYERID456~
CLM*TXN002_CLAIM1*450***11>B>1*Y*A*Y*Y~
DTP*431*D8*20240715~
HI*BK>G473~
LX*1~
SV1*HC>99214*200*UN*1***1**Y~
DTP*472*D8*20240715~
LX*2~
SV1*HC>99215*250*UN*1***2**Y~
DTP*472*D8*20240715~
CLM*TXN002_CLAIM2*175***11>B>1*Y*A*Y*Y~
HI*BK>G473~
LX*1~
SV1*HC>99203*175*UN*1***1**Y~
DTP*472*D8*20240716~
SE*28*0002~
GE*1*1~
IEA*1*000000001~
""".strip()
