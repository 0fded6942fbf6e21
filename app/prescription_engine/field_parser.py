# app/prescription_engine/field_parser.py

"""
Prescription Field Parser - turns raw OCR text into an editable draft.
This is a DETERMINISTIC heuristic layer (no AI involved): first match wins,
misses become None / empty strings, and nothing here ever raises.
"""
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)


FIELD_KEYWORDS = {
    "doctor_name": ("dr", "doctor", "physician", "md"),
    "patient_name": ("patient", "name", "mr", "mrs", "ms"),
    "date": ("date", "dated"),
    "diagnosis": ("diagnosis", "condition", "complaint"),
    "instructions": ("instructions", "directions", "advice", "note"),
}

MEDICATION_KEYWORDS = ("tablet", "capsule", "syrup", "mg", "ml", "dose", "tab", "cap")

LABEL_PREFIX = re.compile(r"^[^:\n]*:\s*")
DOSAGE_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*(mg|ml|g|mcg|iu)", re.IGNORECASE)
DURATION_PATTERN = re.compile(r"(?:for\s*)?(\d+)\s*(days?|weeks?|months?)", re.IGNORECASE)

# Ordered: numeric forms, then named forms, then Latin abbreviations
FREQUENCY_PATTERNS = (
    (re.compile(r"(\d+)\s*times?\s*(?:a\s*)?day", re.IGNORECASE), None),
    (re.compile(r"(\d+)\s*times?\s*daily", re.IGNORECASE), None),
    (re.compile(r"once\s*daily", re.IGNORECASE), "Once daily"),
    (re.compile(r"twice\s*daily", re.IGNORECASE), "Twice daily"),
    (re.compile(r"thrice\s*daily", re.IGNORECASE), "Three times daily"),
    (re.compile(r"\bbid\b", re.IGNORECASE), "Twice daily"),
    (re.compile(r"\btid\b", re.IGNORECASE), "Three times daily"),
    (re.compile(r"\bqid\b", re.IGNORECASE), "Four times daily"),
)


@dataclass
class ParsedMedication:
    name: str = ""
    dosage: str = ""
    frequency: str = ""
    duration: str = ""


@dataclass
class ParsedPrescription:
    doctor_name: Optional[str] = None
    patient_name: Optional[str] = None
    date: Optional[str] = None
    diagnosis: Optional[str] = None
    instructions: Optional[str] = None
    medications: List[ParsedMedication] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def split_lines(text: Optional[str]) -> List[str]:
    """Non-blank lines, stripped."""
    if not text:
        return []
    return [line.strip() for line in text.splitlines() if line.strip()]


def extract_field(lines: Iterable[str], keywords: Iterable[str]) -> Optional[str]:
    """First line containing any keyword, minus an optional leading `label:`."""
    keywords = tuple(keywords)
    for line in lines:
        lower_line = line.lower()
        if any(keyword in lower_line for keyword in keywords):
            return LABEL_PREFIX.sub("", line, count=1).strip()
    return None


def extract_dosage(line: str) -> str:
    match = DOSAGE_PATTERN.search(line)
    return f"{match.group(1)}{match.group(2).lower()}" if match else ""


def extract_frequency(line: str) -> str:
    for pattern, label in FREQUENCY_PATTERNS:
        match = pattern.search(line)
        if match:
            return label or f"{match.group(1)} times daily"
    return ""


def extract_duration(line: str) -> str:
    match = DURATION_PATTERN.search(line)
    return f"{match.group(1)} {match.group(2).lower()}" if match else ""


def is_medication_line(line: str) -> bool:
    lower_line = line.lower()
    return any(keyword in lower_line for keyword in MEDICATION_KEYWORDS)


def extract_medications(lines: Iterable[str]) -> List[ParsedMedication]:
    medications = []
    for line in lines:
        if not is_medication_line(line):
            continue
        parts = line.split()
        if not parts:
            continue
        medications.append(ParsedMedication(
            name=parts[0],
            dosage=extract_dosage(line),
            frequency=extract_frequency(line),
            duration=extract_duration(line),
        ))
    return medications


def parse_prescription_text(text: Optional[str]) -> ParsedPrescription:
    """
    Build a draft prescription from raw OCR text.

    Args:
        text: Raw text as returned by the OCR engine (may be empty or None)

    Returns:
        ParsedPrescription with None for undetected fields and a list of
        medication candidates whose unmatched parts are empty strings.
    """
    lines = split_lines(text)
    parsed = ParsedPrescription(
        medications=extract_medications(lines),
        **{name: extract_field(lines, keywords) for name, keywords in FIELD_KEYWORDS.items()},
    )
    logger.debug(f"Parsed {len(lines)} lines -> {len(parsed.medications)} medication candidates")
    return parsed
