"""
Coding-system domain model.

Every clinical code carries an explicit CodingSystem so that lookups key on
(coding_system, code) and never on the bare code.
"""

import re
from enum import Enum


class CodingSystem(Enum):
    """Clinical terminologies the registry and normalizer understand."""
    ICD10 = "ICD10"
    READ2 = "READ2"
    SNOMED = "SNOMED"
    OPCS4 = "OPCS4"

    @classmethod
    def from_label(cls, label: str) -> "CodingSystem":
        """
        Convert a human-readable label into the corresponding enum.
        Strips punctuation and normalizes spacing/casing.
        """
        key = re.sub(r"[\s\-_.()]", "", str(label)).lower()
        mapping = {
            "icd10": cls.ICD10,
            "icd": cls.ICD10,
            "read": cls.READ2,
            "read2": cls.READ2,
            "readv2": cls.READ2,
            "readcode": cls.READ2,
            "snomed": cls.SNOMED,
            "snomedct": cls.SNOMED,
            "sct": cls.SNOMED,
            "opcs": cls.OPCS4,
            "opcs4": cls.OPCS4,
        }
        try:
            return mapping[key]
        except KeyError:
            raise ValueError(f"Unknown coding system label: {label!r}")


# Patterns
_ICD10_PATTERN = re.compile(r"^[A-Z][0-9][0-9A-Z]{0,5}$")
_OPCS4_PATTERN = re.compile(r"^[A-Z][0-9]{2,3}$")
_READ2_PATTERN = re.compile(r"^[A-Za-z0-9.]{5}$")
_READ2_SYNONYM_PATTERN = re.compile(r"^(?P<concept>[A-Za-z0-9.]{5})\d{2}$")
_SNOMED_PATTERN = re.compile(r"^\d{6,18}$")

# ICD-10 chapter codes are never shorter than a three character category
_MIN_PREFIX_LENGTH = {CodingSystem.ICD10: 3, CodingSystem.OPCS4: 3}


def normalize_code(coding_system: CodingSystem, raw_code) -> str:
    """
    Bring a raw code into the canonical spelling for its coding system.

    - ICD-10 / OPCS-4: upper-case, dots and whitespace removed ('e11.9' -> 'E119')
    - Read v2: case preserved, exactly five characters; seven character
      term codes ('G30..00') are truncated to their concept ('G30..')
    - SNOMED CT: digits only

    Raises ValueError if the code cannot be a member of the coding system.
    """
    if raw_code is None:
        raise ValueError("Missing code")
    text = str(raw_code).strip()
    if coding_system is CodingSystem.READ2:
        m = _READ2_SYNONYM_PATTERN.match(text)
        if m:
            text = m.group("concept")
        if not _READ2_PATTERN.match(text):
            raise ValueError(f"Invalid Read v2 code: {raw_code!r}")
        return text
    if coding_system is CodingSystem.SNOMED:
        # spreadsheets like to hand concept ids back as floats
        if text.endswith(".0"):
            text = text[:-2]
        if not _SNOMED_PATTERN.match(text):
            raise ValueError(f"Invalid SNOMED CT concept id: {raw_code!r}")
        return text

    text = re.sub(r"[\s.]", "", text).upper()
    pattern = _ICD10_PATTERN if coding_system is CodingSystem.ICD10 else _OPCS4_PATTERN
    if not pattern.match(text):
        raise ValueError(f"Invalid {coding_system.value} code: {raw_code!r}")
    return text


def ancestors(coding_system: CodingSystem, code: str) -> list[str]:
    """
    Codes that sit above `code` in its coding system's hierarchy, nearest first.

    Read v2 encodes the hierarchy in the code itself: 'G30..' is the parent of
    'G301.' which is the parent of 'G3011'. ICD-10 and OPCS-4 use prefixes down
    to the three character category. SNOMED CT has no lexical hierarchy.
    """
    if coding_system is CodingSystem.READ2:
        chars = list(code)
        parents = []
        for i in range(4, 0, -1):
            if chars[i] == ".":
                continue
            chars[i] = "."
            parents.append("".join(chars))
        return parents
    if coding_system is CodingSystem.SNOMED:
        return []
    min_length = _MIN_PREFIX_LENGTH[coding_system]
    return [code[:i] for i in range(len(code) - 1, min_length - 1, -1)]
