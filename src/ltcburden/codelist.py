"""
Code-list registry.

Holds the named condition definitions of a study. Each definition is a set of
(coding_system, code) pairs plus per-condition rules:

- min_occurrences: qualifying occurrences required before the condition is
  ascertained (default 1)
- count_repeats: when False, the same code recorded twice on one date counts
  once and occurrences are counted as distinct dates
- match_descendants: when True, a listed code also matches every code below
  it in the coding system's hierarchy
- exclude: codes that never count toward the condition, even when they sit
  under an included parent code
- lookback_years: when set, the min_occurrences threshold has to be met
  within that many years (e.g. four prescriptions within one year)
- requires: another condition that must itself be ascertained on the same
  date (e.g. a diagnosis corroborated by a treatment code list)
- supporting: the condition only corroborates others and is never reported
  as burden

The registry is built once, validated eagerly, and never mutated afterwards,
so worker processes can share it freely.
"""

import typing
from collections import defaultdict
from dataclasses import dataclass

import pandas as pd

from .coding import CodingSystem, ancestors, normalize_code
from .errors import ConfigError

CODELIST_KEY_COLUMNS = {"condition_name", "coding_system", "code"}
CODELIST_OPTIONAL_COLUMNS = {
    "min_occurrences", "count_repeats", "match_descendants", "exclude",
    "lookback_years", "requires", "supporting",
}

DEFAULT_MIN_OCCURRENCES = 1

# per-condition rules and their defaults when no row sets them
_RULE_DEFAULTS = {
    "min_occurrences": DEFAULT_MIN_OCCURRENCES,
    "count_repeats": False,
    "match_descendants": False,
    "lookback_years": None,
    "requires": None,
    "supporting": False,
}


@dataclass(frozen=True)
class CodeListEntry:
    """
    One row of a code list.

    Attributes:
        condition_name: Name of the condition the code defines.
        coding_system: Terminology the code belongs to.
        code: Canonical spelling of the code (see coding.normalize_code).
        min_occurrences: Optional occurrence threshold for the condition.
        count_repeats: Optional repeat-counting rule for the condition.
        match_descendants: Optional hierarchy rule for the condition.
        exclude: True if the code removes matches instead of adding them.
        lookback_years: Optional window for the occurrence threshold.
        requires: Optional name of a corroborating condition.
        supporting: Optional flag for corroboration-only conditions.
    """

    condition_name: str
    coding_system: CodingSystem
    code: str
    min_occurrences: int | None = None
    count_repeats: bool | None = None
    match_descendants: bool | None = None
    exclude: bool = False
    lookback_years: int | None = None
    requires: str | None = None
    supporting: bool | None = None

    def __post_init__(self):
        if not isinstance(self.condition_name, str) or not self.condition_name.strip():
            raise ValueError(f"Invalid condition name: {self.condition_name!r}")
        if not isinstance(self.coding_system, CodingSystem):
            raise ValueError(f"Invalid coding system: {self.coding_system!r}")
        for rule in ("min_occurrences", "lookback_years"):
            value = getattr(self, rule)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 1):
                raise ValueError(f"{rule} must be an integer >= 1, got {value!r}")
        if self.requires is not None and (not isinstance(self.requires, str) or not self.requires.strip()):
            raise ValueError(f"Invalid required condition: {self.requires!r}")


@dataclass(frozen=True)
class ConditionDefinition:
    """The resolved, validated definition of one condition."""

    name: str
    codes: frozenset[tuple[CodingSystem, str]]
    excluded_codes: frozenset[tuple[CodingSystem, str]]
    min_occurrences: int
    count_repeats: bool
    match_descendants: bool
    lookback_years: int | None = None
    requires: str | None = None
    supporting: bool = False


class CodeListRegistry:
    """
    Immutable lookup from (coding_system, code) to condition names.

    Construction raises ConfigError when:
      - an entry names an unknown coding system or an invalid code
      - a (coding_system, code) pair appears twice within one condition
      - rows of the same condition disagree on a rule
      - a condition has exclusion codes only
      - a condition requires an unknown condition, or requirements form a cycle
    """

    def __init__(self, entries: typing.Iterable[CodeListEntry]):
        self._entries = tuple(entries)
        by_condition: dict[str, list[CodeListEntry]] = defaultdict(list)
        for entry in self._entries:
            if not isinstance(entry, CodeListEntry):
                raise ConfigError(f"Expected a CodeListEntry, got {type(entry).__name__}")
            by_condition[entry.condition_name].append(entry)

        definitions: dict[str, ConditionDefinition] = {}
        for name, condition_entries in by_condition.items():
            definitions[name] = self._resolve_definition(name, condition_entries)
        self._definitions = definitions
        self._check_requirements()

        # exact index plus a second index consulted through a code's ancestors
        self._exact: dict[tuple[CodingSystem, str], set[str]] = defaultdict(set)
        self._descendant: dict[tuple[CodingSystem, str], set[str]] = defaultdict(set)
        self._excluded: dict[tuple[CodingSystem, str], set[str]] = defaultdict(set)
        self._excluded_descendant: dict[tuple[CodingSystem, str], set[str]] = defaultdict(set)
        for definition in definitions.values():
            for key in definition.codes:
                self._exact[key].add(definition.name)
                if definition.match_descendants:
                    self._descendant[key].add(definition.name)
            for key in definition.excluded_codes:
                self._excluded[key].add(definition.name)
                if definition.match_descendants:
                    self._excluded_descendant[key].add(definition.name)

    @staticmethod
    def _resolve_definition(name: str, entries: list[CodeListEntry]) -> ConditionDefinition:
        seen: set[tuple[CodingSystem, str]] = set()
        codes: set[tuple[CodingSystem, str]] = set()
        excluded: set[tuple[CodingSystem, str]] = set()
        for entry in entries:
            key = (entry.coding_system, entry.code)
            if key in seen:
                raise ConfigError(
                    f"Condition {name!r}: duplicate code {entry.coding_system.value}:{entry.code}"
                )
            seen.add(key)
            (excluded if entry.exclude else codes).add(key)

        if not codes:
            raise ConfigError(f"Condition {name!r}: no inclusion codes")

        rules: dict[str, typing.Any] = {}
        for rule, default in _RULE_DEFAULTS.items():
            values = {getattr(e, rule) for e in entries if getattr(e, rule) is not None}
            if len(values) > 1:
                raise ConfigError(
                    f"Condition {name!r}: conflicting {rule} values {sorted(values)}"
                )
            rules[rule] = values.pop() if values else default

        return ConditionDefinition(
            name=name,
            codes=frozenset(codes),
            excluded_codes=frozenset(excluded),
            **rules,
        )

    def _check_requirements(self) -> None:
        for name in self._definitions:
            chain = [name]
            required = self._definitions[name].requires
            while required is not None:
                if required not in self._definitions:
                    raise ConfigError(f"Condition {name!r}: requires unknown condition {required!r}")
                if required in chain:
                    raise ConfigError(f"Condition {name!r}: circular requirement {' -> '.join(chain + [required])}")
                chain.append(required)
                required = self._definitions[required].requires

    @classmethod
    def from_mapping(cls, code_lists: typing.Mapping[str, typing.Mapping[str, typing.Any]]) -> "CodeListRegistry":
        """
        Build a registry from the in-memory shape upstream collaborators hand over:

            {
                "Diabetes": {
                    "codes": [("ICD10", "E11"), ("READ2", "C10..")],
                    "min_occurrences": 2,
                    "count_repeats": False,
                    "match_descendants": True,
                    "exclude": [("ICD10", "E113")],
                },
                "Asthma": {
                    "codes": [("READ2", "H33..")],
                    "requires": "Asthma treatment",
                },
                "Asthma treatment": {
                    "codes": [("READ2", "c1...")],
                    "lookback_years": 1,
                    "supporting": True,
                },
            }
        """
        entries: list[CodeListEntry] = []
        for name, spec in code_lists.items():
            flags = {
                "min_occurrences": spec.get("min_occurrences"),
                "count_repeats": spec.get("count_repeats"),
                "match_descendants": spec.get("match_descendants"),
                "lookback_years": spec.get("lookback_years"),
                "requires": spec.get("requires"),
                "supporting": spec.get("supporting"),
            }
            for system, code in spec.get("codes", ()):
                entries.append(_make_entry(name, system, code, exclude=False, **flags))
            for system, code in spec.get("exclude", ()):
                entries.append(_make_entry(name, system, code, exclude=True, **flags))
        return cls(entries)

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "CodeListRegistry":
        """
        Build a registry from a code-list table (one row per code).
        Required columns: condition_name, coding_system, code.
        Optional columns: min_occurrences, count_repeats, match_descendants, exclude,
        lookback_years, requires, supporting.
        Blank optional cells mean "not set on this row".
        """
        missing = CODELIST_KEY_COLUMNS - set(df.columns)
        if missing:
            raise ConfigError(f"Code-list table: missing required columns: {sorted(missing)}")

        entries: list[CodeListEntry] = []
        for index, row in df.iterrows():
            try:
                entries.append(
                    _make_entry(
                        row["condition_name"],
                        row["coding_system"],
                        row["code"],
                        min_occurrences=_optional_int(row.get("min_occurrences"), "min_occurrences"),
                        count_repeats=_optional_bool(row.get("count_repeats")),
                        match_descendants=_optional_bool(row.get("match_descendants")),
                        exclude=bool(_optional_bool(row.get("exclude"))),
                        lookback_years=_optional_int(row.get("lookback_years"), "lookback_years"),
                        requires=_optional_str(row.get("requires")),
                        supporting=_optional_bool(row.get("supporting")),
                    )
                )
            except ConfigError as exception:
                raise ConfigError(f"Code-list table, row {index}: {exception}") from exception
        return cls(entries)

    # read-only API

    def lookup(self, coding_system: CodingSystem, code: str) -> frozenset[str]:
        """
        Condition names the code counts toward (possibly empty).
        `code` must already be in canonical form.
        """
        key = (coding_system, code)
        matched = set(self._exact.get(key, ()))
        vetoed = set(self._excluded.get(key, ()))
        if self._descendant or self._excluded_descendant:
            for parent in ancestors(coding_system, code):
                parent_key = (coding_system, parent)
                matched |= self._descendant.get(parent_key, set())
                vetoed |= self._excluded_descendant.get(parent_key, set())
        return frozenset(matched - vetoed)

    def min_occurrences(self, condition_name: str) -> int:
        return self.definition(condition_name).min_occurrences

    def count_repeats(self, condition_name: str) -> bool:
        return self.definition(condition_name).count_repeats

    def definition(self, condition_name: str) -> ConditionDefinition:
        try:
            return self._definitions[condition_name]
        except KeyError:
            raise KeyError(f"Unknown condition: {condition_name!r}")

    def without(self, *condition_names: str) -> "CodeListRegistry":
        """A new registry with the named conditions left out (e.g. the index event's code list)."""
        unknown = set(condition_names) - set(self._definitions)
        if unknown:
            raise ConfigError(f"Unknown conditions: {sorted(unknown)}")
        return CodeListRegistry(e for e in self._entries if e.condition_name not in condition_names)

    @property
    def condition_names(self) -> list[str]:
        return sorted(self._definitions)

    @property
    def reported_condition_names(self) -> list[str]:
        """Conditions reported as burden, i.e. all but the supporting ones."""
        return sorted(name for name, definition in self._definitions.items() if not definition.supporting)

    def __contains__(self, condition_name: object) -> bool:
        return condition_name in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    def __repr__(self) -> str:
        return f"CodeListRegistry(conditions={self.condition_names!r})"


def _make_entry(condition_name, coding_system, code, *, exclude: bool, **rules) -> CodeListEntry:
    """Build a CodeListEntry, turning every validation failure into a ConfigError."""
    if _is_blank(condition_name):
        raise ConfigError("Missing condition name")
    if _is_blank(coding_system):
        raise ConfigError(f"Condition {condition_name!r}: missing coding system")
    try:
        system = coding_system if isinstance(coding_system, CodingSystem) else CodingSystem.from_label(coding_system)
        return CodeListEntry(
            condition_name=str(condition_name).strip(),
            coding_system=system,
            code=normalize_code(system, code),
            exclude=exclude,
            **rules,
        )
    except (ValueError, TypeError) as exception:
        raise ConfigError(f"Condition {condition_name!r}: {exception}") from exception


def _is_blank(value: typing.Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return isinstance(value, float) and pd.isna(value)


def _optional_int(value: typing.Any, rule: str) -> int | None:
    if _is_blank(value):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{rule} must be a whole number, got {value!r}")
    if not number.is_integer():
        raise ConfigError(f"{rule} must be a whole number, got {value!r}")
    return int(number)


def _optional_str(value: typing.Any) -> str | None:
    return None if _is_blank(value) else str(value).strip()


def _optional_bool(value: typing.Any) -> bool | None:
    """
    Boolean cells of a code-list table:
    - True for: 1, 'true', 't', 'yes', 'y' (case-insensitive)
    - False for: 0, 'false', 'f', 'no', 'n'
    - None for blanks and NaN
    """
    if isinstance(value, bool):
        return value
    if value is None or pd.isna(value):
        return None
    s = str(value).strip().lower()
    if s in {"1", "1.0", "true", "t", "yes", "y"}:
        return True
    if s in {"0", "0.0", "false", "f", "no", "n"}:
        return False
    if s == "":
        return None
    raise ConfigError(f"Expected a yes/no value, got {value!r}")
