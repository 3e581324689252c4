#!/usr/bin/env python3
"""
Schedule Config - declarative category rules for the sorter.

A schedule configuration has two shapes:
- the editable form: plain dicts/lists (what users edit, what gets stored
  as JSON or YAML), validated at the boundary by validate_schedule_config()
- the compiled form: CompiledScheduleConfig, with filename patterns turned
  into ready-to-use regular expressions

Editable form:
    {
        "schedules": [
            {"id": "A_Real_Estate", "label": "Schedule A - Real Estate",
             "keywords": [{"term": "deed", "weight": 8}],
             "small_terms": [{"term": "acre", "weight": 2}]},
        ],
        "filename_rules": [
            {"pattern": "\\bdeed\\b", "schedule": "A_Real_Estate"},
        ],
    }

Order matters in both lists: schedules break score ties in declaration
order, and filename rules are tried top to bottom.
"""

import copy
import hashlib
import json
import math
import re
from dataclasses import dataclass
from typing import Optional


class ConfigValidationError(ValueError):
    """Raised when an invalid schedule configuration is about to be adopted."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid schedule configuration")


# ==============================================================================
# COMPILED MODEL
# ==============================================================================

@dataclass(frozen=True)
class WeightedTerm:
    term: str
    weight: float


@dataclass(frozen=True)
class CategoryDefinition:
    """One schedule: stable id, display label and its two keyword tiers."""

    id: str
    label: str
    keywords: tuple[WeightedTerm, ...] = ()
    small_terms: tuple[WeightedTerm, ...] = ()


@dataclass(frozen=True)
class FilenameRule:
    pattern: re.Pattern
    schedule: str


@dataclass(frozen=True)
class CompiledScheduleConfig:
    schedules: tuple[CategoryDefinition, ...]
    filename_rules: tuple[FilenameRule, ...]

    @property
    def schedule_ids(self) -> list[str]:
        return [schedule.id for schedule in self.schedules]


# ==============================================================================
# DEFAULT SCHEDULES - FORM 706
# ==============================================================================

def _terms(*pairs) -> list[dict]:
    return [{"term": term, "weight": weight} for term, weight in pairs]


DEFAULT_SCHEDULE_CONFIG = {
    "schedules": [
        {
            "id": "Admin_General",
            "label": "Administrative / General",
            "keywords": _terms(
                ("death certificate", 8), ("letters testamentary", 8),
                ("last will", 6), ("personal representative", 5),
                ("executor", 4), ("probate", 4), ("estate tax", 3), ("decedent", 2),
            ),
            "small_terms": _terms(("attorney", 1), ("court", 1), ("notice", 1)),
        },
        {
            "id": "A_Real_Estate",
            "label": "Schedule A - Real Estate",
            "keywords": _terms(
                ("deed", 8), ("real property", 6), ("parcel", 5), ("assessed value", 5),
                ("property tax", 4), ("appraisal", 4), ("grantor", 4), ("grantee", 4),
            ),
            "small_terms": _terms(
                ("legal description", 3), ("county recorder", 2), ("acre", 2), ("lot", 1),
            ),
        },
        {
            "id": "B_Stocks_Bonds",
            "label": "Schedule B - Stocks and Bonds",
            "keywords": _terms(
                ("cusip", 8), ("brokerage", 6), ("mutual fund", 5), ("shares", 4),
                ("stock", 4), ("bond", 4), ("dividend", 4), ("securities", 4), ("treasury", 3),
            ),
            "small_terms": _terms(("market value", 2), ("ticker", 2), ("symbol", 1)),
        },
        {
            "id": "C_Cash_Notes",
            "label": "Schedule C - Mortgages, Notes, and Cash",
            "keywords": _terms(
                ("checking account", 6), ("savings account", 6), ("certificate of deposit", 6),
                ("bank statement", 6), ("promissory note", 6), ("available balance", 4),
                ("routing number", 4), ("cash", 2),
            ),
            "small_terms": _terms(("interest earned", 2), ("deposit", 1), ("withdrawal", 1)),
        },
        {
            "id": "D_Life_Insurance",
            "label": "Schedule D - Insurance on the Decedent's Life",
            "keywords": _terms(
                ("form 712", 10), ("life insurance", 8), ("death benefit", 8),
                ("face amount", 5), ("policy number", 4), ("insured", 4), ("beneficiary", 3),
            ),
            "small_terms": _terms(("premium", 2), ("rider", 1)),
        },
        {
            "id": "E_Joint_Property",
            "label": "Schedule E - Jointly Owned Property",
            "keywords": _terms(
                ("jtwros", 10), ("joint tenants", 8), ("right of survivorship", 8),
                ("tenants by the entirety", 8), ("joint account", 6), ("joint owner", 6),
                ("co owner", 4),
            ),
            "small_terms": _terms(("jointly", 2), ("spouse", 1)),
        },
        {
            "id": "F_Other_Property",
            "label": "Schedule F - Other Miscellaneous Property",
            "keywords": _terms(
                ("household goods", 6), ("jewelry", 6), ("artwork", 6), ("vin", 6),
                ("vehicle", 5), ("collectibles", 5), ("personal property", 4), ("boat", 4),
            ),
            "small_terms": _terms(("bill of sale", 3), ("odometer", 3), ("title", 2)),
        },
        {
            "id": "I_Annuities_Retirement",
            "label": "Schedule I - Annuities",
            "keywords": _terms(
                ("annuity", 8), ("401k", 8), ("403b", 8), ("required minimum distribution", 8),
                ("ira", 6), ("pension", 6), ("roth", 5), ("retirement", 4), ("rollover", 4),
            ),
            "small_terms": _terms(("plan administrator", 3), ("vested", 2)),
        },
    ],
    "filename_rules": [
        {"pattern": r"\bdeath cert", "schedule": "Admin_General"},
        {"pattern": r"\bletters? testamentary\b", "schedule": "Admin_General"},
        {"pattern": r"\bdeed\b", "schedule": "A_Real_Estate"},
        {"pattern": r"\b(property tax|tax bill)\b", "schedule": "A_Real_Estate"},
        {"pattern": r"\b(brokerage|1099 b|1099 div)\b", "schedule": "B_Stocks_Bonds"},
        {"pattern": r"\b(bank statement|checking|savings)\b", "schedule": "C_Cash_Notes"},
        {"pattern": r"\b(form 712|life insurance)\b", "schedule": "D_Life_Insurance"},
        {"pattern": r"\bjtwros\b", "schedule": "E_Joint_Property"},
        {"pattern": r"\b(ira|401k|403b|annuity|pension)\b", "schedule": "I_Annuities_Retirement"},
    ],
}


def get_default_config() -> dict:
    """Return a fresh, editable copy of the built-in schedule configuration."""
    return copy.deepcopy(DEFAULT_SCHEDULE_CONFIG)


# ==============================================================================
# VALIDATION
# ==============================================================================

def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate_terms(schedule_id, terms, field: str, errors: list[str]) -> None:
    for index, entry in enumerate(terms):
        if not isinstance(entry, dict):
            errors.append(f'Schedule "{schedule_id}" {field} {index} must be an object.')
            continue
        if not isinstance(entry.get("term"), str):
            errors.append(f'Schedule "{schedule_id}" {field} {index} term must be a string.')
        weight = entry.get("weight")
        if not _is_number(weight) or not math.isfinite(weight):
            errors.append(f'Schedule "{schedule_id}" {field} {index} weight must be a finite number.')
        elif weight < 0:
            errors.append(f'Schedule "{schedule_id}" {field} {index} weight must not be negative.')


def validate_schedule_config(raw) -> tuple[Optional[dict], list[str]]:
    """Structurally validate an editable schedule configuration.

    Returns (config, []) when every check passes, or (None, errors) with the
    complete list of problems. A configuration is never partially accepted.
    """
    if not isinstance(raw, dict):
        return None, ["Config must be an object."]

    errors = []
    schedules = raw.get("schedules")
    filename_rules = raw.get("filename_rules")

    if not isinstance(schedules, list):
        errors.append("Config.schedules must be an array.")
        schedules = []
    if not isinstance(filename_rules, list):
        errors.append("Config.filename_rules must be an array.")
        filename_rules = []

    seen_ids = set()
    for index, schedule in enumerate(schedules):
        if not isinstance(schedule, dict):
            errors.append(f"Schedule at index {index} must be an object.")
            continue

        schedule_id = schedule.get("id")
        if not isinstance(schedule_id, str) or not schedule_id:
            errors.append(f"Schedule at index {index} is missing a valid id.")
        elif schedule_id in seen_ids:
            errors.append(f'Schedule id "{schedule_id}" is declared more than once.')
        else:
            seen_ids.add(schedule_id)

        label = schedule.get("label")
        if not isinstance(label, str) or not label:
            errors.append(f"Schedule at index {index} is missing a valid label.")

        for field in ("keywords", "small_terms"):
            terms = schedule.get(field)
            if not isinstance(terms, list):
                errors.append(f'Schedule "{schedule_id}" {field} must be an array.')
                continue
            _validate_terms(schedule_id, terms, field, errors)

    for index, rule in enumerate(filename_rules):
        if not isinstance(rule, dict):
            errors.append(f"Filename rule at index {index} must be an object.")
            continue

        pattern = rule.get("pattern")
        if not isinstance(pattern, str) or not pattern:
            errors.append(f"Filename rule at index {index} pattern must be a non-empty string.")
        else:
            try:
                re.compile(pattern, re.IGNORECASE)
            except re.error as e:
                errors.append(f'Filename rule "{pattern}" is not a valid regex: {e}')

        target = rule.get("schedule")
        if not isinstance(target, str) or not target:
            errors.append(f"Filename rule at index {index} schedule must be a non-empty string.")

    if errors:
        return None, errors
    return copy.deepcopy(raw), []


# ==============================================================================
# COMPILATION
# ==============================================================================

def compile_schedule_config(config: dict) -> CompiledScheduleConfig:
    """Turn a validated editable config into its compiled form. No I/O."""
    schedules = tuple(
        CategoryDefinition(
            id=schedule["id"],
            label=schedule["label"],
            keywords=tuple(WeightedTerm(t["term"], t["weight"]) for t in schedule["keywords"]),
            small_terms=tuple(WeightedTerm(t["term"], t["weight"]) for t in schedule["small_terms"]),
        )
        for schedule in config["schedules"]
    )
    filename_rules = tuple(
        FilenameRule(pattern=re.compile(rule["pattern"], re.IGNORECASE), schedule=rule["schedule"])
        for rule in config["filename_rules"]
    )
    return CompiledScheduleConfig(schedules=schedules, filename_rules=filename_rules)


def config_hash(config: dict) -> str:
    """Stable SHA-256 of an editable config, used by the rules audit log."""
    canonical = json.dumps(config, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def schedule_label(config: CompiledScheduleConfig, schedule_id: str) -> str:
    """Display label for a schedule id, or the id itself when unknown."""
    for schedule in config.schedules:
        if schedule.id == schedule_id:
            return schedule.label
    return schedule_id
