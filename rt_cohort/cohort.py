"""
Selection of the country cohort: mapping of country names to ISO3
codes and filtering against the countries available in the dataset.
"""
from dataclasses import dataclass, field
from typing import List, Optional

import country_converter as coco

from rt_cohort.reporting import get_rt_cohort_logger

_LOGGER = get_rt_cohort_logger().getChild(__name__)

_NOT_FOUND = "not found"


class CohortResolutionError(ValueError):
    """The focal country could not be resolved or is not available."""


@dataclass
class Cohort:
    """Resolved cohort. The focal country is never among the members."""
    focal_name: str
    focal_code: str
    member_codes: List[str] = field(default_factory=list)
    member_names: dict = field(default_factory=dict)  # code -> name
    unresolved: List[str] = field(default_factory=list)  # Names
    unavailable: List[str] = field(default_factory=list)  # Codes

    @property
    def all_codes(self):
        return [self.focal_code] + list(self.member_codes)

    def name_of(self, code):
        if code == self.focal_code:
            return self.focal_name
        return self.member_names.get(code, code)


def resolve_country_codes(names) -> List[Optional[str]]:
    """Maps country names to ISO3 codes, in the same order as given.
    Names that can't be mapped unambiguously are returned as None.
    """
    names = list(names)
    if not names:
        return []

    result = coco.convert(names=names, to="ISO3", not_found=_NOT_FOUND)

    # Single names are returned as a string, not as a list
    if isinstance(result, str):
        result = [result]

    codes = list()
    for name, code in zip(names, result):
        if isinstance(code, list):  # Multiple matches
            _LOGGER.warning(f"Country name \"{name}\" is ambiguous: {code}.")
            code = None
        elif code == _NOT_FOUND or not code:
            code = None
        codes.append(code)

    return codes


def resolve_cohort(config, available_codes=None) -> Cohort:
    """Builds the cohort from the names in `config.cohort_names` and the
    focal country `config.focal_country`.

    Unresolved names, and codes that are absent from `available_codes`
    (if informed), are dropped from the cohort with a warning. The same
    conditions for the focal country raise CohortResolutionError.
    """
    focal_name = config.focal_country
    focal_code = resolve_country_codes([focal_name])[0]
    if focal_code is None:
        msg = f"The focal country \"{focal_name}\" could not be mapped to a country code."
        _LOGGER.error(msg)
        raise CohortResolutionError(msg)

    available = set(available_codes) if available_codes is not None else None
    if available is not None and focal_code not in available:
        msg = (f"The focal country \"{focal_name}\" ({focal_code}) was not "
               f"found in the dataset.")
        _LOGGER.error(msg)
        raise CohortResolutionError(msg)

    cohort = Cohort(focal_name=focal_name, focal_code=focal_code)

    names = list(config.cohort_names)
    for name, code in zip(names, resolve_country_codes(names)):
        if code is None:
            _LOGGER.warning(f"Country \"{name}\" could not be mapped to a code. Dropped from the cohort.")
            cohort.unresolved.append(name)
            continue

        if code == focal_code or code in cohort.member_names:
            continue  # Focal or repeated

        if available is not None and code not in available:
            _LOGGER.warning(f"Country \"{name}\" ({code}) is not in the dataset. Dropped from the cohort.")
            cohort.unavailable.append(code)
            continue

        cohort.member_codes.append(code)
        cohort.member_names[code] = name

    _LOGGER.info(
        f"Cohort resolved: focal = {focal_code}, "
        f"{len(cohort.member_codes)} members out of {len(names)} names.")

    return cohort
