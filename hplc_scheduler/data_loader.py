# Load batch input data for the HPLC test scheduler.
# Version: 1.0.0
# Parses batch documents or spreadsheets into test configurations and requests.

import math
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import pandas as pd

from .constants import (
    MOBILE_PHASE_SLOTS,
    PHASE_SLOTS,
    PRIORITIES,
    Priority,
    SchedulingConstants,
)
from .errors import FileLoadError, InvalidConfiguration


# Document key -> TestConfiguration attribute for injection counts
INJECTION_FIELDS: dict[str, str] = {
    "sampleInjection": "sample_injection",
    "standardInjection": "standard_injection",
    "blankInjection": "blank_injection",
    "systemSuitability": "system_suitability",
    "sensitivity": "sensitivity",
    "placebo": "placebo",
    "reference1": "reference1",
    "reference2": "reference2",
}

# Document key -> TestConfiguration attribute for run times
RUN_TIME_FIELDS: dict[str, str] = {
    "runTime": "run_time",
    "sampleRunTime": "sample_run_time",
    "standardRunTime": "standard_run_time",
    "blankRunTime": "blank_run_time",
    "systemSuitabilityRunTime": "system_suitability_run_time",
    "sensitivityRunTime": "sensitivity_run_time",
    "placeboRunTime": "placebo_run_time",
    "reference1RunTime": "reference1_run_time",
    "reference2RunTime": "reference2_run_time",
}

# Legacy per-slot mobile phase keys (mp1..mp4, wash1, wash2)
PHASE_SLOT_KEYS: tuple[str, ...] = ("mp1", "mp2", "mp3", "mp4", "wash1", "wash2")

# Spreadsheet columns required for one-row-per-test batch input
REQUIRED_COLUMNS: frozenset[str] = frozenset({
    "BATCH_ID", "BATCH_NUMBER", "PRODUCT_ID", "PRIORITY",
    "TEST_NAME", "COLUMN_CODE", "DETECTOR_TYPE_ID", "MP1",
})


@dataclass(frozen=True)
class TestConfiguration:
    """Analytical-method parameters for one test, owned by master data.

    Injection counts and run times are validated by validate(); a run time
    of zero for a category falls back to run_time.

    Attributes:
        sample_injection: Sample injections (member-specific in a group).
        standard_injection: Standard injections.
        blank_injection: Blank injections.
        system_suitability: System suitability injections.
        sensitivity: Sensitivity injections.
        placebo: Placebo injections.
        reference1: Reference 1 injections.
        reference2: Reference 2 injections.
        run_time: Default run time per injection in minutes.
        bracketing_frequency: Sample injections between standard brackets (0 = none).
        wash_time: Wash minutes appended once per run.
        mobile_phase_codes: Six slots, 0-3 phases and 4-5 washes.
        column_code: Column identity.
        detector_type_id: Detector type identity.
        pharmacopoeial_ids: Pharmacopoeial references.
        priority: urgent, high, or normal.
        test_applicability: Whether this configuration is active.
        test_type_id: Test type identifier from master data.
        test_name: Display name.
    """
    __test__ = False

    sample_injection: float = 0
    standard_injection: float = 0
    blank_injection: float = 0
    system_suitability: float = 0
    sensitivity: float = 0
    placebo: float = 0
    reference1: float = 0
    reference2: float = 0

    run_time: float = 0.0
    sample_run_time: float = 0.0
    standard_run_time: float = 0.0
    blank_run_time: float = 0.0
    system_suitability_run_time: float = 0.0
    sensitivity_run_time: float = 0.0
    placebo_run_time: float = 0.0
    reference1_run_time: float = 0.0
    reference2_run_time: float = 0.0

    bracketing_frequency: int = 0
    wash_time: float = 0.0

    mobile_phase_codes: tuple[str, ...] = ("", "", "", "", "", "")
    column_code: str | None = None
    detector_type_id: str | None = None
    pharmacopoeial_ids: tuple[str, ...] = ()
    priority: Priority = "normal"
    test_applicability: bool = True

    test_type_id: str = ""
    test_name: str = ""

    @property
    def phase_key(self) -> tuple[str, ...]:
        """Phase slots 0-3, order-sensitive."""
        return tuple(self.mobile_phase_codes[:PHASE_SLOTS])

    @property
    def wash_codes(self) -> tuple[str, ...]:
        """Wash slots 4-5."""
        return tuple(self.mobile_phase_codes[PHASE_SLOTS:MOBILE_PHASE_SLOTS])

    def injection_count(self, category: str) -> float:
        """Get the injection count for a category (e.g. "standard")."""
        if category in ("system_suitability", "sensitivity", "placebo", "reference1", "reference2"):
            return getattr(self, category)
        return getattr(self, f"{category}_injection")

    def run_time_for(self, category: str) -> float:
        """Get the run time of one injection in a category.

        Falls back to run_time when the category has no specific run time.
        """
        specific = getattr(self, f"{category}_run_time")
        return specific if specific > 0 else self.run_time

    def validate(self) -> None:
        """Check numeric fields and mobile-phase slots.

        Raises:
            InvalidConfiguration: If any numeric field is negative or
                non-finite, the phase list does not have six slots, or
                slot 0 is empty.
        """
        numeric_fields = (
            list(INJECTION_FIELDS.values())
            + list(RUN_TIME_FIELDS.values())
            + ["bracketing_frequency", "wash_time"]
        )
        for name in numeric_fields:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidConfiguration(name, value, "Must be a number")
            if not math.isfinite(value):
                raise InvalidConfiguration(name, value, "Must be finite")
            if value < 0:
                raise InvalidConfiguration(name, value, "Must not be negative")

        if len(self.mobile_phase_codes) < MOBILE_PHASE_SLOTS:
            raise InvalidConfiguration(
                "mobile_phase_codes",
                list(self.mobile_phase_codes),
                f"Must have {MOBILE_PHASE_SLOTS} slots"
            )
        if not str(self.mobile_phase_codes[0]).strip():
            raise InvalidConfiguration(
                "mobile_phase_codes",
                list(self.mobile_phase_codes),
                "Slot 0 must be populated"
            )


@dataclass(frozen=True)
class TestRequest:
    """A pending unit of analytical work awaiting scheduling.

    Attributes:
        request_id: Unique request identifier ("{batch_id}-{test_index}").
        batch_id: Batch the test belongs to.
        product_id: Product identifier.
        batch_number: Batch number for display.
        product_name: Product name for display.
        product_code: Product code for display.
        configuration: Resolved TestConfiguration.
        submission_order: Position in the candidate pool.
    """
    __test__ = False

    request_id: str
    batch_id: str
    product_id: str
    batch_number: str
    product_name: str
    product_code: str
    configuration: TestConfiguration
    submission_order: int = 0

    @property
    def priority(self) -> Priority:
        return self.configuration.priority

    @property
    def detector_type_id(self) -> str | None:
        return self.configuration.detector_type_id

    @property
    def column_code(self) -> str | None:
        return self.configuration.column_code

    @property
    def test_name(self) -> str:
        return self.configuration.test_name


@dataclass
class BatchInput:
    """One released batch with the tests it needs.

    Attributes:
        batch_id: Document identifier of the batch.
        batch_number: Batch number.
        product_id: Product identifier.
        product_code: Product code.
        product_name: Product name.
        priority: Batch priority applied to all of its tests.
        tests: Raw test documents (camelCase keys).
        company_id: Owning company.
        location_id: Owning location.
    """
    batch_id: str
    batch_number: str
    product_id: str
    product_code: str = ""
    product_name: str = ""
    priority: str = "normal"
    tests: list[dict[str, Any]] = field(default_factory=list)
    company_id: str = ""
    location_id: str = ""


@dataclass
class BatchInputLoad:
    """Container for all batches loaded for one scheduling run.

    Attributes:
        batches: List of all batches.
        load_timestamp: When the data was loaded.
        source_file: Path to the source file, empty for documents.
    """
    batches: list[BatchInput] = field(default_factory=list)
    load_timestamp: datetime = field(default_factory=datetime.now)
    source_file: str = ""

    def __len__(self) -> int:
        """Return number of batches."""
        return len(self.batches)

    def __iter__(self):
        """Iterate over batches."""
        return iter(self.batches)

    def get_batch(self, batch_id: str) -> BatchInput | None:
        """Find a batch by ID.

        Args:
            batch_id: Batch identifier to find.

        Returns:
            BatchInput if found, None otherwise.
        """
        for batch in self.batches:
            if batch.batch_id == batch_id:
                return batch
        return None


def parse_batch_records(records: list[dict[str, Any]], source: str = "") -> BatchInputLoad:
    """Build a BatchInputLoad from batch documents.

    Documents follow the batch-input store layout: `_id`, `batchNumber`,
    `productId`, `productCode`, `productName`, `priority`, and a `tests`
    list of test documents.

    Args:
        records: Batch documents.
        source: Optional description of where the documents came from.

    Returns:
        BatchInputLoad with one BatchInput per document.
    """
    batches = []
    for record in records:
        batch_id = str(record.get("_id") or record.get("batchId") or "").strip()
        if not batch_id:
            batch_id = str(record.get("batchNumber", "")).strip()
        batches.append(BatchInput(
            batch_id=batch_id,
            batch_number=str(record.get("batchNumber", "")),
            product_id=str(record.get("productId", "")),
            product_code=str(record.get("productCode", "")),
            product_name=str(record.get("productName", "")),
            priority=str(record.get("priority") or ""),
            tests=list(record.get("tests") or []),
            company_id=str(record.get("companyId", "")),
            location_id=str(record.get("locationId", "")),
        ))
    return BatchInputLoad(batches=batches, load_timestamp=datetime.now(), source_file=source)


def load_batch_input(filepath: str | Path) -> BatchInputLoad:
    """Load batch input from an Excel or CSV file with one row per test.

    Rows sharing a BATCH_ID are collected into one batch, in file order.

    Args:
        filepath: Path to the .xlsx or .csv file.

    Returns:
        BatchInputLoad with all batches parsed.

    Raises:
        FileLoadError: If file cannot be read.
        InvalidConfiguration: If required columns are missing.
    """
    filepath = Path(filepath)

    try:
        if filepath.suffix.lower() == ".csv":
            df = pd.read_csv(filepath)
        else:
            df = pd.read_excel(filepath)
    except Exception as e:
        raise FileLoadError(str(filepath), e)

    missing_columns = REQUIRED_COLUMNS - set(df.columns)
    if missing_columns:
        raise InvalidConfiguration(
            field="columns",
            value=sorted(df.columns),
            reason=f"Missing required columns: {', '.join(sorted(missing_columns))}"
        )

    batches: dict[str, BatchInput] = {}
    for _, row in df.iterrows():
        batch_id = _cell_str(row.get("BATCH_ID"))
        batch = batches.get(batch_id)
        if batch is None:
            batch = BatchInput(
                batch_id=batch_id,
                batch_number=_cell_str(row.get("BATCH_NUMBER")),
                product_id=_cell_str(row.get("PRODUCT_ID")),
                product_code=_cell_str(row.get("PRODUCT_CODE")),
                product_name=_cell_str(row.get("PRODUCT_NAME")),
                priority=_cell_str(row.get("PRIORITY")),
                company_id=_cell_str(row.get("COMPANY_ID")),
                location_id=_cell_str(row.get("LOCATION_ID")),
            )
            batches[batch_id] = batch
        batch.tests.append(_row_to_test_document(row))

    return BatchInputLoad(
        batches=list(batches.values()),
        load_timestamp=datetime.now(),
        source_file=str(filepath)
    )


def parse_test_configuration(
    test: dict[str, Any],
    priority: str,
    constants: SchedulingConstants,
    request_id: str | None = None
) -> TestConfiguration:
    """Parse a test document into a validated TestConfiguration.

    Missing numeric fields default to zero, as the batch-input store omits
    unused injection categories. A missing bracketingFrequency takes the
    configured default.

    Args:
        test: Test document (camelCase keys).
        priority: Priority of the owning batch.
        constants: SchedulingConstants for defaults.
        request_id: Request identifier for error messages.

    Returns:
        Validated TestConfiguration.

    Raises:
        InvalidConfiguration: If any field is invalid.
    """
    values: dict[str, Any] = {}
    for key, attr in {**INJECTION_FIELDS, **RUN_TIME_FIELDS}.items():
        values[attr] = _parse_number(test.get(key), key, request_id)
    values["wash_time"] = _parse_number(test.get("washTime"), "washTime", request_id)

    raw_bracketing = test.get("bracketingFrequency", test.get("bracketFreq"))
    if raw_bracketing is None:
        values["bracketing_frequency"] = constants.default_bracketing_frequency
    else:
        bracketing = _parse_number(raw_bracketing, "bracketingFrequency", request_id)
        if bracketing != int(bracketing):
            raise InvalidConfiguration("bracketingFrequency", raw_bracketing, "Must be an integer", request_id)
        values["bracketing_frequency"] = int(bracketing)

    config = TestConfiguration(
        **values,
        mobile_phase_codes=_parse_phase_codes(test, request_id),
        column_code=_optional_str(test.get("columnCode", test.get("columnId"))),
        detector_type_id=_optional_str(test.get("detectorTypeId", test.get("detectorId"))),
        pharmacopoeial_ids=_parse_id_list(test.get("pharmacopoeialId", test.get("pharmacopoeialIds"))),
        priority=_parse_priority(priority, constants, request_id),
        test_applicability=_parse_bool(test.get("testApplicability"), default=True),
        test_type_id=str(test.get("testTypeId") or test.get("_id") or ""),
        test_name=str(test.get("testName") or ""),
    )

    try:
        config.validate()
    except InvalidConfiguration as e:
        raise e.for_request(request_id) if request_id else e
    return config


def _parse_phase_codes(test: dict[str, Any], request_id: str | None) -> tuple[str, ...]:
    """Read the six mobile-phase slots from a list or from mp1..wash2 keys."""
    codes = test.get("mobilePhaseCodes")
    if codes is None:
        return tuple(_optional_str(test.get(key)) or "" for key in PHASE_SLOT_KEYS)
    if not isinstance(codes, (list, tuple)):
        raise InvalidConfiguration("mobilePhaseCodes", codes, "Must be a list", request_id)
    if len(codes) < MOBILE_PHASE_SLOTS:
        raise InvalidConfiguration(
            "mobilePhaseCodes", list(codes), f"Must have {MOBILE_PHASE_SLOTS} slots", request_id
        )
    return tuple(_optional_str(code) or "" for code in codes[:MOBILE_PHASE_SLOTS])


def _parse_priority(value: str, constants: SchedulingConstants, request_id: str | None) -> Priority:
    if _is_missing(value) or not str(value).strip():
        return constants.default_priority
    priority = str(value).strip().lower()
    if priority not in PRIORITIES:
        raise InvalidConfiguration(
            "priority", value, f"Must be one of: {', '.join(PRIORITIES)}", request_id
        )
    return priority


def _parse_number(value, field_name: str, request_id: str | None) -> float:
    """Parse a numeric document value; absent (None) values are zero.

    Raises:
        InvalidConfiguration: If value is not a finite number.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        raise InvalidConfiguration(field_name, value, "Must be a number", request_id)
    try:
        number = float(value)
    except (ValueError, TypeError):
        raise InvalidConfiguration(field_name, value, "Must be a number", request_id)
    if not math.isfinite(number):
        raise InvalidConfiguration(field_name, value, "Must be finite", request_id)
    return int(number) if number.is_integer() else number


def _parse_bool(value, default: bool) -> bool:
    if _is_missing(value):
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    return str(value).strip().upper() in ("TRUE", "YES", "1", "Y")


def _parse_id_list(value) -> tuple[str, ...]:
    if _is_missing(value):
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value if not _is_missing(v))
    return tuple(v.strip() for v in str(value).split(",") if v.strip())


def _optional_str(value) -> str | None:
    if _is_missing(value):
        return None
    text = str(value).strip()
    return text or None


def _is_missing(value) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return False


def _cell_str(value) -> str:
    if value is None or pd.isna(value):
        return ""
    return str(value).strip()


def _row_to_test_document(row: pd.Series) -> dict[str, Any]:
    """Convert a spreadsheet row into a test document."""
    doc: dict[str, Any] = {
        "testTypeId": _cell_str(row.get("TEST_TYPE_ID")),
        "testName": _cell_str(row.get("TEST_NAME")),
        "testStatus": _cell_str(row.get("TEST_STATUS")) or None,
        "columnCode": _cell_str(row.get("COLUMN_CODE")) or None,
        "detectorTypeId": _cell_str(row.get("DETECTOR_TYPE_ID")) or None,
        "pharmacopoeialId": _cell_str(row.get("PHARMACOPOEIAL_ID")) or None,
        "mobilePhaseCodes": [
            _cell_str(row.get(key.upper())) for key in PHASE_SLOT_KEYS
        ],
    }
    for key in list(INJECTION_FIELDS) + list(RUN_TIME_FIELDS) + ["washTime", "bracketingFrequency"]:
        column = _camel_to_upper_snake(key)
        value = row.get(column)
        if value is not None and not pd.isna(value):
            doc[key] = value
    for key, column in (("testApplicability", "TEST_APPLICABILITY"), ("outsourced", "OUTSOURCED")):
        value = row.get(column)
        if value is not None and not pd.isna(value):
            doc[key] = value
    return doc


def _camel_to_upper_snake(name: str) -> str:
    out = []
    for ch in name:
        if ch.isupper():
            out.append("_")
        out.append(ch.upper())
    return "".join(out)
