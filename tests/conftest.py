import pytest

from hplc_scheduler.constants import SchedulingConstants
from hplc_scheduler.data_loader import TestConfiguration, TestRequest
from hplc_scheduler.plan import Instrument

PHASES = ("MP01", "MP02", "", "", "", "")


def build_config(**overrides) -> TestConfiguration:
    values = dict(
        sample_injection=1,
        run_time=10.0,
        mobile_phase_codes=PHASES,
        column_code="C18-1",
        detector_type_id="UV1",
        priority="normal",
        test_name="Assay",
    )
    values.update(overrides)
    return TestConfiguration(**values)


def build_request(request_id: str, order: int = 0, **config_overrides) -> TestRequest:
    batch_id = request_id.rsplit("-", 1)[0]
    return TestRequest(
        request_id=request_id,
        batch_id=batch_id,
        product_id=f"P-{batch_id}",
        batch_number=f"BN-{batch_id}",
        product_name="Paracetamol Tablets",
        product_code="PCT500",
        configuration=build_config(**config_overrides),
        submission_order=order,
    )


@pytest.fixture
def constants():
    return SchedulingConstants()


@pytest.fixture
def make_config():
    return build_config


@pytest.fixture
def make_request():
    return build_request


@pytest.fixture
def scenario_pair():
    """Two compatible tests that share one standard injection."""
    first = build_request(
        "B1-0", 0, sample_injection=2, standard_injection=1,
        standard_run_time=15.0, wash_time=5.0,
    )
    second = build_request("B2-0", 1, sample_injection=3, wash_time=5.0)
    return first, second


@pytest.fixture
def uv_instruments():
    return [
        Instrument("HPLC-1", "HPLC 1", frozenset({"UV1"})),
        Instrument("HPLC-2", "HPLC 2", frozenset({"UV1", "PDA"})),
        Instrument("HPLC-3", "HPLC 3", frozenset({"PDA"})),
    ]


@pytest.fixture
def batch_records():
    return [
        {
            "_id": "B1",
            "batchNumber": "BN-001",
            "productId": "P1",
            "productCode": "PCT500",
            "productName": "Paracetamol Tablets",
            "priority": "urgent",
            "companyId": "CO1",
            "locationId": "LOC1",
            "tests": [
                {
                    "testTypeId": "T-ASSAY",
                    "testName": "Assay",
                    "sampleInjection": 2,
                    "standardInjection": 1,
                    "runTime": 10,
                    "standardRunTime": 15,
                    "washTime": 5,
                    "columnCode": "C18-1",
                    "detectorTypeId": "UV1",
                    "mobilePhaseCodes": ["MP01", "MP02", "", "", "W1", ""],
                    "testStatus": "Not Started",
                },
                {
                    "testTypeId": "T-DISS",
                    "testName": "Dissolution",
                    "sampleInjection": 6,
                    "runTime": 8,
                    "columnCode": "C8-2",
                    "detectorTypeId": "UV1",
                    "mp1": "MP07",
                    "testStatus": "In Progress",
                },
            ],
        },
        {
            "_id": "B2",
            "batchNumber": "BN-002",
            "productId": "P2",
            "productName": "Ibuprofen Tablets",
            "priority": "normal",
            "tests": [
                {
                    "testTypeId": "T-ASSAY",
                    "testName": "Assay",
                    "sampleInjection": 3,
                    "runTime": 10,
                    "washTime": 5,
                    "columnCode": "C18-1",
                    "detectorTypeId": "UV1",
                    "mobilePhaseCodes": ["MP01", "MP02", "", "", "W2", ""],
                },
                {
                    "testTypeId": "T-RS",
                    "testName": "Related Substances",
                    "sampleInjection": -1,
                    "runTime": 30,
                    "columnCode": "C18-1",
                    "detectorTypeId": "PDA",
                    "mobilePhaseCodes": ["MP03", "", "", "", "", ""],
                },
                {
                    "testTypeId": "T-OUT",
                    "testName": "Microbial Assay",
                    "sampleInjection": 1,
                    "runTime": 10,
                    "mobilePhaseCodes": ["MP09", "", "", "", "", ""],
                    "outsourced": True,
                },
            ],
        },
    ]
