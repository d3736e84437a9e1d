import copy

import pytest
import yaml

from cbam_desk.engine.models import EmissionEntry
from cbam_desk.engine.reference import DEFAULT_REFERENCE_PATH, build_reference, load_reference


@pytest.fixture(scope="session")
def reference():
    return load_reference()


@pytest.fixture(scope="session")
def _raw_reference_doc():
    return yaml.safe_load(DEFAULT_REFERENCE_PATH.read_text(encoding="utf-8"))


@pytest.fixture()
def raw_reference_doc(_raw_reference_doc):
    # deep copy so tests can edit the document freely
    return copy.deepcopy(_raw_reference_doc)


@pytest.fixture()
def reference_from():
    return build_reference


@pytest.fixture()
def make_entry():
    def _make(**overrides):
        rec = {
            "cn_code": "72085100",
            "country_of_origin": "China",
            "quantity": 100.0,
            "reporting_period_year": 2026,
            "verification_status": "not_verified",
            "validation_status": "pending",
        }
        rec.update(overrides)
        return EmissionEntry.from_record(rec)

    return _make
