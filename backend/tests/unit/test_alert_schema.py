"""Unit tests for alert intake validation."""
import pytest
from pydantic import ValidationError

from facility_dispatch.models.incident import IncidentSource
from facility_dispatch.schemas.alert import AlertIn


class TestAlertIn:

    def test_prediction_defaults(self):
        alert = AlertIn(location=" Block A ", category=" WATER ", days_to_failure=5, confidence=90)

        assert alert.source == IncidentSource.PREDICTION
        assert alert.location == "Block A"
        assert alert.category == "water"

    def test_prediction_requires_days_to_failure(self):
        with pytest.raises(ValidationError):
            AlertIn(location="Block A", category="water", confidence=90)

    def test_report_without_prediction_fields(self):
        alert = AlertIn(location="Hostel 3", category="hostel", source="report")

        assert alert.days_to_failure is None
        assert alert.source == IncidentSource.REPORT

    @pytest.mark.parametrize(
        "field,value",
        [("confidence", 101), ("confidence", -1), ("days_to_failure", -2), ("model_r2", 1.5)],
    )
    def test_out_of_range_values(self, field, value):
        data = {"location": "Block A", "category": "water", "days_to_failure": 5, field: value}

        with pytest.raises(ValidationError):
            AlertIn(**data)

    def test_empty_location_rejected(self):
        with pytest.raises(ValidationError):
            AlertIn(location="  ", category="water", days_to_failure=5)

    def test_payload_is_json_safe_and_sparse(self):
        alert = AlertIn(location="Block A", category="water", days_to_failure=5)

        assert alert.payload() == {
            "location": "Block A",
            "category": "water",
            "source": "prediction",
            "days_to_failure": 5.0,
            "description": "",
        }
