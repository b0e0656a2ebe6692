from __future__ import annotations

from decimal import Decimal

import asyncpg
import pytest
from fastapi import HTTPException

from period_data import service


def test_parse_batch_normalizes_records() -> None:
    records = service.parse_batch(
        [{"apartment_id": "12", "period": "2025-08 ", "item": "water", "tariff": "4.32", "extra": "ignored"}]
    )

    assert len(records) == 1
    record = records[0]
    assert (record.apartment_id, record.period, record.item) == (12, "2025-08", "water")
    assert records[0].tariff == Decimal("4.32")


def test_parse_batch_empty_list() -> None:
    assert service.parse_batch([]) == []


@pytest.mark.parametrize("payload", [None, {}, "[]", 3])
def test_parse_batch_requires_array(payload) -> None:
    with pytest.raises(HTTPException) as excinfo:
        service.parse_batch(payload)
    assert excinfo.value.status_code == 400


def test_parse_batch_names_offending_record_and_field() -> None:
    with pytest.raises(HTTPException) as excinfo:
        service.parse_batch(
            [
                {"apartment_id": 1, "period": "2025-08", "item": "water"},
                {"apartment_id": 1, "period": "2025-08", "item": "gas", "amount": "n/a"},
            ]
        )
    assert excinfo.value.status_code == 400
    assert excinfo.value.detail.startswith("Record 1: amount:")


@pytest.mark.parametrize("raw", [None, "", "  ", "1.5", "abc"])
def test_parse_apartment_id_rejects(raw) -> None:
    with pytest.raises(HTTPException) as excinfo:
        service.parse_apartment_id(raw)
    assert excinfo.value.status_code == 400


def test_parse_apartment_id_accepts_integer_text() -> None:
    assert service.parse_apartment_id(" 42 ") == 42


def test_store_failure_mapping() -> None:
    rejected = service._store_failure(asyncpg.IntegrityConstraintViolationError("violates"), operation="upsert")
    outage = service._store_failure(ConnectionResetError("reset"), operation="upsert")

    assert rejected.status_code == 400
    assert outage.status_code == 500
    assert outage.detail == "Database error."


def test_present_record_renders_exact_decimal_text() -> None:
    row = {
        "item": "power",
        "prev_value": Decimal("1E-7"),
        "curr_value": Decimal("1.5E+3"),
        "tariff": Decimal("4.123456789012345678"),
        "amount": None,
    }

    presented = service.present_record(row)

    assert presented["prev_value"] == "0.0000001"
    assert presented["curr_value"] == "1500"
    assert presented["tariff"] == "4.123456789012345678"
    assert presented["amount"] is None
    assert presented["item"] == "power"
