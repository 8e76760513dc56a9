"""
Integration tests for the business and partner schema fee APIs.

Covers allocation validation, revisions, auditing and access control.
"""

import pytest
from decimal import Decimal

from glassbox_backend.app.core.config import settings
from glassbox_backend.app.services.audit import get_audit_trail, AuditAction, AuditTarget
from glassbox_backend.app.services.locking import merchant_lock_key
from glassbox_backend.app.services.partner_fees import PartnerFeeService

FEES = "/v1/admin/business-schema-fees"
PARTNER_FEES = "/v1/admin/partner-schema-fees"


async def post_fee(client, headers, entity, amount, merchant_id="M-001", **extra):
    return await client.post(FEES, headers=headers, json={
        "entity": entity,
        "merchant_id": merchant_id,
        "amount": amount,
        **extra
    })


@pytest.mark.asyncio
async def test_create_and_read_fee(client, admin_headers):
    response = await post_fee(client, admin_headers, "GLASSBOX", "10.00", description="Platform commission")

    assert response.status_code == 201
    fee = response.json()
    assert fee["entity"] == "GLASSBOX"
    assert Decimal(fee["amount"]) == Decimal("10")
    assert fee["is_active"] is True
    assert fee["created_by"] == "finance_admin"

    response = await client.get(f"{FEES}/{fee['id']}", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["description"] == "Platform commission"


@pytest.mark.asyncio
async def test_total_over_one_hundred_is_rejected(client, admin_headers):
    """GLASSBOX 10 and SALES 5 leave 85% for BROKER."""
    await post_fee(client, admin_headers, "GLASSBOX", "10")
    await post_fee(client, admin_headers, "SALES", "5")

    response = await post_fee(client, admin_headers, "BROKER", "90")

    assert response.status_code == 422
    body = response.json()
    assert body["error_code"] == "ERR_FEE_VALIDATION"
    assert body["details"]["violation"] == "TOTAL_EXCEEDS_LIMIT"

    # Nothing was written
    response = await client.get(FEES, headers=admin_headers, params={"merchant_id": "M-001"})
    assert len(response.json()) == 2

    response = await post_fee(client, admin_headers, "BROKER", "85")
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_duplicate_active_entity_is_rejected(client, admin_headers):
    await post_fee(client, admin_headers, "SALES", "5")

    response = await post_fee(client, admin_headers, "SALES", "1")

    assert response.status_code == 422
    assert response.json()["details"]["violation"] == "DUPLICATE_ACTIVE_ENTITY"

    # Another merchant may use the same entity
    response = await post_fee(client, admin_headers, "SALES", "5", merchant_id="M-002")
    assert response.status_code == 201


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["-1", "100.01"])
async def test_amount_out_of_range(client, admin_headers, amount):
    response = await post_fee(client, admin_headers, "PARTNER", amount)

    assert response.status_code == 422
    assert response.json()["details"]["violation"] == "AMOUNT_OUT_OF_RANGE"


@pytest.mark.asyncio
async def test_edit_is_validated_without_counting_itself(client, admin_headers):
    glassbox = (await post_fee(client, admin_headers, "GLASSBOX", "10")).json()
    await post_fee(client, admin_headers, "BROKER", "80")

    response = await client.put(f"{FEES}/{glassbox['id']}", headers=admin_headers, json={"amount": "20"})
    assert response.status_code == 200
    assert Decimal(response.json()["amount"]) == Decimal("20")

    response = await client.put(f"{FEES}/{glassbox['id']}", headers=admin_headers, json={"amount": "20.01"})
    assert response.status_code == 422
    assert response.json()["details"]["violation"] == "TOTAL_EXCEEDS_LIMIT"


@pytest.mark.asyncio
async def test_dry_run_validation_writes_nothing(client, admin_headers):
    existing = (await post_fee(client, admin_headers, "GLASSBOX", "30")).json()

    response = await client.post(f"{FEES}/validate", headers=admin_headers, json={
        "entity": "MERCHANT", "merchant_id": "M-001", "amount": "70"
    })
    assert response.status_code == 200
    assert response.json()["valid"] is True
    assert Decimal(response.json()["remaining"]) == Decimal("0")

    response = await client.post(f"{FEES}/validate", headers=admin_headers, json={
        "entity": "MERCHANT", "merchant_id": "M-001", "amount": "71"
    })
    assert response.status_code == 422

    # Editing the existing fee excludes it from the total
    response = await client.post(f"{FEES}/validate", headers=admin_headers, json={
        "entity": "GLASSBOX", "merchant_id": "M-001", "amount": "100", "exclude_id": existing["id"]
    })
    assert response.status_code == 200

    response = await client.get(FEES, headers=admin_headers)
    assert len(response.json()) == 1


@pytest.mark.asyncio
async def test_deactivate_and_reactivate(client, admin_headers):
    sales = (await post_fee(client, admin_headers, "SALES", "40")).json()

    response = await client.post(f"{FEES}/{sales['id']}/deactivate", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["is_active"] is False
    assert response.json()["deactivated_at"] is not None

    # The freed share can be used by another entity
    assert (await post_fee(client, admin_headers, "BROKER", "70")).status_code == 201

    # Reactivating would now exceed 100%
    response = await client.post(f"{FEES}/{sales['id']}/activate", headers=admin_headers)
    assert response.status_code == 422
    assert response.json()["details"]["violation"] == "TOTAL_EXCEEDS_LIMIT"

    response = await client.get(FEES, headers=admin_headers, params={"is_active": "false"})
    assert [fee["id"] for fee in response.json()] == [sales["id"]]


@pytest.mark.asyncio
async def test_edits_are_kept_as_revisions(client, admin_headers):
    fee = (await post_fee(client, admin_headers, "SALES", "5", effective_from="2024-01-01T00:00:00")).json()

    await client.put(f"{FEES}/{fee['id']}", headers=admin_headers, json={
        "amount": "7.5", "effective_at": "2024-06-01T00:00:00"
    })
    # Description only: no new revision
    await client.put(f"{FEES}/{fee['id']}", headers=admin_headers, json={"description": "Sales team"})

    response = await client.get(f"{FEES}/{fee['id']}/revisions", headers=admin_headers)

    assert response.status_code == 200
    revisions = response.json()
    assert len(revisions) == 2
    assert Decimal(revisions[0]["amount"]) == Decimal("5")
    assert revisions[0]["valid_to"].startswith("2024-06-01")
    assert Decimal(revisions[1]["amount"]) == Decimal("7.5")
    assert revisions[1]["valid_to"] is None


@pytest.mark.asyncio
async def test_change_cannot_predate_current_revision(client, admin_headers):
    fee = (await post_fee(client, admin_headers, "SALES", "5", effective_from="2024-03-01T00:00:00")).json()

    response = await client.put(f"{FEES}/{fee['id']}", headers=admin_headers, json={
        "amount": "6", "effective_at": "2024-02-01T00:00:00"
    })

    assert response.status_code == 422
    assert response.json()["details"]["violation"] == "INVALID_EFFECTIVE_DATE"


@pytest.mark.asyncio
async def test_backdated_change_is_checked_against_past_allocations(client, admin_headers):
    """GLASSBOX 60 / SALES 40 from January; GLASSBOX drops to 10 in March."""
    glassbox = (await post_fee(client, admin_headers, "GLASSBOX", "60", effective_from="2024-01-01T00:00:00")).json()
    sales = (await post_fee(client, admin_headers, "SALES", "40", effective_from="2024-01-01T00:00:00")).json()
    response = await client.put(f"{FEES}/{glassbox['id']}", headers=admin_headers, json={
        "amount": "10", "effective_at": "2024-03-01T00:00:00"
    })
    assert response.status_code == 200

    # SALES 90 fits today, but February would total 150%
    response = await client.put(f"{FEES}/{sales['id']}", headers=admin_headers, json={
        "amount": "90", "effective_at": "2024-02-01T00:00:00"
    })
    assert response.status_code == 422
    body = response.json()
    assert body["details"]["violation"] == "TOTAL_EXCEEDS_LIMIT"
    assert body["details"]["effective_at"] == "2024-02-01T00:00:00"

    response = await client.get(f"{FEES}/{sales['id']}/revisions", headers=admin_headers)
    assert len(response.json()) == 1

    response = await client.put(f"{FEES}/{sales['id']}", headers=admin_headers, json={
        "amount": "90", "effective_at": "2024-03-01T00:00:00"
    })
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_backdated_create_cannot_overlap_a_retired_fee(client, admin_headers):
    glassbox = (await post_fee(client, admin_headers, "GLASSBOX", "50", effective_from="2024-01-01T00:00:00")).json()
    await client.post(f"{FEES}/{glassbox['id']}/deactivate", headers=admin_headers, json={
        "effective_at": "2024-06-01T00:00:00"
    })

    # GLASSBOX 50 was still active in February
    response = await post_fee(client, admin_headers, "GLASSBOX", "30", effective_from="2024-02-01T00:00:00")
    assert response.status_code == 422
    assert response.json()["details"]["violation"] == "DUPLICATE_ACTIVE_ENTITY"

    response = await post_fee(client, admin_headers, "GLASSBOX", "30", effective_from="2024-06-01T00:00:00")
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_merchant_allocation_summary(client, admin_headers):
    await post_fee(client, admin_headers, "GLASSBOX", "10")
    await post_fee(client, admin_headers, "SALES", "5")
    await post_fee(client, admin_headers, "BROKER", "20", is_active=False)

    response = await client.get("/v1/admin/merchants/M-001/allocation", headers=admin_headers)

    assert response.status_code == 200
    summary = response.json()
    assert Decimal(summary["total_allocated"]) == Decimal("15")
    assert Decimal(summary["remaining"]) == Decimal("85")
    assert {fee["entity"] for fee in summary["schemas"]} == {"GLASSBOX", "SALES"}


@pytest.mark.asyncio
async def test_fee_writes_are_audited(client, admin_headers, db_session):
    fee = (await post_fee(client, admin_headers, "SALES", "5")).json()
    await client.put(f"{FEES}/{fee['id']}", headers=admin_headers, json={"amount": "6"})

    trail = await get_audit_trail(db_session, target_type=AuditTarget.FEE_SCHEMA, target_id=fee["id"])

    assert [entry.action for entry in trail] == [AuditAction.FEE_SCHEMA_UPDATED, AuditAction.FEE_SCHEMA_CREATED]
    assert trail[0].actor_username == "finance_admin"
    assert trail[0].meta_data["before"]["amount"] == "5.00"


@pytest.mark.asyncio
async def test_busy_merchant_lock_returns_conflict(client, admin_headers, redis_client_session, monkeypatch):
    monkeypatch.setattr(settings, "schema_lock_wait_seconds", 0.1)
    await redis_client_session.set(merchant_lock_key("M-001"), "another-request", nx=True)

    response = await post_fee(client, admin_headers, "SALES", "5")

    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_CONFLICT_001"
    assert redis_client_session.store[merchant_lock_key("M-001")] == "another-request"


@pytest.mark.asyncio
async def test_unknown_fee_returns_not_found(client, admin_headers):
    response = await client.get(f"{FEES}/999", headers=admin_headers)

    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_NOT_FOUND_001"


@pytest.mark.asyncio
async def test_fee_endpoints_require_admin(client, merchant_headers, partner_headers):
    response = await client.get(FEES)
    assert response.status_code in (401, 403)

    response = await client.get(FEES, headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401

    for headers in (merchant_headers, partner_headers):
        response = await post_fee(client, headers, "SALES", "5")
        assert response.status_code == 403
        response = await client.get(PARTNER_FEES, headers=headers)
        assert response.status_code == 403


# Partner schema fees

@pytest.mark.asyncio
async def test_partner_fee_lifecycle(client, admin_headers):
    response = await client.post(PARTNER_FEES, headers=admin_headers, json={
        "partner_id": "P-001", "amount": "500000", "currency": "idr"
    })
    assert response.status_code == 201
    fee = response.json()
    assert fee["price_type"] == "MONTHLY"
    assert fee["currency"] == "IDR"

    # One active fee per partner and currency
    response = await client.post(PARTNER_FEES, headers=admin_headers, json={
        "partner_id": "P-001", "amount": "1", "currency": "IDR"
    })
    assert response.status_code == 409

    response = await client.post(PARTNER_FEES, headers=admin_headers, json={
        "partner_id": "P-001", "amount": "30", "currency": "USD"
    })
    assert response.status_code == 201

    response = await client.put(f"{PARTNER_FEES}/{fee['id']}", headers=admin_headers, json={"amount": "550000"})
    assert response.status_code == 200
    assert Decimal(response.json()["amount"]) == Decimal("550000")

    response = await client.post(f"{PARTNER_FEES}/{fee['id']}/deactivate", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["is_active"] is False

    response = await client.get(PARTNER_FEES, headers=admin_headers, params={"partner_id": "P-001", "is_active": "true"})
    assert [f["currency"] for f in response.json()] == ["USD"]


@pytest.mark.asyncio
async def test_concurrent_partner_fee_is_rejected_by_the_database(client, admin_headers, monkeypatch):
    """Two creates that both passed the read check: the unique index keeps one."""
    await client.post(PARTNER_FEES, headers=admin_headers, json={
        "partner_id": "P-001", "amount": "500000", "currency": "IDR"
    })

    async def passed_check(*args, **kwargs):
        return None
    monkeypatch.setattr(PartnerFeeService, "_ensure_single_active", staticmethod(passed_check))

    response = await client.post(PARTNER_FEES, headers=admin_headers, json={
        "partner_id": "P-001", "amount": "1", "currency": "IDR"
    })
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_CONFLICT"

    response = await client.get(PARTNER_FEES, headers=admin_headers, params={"partner_id": "P-001"})
    assert [Decimal(f["amount"]) for f in response.json()] == [Decimal("500000")]


@pytest.mark.asyncio
async def test_partner_fee_amount_cannot_be_negative(client, admin_headers):
    response = await client.post(PARTNER_FEES, headers=admin_headers, json={
        "partner_id": "P-001", "amount": "-5"
    })

    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"
