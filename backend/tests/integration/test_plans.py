"""Integration tests for the plan registry and plan endpoints."""
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from metering.database import Database
from metering.exceptions import ConflictError, NotFoundError, ValidationError
from metering.features import Feature
from metering.models.audit_log import AuditLog
from metering.models.plan import Plan
from metering.schemas.plan import Plan as PlanSchema
from metering.schemas.plan import PlanCreate, PlanUpdate
from metering.services.entitlement_service import EntitlementEvaluator
from metering.services.plan_service import PlanRegistry
from utils.helpers import InMemoryCache


@pytest.mark.asyncio
async def test_create_plan(db_session: AsyncSession, sample_plan_data: dict) -> None:
    """Test creating a plan stores it and audits the change."""
    registry = PlanRegistry(db_session)

    plan = await registry.create_plan(PlanCreate(**sample_plan_data), actor_id="admin-1", request_id="req_abc")
    await db_session.commit()

    assert plan.name == "Básico"
    assert plan.features == {"generations": 50, "diagnostics": 10, "funnel_analysis": 0}
    audit = (await db_session.execute(select(AuditLog))).scalar_one()
    assert audit.action == "plan_created"
    assert audit.actor_id == "admin-1"
    assert audit.entity_id == str(plan.id)
    assert audit.request_id == "req_abc"


@pytest.mark.asyncio
async def test_create_plan_duplicate_name(db_session: AsyncSession, basic_plan: Plan, sample_plan_data: dict) -> None:
    """Test plan names are unique."""
    with pytest.raises(ConflictError):
        await PlanRegistry(db_session).create_plan(
            PlanCreate(**{**sample_plan_data, "stripe_price_id": "price_other"}), actor_id="admin-1"
        )


@pytest.mark.asyncio
async def test_get_plan_limits_and_missing_plan(db_session: AsyncSession, premium_plan: Plan) -> None:
    """Test limits of an existing plan and the empty map for a missing one."""
    registry = PlanRegistry(db_session)

    assert await registry.get_plan_limits(premium_plan.id) == {
        "generations": -1,
        "diagnostics": -1,
        "funnel_analysis": -1,
    }
    assert await registry.get_plan_limits(uuid4()) == {}


@pytest.mark.asyncio
async def test_get_plan_not_found(db_session: AsyncSession) -> None:
    """Test unknown plan ids raise NotFoundError."""
    with pytest.raises(NotFoundError) as exc_info:
        await PlanRegistry(db_session).get_plan(uuid4())

    assert exc_info.value.code == "plan_not_found"


@pytest.mark.asyncio
async def test_update_plan_audits_diff(db_session: AsyncSession, basic_plan: Plan) -> None:
    """Test an update records only the changed fields."""
    registry = PlanRegistry(db_session)

    plan = await registry.update_plan(
        basic_plan.id,
        PlanUpdate(features={"generations": 80, "diagnostics": 10, "funnel_analysis": 0}, price_monthly=4990),
        actor_id="admin-1",
    )
    await db_session.commit()

    assert plan.features["generations"] == 80
    audit = (await db_session.execute(select(AuditLog))).scalar_one()
    assert audit.action == "plan_updated"
    assert set(audit.details["changes"]) == {"features"}


@pytest.mark.asyncio
async def test_update_without_changes_is_not_audited(db_session: AsyncSession, basic_plan: Plan) -> None:
    """Test a no-op update writes no audit record."""
    await PlanRegistry(db_session).update_plan(basic_plan.id, PlanUpdate(name=basic_plan.name), actor_id="admin-1")
    await db_session.commit()

    assert (await db_session.execute(select(AuditLog))).scalars().all() == []


@pytest.mark.asyncio
async def test_deactivated_plan_hidden_from_catalog(
    db_session: AsyncSession, basic_plan: Plan, premium_plan: Plan
) -> None:
    """Test deactivation removes a plan from the public list and audits it."""
    registry = PlanRegistry(db_session)

    await registry.set_plan_active(basic_plan.id, False, actor_id="admin-1")
    await db_session.commit()

    assert [p.name for p in await registry.get_active_plans()] == ["Premium"]
    assert len(await registry.list_plans(include_inactive=True)) == 2
    audit = (await db_session.execute(select(AuditLog))).scalar_one()
    assert audit.action == "plan_deactivated"


@pytest.mark.asyncio
async def test_list_plans_endpoint_is_public(
    async_client: AsyncClient, basic_plan: Plan, premium_plan: Plan, free_plan: Plan
) -> None:
    """Test the catalog is available without authentication, cheapest first."""
    response = await async_client.get("/v1/plans")

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 3
    assert [p["name"] for p in body["items"]] == ["Gratuito", "Básico", "Premium"]
    assert body["items"][2]["features"]["generations"] == -1


@pytest.mark.asyncio
async def test_create_plan_endpoint(async_client: AsyncClient, admin_headers: dict, sample_plan_data: dict) -> None:
    """Test admins can create plans."""
    response = await async_client.post("/v1/plans", json=sample_plan_data, headers=admin_headers)

    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "Básico"
    assert body["currency"] == "BRL"

    fetched = await async_client.get(f"/v1/plans/{body['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["features"] == sample_plan_data["features"]


@pytest.mark.asyncio
async def test_create_plan_requires_admin(
    async_client: AsyncClient, user_headers: dict, sample_plan_data: dict
) -> None:
    """Test regular users cannot create plans."""
    response = await async_client.post("/v1/plans", json=sample_plan_data, headers=user_headers)

    assert response.status_code == 403


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "features",
    [
        {"video_generation": 10},
        {"generations": -5},
        {"generations": "many"},
    ],
)
async def test_create_plan_rejects_invalid_features(
    async_client: AsyncClient, admin_headers: dict, sample_plan_data: dict, features: dict
) -> None:
    """Test unknown features and invalid limits are rejected."""
    response = await async_client.post(
        "/v1/plans", json={**sample_plan_data, "features": features}, headers=admin_headers
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_plan_conflict(
    async_client: AsyncClient, admin_headers: dict, basic_plan: Plan, sample_plan_data: dict
) -> None:
    """Test duplicate names answer 409."""
    response = await async_client.post("/v1/plans", json=sample_plan_data, headers=admin_headers)

    assert response.status_code == 409
    assert response.json()["details"][0]["code"] == "duplicate_resource"


@pytest.mark.asyncio
async def test_update_plan_endpoint(async_client: AsyncClient, admin_headers: dict, basic_plan: Plan) -> None:
    """Test admins can deactivate a plan and see it in the full list."""
    response = await async_client.patch(
        f"/v1/plans/{basic_plan.id}", json={"active": False}, headers=admin_headers
    )

    assert response.status_code == 200
    assert response.json()["active"] is False

    public = await async_client.get("/v1/plans")
    assert public.json()["total"] == 0

    everything = await async_client.get("/v1/plans/all", headers=admin_headers)
    assert everything.json()["total"] == 1


@pytest.mark.asyncio
async def test_get_unknown_plan(async_client: AsyncClient) -> None:
    """Test unknown plan ids answer 404."""
    response = await async_client.get(f"/v1/plans/{uuid4()}")

    assert response.status_code == 404
    assert response.json()["details"][0]["code"] == "plan_not_found"


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["name", "price_monthly", "features", "active"])
async def test_update_plan_rejects_null_required_field(
    async_client: AsyncClient, admin_headers: dict, db_session: AsyncSession, basic_plan: Plan, field: str
) -> None:
    """Test clearing a required plan field answers 400 and leaves the plan intact."""
    response = await async_client.patch(f"/v1/plans/{basic_plan.id}", json={field: None}, headers=admin_headers)

    assert response.status_code == 400
    assert response.json()["details"][0]["code"] == "missing_required_field"

    db_session.expire_all()
    plan = await PlanRegistry(db_session).get_plan(basic_plan.id)
    assert plan.name == "Básico"
    assert plan.price_monthly == 4990
    assert plan.features == {"generations": 50, "diagnostics": 10, "funnel_analysis": 0}
    assert plan.active is True


@pytest.mark.asyncio
async def test_update_plan_null_features_raises_validation_error(db_session: AsyncSession, basic_plan: Plan) -> None:
    """Test the registry refuses to replace the feature map with nothing."""
    with pytest.raises(ValidationError) as exc_info:
        await PlanRegistry(db_session).update_plan(basic_plan.id, PlanUpdate(features=None), actor_id="admin-1")

    assert exc_info.value.details == {"fields": ["features"]}


@pytest.mark.asyncio
async def test_update_plan_clears_cache_after_commit(database: Database, free_plan: Plan) -> None:
    """Test a limit read while the change is pending is not served after the commit."""
    plan_cache = InMemoryCache()
    user_id = uuid4()

    async with database.session_factory() as admin_session:
        admin = PlanRegistry(admin_session, plan_cache)
        await admin.update_plan(
            free_plan.id,
            PlanUpdate(features={"generations": 99, "diagnostics": 1, "funnel_analysis": 0}),
            actor_id="admin-1",
        )

        async with database.session_factory() as reader_session:
            pending = await EntitlementEvaluator(reader_session, PlanRegistry(reader_session, plan_cache)).evaluate(
                user_id, Feature.GENERATIONS
            )
        assert pending.limit_value == 5

        await admin.commit()

    async with database.session_factory() as reader_session:
        decision = await EntitlementEvaluator(reader_session, PlanRegistry(reader_session, plan_cache)).evaluate(
            user_id, Feature.GENERATIONS
        )
    assert decision.limit_value == 99


@pytest.mark.asyncio
async def test_plan_response_ignores_retired_feature_keys(db_session: AsyncSession) -> None:
    """Test stored keys that are no longer known features are left out of responses."""
    plan = Plan(name="Legado", price_monthly=990, features={"generations": 10, "video_generation": 3})
    db_session.add(plan)
    await db_session.commit()
    await db_session.refresh(plan)

    assert PlanSchema.model_validate(plan).features == {"generations": 10}
