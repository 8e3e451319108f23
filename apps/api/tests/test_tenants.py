"""Tenant administration: creation, plans, seats and status changes."""

from __future__ import annotations

import unittest

from nebula.core.locks import KeyedLocks
from nebula.errors import ApiError
from nebula.repositories.memory import InMemoryStore
from nebula.schemas.tenant import (
    AssignCustomPlanRequest,
    CreateTenantRequest,
    CustomLimits,
    PlanId,
    TenantStatus,
    TenantType,
)
from nebula.services.ledger import LedgerService
from nebula.services.tenants import OWNER_ROLE, TenantService


class TenantServiceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.store = InMemoryStore()
        locks = KeyedLocks()
        self.tenants = TenantService(self.store, locks)
        self.ledger = LedgerService(self.store, locks)

    async def test_create_tenant_registers_owner_and_initial_credits(self) -> None:
        tenant = await self.tenants.create_tenant(
            CreateTenantRequest(
                name="Acme Studio",
                type=TenantType.ORGANIZATION,
                owner_user_id="owner-1",
                plan_id=PlanId.TEAM,
                initial_credits=500,
            )
        )

        self.assertEqual(tenant.status, TenantStatus.ACTIVE)
        self.assertEqual(tenant.credits.balance, 500)
        self.assertEqual(tenant.credits.lifetime_issued, 500)
        self.assertEqual(tenant.member_count, 1)
        owner = self.store.get_user("owner-1")
        self.assertEqual(owner.tenant_id, tenant.id)
        self.assertEqual(owner.role, OWNER_ROLE)

    async def test_create_tenant_without_initial_credits_writes_no_transaction(self) -> None:
        tenant = await self.tenants.create_tenant(
            CreateTenantRequest(name="Solo", owner_user_id="owner-1", initial_credits=0)
        )

        self.assertEqual(self.store.list_transactions(tenant.id), [])

    async def test_create_tenant_rejects_custom_plan_and_existing_owner(self) -> None:
        with self.assertRaises(ApiError) as custom_context:
            await self.tenants.create_tenant(
                CreateTenantRequest(name="Custom", owner_user_id="owner-1", plan_id=PlanId.CUSTOM)
            )
        self.assertEqual(custom_context.exception.code, "VALIDATION_ERROR")

        await self.tenants.create_tenant(CreateTenantRequest(name="First", owner_user_id="owner-1"))
        with self.assertRaises(ApiError) as owner_context:
            await self.tenants.create_tenant(CreateTenantRequest(name="Second", owner_user_id="owner-1"))
        self.assertEqual(owner_context.exception.code, "VALIDATION_ERROR")
        self.assertEqual(len(self.store.tenants), 1)

    async def test_custom_team_plan_scenario_blocks_consumption_after_suspension(self) -> None:
        tenant = await self.tenants.create_tenant(
            CreateTenantRequest(name="Big Team", owner_user_id="owner-1", plan_id=PlanId.TEAM, initial_credits=500)
        )
        updated = await self.tenants.assign_custom_plan(
            tenant.id,
            AssignCustomPlanRequest(
                base_plan_id=PlanId.TEAM,
                custom_limits=CustomLimits(max_users=50, monthly_credits=10000, features=["all"]),
            ),
        )
        self.assertEqual(updated.plan.id, PlanId.CUSTOM)
        self.assertTrue(updated.plan.is_custom)
        self.assertEqual(updated.plan.custom_limits.max_users, 50)
        self.assertEqual(updated.plan.custom_limits.monthly_credits, 10000)

        granted = await self.ledger.grant(tenant_id=tenant.id, amount=200, admin_id="admin-1", reason="Onboarding")
        self.assertEqual(granted.tenant.credits.balance, 700)

        suspended = await self.tenants.suspend(tenant.id, reason="Chargeback", admin_id="admin-1")
        self.assertEqual(suspended.status, TenantStatus.SUSPENDED)
        self.assertEqual(suspended.suspend_reason, "Chargeback")

        with self.assertRaises(ApiError) as context:
            await self.ledger.consume(tenant_id=tenant.id, amount=10, feature="CAMPAIGN_WIZARD")
        self.assertEqual(context.exception.code, "TENANT_SUSPENDED")
        self.assertEqual(self.ledger.get_balance(tenant.id).balance, 700)

        activated = await self.tenants.activate(tenant.id, admin_id="admin-1")
        self.assertEqual(activated.status, TenantStatus.ACTIVE)
        self.assertIsNone(activated.suspended_at)
        consumed = await self.ledger.consume(tenant_id=tenant.id, amount=10, feature="CAMPAIGN_WIZARD")
        self.assertEqual(consumed.tenant.credits.balance, 690)

    async def test_seat_limit_follows_the_plan(self) -> None:
        tenant = await self.tenants.create_tenant(CreateTenantRequest(name="Free", owner_user_id="owner-1"))

        with self.assertRaises(ApiError) as context:
            await self.tenants.add_member(tenant_id=tenant.id, user_id="user-2")
        self.assertEqual(context.exception.code, "SEAT_LIMIT_REACHED")
        self.assertEqual(context.exception.details, {"max_users": 1, "current_users": 1})

        await self.tenants.assign_system_plan(tenant.id, PlanId.TEAM)
        for index in range(2, 11):
            await self.tenants.add_member(tenant_id=tenant.id, user_id=f"user-{index}")
        with self.assertRaises(ApiError):
            await self.tenants.add_member(tenant_id=tenant.id, user_id="user-11")
        self.assertEqual(self.store.count_members(tenant.id), 10)

    async def test_plan_changes_cannot_drop_below_current_members(self) -> None:
        tenant = await self.tenants.create_tenant(
            CreateTenantRequest(name="Team", owner_user_id="owner-1", plan_id=PlanId.TEAM)
        )
        await self.tenants.add_member(tenant_id=tenant.id, user_id="user-2")
        await self.tenants.add_member(tenant_id=tenant.id, user_id="user-3")

        with self.assertRaises(ApiError) as system_context:
            await self.tenants.assign_system_plan(tenant.id, PlanId.PRO)
        self.assertEqual(system_context.exception.code, "SEAT_LIMIT_REACHED")

        with self.assertRaises(ApiError) as custom_context:
            await self.tenants.assign_custom_plan(
                tenant.id,
                AssignCustomPlanRequest(custom_limits=CustomLimits(max_users=2, monthly_credits=0)),
            )
        self.assertEqual(custom_context.exception.code, "SEAT_LIMIT_REACHED")
        self.assertEqual(self.tenants.get_tenant(tenant.id).plan.id, PlanId.TEAM)

    async def test_custom_plan_seat_limit_applies_to_new_members(self) -> None:
        tenant = await self.tenants.create_tenant(CreateTenantRequest(name="Pro", owner_user_id="owner-1", plan_id=PlanId.PRO))
        await self.tenants.assign_custom_plan(
            tenant.id,
            AssignCustomPlanRequest(custom_limits=CustomLimits(max_users=2, monthly_credits=0)),
        )

        await self.tenants.add_member(tenant_id=tenant.id, user_id="user-2")
        with self.assertRaises(ApiError):
            await self.tenants.add_member(tenant_id=tenant.id, user_id="user-3")

    async def test_assign_system_plan_rejects_custom(self) -> None:
        tenant = await self.tenants.create_tenant(CreateTenantRequest(name="Pro", owner_user_id="owner-1"))

        with self.assertRaises(ApiError) as context:
            await self.tenants.assign_system_plan(tenant.id, PlanId.CUSTOM)

        self.assertEqual(context.exception.code, "VALIDATION_ERROR")

    async def test_list_tenants_filters_and_orders_newest_first(self) -> None:
        first = await self.tenants.create_tenant(CreateTenantRequest(name="Alpha Media", owner_user_id="owner-1"))
        second = await self.tenants.create_tenant(
            CreateTenantRequest(name="Beta Labs", owner_user_id="owner-2", plan_id=PlanId.PRO)
        )
        await self.tenants.lock_for_payment_failure(second.id)

        self.assertEqual([t.id for t in self.tenants.list_tenants()], [second.id, first.id])
        self.assertEqual([t.id for t in self.tenants.list_tenants(plan_id=PlanId.PRO)], [second.id])
        self.assertEqual(
            [t.id for t in self.tenants.list_tenants(status=TenantStatus.LOCKED_PAYMENT_FAIL)],
            [second.id],
        )
        self.assertEqual([t.id for t in self.tenants.list_tenants(search="alpha")], [first.id])
        self.assertEqual([t.id for t in self.tenants.list_tenants(search=first.id)], [first.id])

    async def test_unknown_tenant_is_not_found(self) -> None:
        with self.assertRaises(ApiError) as context:
            await self.tenants.suspend("missing")

        self.assertEqual(context.exception.status_code, 404)


if __name__ == "__main__":
    unittest.main()
