"""Feature gate: global kill switch, tenant overrides, plan entitlements."""

from __future__ import annotations

from datetime import UTC, datetime
import logging

from nebula.core.logging_safety import safe_log_identifier
from nebula.domain.features import ALL_FEATURES, FEATURE_DESCRIPTIONS, FEATURE_NAMES
from nebula.domain.plans import feature_list_allows, get_system_plan, plan_display_name
from nebula.errors import (
    ApiError,
    FeatureDisabledGlobally,
    FeatureNotEntitled,
    TenantLocked,
    TenantNotFound,
    TenantSuspended,
)
from nebula.repositories.memory import InMemoryStore, SystemFeatureRecord, TenantRecord
from nebula.schemas.feature import AccessibleFeatures, FeatureId, SystemFeature
from nebula.schemas.tenant import TenantStatus
from nebula.services.activity import ActivityRecorder

logger = logging.getLogger(__name__)


class FeatureGateService:
    """Answers whether a tenant may use a feature.

    The first matching rule wins: a globally disabled feature is denied, then
    a tenant that is not ACTIVE is denied, then a tenant override allows, then
    the custom plan's feature list decides, else the system plan's does.
    Global switches are read from the store on every call.
    """

    def __init__(self, store: InMemoryStore, *, activity: ActivityRecorder | None = None) -> None:
        self._store = store
        self._activity = activity or ActivityRecorder(store)

    def can_access(self, tenant_id: str, feature_id: FeatureId) -> bool:
        tenant = self._store.get_tenant(tenant_id)
        if tenant is None:
            return False
        return self._denial(tenant, feature_id) is None

    def check_access(self, tenant_id: str, feature_id: FeatureId) -> bool:
        """Like ``can_access`` but a missing tenant is an error."""
        tenant = self._store.get_tenant(tenant_id)
        if tenant is None:
            raise TenantNotFound()
        return self._denial(tenant, feature_id) is None

    def require_access(self, tenant_id: str, feature_id: FeatureId) -> None:
        """Raise the error that tells the caller why access is denied.

        A tenant that is not ACTIVE gets ``TenantSuspended`` or ``TenantLocked``
        rather than an entitlement error, unless the feature is switched off
        globally.
        """
        tenant = self._store.get_tenant(tenant_id)
        if tenant is None:
            raise TenantNotFound()
        denial: ApiError | None = self._denial(tenant, feature_id)
        if denial is None:
            return
        if isinstance(denial, FeatureNotEntitled):
            if tenant.status is TenantStatus.SUSPENDED:
                denial = TenantSuspended(tenant_id)
            elif tenant.status is TenantStatus.LOCKED_PAYMENT_FAIL:
                denial = TenantLocked(tenant_id)

        logger.info(
            "gate.denied tenant_id=%s feature=%s code=%s",
            safe_log_identifier(tenant_id, prefix="tid"),
            feature_id.value,
            denial.code,
        )
        raise denial

    def list_accessible_features(self, tenant_id: str) -> AccessibleFeatures:
        return AccessibleFeatures(
            tenant_id=tenant_id,
            features=[feature_id for feature_id in ALL_FEATURES if self.can_access(tenant_id, feature_id)],
        )

    def list_feature_status(self) -> list[SystemFeature]:
        statuses: list[SystemFeature] = []
        for feature_id in ALL_FEATURES:
            record = self._store.get_feature(feature_id)
            if record is None:
                statuses.append(
                    SystemFeature(
                        feature_id=feature_id,
                        name=FEATURE_NAMES[feature_id],
                        description=FEATURE_DESCRIPTIONS[feature_id],
                        is_globally_enabled=True,
                    )
                )
            else:
                statuses.append(_to_system_feature(record))
        return statuses

    def toggle_global(
        self,
        feature_id: FeatureId,
        *,
        enabled: bool,
        admin_id: str,
        reason: str | None = None,
    ) -> SystemFeature:
        record = self._store.get_feature(feature_id)
        if record is None:
            record = SystemFeatureRecord(feature_id=feature_id, name=FEATURE_NAMES[feature_id])

        record.is_globally_enabled = enabled
        if enabled:
            record.disabled_by = None
            record.disabled_at = None
            record.disabled_reason = None
        else:
            record.disabled_by = admin_id
            record.disabled_at = datetime.now(UTC)
            record.disabled_reason = reason
        self._store.save_feature(record)

        logger.warning(
            "gate.toggled feature=%s enabled=%s admin_id=%s version=%s",
            feature_id.value,
            enabled,
            safe_log_identifier(admin_id, prefix="uid"),
            record.version,
        )
        self._activity.record(
            "feature.toggled",
            user_id=admin_id,
            feature_id=feature_id.value,
            enabled=enabled,
            reason=reason,
        )
        return _to_system_feature(record)

    def _denial(self, tenant: TenantRecord, feature_id: FeatureId) -> FeatureDisabledGlobally | FeatureNotEntitled | None:
        switch = self._store.get_feature(feature_id)
        if switch is not None and not switch.is_globally_enabled:
            return FeatureDisabledGlobally(feature_id.value, switch.disabled_reason)

        if tenant.status is not TenantStatus.ACTIVE:
            return self._not_entitled(tenant, feature_id)

        if feature_list_allows(tenant.feature_overrides, feature_id.value):
            return None

        if tenant.is_custom_plan:
            features = tenant.custom_limits.features if tenant.custom_limits is not None else []
            allowed = feature_list_allows(features, feature_id.value)
        else:
            plan = get_system_plan(tenant.plan_id)
            allowed = plan is not None and feature_list_allows(plan.features, feature_id.value)

        return None if allowed else self._not_entitled(tenant, feature_id)

    @staticmethod
    def _not_entitled(tenant: TenantRecord, feature_id: FeatureId) -> FeatureNotEntitled:
        return FeatureNotEntitled(
            feature_id=feature_id.value,
            plan_id=tenant.plan_id.value,
            plan_name=plan_display_name(tenant.plan_id),
            tenant_status=tenant.status.value,
        )


def _to_system_feature(record: SystemFeatureRecord) -> SystemFeature:
    return SystemFeature(
        feature_id=record.feature_id,
        name=record.name,
        description=FEATURE_DESCRIPTIONS[record.feature_id],
        is_globally_enabled=record.is_globally_enabled,
        disabled_by=record.disabled_by,
        disabled_at=record.disabled_at,
        disabled_reason=record.disabled_reason,
        version=record.version,
        updated_at=record.updated_at,
    )
