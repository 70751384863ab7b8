"""
Dues Service Data Repository

Data access layer - PostgreSQL (asyncpg)
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import asyncpg
from pydantic import BaseModel

from core.postgres_client import PostgresClientWrapper
from .models import (
    BillingFrequency,
    EnrollmentFeeStatus,
    InvitePaymentMethod,
    InviteStatus,
    Member,
    Membership,
    MembershipStatus,
    OnboardingInvite,
    Organization,
    Payment,
    PaymentMethod,
    PaymentMethodDetails,
    PaymentStatus,
    PaymentType,
    Plan,
    PlanPricing,
)
from .protocols import ConcurrentModificationError, MembershipNotFoundError, PaymentNotFoundError, PersistenceError

logger = logging.getLogger(__name__)

SCHEMA = "dues"

MEMBERSHIP_MUTABLE_COLUMNS = {
    "status", "paid_months", "enrollment_fee_status", "billing_frequency",
    "billing_anniversary_day", "next_payment_due", "last_payment_date",
    "eligible_date", "cancelled_date", "agreement_signed_at", "payer_member_id",
    "auto_pay_enabled", "stripe_customer_id", "stripe_subscription_id",
    "subscription_status", "payment_method_details",
}

PAYMENT_COLUMNS = [
    "payment_id", "organization_id", "membership_id", "member_id", "type",
    "method", "status", "amount", "stripe_fee", "platform_fee", "total_charged",
    "net_amount", "months_credited", "check_number", "zelle_transaction_id",
    "stripe_payment_intent_id", "notes", "recorded_by", "invoice_number",
    "due_date", "period_start", "period_end", "period_label", "paid_at",
    "refunded_at", "reminder_count", "reminder_sent_at", "reminders_paused",
    "requires_review", "created_at", "updated_at",
]

PAYMENT_MUTABLE_COLUMNS = {
    "status", "method", "amount", "stripe_fee", "platform_fee", "total_charged",
    "net_amount", "months_credited", "check_number", "zelle_transaction_id",
    "stripe_payment_intent_id", "notes", "recorded_by", "paid_at", "refunded_at",
    "reminder_count", "reminder_sent_at", "reminders_paused", "requires_review",
}

INVITE_COLUMNS = [
    "invite_id", "organization_id", "membership_id", "member_id", "payment_method",
    "status", "includes_enrollment_fee", "enrollment_fee_amount", "dues_amount",
    "billing_frequency", "enrollment_fee_paid_at", "dues_paid_at",
    "stripe_setup_session_id", "payment_url", "sent_at", "completed_at", "created_at",
]

INVITE_MUTABLE_COLUMNS = set(INVITE_COLUMNS) - {
    "invite_id", "organization_id", "membership_id", "member_id", "created_at",
}


def _db_value(value: Any) -> Any:
    """Convert a model value into something asyncpg can bind"""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return json.dumps(value.model_dump(mode="json"))
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return value


def _json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


def _build_update(
    table: str,
    key_column: str,
    key: str,
    fields: Dict[str, Any],
    allowed: set,
) -> Tuple[List[str], List[Any]]:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Cannot update columns on {table}: {sorted(unknown)}")

    assignments = []
    params: List[Any] = [key]
    for column, value in fields.items():
        params.append(_db_value(value))
        assignments.append(f"{column} = ${len(params)}")
    return assignments, params


class _PostgresUnitOfWork:
    """Repository writes bound to one transactional connection"""

    def __init__(self, repository: "DuesRepository", conn: asyncpg.Connection):
        self.repository = repository
        self.conn = conn

    async def get_membership_for_update(self, membership_id: str) -> Optional[Membership]:
        row = await self.conn.fetchrow(
            f"SELECT * FROM {SCHEMA}.memberships WHERE membership_id = $1 FOR UPDATE",
            membership_id,
        )
        return self.repository._row_to_membership(dict(row)) if row else None

    async def get_payment_for_update(self, payment_id: str) -> Optional[Payment]:
        row = await self.conn.fetchrow(
            f"SELECT * FROM {SCHEMA}.payments WHERE payment_id = $1 FOR UPDATE",
            payment_id,
        )
        return self.repository._row_to_payment(dict(row)) if row else None

    async def find_pending_dues_payment(self, membership_id: str) -> Optional[Payment]:
        row = await self.conn.fetchrow(
            f'''
                SELECT * FROM {SCHEMA}.payments
                WHERE membership_id = $1 AND type = 'dues' AND status = 'pending'
                ORDER BY due_date ASC NULLS LAST, created_at ASC
                LIMIT 1
                FOR UPDATE
            ''',
            membership_id,
        )
        return self.repository._row_to_payment(dict(row)) if row else None

    async def insert_payment(self, payment: Payment) -> Payment:
        return await self.repository._insert_payment(self.conn, payment)

    async def update_payment(self, payment_id: str, fields: Dict[str, Any]) -> Payment:
        return await self.repository._update_payment(self.conn, payment_id, fields)

    async def update_membership(
        self,
        membership_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Membership:
        return await self.repository._update_membership(self.conn, membership_id, fields, expected_version)


class DuesRepository:
    """Dues service data repository - PostgreSQL (asyncpg)"""

    def __init__(self, db: Optional[PostgresClientWrapper] = None):
        self.db = db or PostgresClientWrapper(service_name="dues_service")
        self.schema = SCHEMA
        self.memberships_table = "memberships"
        self.payments_table = "payments"
        self.members_table = "members"
        self.plans_table = "plans"
        self.organizations_table = "organizations"
        self.invites_table = "onboarding_invites"

    async def initialize(self):
        """Open the connection pool"""
        await self.db.connect()
        logger.info("Dues repository initialized with PostgreSQL")

    async def close(self):
        """Close database connection"""
        await self.db.close()
        logger.info("Dues repository database connection closed")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_PostgresUnitOfWork]:
        """Unit of work holding one connection inside a transaction"""
        async with self.db.transaction() as conn:
            yield _PostgresUnitOfWork(self, conn)

    # ====================
    # Reads
    # ====================

    async def get_membership(self, membership_id: str) -> Optional[Membership]:
        """Get membership by ID"""
        try:
            row = await self.db.query_row(
                f"SELECT * FROM {self.schema}.{self.memberships_table} WHERE membership_id = $1",
                [membership_id],
            )
            return self._row_to_membership(row) if row else None
        except Exception as e:
            logger.error(f"Error getting membership {membership_id}: {e}")
            raise

    async def get_membership_by_member(self, member_id: str) -> Optional[Membership]:
        """Most recent non-cancelled membership of a member"""
        try:
            row = await self.db.query_row(
                f'''
                    SELECT * FROM {self.schema}.{self.memberships_table}
                    WHERE member_id = $1 AND status <> 'cancelled'
                    ORDER BY created_at DESC
                    LIMIT 1
                ''',
                [member_id],
            )
            return self._row_to_membership(row) if row else None
        except Exception as e:
            logger.error(f"Error getting membership for member {member_id}: {e}")
            raise

    async def list_memberships_paid_by(self, payer_member_id: str) -> List[Membership]:
        """Memberships whose dues are paid by the given member"""
        try:
            rows = await self.db.query(
                f'''
                    SELECT * FROM {self.schema}.{self.memberships_table}
                    WHERE payer_member_id = $1 AND status <> 'cancelled'
                ''',
                [payer_member_id],
            )
            return [self._row_to_membership(row) for row in rows]
        except Exception as e:
            logger.error(f"Error listing memberships paid by {payer_member_id}: {e}")
            raise

    async def list_billable_memberships(self, organization_id: str) -> List[Membership]:
        """Memberships the overdue sweep looks at"""
        try:
            rows = await self.db.query(
                f'''
                    SELECT * FROM {self.schema}.{self.memberships_table}
                    WHERE organization_id = $1
                      AND status IN ('waiting_period', 'active', 'lapsed')
                    ORDER BY next_payment_due ASC NULLS LAST
                ''',
                [organization_id],
            )
            return [self._row_to_membership(row) for row in rows]
        except Exception as e:
            logger.error(f"Error listing billable memberships for {organization_id}: {e}")
            raise

    async def list_overdue_memberships(self, organization_id: str, due_before: date) -> List[Membership]:
        """Billable memberships whose next due date is before the given date"""
        rows = await self.db.query(
            f'''
                SELECT * FROM {self.schema}.{self.memberships_table}
                WHERE organization_id = $1
                  AND status IN ('waiting_period', 'active', 'lapsed')
                  AND next_payment_due IS NOT NULL
                  AND next_payment_due < $2
                ORDER BY next_payment_due ASC
            ''',
            [organization_id, due_before],
        )
        return [self._row_to_membership(row) for row in rows]

    async def list_approaching_eligibility(
        self,
        organization_id: str,
        min_months: int,
        eligibility_months: int,
        limit: int = 100,
    ) -> List[Membership]:
        """Memberships with min_months <= paid_months < eligibility_months, closest first"""
        rows = await self.db.query(
            f'''
                SELECT * FROM {self.schema}.{self.memberships_table}
                WHERE organization_id = $1
                  AND paid_months >= $2
                  AND paid_months < $3
                ORDER BY paid_months DESC
                LIMIT $4
            ''',
            [organization_id, min_months, eligibility_months, limit],
        )
        return [self._row_to_membership(row) for row in rows]

    async def get_member(self, member_id: str) -> Optional[Member]:
        """Get member by ID"""
        row = await self.db.query_row(
            f"SELECT * FROM {self.schema}.{self.members_table} WHERE member_id = $1",
            [member_id],
        )
        return self._row_to_member(row) if row else None

    async def get_plan(self, plan_id: str) -> Optional[Plan]:
        """Get plan by ID"""
        row = await self.db.query_row(
            f"SELECT * FROM {self.schema}.{self.plans_table} WHERE plan_id = $1",
            [plan_id],
        )
        return self._row_to_plan(row) if row else None

    async def get_organization(self, organization_id: str) -> Optional[Organization]:
        """Get organization by ID"""
        row = await self.db.query_row(
            f"SELECT * FROM {self.schema}.{self.organizations_table} WHERE organization_id = $1",
            [organization_id],
        )
        return self._row_to_organization(row) if row else None

    async def list_active_organizations(self) -> List[Organization]:
        """Organizations with an active dues program"""
        rows = await self.db.query(
            f"SELECT * FROM {self.schema}.{self.organizations_table} WHERE active = TRUE ORDER BY organization_id"
        )
        return [self._row_to_organization(row) for row in rows]

    async def get_payment(self, payment_id: str) -> Optional[Payment]:
        """Get payment by ID"""
        row = await self.db.query_row(
            f"SELECT * FROM {self.schema}.{self.payments_table} WHERE payment_id = $1",
            [payment_id],
        )
        return self._row_to_payment(row) if row else None

    async def list_payments(self, membership_id: str) -> List[Payment]:
        """Payments of a membership, newest first"""
        rows = await self.db.query(
            f'''
                SELECT * FROM {self.schema}.{self.payments_table}
                WHERE membership_id = $1
                ORDER BY created_at DESC
            ''',
            [membership_id],
        )
        return [self._row_to_payment(row) for row in rows]

    async def find_dues_invoice(self, membership_id: str, due_date: date) -> Optional[Payment]:
        """Pending or completed dues payment for a due date"""
        row = await self.db.query_row(
            f'''
                SELECT * FROM {self.schema}.{self.payments_table}
                WHERE membership_id = $1 AND type = 'dues' AND due_date = $2
                  AND status IN ('pending', 'completed')
                LIMIT 1
            ''',
            [membership_id, due_date],
        )
        return self._row_to_payment(row) if row else None

    async def list_reminder_candidates(self, organization_id: str) -> List[Payment]:
        """Unpaid invoices eligible for reminders"""
        rows = await self.db.query(
            f'''
                SELECT * FROM {self.schema}.{self.payments_table}
                WHERE organization_id = $1
                  AND status IN ('pending', 'failed')
                  AND due_date IS NOT NULL
                  AND reminders_paused = FALSE
                  AND requires_review = FALSE
                ORDER BY due_date ASC
            ''',
            [organization_id],
        )
        return [self._row_to_payment(row) for row in rows]

    # ====================
    # Writes
    # ====================

    async def insert_payment(self, payment: Payment) -> Payment:
        """Insert a payment row"""
        async with self.db.transaction() as conn:
            return await self._insert_payment(conn, payment)

    async def update_payment(self, payment_id: str, fields: Dict[str, Any]) -> Payment:
        """Update mutable payment fields"""
        async with self.db.transaction() as conn:
            return await self._update_payment(conn, payment_id, fields)

    async def update_membership(
        self,
        membership_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Membership:
        """Update membership guarded by optimistic version"""
        async with self.db.transaction() as conn:
            return await self._update_membership(conn, membership_id, fields, expected_version)

    async def _insert_payment(self, conn: asyncpg.Connection, payment: Payment) -> Payment:
        now = datetime.now(timezone.utc)
        data = payment.model_dump()
        data["created_at"] = data.get("created_at") or now
        data["updated_at"] = now

        placeholders = ", ".join(f"${i}" for i in range(1, len(PAYMENT_COLUMNS) + 1))
        query = f'''
            INSERT INTO {self.schema}.{self.payments_table} ({", ".join(PAYMENT_COLUMNS)})
            VALUES ({placeholders})
            RETURNING *
        '''
        try:
            row = await conn.fetchrow(query, *[_db_value(data[c]) for c in PAYMENT_COLUMNS])
        except asyncpg.PostgresError as e:
            logger.error(f"Error inserting payment {payment.payment_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to insert payment: {e}") from e
        return self._row_to_payment(dict(row))

    async def _update_payment(
        self,
        conn: asyncpg.Connection,
        payment_id: str,
        fields: Dict[str, Any],
    ) -> Payment:
        assignments, params = _build_update(
            self.payments_table, "payment_id", payment_id, fields, PAYMENT_MUTABLE_COLUMNS
        )
        params.append(datetime.now(timezone.utc))
        assignments.append(f"updated_at = ${len(params)}")

        query = f'''
            UPDATE {self.schema}.{self.payments_table}
            SET {", ".join(assignments)}
            WHERE payment_id = $1
            RETURNING *
        '''
        try:
            row = await conn.fetchrow(query, *params)
        except asyncpg.PostgresError as e:
            logger.error(f"Error updating payment {payment_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update payment: {e}") from e
        if row is None:
            raise PaymentNotFoundError(f"Payment {payment_id} not found")
        return self._row_to_payment(dict(row))

    async def _update_membership(
        self,
        conn: asyncpg.Connection,
        membership_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int],
    ) -> Membership:
        assignments, params = _build_update(
            self.memberships_table, "membership_id", membership_id, fields, MEMBERSHIP_MUTABLE_COLUMNS
        )
        params.append(datetime.now(timezone.utc))
        assignments.append(f"updated_at = ${len(params)}")
        assignments.append("version = version + 1")

        where = "membership_id = $1"
        if expected_version is not None:
            params.append(expected_version)
            where += f" AND version = ${len(params)}"

        query = f'''
            UPDATE {self.schema}.{self.memberships_table}
            SET {", ".join(assignments)}
            WHERE {where}
            RETURNING *
        '''
        try:
            row = await conn.fetchrow(query, *params)
        except asyncpg.PostgresError as e:
            logger.error(f"Error updating membership {membership_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update membership: {e}") from e

        if row is None:
            current = await conn.fetchval(
                f"SELECT version FROM {self.schema}.{self.memberships_table} WHERE membership_id = $1",
                membership_id,
            )
            if current is None:
                raise MembershipNotFoundError(f"Membership {membership_id} not found")
            raise ConcurrentModificationError(
                f"Membership {membership_id} was modified concurrently",
                expected_version=expected_version,
                actual_version=current,
            )
        return self._row_to_membership(dict(row))

    # ====================
    # Onboarding invites
    # ====================

    async def get_invite(self, invite_id: str) -> Optional[OnboardingInvite]:
        """Get onboarding invite by ID"""
        row = await self.db.query_row(
            f"SELECT * FROM {self.schema}.{self.invites_table} WHERE invite_id = $1",
            [invite_id],
        )
        return self._row_to_invite(row) if row else None

    async def get_pending_invite(self, membership_id: str) -> Optional[OnboardingInvite]:
        """Pending invite for a membership"""
        row = await self.db.query_row(
            f'''
                SELECT * FROM {self.schema}.{self.invites_table}
                WHERE membership_id = $1 AND status = 'pending'
                ORDER BY created_at DESC
                LIMIT 1
            ''',
            [membership_id],
        )
        return self._row_to_invite(row) if row else None

    async def create_invite(self, invite: OnboardingInvite) -> OnboardingInvite:
        """Insert an onboarding invite"""
        data = invite.model_dump()
        data["created_at"] = data.get("created_at") or datetime.now(timezone.utc)
        placeholders = ", ".join(f"${i}" for i in range(1, len(INVITE_COLUMNS) + 1))
        query = f'''
            INSERT INTO {self.schema}.{self.invites_table} ({", ".join(INVITE_COLUMNS)})
            VALUES ({placeholders})
            RETURNING *
        '''
        try:
            row = await self.db.query_row(query, [_db_value(data[c]) for c in INVITE_COLUMNS])
        except asyncpg.PostgresError as e:
            logger.error(f"Error creating invite {invite.invite_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create onboarding invite: {e}") from e
        return self._row_to_invite(row)

    async def update_invite(self, invite_id: str, fields: Dict[str, Any]) -> OnboardingInvite:
        """Update an onboarding invite"""
        assignments, params = _build_update(
            self.invites_table, "invite_id", invite_id, fields, INVITE_MUTABLE_COLUMNS
        )
        query = f'''
            UPDATE {self.schema}.{self.invites_table}
            SET {", ".join(assignments)}
            WHERE invite_id = $1
            RETURNING *
        '''
        try:
            row = await self.db.query_row(query, params)
        except asyncpg.PostgresError as e:
            logger.error(f"Error updating invite {invite_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update onboarding invite: {e}") from e
        if row is None:
            raise PersistenceError(f"Onboarding invite {invite_id} not found for update")
        return self._row_to_invite(row)

    # ====================
    # Row decoding
    # ====================

    def _row_to_membership(self, row: Dict[str, Any]) -> Membership:
        """Convert database row to Membership model"""
        details = _json(row.get("payment_method_details"), None)
        return Membership(
            membership_id=row["membership_id"],
            organization_id=row["organization_id"],
            member_id=row["member_id"],
            plan_id=row["plan_id"],
            status=MembershipStatus(row.get("status", "pending")),
            paid_months=int(row.get("paid_months") or 0),
            enrollment_fee_status=EnrollmentFeeStatus(row.get("enrollment_fee_status", "unpaid")),
            billing_frequency=BillingFrequency(row.get("billing_frequency", "monthly")),
            billing_anniversary_day=int(row.get("billing_anniversary_day") or 1),
            join_date=row.get("join_date"),
            next_payment_due=row.get("next_payment_due"),
            last_payment_date=row.get("last_payment_date"),
            eligible_date=row.get("eligible_date"),
            cancelled_date=row.get("cancelled_date"),
            agreement_signed_at=row.get("agreement_signed_at"),
            payer_member_id=row.get("payer_member_id"),
            auto_pay_enabled=bool(row.get("auto_pay_enabled")),
            stripe_customer_id=row.get("stripe_customer_id"),
            stripe_subscription_id=row.get("stripe_subscription_id"),
            subscription_status=row.get("subscription_status"),
            payment_method_details=PaymentMethodDetails(**details) if details else None,
            version=int(row.get("version") or 1),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def _row_to_payment(self, row: Dict[str, Any]) -> Payment:
        """Convert database row to Payment model"""
        method = row.get("method")
        return Payment(
            payment_id=row["payment_id"],
            organization_id=row["organization_id"],
            membership_id=row["membership_id"],
            member_id=row["member_id"],
            type=PaymentType(row["type"]),
            method=PaymentMethod(method) if method else None,
            status=PaymentStatus(row.get("status", "pending")),
            amount=Decimal(str(row.get("amount", 0))),
            stripe_fee=Decimal(str(row.get("stripe_fee") or 0)),
            platform_fee=Decimal(str(row.get("platform_fee") or 0)),
            total_charged=Decimal(str(row.get("total_charged") or 0)),
            net_amount=Decimal(str(row.get("net_amount") or 0)),
            months_credited=int(row.get("months_credited") or 0),
            check_number=row.get("check_number"),
            zelle_transaction_id=row.get("zelle_transaction_id"),
            stripe_payment_intent_id=row.get("stripe_payment_intent_id"),
            notes=row.get("notes"),
            recorded_by=row.get("recorded_by"),
            invoice_number=row.get("invoice_number"),
            due_date=row.get("due_date"),
            period_start=row.get("period_start"),
            period_end=row.get("period_end"),
            period_label=row.get("period_label"),
            paid_at=row.get("paid_at"),
            refunded_at=row.get("refunded_at"),
            reminder_count=int(row.get("reminder_count") or 0),
            reminder_sent_at=row.get("reminder_sent_at"),
            reminders_paused=bool(row.get("reminders_paused")),
            requires_review=bool(row.get("requires_review")),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def _row_to_member(self, row: Dict[str, Any]) -> Member:
        """Convert database row to Member model"""
        return Member(
            member_id=row["member_id"],
            organization_id=row["organization_id"],
            first_name=row["first_name"],
            middle_name=row.get("middle_name"),
            last_name=row["last_name"],
            email=row.get("email"),
            preferred_language=row.get("preferred_language") or "en",
        )

    def _row_to_plan(self, row: Dict[str, Any]) -> Plan:
        """Convert database row to Plan model"""
        return Plan(
            plan_id=row["plan_id"],
            organization_id=row["organization_id"],
            name=row["name"],
            pricing=PlanPricing(**_json(row.get("pricing"), {})),
            enrollment_fee=Decimal(str(row.get("enrollment_fee") or 0)),
            is_active=bool(row.get("is_active", True)),
        )

    def _row_to_organization(self, row: Dict[str, Any]) -> Organization:
        """Convert database row to Organization model"""
        return Organization(
            organization_id=row["organization_id"],
            name=row["name"],
            timezone=row.get("timezone") or "America/New_York",
            active=bool(row.get("active", True)),
            pass_fees_to_member=bool(row.get("pass_fees_to_member")),
            platform_fees=_json(row.get("platform_fees"), {}),
            billing_config=_json(row.get("billing_config"), {}),
        )

    def _row_to_invite(self, row: Dict[str, Any]) -> OnboardingInvite:
        """Convert database row to OnboardingInvite model"""
        return OnboardingInvite(
            invite_id=row["invite_id"],
            organization_id=row["organization_id"],
            membership_id=row["membership_id"],
            member_id=row["member_id"],
            payment_method=InvitePaymentMethod(row["payment_method"]),
            status=InviteStatus(row.get("status", "pending")),
            includes_enrollment_fee=bool(row.get("includes_enrollment_fee")),
            enrollment_fee_amount=Decimal(str(row.get("enrollment_fee_amount") or 0)),
            dues_amount=Decimal(str(row.get("dues_amount") or 0)),
            billing_frequency=BillingFrequency(row.get("billing_frequency", "monthly")),
            enrollment_fee_paid_at=row.get("enrollment_fee_paid_at"),
            dues_paid_at=row.get("dues_paid_at"),
            stripe_setup_session_id=row.get("stripe_setup_session_id"),
            payment_url=row.get("payment_url"),
            sent_at=row.get("sent_at"),
            completed_at=row.get("completed_at"),
            created_at=row.get("created_at"),
        )
