from __future__ import annotations

from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Iterator

import psycopg2
from psycopg2.extras import Json

from paygate.db.client import PgPool
from paygate.domain.models import (
    AuditTrail,
    PaymentSession,
    RefundResult,
    SecurityEvent,
    StatusChange,
    TrackedSession,
    TransactionRecord,
)
from paygate.domain.statuses import NormalizedStatus, Severity
from paygate.errors import AuditSinkError

from .base import TransactionTracker


def _status_or_none(value: Any) -> NormalizedStatus | None:
    return NormalizedStatus.from_raw(value) if value else None


class PgTransactionStore(TransactionTracker):
    """PostgreSQL-backed tracker using raw psycopg2.

    Tables: ``payment_sessions`` (one row per order_id, the upsert target),
    ``transaction_details``, ``payment_status_history``,
    ``security_audit_log``, ``webhook_events`` (primary key
    ``(order_id, event_type)``) and ``refunds`` (primary key
    ``refund_ref_no``).
    """

    name = "postgres"

    def __init__(self, pool: PgPool):
        self.pool = pool

    @contextmanager
    def _cursor(self, operation: str) -> Iterator[Any]:
        try:
            with self.pool.connection() as conn:
                with conn.cursor() as cur:
                    yield cur
        except psycopg2.Error as exc:
            raise AuditSinkError(f"{operation} failed: {exc}") from exc

    def create_payment_session(self, session: PaymentSession) -> None:
        with self._cursor("create_payment_session") as cur:
            cur.execute(
                """
                INSERT INTO payment_sessions (
                    order_id, customer_id, customer_email, customer_phone,
                    first_name, last_name, amount, currency, description,
                    return_url, session_status, created_at, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, 'created', %s, now())
                ON CONFLICT (order_id) DO UPDATE
                   SET customer_id = EXCLUDED.customer_id,
                       customer_email = EXCLUDED.customer_email,
                       customer_phone = EXCLUDED.customer_phone,
                       first_name = EXCLUDED.first_name,
                       last_name = EXCLUDED.last_name,
                       amount = EXCLUDED.amount,
                       currency = EXCLUDED.currency,
                       description = EXCLUDED.description,
                       return_url = EXCLUDED.return_url,
                       updated_at = now()
                """,
                (
                    session.order_id,
                    session.customer_id,
                    session.customer_email,
                    session.customer_phone,
                    session.first_name,
                    session.last_name,
                    Decimal(session.amount),
                    session.currency,
                    session.description,
                    session.return_url,
                    session.created_at,
                ),
            )

    def update_session_response(self, order_id: str, response: dict[str, Any]) -> None:
        links = response.get("payment_links") or {}
        web_link = links.get("web") if isinstance(links, dict) else None
        with self._cursor("update_session_response") as cur:
            cur.execute(
                """
                INSERT INTO payment_sessions (order_id, session_id, payment_link_web,
                                              session_response, session_status, updated_at)
                VALUES (%s, %s, %s, %s, 'active', now())
                ON CONFLICT (order_id) DO UPDATE
                   SET session_id = COALESCE(EXCLUDED.session_id, payment_sessions.session_id),
                       payment_link_web = COALESCE(EXCLUDED.payment_link_web, payment_sessions.payment_link_web),
                       session_response = EXCLUDED.session_response,
                       session_status = 'active',
                       updated_at = now()
                """,
                (
                    order_id,
                    response.get("session_id") or response.get("id"),
                    web_link,
                    Json(response),
                ),
            )

    def record_transaction_response(self, record: TransactionRecord) -> None:
        with self._cursor("record_transaction_response") as cur:
            cur.execute(
                """
                INSERT INTO transaction_details (
                    order_id, transaction_id, status, channel, fields, signature,
                    signature_verified, signature_algorithm, ip_address, user_agent, received_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    record.order_id,
                    record.transaction_id,
                    record.status,
                    record.channel,
                    Json(record.fields),
                    record.signature,
                    record.signature_verified,
                    record.signature_algorithm,
                    record.ip_address,
                    record.user_agent,
                    record.received_at,
                ),
            )

    def log_security_event(self, event: SecurityEvent) -> None:
        with self._cursor("log_security_event") as cur:
            cur.execute(
                """
                INSERT INTO security_audit_log (
                    event_type, severity, description, order_id,
                    vulnerability_type, event_data, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    event.event_type,
                    event.severity.value,
                    event.description,
                    event.order_id,
                    event.vulnerability_type,
                    Json(event.payload),
                    event.created_at,
                ),
            )

    def upsert_status(
        self,
        order_id: str,
        status: NormalizedStatus,
        *,
        transaction_id: str | None = None,
        source: str,
    ) -> bool:
        with self._cursor("upsert_status") as cur:
            cur.execute(
                """
                INSERT INTO payment_sessions (order_id, status, transaction_id, updated_at)
                VALUES (%s, %s, %s, now())
                ON CONFLICT (order_id) DO UPDATE
                   SET status = EXCLUDED.status,
                       transaction_id = COALESCE(EXCLUDED.transaction_id, payment_sessions.transaction_id),
                       updated_at = now()
                 WHERE payment_sessions.status IS DISTINCT FROM EXCLUDED.status
                RETURNING order_id
                """,
                (order_id, status.value, transaction_id),
            )
            changed = cur.fetchone() is not None
            if changed:
                cur.execute(
                    """
                    INSERT INTO payment_status_history (order_id, status, transaction_id, source, changed_at)
                    VALUES (%s, %s, %s, %s, now())
                    """,
                    (order_id, status.value, transaction_id, source),
                )
            return changed

    def record_webhook(self, order_id: str, event_type: str, payload: dict[str, Any]) -> bool:
        with self._cursor("record_webhook") as cur:
            cur.execute(
                """
                INSERT INTO webhook_events (order_id, event_type, payload, received_at)
                VALUES (%s, %s, %s, now())
                ON CONFLICT (order_id, event_type) DO NOTHING
                RETURNING order_id
                """,
                (order_id, event_type, Json(payload)),
            )
            return cur.fetchone() is not None

    def record_refund(self, refund: RefundResult) -> None:
        with self._cursor("record_refund") as cur:
            cur.execute(
                """
                INSERT INTO refunds (refund_ref_no, order_id, refund_amount, status,
                                     refund_id, gateway_response, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, now(), now())
                ON CONFLICT (refund_ref_no) DO UPDATE
                   SET status = EXCLUDED.status,
                       refund_id = COALESCE(EXCLUDED.refund_id, refunds.refund_id),
                       gateway_response = EXCLUDED.gateway_response,
                       updated_at = now()
                """,
                (
                    refund.refund_ref_no,
                    refund.order_id,
                    Decimal(refund.refund_amount),
                    refund.status,
                    refund.refund_id,
                    Json(refund.raw),
                ),
            )

    def get_audit_trail(self, order_id: str) -> AuditTrail:
        trail = AuditTrail(order_id=order_id)
        with self._cursor("get_audit_trail") as cur:
            cur.execute(
                """
                SELECT status, transaction_id, session_id, payment_link_web,
                       session_response, updated_at
                  FROM payment_sessions
                 WHERE order_id = %s
                """,
                (order_id,),
            )
            row = cur.fetchone()
            if row:
                status, transaction_id, session_id, web_link, session_response, updated_at = row
                trail.session = TrackedSession(
                    order_id=order_id,
                    status=_status_or_none(status),
                    transaction_id=transaction_id,
                    session_id=session_id,
                    payment_link_web=web_link,
                    session_response=dict(session_response or {}),
                    updated_at=updated_at,
                )

            cur.execute(
                """
                SELECT transaction_id, status, channel, fields, signature, signature_verified,
                       signature_algorithm, ip_address, user_agent, received_at
                  FROM transaction_details
                 WHERE order_id = %s
                 ORDER BY received_at DESC
                """,
                (order_id,),
            )
            for (txn_id, status, channel, fields, signature, verified, algorithm,
                 ip_address, user_agent, received_at) in cur.fetchall() or []:
                trail.transactions.append(
                    TransactionRecord(
                        order_id=order_id,
                        transaction_id=txn_id,
                        status=status,
                        channel=channel,
                        fields=dict(fields or {}),
                        signature=signature,
                        signature_verified=bool(verified),
                        signature_algorithm=algorithm,
                        ip_address=ip_address,
                        user_agent=user_agent,
                        received_at=received_at,
                    )
                )

            cur.execute(
                """
                SELECT status, transaction_id, source, changed_at
                  FROM payment_status_history
                 WHERE order_id = %s
                 ORDER BY changed_at DESC
                """,
                (order_id,),
            )
            for status, txn_id, source, changed_at in cur.fetchall() or []:
                trail.status_history.append(
                    StatusChange(
                        order_id=order_id,
                        status=NormalizedStatus.from_raw(status),
                        transaction_id=txn_id,
                        source=source,
                        changed_at=changed_at,
                    )
                )

            cur.execute(
                """
                SELECT event_type, severity, description, vulnerability_type, event_data, created_at
                  FROM security_audit_log
                 WHERE order_id = %s
                 ORDER BY created_at DESC
                """,
                (order_id,),
            )
            for event_type, severity, description, vuln, data, created_at in cur.fetchall() or []:
                trail.security_events.append(
                    SecurityEvent(
                        event_type=event_type,
                        severity=Severity(severity),
                        description=description,
                        order_id=order_id,
                        payload=dict(data or {}),
                        vulnerability_type=vuln,
                        created_at=created_at,
                    )
                )

            cur.execute(
                """
                SELECT refund_ref_no, refund_amount, status, refund_id, gateway_response, created_at
                  FROM refunds
                 WHERE order_id = %s
                 ORDER BY created_at DESC
                """,
                (order_id,),
            )
            for ref_no, amount, status, refund_id, raw, created_at in cur.fetchall() or []:
                trail.refunds.append(
                    RefundResult(
                        order_id=order_id,
                        refund_amount=format(amount, "f") if amount is not None else "",
                        refund_ref_no=ref_no,
                        status=status,
                        refund_id=refund_id,
                        created_at=created_at.isoformat() if created_at else None,
                        raw=dict(raw or {}),
                    )
                )
        return trail
