"""Bulk re-verification of donation payments against the gateway.

Donations are processed one at a time in request order. A failure on one
donation becomes a failed result for that donation and the batch carries on.
"""

from collections.abc import Iterator

from pydantic import BaseModel

from welfarehub.common.errors import ExternalServiceError
from welfarehub.common.logging import bind_log_context, logger
from welfarehub.common.metrics import payment_rechecks_total
from welfarehub.common.timeutils import utcnow
from welfarehub.common.tracing import span
from welfarehub.services.donations.gateway import GATEWAY_STATUS_MAP, RazorpayGateway
from welfarehub.services.donations.models import Donation, PaymentRecheck


class PaymentRecheckResult(BaseModel):
    """Outcome for one donation, serialized as camelCase in the stream."""

    donation_id: str
    payment_id: str
    previous_status: str
    current_status: str
    recheck_success: bool
    error_message: str | None = None

    def to_event(self) -> dict:
        body = {
            "donationId": self.donation_id,
            "paymentId": self.payment_id,
            "previousStatus": self.previous_status,
            "currentStatus": self.current_status,
            "recheckSuccess": self.recheck_success,
        }
        if self.error_message is not None:
            body["errorMessage"] = self.error_message
        return body


class PaymentRecheckService:
    """Rechecks donation payments and records an audit row per attempt."""

    def __init__(self, session_factory, gateway: RazorpayGateway | None = None, service_name: str = "donations") -> None:
        self.session_factory = session_factory
        self.gateway = gateway or RazorpayGateway()
        self.service_name = service_name

    def _unresolvable(self, donation_id: str, message: str) -> PaymentRecheckResult:
        return PaymentRecheckResult(
            donation_id=donation_id,
            payment_id="",
            previous_status="unknown",
            current_status="error",
            recheck_success=False,
            error_message=message,
        )

    def recheck_one(self, donation_id: str, performed_by: str) -> PaymentRecheckResult:
        """Query the gateway for one donation and apply the mapped status."""

        with self.session_factory() as db:
            donation = db.get(Donation, donation_id)
            if donation is None:
                return self._unresolvable(donation_id, "Donation not found")
            payment_id = donation.razorpay_payment_id
            if not payment_id:
                return self._unresolvable(donation_id, "No Razorpay payment ID found")

            previous = donation.status
            audit = PaymentRecheck(
                donation_id=donation_id,
                razorpay_payment_id=payment_id,
                performed_by=performed_by,
                previous_status=previous,
                new_status=previous,
            )
            try:
                payment = self.gateway.fetch_payment(payment_id)
            except ExternalServiceError as exc:
                audit.success = False
                audit.error_code = exc.code
                audit.error_message = exc.message
                db.add(audit)
                db.commit()
                logger.warning(
                    "payment_recheck_failed donation_id=%s payment_id=%s code=%s", donation_id, payment_id, exc.code
                )
                return PaymentRecheckResult(
                    donation_id=donation_id,
                    payment_id=payment_id,
                    previous_status=previous,
                    current_status=previous,
                    recheck_success=False,
                    error_message=exc.message,
                )

            gateway_status = str(payment.get("status", ""))
            mapped = GATEWAY_STATUS_MAP.get(gateway_status)
            if mapped is not None:
                new_status, verified = mapped
                if new_status != donation.status:
                    donation.status = new_status
                if verified and not donation.payment_verified:
                    donation.payment_verified = True
                    donation.payment_verified_at = utcnow()
                donation.updated_at = utcnow()
            else:
                logger.warning(
                    "payment_recheck_unknown_status donation_id=%s gateway_status=%s", donation_id, gateway_status
                )
            audit.success = True
            audit.gateway_status = gateway_status
            audit.new_status = donation.status
            db.add(audit)
            db.commit()
            logger.info(
                "payment_rechecked donation_id=%s previous=%s current=%s", donation_id, previous, donation.status
            )
            return PaymentRecheckResult(
                donation_id=donation_id,
                payment_id=payment_id,
                previous_status=previous,
                current_status=donation.status,
                recheck_success=True,
            )

    def _recheck_isolated(self, donation_id: str, performed_by: str) -> PaymentRecheckResult:
        try:
            with bind_log_context(donation_id=donation_id), span("payment.recheck", donation_id=donation_id):
                result = self.recheck_one(donation_id, performed_by)
        except Exception as exc:
            logger.exception("payment_recheck_error donation_id=%s error=%s", donation_id, exc)
            result = self._unresolvable(donation_id, "Unexpected error while rechecking payment")
        payment_rechecks_total.labels(
            service=self.service_name, result="success" if result.recheck_success else "failure"
        ).inc()
        return result

    def iter_recheck(self, donation_ids: list[str], performed_by: str) -> Iterator[dict]:
        """Yield progress events, then one `complete` event with every result.

        Progress is reported after each donation; results keep input order.
        """

        total = len(donation_ids)
        logger.info("bulk_recheck_started total=%s performed_by=%s", total, performed_by)
        yield {"type": "progress", "completed": 0, "total": total, "message": "Starting bulk payment recheck..."}
        results = []
        for index, donation_id in enumerate(donation_ids, start=1):
            result = self._recheck_isolated(donation_id, performed_by)
            results.append(result)
            yield {
                "type": "progress",
                "completed": index,
                "total": total,
                "message": f"Rechecked {index} of {total} donations",
                "lastResult": result.to_event(),
            }
        successful = sum(1 for result in results if result.recheck_success)
        logger.info("bulk_recheck_finished total=%s successful=%s", total, successful)
        yield {
            "type": "complete",
            "results": [result.to_event() for result in results],
            "summary": {"total": total, "successful": successful, "failed": total - successful},
        }
