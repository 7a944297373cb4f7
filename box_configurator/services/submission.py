"""
Configuration submission to NetSuite.

Writes a configuration's line items to its estimate, at most once per
configuration version. The idempotency key ties a submission row to one
version; a SUCCESS row for the current version short-circuits without any
network call.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Sequence

from ..core.pricing import round2
from ..errors import EmptyConfigurationError, MissingExternalReferenceError, NotFoundError
from ..logging_config import get_logger
from ..netsuite.gateway import EstimateGateway
from ..storage.models import Configuration, ConfigurationStatus, LineItem, Submission, SubmissionStatus
from ..storage.repository import CLAIM_LEASE_SECONDS, ConfigurationRepository, SubmissionRepository

logger = get_logger("services.submission")

DEFAULT_POLL_INTERVAL = 0.5


def idempotency_key(config_id: str, version: int) -> str:
    return f"{config_id}_v{version}"


def _custom_fields(config: Configuration) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    if config.access_control_cards:
        fields.update({
            "custbody_acs_format": config.acs_format,
            "custbody_acs_facility_code": config.acs_facility_code,
            "custbody_acs_quantity": config.acs_quantity,
            "custbody_acs_start_number": config.acs_start_number,
            "custbody_acs_end_number": config.acs_end_number,
        })
    if config.licensing_ssa:
        fields["custbody_system_id"] = config.system_id
    if config.saas:
        fields.update({
            "custbody_saas_term": config.saas_term,
            "custbody_saas_start_date": config.saas_start_date,
            "custbody_saas_end_date": config.saas_end_date,
            "custbody_saas_effective_date_notes": config.saas_effective_date_notes,
            "custbody_saas_billing_schedule": config.saas_billing_schedule,
        })
    return fields


def build_estimate_payload(config: Configuration, lines: Sequence[LineItem], key: str) -> Dict[str, Any]:
    """Build the estimate writer body from stored state.

    Decimals become floats here and nowhere earlier.

    Args:
        config: Configuration snapshot
        lines: Its line items in line-number order
        key: Idempotency key for this version

    Returns:
        JSON-serializable RESTlet body
    """
    wire_lines: List[Dict[str, Any]] = []
    for line in lines:
        wire_line: Dict[str, Any] = {
            "itemId": line.item_id,
            "quantity": line.quantity,
            "rate": float(round2(line.product_price)),
        }
        if line.description:
            wire_line["description"] = line.description
        wire_line["customColumns"] = {
            "custcol_box_config": True,
            "custcol_tariff_pct": float(line.tariff_percent),
            "custcol_tariff_amt": float(round2(line.tariff_amount)),
        }
        wire_lines.append(wire_line)

    return {
        "estimateId": config.estimate_id,
        "idempotencyKey": key,
        "configVersion": config.version,
        "replaceLines": True,
        "lines": wire_lines,
        "customFields": _custom_fields(config),
    }


class SubmissionPipeline:
    """Submits configurations and tracks every attempt.

    This is the only place that persists submission failure state.
    """

    def __init__(
        self,
        configurations: ConfigurationRepository,
        submissions: SubmissionRepository,
        gateway: EstimateGateway,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        wait_timeout: float = CLAIM_LEASE_SECONDS,
    ):
        self.configurations = configurations
        self.submissions = submissions
        self.gateway = gateway
        self._sleep = sleep
        self.poll_interval = poll_interval
        self.wait_timeout = wait_timeout

    async def submit_configuration(self, config_id: str) -> Submission:
        """Write a configuration's current version to its NetSuite estimate.

        Repeating the call for an unchanged version returns the existing
        SUCCESS row without touching the network. A call that finds another
        caller's attempt in flight waits for that attempt's outcome instead
        of writing again. Any failure, cancellation included, moves this
        caller's attempt out of IN_PROGRESS before the error propagates.

        Args:
            config_id: Configuration to submit

        Returns:
            The submission row for the current version

        Raises:
            NotFoundError: If the configuration doesn't exist
            EmptyConfigurationError: If it has no line items
            MissingExternalReferenceError: If it has no estimate id
            RemoteError, NetworkError, RpcTimeoutError: After the row is marked FAILED
        """
        snapshot = self.configurations.load_with_lines(config_id)
        if snapshot is None:
            raise NotFoundError(f"Configuration not found: {config_id}")
        config, lines = snapshot
        if not lines:
            raise EmptyConfigurationError("No line items to submit")
        if not config.estimate_id:
            raise MissingExternalReferenceError("No estimate ID associated")

        key = idempotency_key(config.id, config.version)
        submission, claimed = self.submissions.claim(config.id, config.version, key)
        if not claimed:
            logger.info(
                "Version already claimed",
                extra={"idempotency_key": key, "submission_id": submission.id, "status": submission.status.value},
            )
            return await self._wait_for_outcome(submission)

        logger.info(
            "Submitting configuration",
            extra={"idempotency_key": key, "attempt": submission.attempts, "line_count": len(lines)},
        )

        try:
            payload = build_estimate_payload(config, lines, key)
            self.submissions.save_request_payload(submission.id, payload)
            result = await self.gateway.write_estimate_lines(payload)
            updated = self.submissions.mark_success(
                submission.id, result, result.get("estimateId") or config.estimate_id
            )
            self.configurations.set_status(config.id, ConfigurationStatus.SUBMITTED)
        except BaseException as error:
            current, failed = self.submissions.mark_failed(
                submission.id, submission.attempts, str(error) or type(error).__name__
            )
            if failed:
                self._record_failure(submission, error)
                raise
            if not isinstance(error, Exception):
                raise
            logger.warning(
                "Attempt already finalized elsewhere",
                exc_info=error,
                extra={"idempotency_key": key, "attempt": submission.attempts, "status": current.status.value},
            )
            return await self._wait_for_outcome(current)

        logger.info("Submission succeeded", extra={"idempotency_key": key, "submission_id": updated.id})
        return updated

    async def _wait_for_outcome(self, submission: Submission) -> Submission:
        """Poll an in-flight row until it leaves IN_PROGRESS or the wait times out."""
        for _ in range(int(self.wait_timeout / self.poll_interval)):
            if submission.status != SubmissionStatus.IN_PROGRESS:
                break
            await self._sleep(self.poll_interval)
            submission = self.submissions.get(submission.id)
        return submission

    def _record_failure(self, submission: Submission, error: BaseException) -> None:
        self.configurations.set_status(submission.configuration_id, ConfigurationStatus.ERROR)
        logger.error(
            "Submission failed",
            exc_info=error,
            extra={"idempotency_key": submission.idempotency_key, "attempt": submission.attempts},
        )

    def get_submission_status(self, submission_id: str) -> Submission:
        submission = self.submissions.get(submission_id)
        if submission is None:
            raise NotFoundError(f"Submission not found: {submission_id}")
        return submission

    def list_submissions(self, config_id: str, limit: int = 5) -> List[Submission]:
        return self.submissions.list_for_configuration(config_id, limit=limit)
