# SPDX-License-Identifier: MIT
"""Payload validation and best-effort repair for queued operations.

Neither ``validate`` nor ``repair`` raises: a failing validation is reported
through ``ValidationResult`` and an exhausted repair through
``RepairResult.success``. The writer decides what is fatal.
"""

import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, TypeAdapter, ValidationError

from .constants import (
    DEFAULT_MAX_REPAIR_ATTEMPTS,
    DEFAULT_PLAN_TITLE,
    DEFAULT_PROFILE_NAME,
    PLACEHOLDER_EMAIL_DOMAIN,
)
from .enums import OperationType, PlanStatus, ResourceType
from .logging_config import get_detail_logger
from .models import RepairResult, ValidationResult
from .scheduler import utc_now
from .schemas import (
    BusinessPlanSchema,
    SectionChangeSchema,
    UserProfileSchema,
    ensure_aware,
)


detail_logger = get_detail_logger()

_TIMESTAMP_ADAPTER: TypeAdapter[datetime] = TypeAdapter(datetime)


def format_validation_errors(error: ValidationError) -> list[str]:
    """Turn a pydantic error into ``"field.path: message"`` strings."""
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "payload"
        messages.append(f"{location}: {item['msg']}")
    return messages


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp, returning None when it is not one."""
    if value is None or value == "":
        return None
    try:
        return ensure_aware(_TIMESTAMP_ADAPTER.validate_python(value))
    except ValidationError:
        return None


class DataIntegrityValidator:
    """Schema checks and deterministic repair for business entities.

    Repair attempts are counted per entity (``"{resource}_{id}"``) for the
    lifetime of the instance; once the ceiling is reached the payload is
    handed back untouched with ``success=False`` so a single malformed record
    cannot keep the queue spinning.
    """

    def __init__(
        self,
        max_repair_attempts: int = DEFAULT_MAX_REPAIR_ATTEMPTS,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[str], str] | None = None,
    ) -> None:
        self.max_repair_attempts = max_repair_attempts
        self._clock = clock
        self._id_factory = id_factory or (lambda prefix: f"{prefix}_{uuid.uuid4().hex}")
        self._repair_attempts: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(
        self,
        resource: ResourceType | str,
        payload: Any,
        operation_type: OperationType | None = None,
    ) -> ValidationResult:
        """Check a payload against its resource schema and invariants.

        Args:
            resource: Resource the payload belongs to
            payload: Entity data to check
            operation_type: Operation carrying the payload; section deletes do
                not need a body

        Returns:
            ValidationResult with field-level errors and non-fatal warnings
        """
        try:
            resource = ResourceType(resource)
        except ValueError:
            return ValidationResult(
                is_valid=False, errors=[f"resource: Unknown resource type '{resource}'"]
            )

        if not isinstance(payload, dict):
            return ValidationResult(
                is_valid=False,
                errors=[f"payload: Expected an object, got {type(payload).__name__}"],
            )

        if resource == ResourceType.BUSINESS_PLAN:
            result = self._validate_business_plan(payload)
        elif resource == ResourceType.USER_PROFILE:
            result = self._validate_user_profile(payload)
        else:
            result = self._validate_section(payload, operation_type)

        detail_logger.debug(
            f"Validated {resource.value} payload: valid={result.is_valid}, "
            f"errors={result.errors}, warnings={result.warnings}"
        )
        return result

    def _parse(
        self, schema: type[BaseModel], payload: dict[str, Any], result: ValidationResult
    ) -> Any:
        try:
            return schema.model_validate(payload)
        except ValidationError as e:
            result.errors.extend(format_validation_errors(e))
            result.is_valid = False
            return None

    def _check_timestamp_order(self, validated: Any, result: ValidationResult) -> None:
        if validated.updated_at < validated.created_at:
            result.errors.append("Updated timestamp is before created timestamp")
            result.is_valid = False

    def _validate_business_plan(self, payload: dict[str, Any]) -> ValidationResult:
        result = ValidationResult()
        plan = self._parse(BusinessPlanSchema, payload, result)
        if plan is None:
            return result

        if not plan.sections:
            result.warnings.append("Business plan has no sections")
        else:
            empty = [key for key, body in plan.sections.items() if not body.strip()]
            if empty:
                result.warnings.append(f"Empty sections found: {', '.join(empty)}")

        if not plan.user_id:
            result.warnings.append("Business plan has no owner")

        self._check_timestamp_order(plan, result)
        return result

    def _validate_user_profile(self, payload: dict[str, Any]) -> ValidationResult:
        result = ValidationResult()
        profile = self._parse(UserProfileSchema, payload, result)
        if profile is None:
            return result

        if not profile.company and not profile.role:
            result.warnings.append("User profile missing company and role information")

        self._check_timestamp_order(profile, result)
        return result

    def _validate_section(
        self, payload: dict[str, Any], operation_type: OperationType | None
    ) -> ValidationResult:
        result = ValidationResult()
        change = self._parse(SectionChangeSchema, payload, result)
        if change is None:
            return result

        if operation_type != OperationType.DELETE and change.content is None:
            result.errors.append("content: Field required")
            result.is_valid = False
        return result

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    def repair(self, resource: ResourceType | str, payload: Any) -> RepairResult:
        """Fill in missing fields and fix ordering invariants.

        Args:
            resource: Resource the payload belongs to
            payload: Entity data to repair

        Returns:
            RepairResult; ``success`` is False when the entity's repair
            ceiling was reached or the payload cannot be repaired
        """
        if not isinstance(payload, dict):
            return RepairResult(repaired={}, success=False)

        try:
            resource = ResourceType(resource)
        except ValueError:
            return RepairResult(repaired=payload, success=False)

        if self.validate(resource, payload).is_valid:
            return RepairResult(repaired=dict(payload), success=True)

        if resource == ResourceType.SECTION:
            # Section changes carry caller intent only; nothing to fill in
            return RepairResult(repaired=payload, success=False)

        entity_id = payload.get("id")
        repair_key = f"{resource.value}_{entity_id}" if entity_id else None
        if repair_key is not None:
            attempts = self._repair_attempts.get(repair_key, 0)
            if attempts >= self.max_repair_attempts:
                detail_logger.warning(
                    f"Repair ceiling reached for {repair_key} ({attempts} attempts)"
                )
                return RepairResult(repaired=payload, success=False)
            self._repair_attempts[repair_key] = attempts + 1

        if resource == ResourceType.BUSINESS_PLAN:
            repaired = self._repair_business_plan(payload)
        else:
            repaired = self._repair_user_profile(payload)

        detail_logger.debug(
            f"Repaired {resource.value} payload "
            f"(key={repair_key or 'new entity'}): {sorted(repaired)}"
        )
        return RepairResult(repaired=repaired, success=True)

    def repair_attempts(self, resource: ResourceType | str, entity_id: str) -> int:
        """Number of repairs already spent on an entity."""
        return self._repair_attempts.get(f"{ResourceType(resource).value}_{entity_id}", 0)

    def _repair_business_plan(self, payload: dict[str, Any]) -> dict[str, Any]:
        repaired = dict(payload)

        if not repaired.get("id"):
            repaired["id"] = self._id_factory("plan")
        if not repaired.get("title"):
            repaired["title"] = DEFAULT_PLAN_TITLE

        sections = repaired.get("sections")
        if not isinstance(sections, dict):
            repaired["sections"] = {}
        else:
            repaired["sections"] = {
                str(key): "" if body is None else str(body)
                for key, body in sections.items()
            }

        if repaired.get("status") not in {status.value for status in PlanStatus}:
            repaired["status"] = PlanStatus.DRAFT.value

        self._repair_timestamps(repaired)
        return repaired

    def _repair_user_profile(self, payload: dict[str, Any]) -> dict[str, Any]:
        repaired = dict(payload)
        now = self._clock()

        if not repaired.get("id"):
            repaired["id"] = self._id_factory("user")
        if not repaired.get("full_name"):
            repaired["full_name"] = DEFAULT_PROFILE_NAME
        if not repaired.get("email"):
            repaired["email"] = (
                f"user{int(now.timestamp() * 1000)}@{PLACEHOLDER_EMAIL_DOMAIN}"
            )

        self._repair_timestamps(repaired)
        return repaired

    def _repair_timestamps(self, repaired: dict[str, Any]) -> None:
        now = self._clock().isoformat()

        created = parse_timestamp(repaired.get("created_at"))
        if created is None:
            repaired["created_at"] = now
            created = parse_timestamp(now)

        updated = parse_timestamp(repaired.get("updated_at"))
        if updated is None:
            repaired["updated_at"] = now
            updated = parse_timestamp(now)

        if created is not None and updated is not None and updated < created:
            repaired["updated_at"] = repaired["created_at"]
