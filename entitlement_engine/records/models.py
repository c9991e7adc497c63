"""
Subscription record data models.

A record is an immutable snapshot of an account's subscription. The shape
is a tagged union over the billing cycle: a trial always carries its trial
end date, a paid subscription may carry an end date, and anything the
backend sent that cannot be trusted becomes a ``MalformedSubscription``
which every evaluation treats as expired.
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shared.errors import MalformedRecordError
from shared.logging import get_logger

logger = get_logger("entitlements.records")


class SubscriptionStatus(str, Enum):
    """Subscription status reported by the backend."""
    NONE = "none"
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @classmethod
    def parse(cls, value: Any) -> "SubscriptionStatus":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower().replace("-", "_")
            if normalized == "canceled":
                normalized = "cancelled"
            for member in cls:
                if member.value == normalized:
                    return member
        return cls.NONE


class BillingCycle(str, Enum):
    """Billing cycle of a subscription."""
    TRIAL = "trial"
    MONTHLY = "monthly"
    ANNUAL = "annual"


class Resource(str, Enum):
    """Metered resources carried in restrictions and usage."""
    BEDS = "beds"
    BRANCHES = "branches"
    ROOMS = "rooms"


@dataclass(frozen=True)
class PlanModule:
    """A module entry of a plan."""
    module_name: str
    enabled: bool = False


@dataclass(frozen=True)
class Plan:
    """Plan the subscription is on."""
    plan_id: Optional[str] = None
    plan_name: Optional[str] = None
    modules: Tuple[PlanModule, ...] = ()
    allow_multiple_branches: bool = False

    def find_module(self, module_name: str) -> Optional[PlanModule]:
        for module in self.modules:
            if module.module_name == module_name:
                return module
        return None


@dataclass(frozen=True)
class Restrictions:
    """Resource limits granted by the plan."""
    max_beds: int = 0
    max_branches: int = 0
    max_rooms: int = 0

    def limit_for(self, resource: Resource) -> int:
        return getattr(self, f"max_{resource.value}")


@dataclass(frozen=True)
class Usage:
    """Resources currently consumed by the account."""
    beds_used: int = 0
    branches_used: int = 0
    rooms_used: int = 0

    def used_for(self, resource: Resource) -> int:
        return getattr(self, f"{resource.value}_used")


def as_utc(moment: datetime) -> datetime:
    """Normalize a datetime to aware UTC; naive values are taken as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


_DATE_FIELDS = ("start_date", "end_date", "trial_end_date")


@dataclass(frozen=True, kw_only=True)
class _RecordBase:
    status: SubscriptionStatus = SubscriptionStatus.NONE
    plan: Plan = field(default_factory=Plan)
    restrictions: Restrictions = field(default_factory=Restrictions)
    usage: Usage = field(default_factory=Usage)
    start_date: Optional[datetime] = None

    def __post_init__(self):
        # Records may be built directly by hosts; dates are always aware UTC
        for name in _DATE_FIELDS:
            value = getattr(self, name, None)
            if isinstance(value, datetime):
                object.__setattr__(self, name, as_utc(value))

    def with_usage(self, **changes: int):
        """Copy of this record with some usage figures replaced (what-if computations)."""
        return dataclasses.replace(self, usage=dataclasses.replace(self.usage, **changes))


@dataclass(frozen=True, kw_only=True)
class TrialSubscription(_RecordBase):
    """Trial subscription; the trial end date is mandatory."""
    trial_end_date: datetime
    end_date: Optional[datetime] = None

    @property
    def billing_cycle(self) -> BillingCycle:
        return BillingCycle.TRIAL

    @property
    def is_trial(self) -> bool:
        return True


@dataclass(frozen=True, kw_only=True)
class PaidSubscription(_RecordBase):
    """Monthly or annual subscription; no end date means perpetual."""
    cycle: BillingCycle = BillingCycle.MONTHLY
    end_date: Optional[datetime] = None

    def __post_init__(self):
        super().__post_init__()
        if self.cycle == BillingCycle.TRIAL:
            raise ValueError("PaidSubscription cannot use the trial billing cycle")

    @property
    def billing_cycle(self) -> BillingCycle:
        return self.cycle

    @property
    def is_trial(self) -> bool:
        return False


@dataclass(frozen=True, kw_only=True)
class MalformedSubscription(_RecordBase):
    """A record that failed validation. Always evaluated as expired and denied."""
    cycle: Optional[BillingCycle] = None
    reason: str = "malformed record"

    @property
    def billing_cycle(self) -> Optional[BillingCycle]:
        return self.cycle

    @property
    def is_trial(self) -> bool:
        return self.cycle == BillingCycle.TRIAL


SubscriptionRecord = Union[TrialSubscription, PaidSubscription, MalformedSubscription]


# Backend payload models


class ModulePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    module_name: str = Field(..., alias="moduleName")
    enabled: bool = False


class PlanPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    plan_id: Optional[str] = Field(None, alias="planId")
    plan_name: Optional[str] = Field(None, alias="planName")
    modules: List[ModulePayload] = Field(default_factory=list)
    allow_multiple_branches: bool = Field(False, alias="allowMultipleBranches")


class RestrictionsPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    max_beds: int = Field(0, alias="maxBeds", ge=0)
    max_branches: int = Field(0, alias="maxBranches", ge=0)
    max_rooms: int = Field(0, alias="maxRooms", ge=0)
    modules: List[ModulePayload] = Field(default_factory=list)


class UsagePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    beds_used: int = Field(0, alias="bedsUsed", ge=0)
    branches_used: int = Field(0, alias="branchesUsed", ge=0)
    rooms_used: int = Field(0, alias="roomsUsed", ge=0)


class SubscriptionPayload(BaseModel):
    """Subscription document as returned by the backend."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: Optional[str] = None
    billing_cycle: Optional[str] = Field(None, alias="billingCycle")
    start_date: Any = Field(None, alias="startDate")
    end_date: Any = Field(None, alias="endDate")
    trial_end_date: Any = Field(None, alias="trialEndDate")
    plan: Optional[PlanPayload] = None
    restrictions: RestrictionsPayload = Field(default_factory=RestrictionsPayload)
    usage: UsagePayload = Field(default_factory=UsagePayload)


def _none_to_empty(value: Any) -> Any:
    return {} if value is None else value


def parse_timestamp(value: Any, field_name: str) -> Optional[datetime]:
    """
    Parse a backend timestamp.

    Accepts ISO-8601 strings (a trailing ``Z`` included), datetimes and epoch
    numbers in milliseconds. Naive values are taken as UTC. Missing values
    return None; anything else raises MalformedRecordError.
    """
    if value is None or value == "":
        return None

    if isinstance(value, bool):
        raise MalformedRecordError(f"Unparsable {field_name}", {"field": field_name, "value": value})

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        try:
            parsed = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as e:
            raise MalformedRecordError(
                f"Unparsable {field_name}", {"field": field_name, "value": value}
            ) from e
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise MalformedRecordError(
                f"Unparsable {field_name}", {"field": field_name, "value": value}
            ) from e
    else:
        raise MalformedRecordError(f"Unparsable {field_name}", {"field": field_name, "value": repr(value)})

    return as_utc(parsed)


def _parse_cycle(value: Optional[str]) -> Optional[BillingCycle]:
    if value is None:
        return None
    normalized = str(value).strip().lower()
    if normalized in ("yearly", "annually"):
        normalized = "annual"
    try:
        return BillingCycle(normalized)
    except ValueError as e:
        raise MalformedRecordError("Unknown billing cycle", {"field": "billingCycle", "value": value}) from e


def _malformed(raw: Dict[str, Any], reason: str) -> MalformedSubscription:
    try:
        cycle = _parse_cycle(raw.get("billingCycle", raw.get("billing_cycle")))
    except MalformedRecordError:
        cycle = None
    logger.warning("Malformed subscription record", reason=reason, billing_cycle=cycle.value if cycle else None)
    return MalformedSubscription(
        status=SubscriptionStatus.parse(raw.get("status")),
        cycle=cycle,
        reason=reason,
    )


def parse_record(payload: Optional[Dict[str, Any]]) -> Optional[SubscriptionRecord]:
    """
    Build a record from a backend subscription document.

    Returns None when the account has no subscription. Never raises for bad
    data; invalid documents come back as MalformedSubscription.
    """
    if not payload:
        return None

    if not isinstance(payload, dict):
        return _malformed({}, f"expected an object, got {type(payload).__name__}")

    raw = dict(payload)
    for key in ("restrictions", "usage"):
        if key in raw:
            raw[key] = _none_to_empty(raw[key])

    try:
        document = SubscriptionPayload.model_validate(raw)
    except ValidationError as e:
        return _malformed(raw, f"invalid fields: {', '.join(str(err['loc'][-1]) for err in e.errors())}")

    try:
        cycle = _parse_cycle(document.billing_cycle)
        start_date = parse_timestamp(document.start_date, "startDate")
        end_date = parse_timestamp(document.end_date, "endDate")
        trial_end_date = parse_timestamp(document.trial_end_date, "trialEndDate")
    except MalformedRecordError as e:
        return _malformed(raw, e.message)

    module_payloads = document.plan.modules if document.plan and document.plan.modules else document.restrictions.modules
    plan = Plan(
        plan_id=document.plan.plan_id if document.plan else None,
        plan_name=document.plan.plan_name if document.plan else None,
        modules=tuple(PlanModule(m.module_name, m.enabled) for m in module_payloads),
        allow_multiple_branches=document.plan.allow_multiple_branches if document.plan else False,
    )
    common = dict(
        status=SubscriptionStatus.parse(document.status),
        plan=plan,
        restrictions=Restrictions(
            max_beds=document.restrictions.max_beds,
            max_branches=document.restrictions.max_branches,
            max_rooms=document.restrictions.max_rooms,
        ),
        usage=Usage(
            beds_used=document.usage.beds_used,
            branches_used=document.usage.branches_used,
            rooms_used=document.usage.rooms_used,
        ),
        start_date=start_date,
    )

    if cycle is None:
        return _malformed(raw, "missing billingCycle")

    if cycle == BillingCycle.TRIAL:
        if trial_end_date is None:
            return _malformed(raw, "trial without trialEndDate")
        return TrialSubscription(trial_end_date=trial_end_date, end_date=end_date, **common)

    return PaidSubscription(cycle=cycle, end_date=end_date, **common)
