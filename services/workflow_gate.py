"""
Workflow Gate

Decides whether a driver may take a workflow action right now. Two things
feed the decision:

- the driver's lifecycle status (admin-driven state machine below; the gate
  only reads it)
- the daily sequence onboarding -> start of day -> end of day

The gate never writes. Services call ``require`` before persisting anything.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Union
import logging

from models import DriverStatus
from timezone_utils import get_operating_date
from .business_rules import (BusinessRuleService, SOD_TABLE, EOD_TABLE, VEHICLE_CHECK_TABLE,
                             DUPLICATE_MESSAGES, validate_vehicle_assignment)
from .errors import ActionNotPermitted, DuplicateEntryError, ValidationError

logger = logging.getLogger(__name__)

LIFECYCLE_TRANSITIONS = {
    DriverStatus.INVITED: frozenset({DriverStatus.PENDING, DriverStatus.CANCELLED}),
    DriverStatus.PENDING: frozenset({DriverStatus.ACTIVE, DriverStatus.REJECTED}),
    DriverStatus.ACTIVE: frozenset({DriverStatus.INACTIVE, DriverStatus.SUSPENDED}),
    DriverStatus.INACTIVE: frozenset({DriverStatus.ACTIVE}),
    DriverStatus.SUSPENDED: frozenset({DriverStatus.ACTIVE, DriverStatus.TERMINATED}),
    DriverStatus.TERMINATED: frozenset(),
    DriverStatus.CANCELLED: frozenset(),
    DriverStatus.REJECTED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in LIFECYCLE_TRANSITIONS.items() if not targets)

# Statuses in which a driver may still finish onboarding
ONBOARDING_STATUSES = frozenset({DriverStatus.INVITED, DriverStatus.PENDING, DriverStatus.ACTIVE})


class Action(Enum):
    COMPLETE_ONBOARDING = 'complete_onboarding'
    SUBMIT_SOD = 'submit_sod'
    SUBMIT_EOD = 'submit_eod'
    REPORT_INCIDENT = 'report_incident'
    SUBMIT_VEHICLE_CHECK = 'submit_vehicle_check'


@dataclass
class GateDecision:
    allowed: bool
    action: Action
    failed_field: Optional[str] = None
    reason: Optional[str] = None
    duplicate: bool = False
    warnings: List[str] = field(default_factory=list)
    sod: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action': self.action.value,
            'allowed': self.allowed,
            'field': self.failed_field,
            'reason': self.reason,
            'warnings': list(self.warnings),
        }


def to_status(value: Union[str, DriverStatus]) -> DriverStatus:
    if isinstance(value, DriverStatus):
        return value
    try:
        return DriverStatus(value)
    except ValueError:
        raise ValidationError('status', f"Unknown driver status: {value}")


def is_onboarding_complete(driver: Dict[str, Any]) -> bool:
    """Insurance is optional; licence and right-to-work documents are not"""
    return bool(
        not driver.get('requires_onboarding')
        and driver.get('first_login_completed')
        and driver.get('driving_license_document')
        and driver.get('right_to_work_document')
    )


class WorkflowGate:

    def __init__(self, rules: BusinessRuleService, require_sod_before_eod: bool = False):
        self.rules = rules
        self.require_sod_before_eod = require_sod_before_eod

    @staticmethod
    def can_transition(current, target) -> bool:
        return to_status(target) in LIFECYCLE_TRANSITIONS[to_status(current)]

    @staticmethod
    def allowed_transitions(current) -> List[str]:
        return sorted(status.value for status in LIFECYCLE_TRANSITIONS[to_status(current)])

    def require_transition(self, current, target) -> None:
        if not self.can_transition(current, target):
            current, target = to_status(current), to_status(target)
            raise ActionNotPermitted('status', f"Cannot change driver status from {current.value} to {target.value}")

    def evaluate(self, driver: Dict[str, Any], action: Action, today: Optional[date] = None) -> GateDecision:
        today = today or get_operating_date()
        status = to_status(driver['status'])

        if action is Action.COMPLETE_ONBOARDING:
            if status not in ONBOARDING_STATUSES:
                return GateDecision(False, action, 'status', f"Onboarding is not available for {status.value} drivers")
            if is_onboarding_complete(driver):
                return GateDecision(False, action, 'onboarding', 'Onboarding already completed')
            return GateDecision(True, action)

        # Daily actions: onboarding first, regardless of status
        if not is_onboarding_complete(driver):
            return GateDecision(False, action, 'onboarding', 'Onboarding must be completed first')
        if status is not DriverStatus.ACTIVE:
            return GateDecision(False, action, 'status', f"Driver account is {status.value}")

        if action is Action.REPORT_INCIDENT:
            return GateDecision(True, action)

        if action in (Action.SUBMIT_SOD, Action.SUBMIT_VEHICLE_CHECK):
            table = SOD_TABLE if action is Action.SUBMIT_SOD else VEHICLE_CHECK_TABLE
            try:
                validate_vehicle_assignment(driver['id'], driver.get('assigned_vehicle_id'))
            except ValidationError as e:
                return GateDecision(False, action, e.field, e.message)
            if self.rules.find_todays_entry(table, driver['id'], today) is not None:
                return GateDecision(False, action, 'log_date', DUPLICATE_MESSAGES[table], duplicate=True)
            return GateDecision(True, action)

        if action is Action.SUBMIT_EOD:
            if self.rules.find_todays_entry(EOD_TABLE, driver['id'], today) is not None:
                return GateDecision(False, action, 'log_date', DUPLICATE_MESSAGES[EOD_TABLE], duplicate=True)
            sod = self.rules.find_todays_entry(SOD_TABLE, driver['id'], today)
            if sod is None:
                if self.require_sod_before_eod:
                    return GateDecision(False, action, 'sod', 'Start of day must be completed before end of day')
                return GateDecision(True, action, warnings=['No start of day log found for today'])
            return GateDecision(True, action, sod=sod)

        raise ValueError(f"Unsupported action: {action}")

    def require(self, driver: Dict[str, Any], action: Action, today: Optional[date] = None) -> GateDecision:
        decision = self.evaluate(driver, action, today)
        if not decision.allowed:
            logger.info(f"Gate denied {action.value} for driver {driver['id']}: {decision.reason}")
            if decision.duplicate:
                raise DuplicateEntryError(decision.failed_field, decision.reason)
            raise ActionNotPermitted(decision.failed_field, decision.reason)
        return decision

    def daily_status(self, driver: Dict[str, Any], today: Optional[date] = None) -> Dict[str, Any]:
        """Where the driver is in today's sequence and what they may do next"""
        today = today or get_operating_date()
        sod = self.rules.find_todays_entry(SOD_TABLE, driver['id'], today)
        eod = self.rules.find_todays_entry(EOD_TABLE, driver['id'], today)
        vehicle_check = self.rules.find_todays_entry(VEHICLE_CHECK_TABLE, driver['id'], today)
        sod_decision = self.evaluate(driver, Action.SUBMIT_SOD, today)
        eod_decision = self.evaluate(driver, Action.SUBMIT_EOD, today)

        if not is_onboarding_complete(driver):
            next_action = Action.COMPLETE_ONBOARDING.value
        elif sod_decision.allowed:
            next_action = Action.SUBMIT_SOD.value
        elif eod_decision.allowed:
            next_action = Action.SUBMIT_EOD.value
        elif sod is not None and eod is not None:
            next_action = 'done'
        else:
            next_action = 'blocked'

        return {
            'driver_id': driver['id'],
            'date': today.isoformat(),
            'status': to_status(driver['status']).value,
            'onboarding_complete': is_onboarding_complete(driver),
            'sod_completed': sod is not None,
            'eod_completed': eod is not None,
            'vehicle_check_completed': vehicle_check is not None,
            'sod_id': sod['id'] if sod else None,
            'eod_id': eod['id'] if eod else None,
            'next_action': next_action,
            'actions': {
                Action.SUBMIT_SOD.value: sod_decision.to_dict(),
                Action.SUBMIT_EOD.value: eod_decision.to_dict(),
            },
        }
