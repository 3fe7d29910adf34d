from typing import List
from uuid import UUID
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from booking_core.core.exceptions import NotFoundError, ValidationError
from booking_core.models.availability import AvailabilityRule
from booking_core.models.user import User
from booking_core.schemas.availability import AvailabilityRuleCreate, AvailabilityRuleUpdate

logger = logging.getLogger(__name__)


class AvailabilityRuleService:
    """Create, edit and list a host's weekly availability rules"""

    @staticmethod
    def list_rules(db: Session, user_id: UUID) -> List[AvailabilityRule]:
        return (
            db.query(AvailabilityRule)
            .filter(AvailabilityRule.user_id == user_id)
            .order_by(AvailabilityRule.day_of_week, AvailabilityRule.start_time)
            .all()
        )

    @staticmethod
    def create_rule(db: Session, user_id: UUID, data: AvailabilityRuleCreate) -> AvailabilityRule:
        if not db.query(User.id).filter(User.id == user_id).first():
            raise ValidationError(f"Unknown user {user_id}", {"user_id": str(user_id)})

        AvailabilityRuleService._ensure_unique(db, user_id, data.day_of_week, data.start_time, data.end_time)

        rule = AvailabilityRule(user_id=user_id, **data.model_dump())
        db.add(rule)
        AvailabilityRuleService._commit(db)
        db.refresh(rule)

        logger.info(f"Created availability rule {rule.id} for user {user_id}")
        return rule

    @staticmethod
    def update_rule(db: Session, user_id: UUID, rule_id: UUID, data: AvailabilityRuleUpdate) -> AvailabilityRule:
        rule = AvailabilityRuleService._get_owned(db, user_id, rule_id)
        changes = data.model_dump(exclude_unset=True)

        day_of_week = changes.get("day_of_week", rule.day_of_week)
        start_time = changes.get("start_time", rule.start_time)
        end_time = changes.get("end_time", rule.end_time)
        if start_time >= end_time:
            raise ValidationError("Start time must be before end time", {
                "start_time": start_time.isoformat(),
                "end_time": end_time.isoformat(),
            })

        AvailabilityRuleService._ensure_unique(db, user_id, day_of_week, start_time, end_time, exclude_id=rule.id)

        for field, value in changes.items():
            setattr(rule, field, value)
        AvailabilityRuleService._commit(db)
        db.refresh(rule)

        logger.info(f"Updated availability rule {rule.id}: {sorted(changes)}")
        return rule

    @staticmethod
    def delete_rule(db: Session, user_id: UUID, rule_id: UUID) -> None:
        rule = AvailabilityRuleService._get_owned(db, user_id, rule_id)
        db.delete(rule)
        db.commit()
        logger.info(f"Deleted availability rule {rule_id} for user {user_id}")

    @staticmethod
    def _get_owned(db: Session, user_id: UUID, rule_id: UUID) -> AvailabilityRule:
        rule = db.query(AvailabilityRule).filter(
            AvailabilityRule.id == rule_id,
            AvailabilityRule.user_id == user_id
        ).first()
        if not rule:
            raise NotFoundError(f"Availability rule {rule_id} not found")
        return rule

    @staticmethod
    def _ensure_unique(db: Session, user_id, day_of_week, start_time, end_time, exclude_id=None):
        query = db.query(AvailabilityRule.id).filter(
            AvailabilityRule.user_id == user_id,
            AvailabilityRule.day_of_week == day_of_week,
            AvailabilityRule.start_time == start_time,
            AvailabilityRule.end_time == end_time,
        )
        if exclude_id is not None:
            query = query.filter(AvailabilityRule.id != exclude_id)
        if query.first():
            raise ValidationError("An identical availability rule already exists for this day", {
                "day_of_week": day_of_week,
                "start_time": start_time.isoformat(),
                "end_time": end_time.isoformat(),
            })

    @staticmethod
    def _commit(db: Session):
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            logger.error(f"Availability rule rejected by database: {e}")
            raise ValidationError("Availability rule violates a database constraint") from e
