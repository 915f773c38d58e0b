"""Subscription parameter values.

A subscription's parameters are its plan's attributes joined with the values
stored for that subscription; attributes without a stored value are listed
with value None.
"""

from typing import Dict, List, Optional

from sqlalchemy import and_, select

from marketplace_reconciler.database import Database, get_database
from marketplace_reconciler.logging_config import get_logger
from marketplace_reconciler.models.orm import PlanAttributeRow, SubscriptionParameterRow
from marketplace_reconciler.models.subscription import ParameterType, SubscriptionParameter

logger = get_logger(__name__)


class ParameterStore:
    """Values of plan attributes per subscription."""

    def __init__(self, database: Optional[Database] = None):
        self._db = database or get_database()

    def list_for(self, subscription_id: int, plan_guid: str) -> List[SubscriptionParameter]:
        """Plan attributes of plan_guid with this subscription's values."""
        with self._db.session_scope() as s:
            rows = s.execute(
                select(PlanAttributeRow, SubscriptionParameterRow)
                .outerjoin(
                    SubscriptionParameterRow,
                    and_(
                        SubscriptionParameterRow.plan_attribute_id == PlanAttributeRow.id,
                        SubscriptionParameterRow.subscription_id == subscription_id,
                    ),
                )
                .where(PlanAttributeRow.plan_guid == plan_guid)
                .order_by(PlanAttributeRow.id)
            ).all()
            return [
                SubscriptionParameter(
                    plan_attribute_id=attribute.id,
                    plan_guid=attribute.plan_guid,
                    display_name=attribute.display_name,
                    type=ParameterType(attribute.type),
                    value=value.value if value is not None else None,
                    value_id=value.id if value is not None else None,
                )
                for attribute, value in rows
            ]

    def set_value(self, subscription_id: int, plan_attribute_id: int, value: str, user_id: int) -> None:
        """Insert or replace the value of one attribute for a subscription."""
        with self._db.session_scope() as s:
            row = s.scalars(
                select(SubscriptionParameterRow).where(
                    SubscriptionParameterRow.subscription_id == subscription_id,
                    SubscriptionParameterRow.plan_attribute_id == plan_attribute_id,
                )
            ).first()
            if row is None:
                s.add(
                    SubscriptionParameterRow(
                        subscription_id=subscription_id,
                        plan_attribute_id=plan_attribute_id,
                        value=value,
                        user_id=user_id,
                    )
                )
            else:
                row.value = value
                row.user_id = user_id

    def save_inputs(
        self, subscription_id: int, plan_guid: str, values: Dict[str, str], user_id: int
    ) -> int:
        """Store customer-entered values for the plan's input attributes.

        Names that are not input attributes of the plan are ignored.

        Returns:
            Number of values stored
        """
        inputs = {
            parameter.display_name: parameter
            for parameter in self.list_for(subscription_id, plan_guid)
            if parameter.type is ParameterType.INPUT
        }
        stored = 0
        for name, value in values.items():
            parameter = inputs.get(name)
            if parameter is None:
                logger.warning("unknown_input_parameter", parameter=name, plan_guid=plan_guid)
                continue
            self.set_value(subscription_id, parameter.plan_attribute_id, value, user_id)
            stored += 1
        return stored
