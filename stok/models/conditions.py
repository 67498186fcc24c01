"""Status conditions attached to workspaces and runs.

A condition is a ``(type, status, last_transition_time)`` record with an
optional machine-readable reason and a human-readable message.  Conditions
are grouped in a ``ConditionSet``: a keyed, insertion-ordered map that holds
at most one condition per type.  On the wire (and in ``model_dump``) the set
is a plain list, matching the Kubernetes ``status.conditions`` layout.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

from pydantic import Field, GetCoreSchemaHandler
from pydantic_core import core_schema

from stok.models.base import KubeModel
from stok.models.enums import ConditionStatus


class Condition(KubeModel):
    """A single named status signal."""

    type: str
    status: ConditionStatus = ConditionStatus.UNKNOWN
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = Field(default=None)

    @property
    def is_true(self) -> bool:
        return self.status == ConditionStatus.TRUE

    @property
    def is_false(self) -> bool:
        return self.status == ConditionStatus.FALSE


class ConditionSet:
    """Ordered map of condition type -> ``Condition``.

    ``set`` is an upsert: a condition whose status does not change keeps its
    original ``last_transition_time`` (reason and message are still updated).
    """

    def __init__(self, conditions: list[Condition] | None = None) -> None:
        self._conditions: dict[str, Condition] = {}
        for condition in conditions or []:
            self._conditions[condition.type] = condition

    # -- Query -----------------------------------------------------------------

    def get(self, type_: str) -> Condition | None:
        return self._conditions.get(type_)

    def is_true(self, type_: str) -> bool:
        condition = self._conditions.get(type_)
        return condition is not None and condition.is_true

    def is_false(self, type_: str) -> bool:
        condition = self._conditions.get(type_)
        return condition is not None and condition.is_false

    def __contains__(self, type_: object) -> bool:
        return type_ in self._conditions

    def __iter__(self) -> Iterator[Condition]:
        return iter(self._conditions.values())

    def __len__(self) -> int:
        return len(self._conditions)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConditionSet):
            return NotImplemented
        return list(self) == list(other)

    def __repr__(self) -> str:
        return f"ConditionSet({list(self)!r})"

    # -- Mutation --------------------------------------------------------------

    def set(
        self,
        type_: str,
        status: ConditionStatus | bool,
        *,
        reason: str = "",
        message: str = "",
        now: datetime | None = None,
    ) -> bool:
        """Upsert a condition.  Returns ``True`` if the status transitioned."""
        if isinstance(status, bool):
            status = ConditionStatus.TRUE if status else ConditionStatus.FALSE

        existing = self._conditions.get(type_)
        if existing is not None and existing.status == status:
            self._conditions[type_] = existing.model_copy(update={"reason": reason, "message": message})
            return False

        self._conditions[type_] = Condition(
            type=type_,
            status=status,
            reason=reason,
            message=message,
            last_transition_time=now or datetime.now(tz=UTC).replace(microsecond=0),
        )
        return True

    def remove(self, type_: str) -> None:
        self._conditions.pop(type_, None)

    # -- Pydantic integration --------------------------------------------------

    @classmethod
    def __get_pydantic_core_schema__(cls, source: Any, handler: GetCoreSchemaHandler) -> core_schema.CoreSchema:
        list_schema = handler.generate_schema(list[Condition])
        from_list = core_schema.no_info_after_validator_function(cls, list_schema)
        return core_schema.json_or_python_schema(
            json_schema=from_list,
            python_schema=core_schema.union_schema([core_schema.is_instance_schema(cls), from_list]),
            serialization=core_schema.plain_serializer_function_ser_schema(
                lambda conditions: list(conditions),
                return_schema=list_schema,
            ),
        )
