from datetime import datetime
from typing import Any, Self
from uuid import UUID

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from core.environment import settings
from core.exceptions import ValidationException


class NotificationConfig(BaseModel):
    recipients: list[dict[str, Any]] = []
    title_template: str = ""
    body_template: str = ""
    priority: str | None = None
    channels: list[str] = []


class TransitionRule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_state: str = Field(alias="from", min_length=1)
    action: str = Field(min_length=1)
    to_state: str = Field(alias="to", min_length=1)
    requires_comment: bool = False
    required_permission: str | None = Field(default=None, alias="permission")
    label: str | None = None
    notifications: list[NotificationConfig] = []

    @field_validator("required_permission", mode="before")
    @classmethod
    def empty_permission_is_none(cls, value: Any) -> Any:
        return value or None


class WorkflowStateDTO(BaseModel):
    code: str = Field(min_length=1)
    name: str | None = None
    is_final: bool = False


class WorkflowDefinitionDTO(BaseModel):
    id: UUID | None = None
    code: str
    name: str | None = None
    description: str | None = None
    initial_state: str = settings.DEFAULT_WORKFLOW_STATE
    states: list[WorkflowStateDTO] = []
    transitions: list[TransitionRule] = []

    @field_validator("states", mode="before")
    @classmethod
    def accept_state_codes(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [{"code": item} if isinstance(item, str) else item for item in value]

    @model_validator(mode="after")
    def rules_reference_declared_states(self) -> Self:
        if not self.states:
            return self

        declared = {state.code for state in self.states}
        if self.initial_state not in declared:
            raise ValueError(
                f"initial state '{self.initial_state}' is not a declared state"
            )
        for rule in self.transitions:
            for state in (rule.from_state, rule.to_state):
                if state not in declared:
                    raise ValueError(
                        f"transition '{rule.action}' references undeclared state '{state}'"
                    )
        return self

    @property
    def state_codes(self) -> set[str]:
        """Declared states, or the states the rules reach when none are declared."""
        if self.states:
            return {state.code for state in self.states}

        codes = {self.initial_state}
        for rule in self.transitions:
            codes.update((rule.from_state, rule.to_state))
        return codes

    @classmethod
    def parse(cls, data: Any) -> Self:
        """Validate raw workflow configuration, raising `ValidationException`."""
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ValidationException(
                f"Invalid workflow configuration: {exc.errors(include_url=False)}"
            ) from exc

    def transitions_payload(self) -> list[dict[str, Any]]:
        return [
            rule.model_dump(mode="json", by_alias=True, exclude_none=True)
            for rule in self.transitions
        ]


class ActorDTO(BaseModel):
    id: str
    name: str | None = None
    role: str | None = None
    permissions: list[str] = []


class TransitionRecordDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    submission_id: UUID
    from_state: str
    to_state: str
    action: str
    actor_id: str
    actor_name: str | None = None
    actor_role: str | None = None
    comment: str | None = None
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("metadata", "transition_metadata"),
    )
    transitioned_at: datetime


class WorkflowActionDTO(BaseModel):
    action: str
    label: str
    to_state: str
    requires_comment: bool = False
    permission: str | None = None
