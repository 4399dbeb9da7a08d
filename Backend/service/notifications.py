from abc import ABC, abstractmethod
from logging import Logger
from typing import Any

from jinja2 import Undefined
from jinja2.sandbox import ImmutableSandboxedEnvironment

from core.logger import app_logger
from model.dto.workflow import (
    NotificationConfig,
    TransitionRecordDTO,
    TransitionRule,
    WorkflowDefinitionDTO,
)


_ALLOWED_FILTERS = {"default", "lower", "upper", "title", "trim", "replace", "length"}


class _TemplateSandbox(ImmutableSandboxedEnvironment):
    # Templates only see the flat string context, never attributes or callables
    def is_safe_attribute(self, obj, attr, value) -> bool:
        return False

    def is_safe_callable(self, obj) -> bool:
        return False


def _template_env() -> _TemplateSandbox:
    env = _TemplateSandbox(autoescape=False, undefined=Undefined)
    env.globals = {}
    env.filters = {key: val for key, val in env.filters.items() if key in _ALLOWED_FILTERS}
    return env


_TEMPLATES = _template_env()

class TransitionNotifier(ABC):
    """Receives every committed workflow transition."""

    @abstractmethod
    async def notify(
        self,
        transition: TransitionRecordDTO,
        rule: TransitionRule,
        definition: WorkflowDefinitionDTO,
    ) -> None: ...


class LoggingNotifier(TransitionNotifier):
    """Renders the rule's notification templates and logs them.

    Templates are Jinja expressions rendered in a locked sandbox, e.g.
    ``"{{ action }} by {{ actor_name }}: {{ from_state }} -> {{ to_state }}"``.
    Unknown variables render as empty strings.
    """

    def __init__(self, logger: Logger = app_logger):
        self._logger = logger

    async def notify(
        self,
        transition: TransitionRecordDTO,
        rule: TransitionRule,
        definition: WorkflowDefinitionDTO,
    ) -> None:
        context = self.template_context(transition, rule, definition)
        for config in rule.notifications:
            title, body = self.render(config, context)
            recipients = ", ".join(
                str(recipient.get("value") or recipient.get("type") or recipient)
                for recipient in config.recipients
            )
            self._logger.info(
                f"Notification [{config.priority or 'normal'}] to ({recipients or 'nobody'}) "
                f"via {config.channels or ['in_app']}: {title} - {body}"
            )

    @staticmethod
    def template_context(
        transition: TransitionRecordDTO,
        rule: TransitionRule,
        definition: WorkflowDefinitionDTO,
    ) -> dict[str, Any]:
        return {
            "workflow_code": definition.code,
            "workflow_name": definition.name or definition.code,
            "submission_id": str(transition.submission_id),
            "action": transition.action,
            "action_label": rule.label or transition.action,
            "from_state": transition.from_state,
            "to_state": transition.to_state,
            "actor_id": transition.actor_id,
            "actor_name": transition.actor_name or transition.actor_id,
            "actor_role": transition.actor_role or "",
            "comment": transition.comment or "",
        }

    @staticmethod
    def render(config: NotificationConfig, context: dict[str, Any]) -> tuple[str, str]:
        return (
            _TEMPLATES.from_string(config.title_template).render(context),
            _TEMPLATES.from_string(config.body_template).render(context),
        )
