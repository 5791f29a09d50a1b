"""Step effect handlers for contact-workflows."""

from __future__ import annotations

from contact_workflows.steps.actions import ExitHandler, TriggerHandler, UpdateContactHandler
from contact_workflows.steps.base import BaseStepHandler, Continue, Exit, Fail, StepResult, Wait
from contact_workflows.steps.email import SendEmailHandler, render_template
from contact_workflows.steps.gateway import ConditionHandler
from contact_workflows.steps.timer import DelayHandler, WaitForEventHandler
from contact_workflows.steps.webhook import WebhookHandler, default_payload

__all__ = [
    "BaseStepHandler",
    "ConditionHandler",
    "Continue",
    "DelayHandler",
    "Exit",
    "ExitHandler",
    "Fail",
    "SendEmailHandler",
    "StepResult",
    "TriggerHandler",
    "UpdateContactHandler",
    "Wait",
    "WaitForEventHandler",
    "WebhookHandler",
    "default_payload",
    "render_template",
]
