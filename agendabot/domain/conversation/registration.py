"""Registration flow: name, CPF and optional email"""

import logging

from ... import messages
from ...models import ConversationState
from ...models_events import AuditKind
from ...shared.validators import validate_cpf, validate_email
from ..audit.repository import AuditRepository, snapshot
from ..customers.service import CUSTOMER_FIELDS
from .base import SKIP_ANSWERS, FlowContext, FlowResult

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 3


class RegistrationFlow:
    def __init__(self, db):
        self.db = db

    async def start(self, ctx: FlowContext) -> FlowResult:
        """First contact: greet and ask for the name"""
        return FlowResult.to(ConversationState.COLLECTING_NAME, {}, messages.welcome())

    def prompt_for_missing(self, customer) -> str:
        if not customer.name:
            return messages.ask_name()
        if not customer.tax_id:
            return messages.ask_tax_id(customer.name)
        return messages.ask_email()

    async def answer_missing(self, ctx: FlowContext) -> FlowResult:
        """Registration incomplete outside the registration states: treat the message as the first missing field"""
        customer = ctx.customer
        if not customer.name:
            return await self.handle_name(ctx)
        if not customer.tax_id:
            return await self.handle_tax_id(ctx)
        return await self.handle_email(ctx)

    async def handle_name(self, ctx: FlowContext) -> FlowResult:
        name = " ".join(ctx.text.split())
        if len(name) < MIN_NAME_LENGTH or any(ch.isdigit() for ch in name):
            return FlowResult.stay(ctx, messages.invalid_name())

        ctx.customer.name = name
        return FlowResult.to(ConversationState.COLLECTING_TAX_ID, {}, messages.ask_tax_id(name))

    async def handle_tax_id(self, ctx: FlowContext) -> FlowResult:
        try:
            tax_id = validate_cpf(ctx.text)
        except ValueError:
            return FlowResult.stay(ctx, messages.invalid_tax_id())

        ctx.customer.tax_id = tax_id
        return FlowResult.to(ConversationState.COLLECTING_EMAIL, {}, messages.ask_email())

    async def handle_email(self, ctx: FlowContext) -> FlowResult:
        email = None
        if ctx.command not in SKIP_ANSWERS:
            try:
                email = validate_email(ctx.text)
            except ValueError:
                return FlowResult.stay(ctx, messages.invalid_email())

        customer = ctx.customer
        before = snapshot(customer, CUSTOMER_FIELDS)
        customer.email = email
        customer.registration_complete = True
        AuditRepository.record(
            self.db,
            AuditKind.CUSTOMER_UPDATED,
            customer_id=customer.id,
            before=before,
            after=snapshot(customer, CUSTOMER_FIELDS),
            details={"origin": "registration"},
        )
        logger.info(f"✅ Customer {customer.id} completed registration")
        return FlowResult.to(ConversationState.MAIN_MENU, {}, messages.registration_complete(customer.name))
