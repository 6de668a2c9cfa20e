"""Per-event relay pipeline.

Each inbound event walks RESOLVING -> ENABLEMENT_CHECK -> CREDIT_CHECK (messaging
only) -> CONTEXT_BUILD -> COMPLETION -> DISPATCH -> LOG -> METER_UPDATE -> DONE.
Every transition returns a :class:`StepResult`; anything other than ``proceed``
ends the run in ``DROPPED``. There is no retry: a failed event is logged,
counted, and abandoned.

Messaging events run as detached asyncio tasks after the webhook has been
acknowledged. Widget messages run inline and the caller maps the finished
:class:`PipelineRun` onto an HTTP response.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Awaitable, Callable
from urllib.parse import urlsplit

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from relayhub.agent.prompts import build_system_prompt
from relayhub.core.config import get_settings
from relayhub.core.errors import (
    CompletionError,
    DatabaseError,
    DispatchError,
    ProviderConfigError,
    SecretUnavailableError,
)
from relayhub.domain.events import (
    CHANNEL_MESSAGING,
    CHANNEL_WIDGET,
    InboundEvent,
    OutboundReply,
    TenantConfig,
)
from relayhub.domain.state import (
    REASON_COMPLETION_FAILED,
    REASON_DISABLED,
    REASON_DISPATCH_FAILED,
    REASON_MISSING_CHANNEL_TOKEN,
    REASON_MISSING_PROVIDER_KEY,
    REASON_NO_CREDITS,
    REASON_NOT_FOUND,
    REASON_ORIGIN_REJECTED,
    REASON_STORE_ERROR,
    REASON_UNEXPECTED,
    PipelineRun,
    PipelineState,
    StepResult,
)
from relayhub.providers.channels.base import ChannelClient
from relayhub.providers.llm.base import LLMProvider
from relayhub.services import usage
from relayhub.services.context import assemble_context
from relayhub.services.credentials import resolve_channel_token, resolve_model, resolve_provider_key
from relayhub.services.dispatch import dispatch_reply
from relayhub.services.telemetry import increment_counter
from relayhub.services.tenant_resolver import resolve_by_channel_id, resolve_by_widget_key


logger = logging.getLogger(__name__)


def origin_allowed(origin: str | None, allowed: tuple[str, ...] | list[str]) -> bool:
    """Match a browser Origin against a tenant allow-list.

    An empty allow-list admits everyone. Entries may be bare hosts
    (``shop.example.com``) or full origins (``https://shop.example.com``); the
    caller host must equal an entry host or be a subdomain of it.
    """
    if not allowed:
        return True
    host = _host_of(origin or "")
    if not host:
        return False
    for entry in allowed:
        entry_host = _host_of(str(entry))
        if entry_host and (host == entry_host or host.endswith("." + entry_host)):
            return True
    return False


def _host_of(value: str) -> str:
    value = value.strip().lower()
    if not value:
        return ""
    if "://" not in value:
        value = "//" + value
    try:
        return (urlsplit(value).hostname or "").rstrip(".")
    except ValueError:
        return ""


def _missing_credential(stored: str | None, label: str, tenant_id: str) -> ProviderConfigError:
    # A stored value that decrypts to nothing is distinguished from one never configured.
    if stored:
        return SecretUnavailableError(f"Stored {label} for tenant {tenant_id} could not be decrypted")
    return ProviderConfigError(f"No {label} available for tenant {tenant_id}")


@dataclass
class _RunContext:
    event: InboundEvent
    run: PipelineRun
    tenant: TenantConfig | None = None
    context_text: str = ""
    provider_key: str | None = None
    channel_token: str | None = None
    reply: str | None = None


_Step = Callable[[_RunContext], Awaitable[StepResult]]


class MessagePipeline:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        llm_provider: LLMProvider,
        channel_client: ChannelClient,
    ) -> None:
        self.session_factory = session_factory
        self.llm_provider = llm_provider
        self.channel_client = channel_client
        # Strong references keep detached tasks alive until they finish.
        self._inflight: set[asyncio.Task[PipelineRun]] = set()

    # -- scheduling ---------------------------------------------------------

    def schedule(self, event: InboundEvent) -> asyncio.Task[PipelineRun]:
        # Detached from the inbound request: its cancellation does not reach the task.
        task = asyncio.create_task(self.process(event))
        self._inflight.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[PipelineRun]) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            logger.warning("pipeline_task_cancelled")
            increment_counter("pipeline.task_cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error("pipeline_task_crashed", exc_info=exc)
            increment_counter("pipeline.task_crashed")

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def drain(self, timeout_s: float | None = None) -> None:
        # Wait for detached tasks (shutdown and tests); new tasks scheduled meanwhile are included.
        async def _wait_all() -> None:
            while self._inflight:
                await asyncio.gather(*list(self._inflight), return_exceptions=True)

        if timeout_s is None:
            await _wait_all()
        else:
            await asyncio.wait_for(_wait_all(), timeout=timeout_s)

    # -- state machine ------------------------------------------------------

    async def process(self, event: InboundEvent) -> PipelineRun:
        run = PipelineRun(channel=event.channel)
        ctx = _RunContext(event=event, run=run)
        for state, step in self._plan(event):
            run.enter(state)
            try:
                result = await step(ctx)
            except Exception as exc:  # noqa: BLE001 - one event's failure must not escape its task
                logger.exception("pipeline_step_crashed channel=%s state=%s", run.channel, state.value)
                result = StepResult.fail(REASON_UNEXPECTED, exc)
            if not result.proceeds:
                self._finish_dropped(run, result)
                return run
        run.enter(PipelineState.DONE)
        increment_counter(f"pipeline.{run.channel}.done")
        logger.info(
            "pipeline_done channel=%s tenant_id=%s charged=%s",
            run.channel,
            run.tenant_id,
            run.credit_charged,
        )
        return run

    def _plan(self, event: InboundEvent) -> list[tuple[PipelineState, _Step]]:
        plan: list[tuple[PipelineState, _Step]] = [
            (PipelineState.RESOLVING, self._resolve),
            (PipelineState.ENABLEMENT_CHECK, self._check_enabled),
        ]
        if event.channel == CHANNEL_MESSAGING:
            plan.append((PipelineState.CREDIT_CHECK, self._check_credits))
        plan.extend(
            [
                (PipelineState.CONTEXT_BUILD, self._build_context),
                (PipelineState.COMPLETION, self._complete),
                (PipelineState.DISPATCH, self._dispatch),
                (PipelineState.LOG, self._log),
                (PipelineState.METER_UPDATE, self._meter),
            ]
        )
        return plan

    def _finish_dropped(self, run: PipelineRun, result: StepResult) -> None:
        failed_at = run.state
        run.reason = result.reason
        run.error = result.error
        run.enter(PipelineState.DROPPED)
        increment_counter(f"pipeline.{run.channel}.dropped")
        increment_counter(f"pipeline.{run.channel}.dropped.{result.reason}")
        log = logger.warning if result.kind == "fail" else logger.info
        log(
            "pipeline_dropped channel=%s state=%s reason=%s tenant_id=%s error=%s",
            run.channel,
            failed_at.value,
            result.reason,
            run.tenant_id,
            type(result.error).__name__ if result.error is not None else None,
        )

    # -- transitions --------------------------------------------------------

    async def _resolve(self, ctx: _RunContext) -> StepResult:
        event = ctx.event
        try:
            async with self.session_factory() as session:
                if event.channel == CHANNEL_MESSAGING:
                    tenant = await resolve_by_channel_id(session, event.channel_id or "", enabled_only=False)
                else:
                    tenant = await resolve_by_widget_key(session, event.widget_key or "", enabled_only=False)
        except DatabaseError as exc:
            return StepResult.fail(REASON_STORE_ERROR, exc)
        if tenant is None:
            return StepResult.drop(REASON_NOT_FOUND)
        ctx.tenant = tenant
        ctx.run.tenant_id = tenant.id
        ctx.run.tenant_name = tenant.name
        return StepResult.proceed()

    async def _check_enabled(self, ctx: _RunContext) -> StepResult:
        tenant = ctx.tenant
        assert tenant is not None
        if not tenant.is_enabled:
            return StepResult.drop(REASON_DISABLED)
        if ctx.event.channel == CHANNEL_WIDGET and not origin_allowed(ctx.event.origin, tenant.allowed_origins):
            return StepResult.drop(REASON_ORIGIN_REJECTED)
        return StepResult.proceed()

    async def _check_credits(self, ctx: _RunContext) -> StepResult:
        tenant = ctx.tenant
        assert tenant is not None
        if not usage.check_credits(tenant.account):
            return StepResult.drop(REASON_NO_CREDITS)
        return StepResult.proceed()

    async def _build_context(self, ctx: _RunContext) -> StepResult:
        tenant = ctx.tenant
        assert tenant is not None
        # Messaging honours the tenant's title filter; the widget always uses every entry.
        titles = tenant.knowledge_titles if ctx.event.channel == CHANNEL_MESSAGING else None
        async with self.session_factory() as session:
            ctx.context_text = await assemble_context(session, tenant.account_id, titles)

        # Credential preconditions are settled before any network call.
        ctx.provider_key = resolve_provider_key(tenant)
        if not ctx.provider_key:
            return StepResult.fail(
                REASON_MISSING_PROVIDER_KEY,
                _missing_credential(tenant.provider_key, "OpenRouter key", tenant.id),
            )
        if ctx.event.channel == CHANNEL_MESSAGING:
            ctx.channel_token = resolve_channel_token(tenant)
            if not ctx.channel_token:
                return StepResult.fail(
                    REASON_MISSING_CHANNEL_TOKEN,
                    _missing_credential(tenant.access_token, "page access token", tenant.id),
                )
        return StepResult.proceed()

    async def _complete(self, ctx: _RunContext) -> StepResult:
        tenant = ctx.tenant
        assert tenant is not None and ctx.provider_key
        settings = get_settings()
        system_prompt = build_system_prompt(
            tenant_name=tenant.name,
            context=ctx.context_text,
            channel=ctx.event.channel,
        )
        fallback = (
            settings.fallback_reply_widget
            if ctx.event.channel == CHANNEL_WIDGET
            else settings.fallback_reply_messaging
        )
        try:
            reply = await self.llm_provider.complete(
                system_prompt,
                ctx.event.text,
                model=resolve_model(tenant),
                api_key=ctx.provider_key,
                fallback_reply=fallback,
            )
        except CompletionError as exc:
            logger.error(
                "completion_failed tenant_id=%s status=%s payload=%s",
                tenant.id,
                exc.status_code,
                exc.payload,
            )
            return StepResult.fail(REASON_COMPLETION_FAILED, exc)
        except ProviderConfigError as exc:
            return StepResult.fail(REASON_MISSING_PROVIDER_KEY, exc)
        ctx.reply = reply or fallback
        ctx.run.reply = ctx.reply
        return StepResult.proceed()

    async def _dispatch(self, ctx: _RunContext) -> StepResult:
        assert ctx.reply is not None
        reply = OutboundReply(channel=ctx.event.channel, text=ctx.reply, recipient_id=ctx.event.sender_id)
        delivered = await dispatch_reply(
            reply,
            channel_client=self.channel_client,
            access_token=ctx.channel_token,
        )
        if not delivered:
            return StepResult.fail(REASON_DISPATCH_FAILED, DispatchError("Reply could not be delivered"))
        return StepResult.proceed()

    async def _log(self, ctx: _RunContext) -> StepResult:
        tenant = ctx.tenant
        assert tenant is not None and ctx.reply is not None
        type_tag = usage.ACTIVITY_WIDGET_REPLY if ctx.event.channel == CHANNEL_WIDGET else usage.ACTIVITY_AUTO_REPLY
        # A lost log row never undoes a delivered reply.
        await usage.log_activity(
            self.session_factory,
            tenant_id=tenant.id,
            type_tag=type_tag,
            input_text=ctx.event.text,
            output_text=ctx.reply,
        )
        return StepResult.proceed()

    async def _meter(self, ctx: _RunContext) -> StepResult:
        tenant = ctx.tenant
        assert tenant is not None
        if ctx.event.channel != CHANNEL_MESSAGING:
            return StepResult.proceed()
        async with self.session_factory() as session:
            ctx.run.credit_charged = await usage.decrement_credit(session, tenant.account)
        return StepResult.proceed()
