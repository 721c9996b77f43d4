"""
Mutation Pipeline Module

Drives one engine request from submission to an operator-visible outcome:

    Idle -> Submitting -> Succeeded | Failed

A busy flag per resource key rejects a second submission for the same key
while the first is in flight; distinct keys run independently. Success applies
either a narrow patch or an authoritative re-fetch; failure leaves every store
untouched and produces an error notification.
"""

import inspect
from typing import Any, Awaitable, Callable, Optional, Set, Union

from models import Outcome
from notifications import Notifier
from stores import CollectionStore
from utils import (
    BUSY_KEYS,
    ConsoleException,
    EngineException,
    TransportException,
    ValidationException,
    log_mutation,
    logger,
)

Message = Union[str, Callable[[Any], str], None]


class ViewContext:
    """Tracks whether the view that issued a request is still mounted

    Responses arriving after the view is gone are dropped instead of being
    applied to state the operator no longer looks at.
    """

    def __init__(self, name: str):
        self.name = name
        self.mounted = True

    def mount(self):
        self.mounted = True

    def unmount(self):
        self.mounted = False


class ReadToken:
    """Orders authoritative reads of a store; only the latest may land"""

    def __init__(self, store: CollectionStore, serial: int):
        self.store = store
        self.serial = serial


class MutationPipeline:
    """Runs engine calls under per-key busy flags and reports outcomes"""

    def __init__(self, notifier: Notifier):
        self.notifier = notifier
        self._busy: Set[str] = set()
        self._read_serials = {}

    @property
    def busy_keys(self) -> Set[str]:
        return set(self._busy)

    def is_busy(self, key: str) -> bool:
        return key in self._busy

    async def run(
        self,
        action: str,
        key: Optional[str],
        call: Callable[[], Awaitable[Any]],
        *,
        on_success: Optional[Callable[[Any], Any]] = None,
        success_message: Message = None,
        failure_message: str = "Request failed",
        failure_detail: Optional[Callable[[ConsoleException], Optional[str]]] = None,
        context: Optional[ViewContext] = None,
    ) -> Outcome:
        """Submit ``call`` unless ``key`` already has a request in flight

        ``key=None`` runs without a busy flag (used for follow-up reads that
        must never be skipped).
        """
        outcome_key = key or action
        if key is not None:
            if key in self._busy:
                logger.info("Submission rejected, key busy", action=action, key=key)
                return Outcome(action=action, key=outcome_key, state="rejected")
            self._busy.add(key)
            BUSY_KEYS.inc()

        try:
            result = await call()
        except ConsoleException as e:
            return self._failed(
                action, outcome_key, e, failure_message, failure_detail, context
            )
        finally:
            if key is not None:
                self._busy.discard(key)
                BUSY_KEYS.dec()

        if context is not None and not context.mounted:
            logger.info(
                "Late response dropped", action=action, key=outcome_key, view=context.name
            )
            log_mutation(action, outcome_key, "dropped")
            return Outcome(action=action, key=outcome_key, state="succeeded", result=result)

        if on_success is not None:
            applied = on_success(result)
            if inspect.isawaitable(applied):
                await applied

        notification = None
        message = success_message(result) if callable(success_message) else success_message
        if message:
            notification = self.notifier.success(message)

        log_mutation(action, outcome_key, "success")
        return Outcome(
            action=action,
            key=outcome_key,
            state="succeeded",
            notification=notification,
            result=result,
        )

    async def read(
        self,
        action: str,
        store: CollectionStore,
        fetch: Callable[[], Awaitable[Any]],
        *,
        key: Optional[str] = None,
        success_message: Message = None,
        failure_message: str = "Failed to refresh",
        context: Optional[ViewContext] = None,
    ) -> Outcome:
        """Authoritative re-fetch of ``store``

        Reads are ordered: a response belonging to an older read than the
        latest one issued for the same store is discarded. On failure the
        prior snapshot stays in place. A read rejected by a busy key never
        takes a serial, so it cannot shadow the read already in flight.
        """
        token = None

        async def fetch_in_order():
            nonlocal token
            token = self._begin_read(store)
            return await fetch()

        def install(items):
            if self._is_latest(token):
                store.replace(items)
            else:
                logger.info("Stale read discarded", collection=store.collection)

        return await self.run(
            action,
            key,
            fetch_in_order,
            on_success=install,
            success_message=success_message,
            failure_message=failure_message,
            context=context,
        )

    def invalid(self, action: str, key: str, error: ValidationException) -> Outcome:
        """Report a form rejected before anything was sent"""
        log_mutation(action, key, "invalid", {"errors": error.errors})
        notification = self.notifier.error(error.message)
        return Outcome(
            action=action,
            key=key,
            state="failed",
            notification=notification,
            errors=error.errors,
        )

    def _begin_read(self, store: CollectionStore) -> ReadToken:
        serial = self._read_serials.get(store.collection, 0) + 1
        self._read_serials[store.collection] = serial
        return ReadToken(store, serial)

    def _is_latest(self, token: ReadToken) -> bool:
        return self._read_serials.get(token.store.collection) == token.serial

    def _failed(
        self,
        action: str,
        key: str,
        error: ConsoleException,
        failure_message: str,
        failure_detail,
        context: Optional[ViewContext],
    ) -> Outcome:
        message = describe_failure(error, failure_message)
        detail = failure_detail(error) if failure_detail is not None else None
        log_mutation(
            action,
            key,
            "failed",
            {"error": error.message, "error_code": error.error_code},
        )

        if context is not None and not context.mounted:
            return Outcome(action=action, key=key, state="failed")

        notification = self.notifier.error(message, detail)
        return Outcome(action=action, key=key, state="failed", notification=notification)


def describe_failure(error: ConsoleException, fallback: str) -> str:
    """Operator-facing text for a failed request"""
    if isinstance(error, TransportException):
        return error.message
    if isinstance(error, EngineException):
        return error.server_message or fallback
    return error.message or fallback
