"""
Conversation orchestrator - turns inbound chat messages into replies.

Each message is handled on its own: the user's session (if any) is read
from the SessionStore, the step is validated and persisted, and the reply
is returned to the chat transport. Nothing is kept in process memory
between messages, so messages of different users never share state.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from common.exceptions import (
    ConflictError,
    DuplicateSessionError,
    NotFoundError,
    ValidationError,
    WorkerNotAvailableError,
)
from conversations.flows import FLOWS, FlowDefinition, summarize
from conversations.models import ConversationSession
from conversations.store import SessionStore
from conversations.validators import parse_location
from customers.services import find_customer, register_customer
from deliveries.store import task_store
from services.matching import accept_offer, decline_offer, retry_negotiation, start_negotiation
from services.task_management import cancel_task, complete_task, rate_task, start_task
from workers.services import find_worker, get_worker, register_worker, set_availability, update_location

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "Available commands:\n"
    "/register_rider - Register as a rider\n"
    "/register_errander - Register as an errander\n"
    "/register_customer - Register your contact details\n"
    "/create_order - Request a pickup and delivery\n"
    "/create_errand - Request an errand\n"
    "/status <task> - Check a task\n"
    "/cancel_task <task> [reason] - Cancel a task\n"
    "/retry <task> - Search again for a task nobody accepted\n"
    "/rate <task> <1-5> - Rate a completed task\n"
    "/location <lat>,<lng> - Share your location (workers)\n"
    "/online, /offline - Toggle availability (workers)\n"
    "/accept <task>, /decline <task> - Answer an offer (workers)\n"
    "/start <task>, /complete <task> - Progress a task (workers)\n"
    "/cancel - Cancel the current conversation"
)


@dataclass
class InboundEvent:
    """A chat message from the transport."""
    user_id: str
    text: str


@dataclass
class BotReply:
    """A message to send back to the user who wrote the event."""
    message: str
    data: Dict[str, Any] = field(default_factory=dict)


def handle_event(event: InboundEvent, store: Optional[SessionStore] = None) -> List[BotReply]:
    store = store or SessionStore()
    user_id = str(event.user_id)
    text = (event.text or "").strip()

    try:
        if text.startswith("/"):
            return _handle_command(store, user_id, text)

        session = store.get(user_id)
        if session is None:
            return [BotReply(HELP_TEXT, {"event": "help"})]
        return _continue_flow(store, session, text)
    except (ValidationError, NotFoundError, ConflictError, DuplicateSessionError, WorkerNotAvailableError) as exc:
        logger.debug("Rejected message from %s: %s", user_id, exc)
        return [BotReply(str(exc), {"event": "error", "error": type(exc).__name__})]


# ===================== Flows =====================

def _start_flow(store: SessionStore, user_id: str, name: str) -> List[BotReply]:
    flow = FLOWS[name]
    registered = {"worker": find_worker, "customer": find_customer}.get(flow.kind)
    if registered is not None and registered(user_id) is not None:
        return [BotReply("You are already registered.", {"event": "error", "error": "AlreadyRegistered"})]

    try:
        store.create(user_id, {"flow": flow.name, "current_step": flow.first_step.name})
    except DuplicateSessionError:
        return [BotReply(
            "You already have a conversation in progress. Finish it or send /cancel first.",
            {"event": "error", "error": "DuplicateSessionError"},
        )]

    logger.info("User %s started %s", user_id, flow.name)
    return [BotReply(f"{flow.intro}\n{flow.first_step.prompt}", {"flow": flow.name, "step": flow.first_step.name})]


def _continue_flow(store: SessionStore, session: ConversationSession, text: str) -> List[BotReply]:
    flow = FLOWS.get(session.payload.get("flow"))
    if flow is None:
        store.destroy(session.pk)
        return [BotReply(HELP_TEXT, {"event": "help"})]

    step = flow.step(session.payload["current_step"])
    try:
        answer = step.read(text)
    except ValidationError as exc:
        # Re-prompt without advancing
        return [BotReply(str(exc), {"flow": flow.name, "step": step.name, "error": "ValidationError"})]

    if answer.get("confirmed") is False:
        store.destroy(session.pk)
        return [BotReply(f"Discarded. Send /{flow.name} to start again.", {"flow": flow.name, "event": "discarded"})]

    next_step = flow.next_step(step.name)
    if next_step is None:
        return _finish_flow(store, session, flow, {**session.payload, **answer})

    try:
        session = store.update(session.pk, {**answer, "current_step": next_step.name})
        store.extend(session.pk)
    except NotFoundError:
        return [BotReply(
            f"Your session has expired. Send /{flow.name} to start again.",
            {"flow": flow.name, "event": "session_expired"},
        )]

    prompt = next_step.prompt
    if next_step.name == "confirm":
        prompt = f"{summarize(flow, session.payload)}\n{prompt}"
    return [BotReply(prompt, {"flow": flow.name, "step": next_step.name})]


def _finish_flow(
    store: SessionStore,
    session: ConversationSession,
    flow: FlowDefinition,
    payload: Dict[str, Any],
) -> List[BotReply]:
    user_id = session.user_id
    # Claim the flow before persisting anything: a redelivered final answer
    # finds the session gone and creates nothing
    if not store.destroy(session.pk):
        logger.info("User %s already finished %s", user_id, flow.name)
        return []
    logger.info("User %s finished %s", user_id, flow.name)

    if flow.kind == "worker":
        worker = register_worker(user_id, flow.target, payload)
        return [BotReply(
            f"Registration complete! Welcome, {worker.full_name}. "
            "Share your location with /location <lat>,<lng> and send /online to start receiving tasks.",
            {"event": "registered", "role": worker.role},
        )]

    if flow.kind == "customer":
        customer = register_customer(user_id, payload)
        return [BotReply(
            f"Registration complete! Welcome, {customer.full_name}. "
            "You can now create orders with /create_order and errands with /create_errand.",
            {"event": "registered", "role": "customer"},
        )]

    task = task_store.create(user_id, {**payload, "kind": flow.target})
    result = start_negotiation(task)
    if result.outcome == "exhausted":
        message = (
            f"Your {task.kind} {task.pk} was created, but no {task.worker_role} is available nearby yet."
        )
    else:
        message = f"Your {task.kind} {task.pk} was created. Looking for a {task.worker_role} nearby..."
    return [BotReply(message, {"event": "task_created", "task_id": str(task.pk), "status": result.task.status})]


# ===================== Commands =====================

def _handle_command(store: SessionStore, user_id: str, text: str) -> List[BotReply]:
    command, _, args = text[1:].partition(" ")
    # Group chats address commands as /command@botname
    command = command.split("@", 1)[0].lower()
    args = args.strip()

    if command in FLOWS:
        return _start_flow(store, user_id, command)

    handler = COMMANDS.get(command)
    if handler is None:
        return [BotReply(f"Unknown command /{command}.\n{HELP_TEXT}", {"event": "help"})]
    return handler(store, user_id, args)


def _cmd_help(store, user_id, args):
    return [BotReply(HELP_TEXT, {"event": "help"})]


def _cmd_cancel(store, user_id, args):
    session = store.get(user_id)
    if session is None:
        return [BotReply("There is nothing to cancel.", {"event": "canceled"})]
    store.destroy(session.pk)
    logger.info("User %s canceled %s", user_id, session.payload.get("flow"))
    return [BotReply("Conversation canceled.", {"event": "canceled", "flow": session.payload.get("flow")})]


def _task_arg(args: str) -> str:
    task_id = args.split(" ", 1)[0] if args else ""
    if not task_id:
        raise ValidationError("Please include the task id, e.g. /status <task id>")
    return task_id


def _cmd_accept(store, user_id, args):
    result = accept_offer(_task_arg(args), get_worker(user_id))
    if result.success:
        data = {"event": "offer_accepted", "customer": result.extra.get("customer")}
    elif result.superseded:
        data = {"event": "offer_superseded"}
    else:
        data = {"event": "task_canceled"}
    return [BotReply(result.message, {**data, "task_id": str(result.task.pk)})]


def _cmd_decline(store, user_id, args):
    result = decline_offer(_task_arg(args), get_worker(user_id))
    return [BotReply(result.message, {"event": "offer_declined", "task_id": str(result.task.pk)})]


def _cmd_location(store, user_id, args):
    location = parse_location(args)
    worker = update_location(get_worker(user_id), location["latitude"], location["longitude"])
    return [BotReply(
        "Location updated.",
        {"event": "location_updated", "latitude": worker.latitude, "longitude": worker.longitude},
    )]


def _cmd_online(store, user_id, args):
    set_availability(get_worker(user_id), True)
    return [BotReply("You are online and will receive new tasks.", {"event": "availability", "is_available": True})]


def _cmd_offline(store, user_id, args):
    set_availability(get_worker(user_id), False)
    return [BotReply("You are offline.", {"event": "availability", "is_available": False})]


def _cmd_start(store, user_id, args):
    if not args:
        # Bare /start is the chat client's greeting
        return _cmd_help(store, user_id, args)
    result = start_task(_task_arg(args), get_worker(user_id))
    return [BotReply(result.message, {"event": "task_started", "task_id": str(result.task.pk)})]


def _cmd_complete(store, user_id, args):
    result = complete_task(_task_arg(args), get_worker(user_id))
    return [BotReply(result.message, {"event": "task_completed", "task_id": str(result.task.pk)})]


def _cmd_cancel_task(store, user_id, args):
    task_id = _task_arg(args)
    reason = args[len(task_id):].strip()
    result = cancel_task(task_id, user_id, reason)
    return [BotReply(result.message, {"event": "task_canceled", "task_id": str(result.task.pk)})]


def _cmd_retry(store, user_id, args):
    result = retry_negotiation(_task_arg(args), user_id)
    if result.outcome == "exhausted":
        message = "Still no one available nearby. Try again later or cancel the task."
    else:
        message = "Searching again for someone nearby..."
    return [BotReply(message, {"event": "task_retried", "task_id": str(result.task.pk), "status": result.task.status})]


def _cmd_rate(store, user_id, args):
    parts = args.split()
    if len(parts) != 2:
        raise ValidationError("Usage: /rate <task id> <1-5>")
    result = rate_task(parts[0], user_id, parts[1])
    return [BotReply(result.message, {"event": "task_rated", "task_id": str(result.task.pk)})]


def _cmd_status(store, user_id, args):
    task = task_store.get(_task_arg(args))
    is_worker = task.worker is not None and task.worker.external_id == user_id
    if task.customer_id != user_id and not is_worker:
        raise NotFoundError(f"Task {task.pk} not found")

    lines = [f"{task.get_kind_display()} {task.pk}: {task.get_status_display()}"]
    if task.worker is not None:
        lines.append(f"Assigned to {task.worker.full_name} ({task.worker.phone_number})")
    return [BotReply("\n".join(lines), {"event": "task_status", "task_id": str(task.pk), "status": task.status})]


COMMANDS: Dict[str, Callable[[SessionStore, str, str], List[BotReply]]] = {
    "help": _cmd_help,
    "cancel": _cmd_cancel,
    "accept": _cmd_accept,
    "decline": _cmd_decline,
    "location": _cmd_location,
    "online": _cmd_online,
    "offline": _cmd_offline,
    "start": _cmd_start,
    "complete": _cmd_complete,
    "cancel_task": _cmd_cancel_task,
    "retry": _cmd_retry,
    "rate": _cmd_rate,
    "status": _cmd_status,
}
