"""Slack intake: signature check, envelope parsing and the de-duplication gate."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

from fastapi import BackgroundTasks, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from models.inbound_event import Attachment, EventKind, InboundEvent
from services.dedup_cache import DedupCache
from services.flow_controller import FlowController
from services.slack import blocks
from services.slack.notifier import Notifier
from utils.errors import NotifierError
from utils.settings import Settings
from utils.slack_signature import verify_signature

LOGGER = logging.getLogger(__name__)

ACCEPTED_SUBTYPES = (None, "file_share")


class EventEnvelope(BaseModel):
	"""Outer body of an Events API delivery."""

	model_config = ConfigDict(extra="allow")

	type: str = ""
	challenge: Optional[str] = None
	event_id: Optional[str] = None
	event: Dict[str, Any] = Field(default_factory=dict)


class EventGate:
	"""Drop redelivered events and shield the transport from downstream failures."""

	def __init__(self, dedup: DedupCache, flow: FlowController, notifier: Notifier) -> None:
		self.dedup = dedup
		self.flow = flow
		self.notifier = notifier

	def admit(self, event: InboundEvent) -> bool:
		"""Record the event id; False means it was already seen."""
		if not self.dedup.check_and_record(event.id):
			LOGGER.info("Dropping duplicate event %s", event.id)
			return False
		return True

	async def dispatch(self, event: InboundEvent) -> None:
		"""Run the flow for an admitted event, reporting failures into the thread."""
		try:
			await self.flow.handle(event)
		except Exception as exc:  # pylint: disable=broad-exception-caught
			LOGGER.exception("Processing event %s failed", event.id)
			try:
				await self.notifier.send(event.channel, event.session_id, blocks.processing_failed(str(exc)))
			except NotifierError as notify_exc:
				LOGGER.error("Could not report failure of event %s: %s", event.id, notify_exc)

	async def accept(self, event: InboundEvent) -> bool:
		"""Admit and process ``event`` inline. Returns False for a duplicate."""
		if not self.admit(event):
			return False
		await self.dispatch(event)
		return True


def parse_message_event(envelope: EventEnvelope) -> Optional[InboundEvent]:
	"""Turn an ``event_callback`` envelope into a message event, or None to ignore it."""
	event = envelope.event
	if event.get("type") != "message":
		return None
	if event.get("bot_id") or event.get("subtype") not in ACCEPTED_SUBTYPES:
		return None

	ts = event.get("ts")
	channel = event.get("channel")
	if not ts or not channel:
		return None
	thread_ts = event.get("thread_ts")

	attachment = None
	for item in event.get("files") or []:
		mimetype = str(item.get("mimetype") or "")
		if mimetype.startswith("image/"):
			attachment = Attachment(
				source_ref=item.get("url_private_download") or item.get("url_private") or "",
				display_name=item.get("name") or item.get("title") or "image",
				media_type=mimetype,
			)
			break

	return InboundEvent(
		id=envelope.event_id or ts,
		kind=EventKind.MESSAGE,
		session_id=thread_ts or ts,
		channel=channel,
		author=event.get("user") or "",
		text=event.get("text") or "",
		attachment=attachment,
		in_thread=bool(thread_ts) and thread_ts != ts,
	)


def parse_block_actions(payload: Dict[str, Any]) -> Optional[InboundEvent]:
	"""Turn a ``block_actions`` interaction into an action event for its first action."""
	if payload.get("type") != "block_actions":
		return None
	actions = payload.get("actions") or []
	if not actions:
		return None
	action = actions[0]

	container = payload.get("container") or {}
	message = payload.get("message") or {}
	session_id = container.get("thread_ts") or message.get("thread_ts") or message.get("ts")
	channel = (payload.get("channel") or {}).get("id") or container.get("channel_id")
	event_id = payload.get("trigger_id") or action.get("action_ts")
	if not session_id or not channel or not event_id:
		return None

	return InboundEvent(
		id=event_id,
		kind=EventKind.ACTION,
		session_id=session_id,
		channel=channel,
		author=(payload.get("user") or {}).get("id") or "",
		action_id=action.get("action_id"),
		action_value=action.get("value"),
	)


def parse_interaction_body(body: bytes) -> Dict[str, Any]:
	"""Decode the form-encoded ``payload=<json>`` body of an interaction request."""
	fields = parse_qs(body.decode("utf-8"))
	raw = (fields.get("payload") or [""])[0]
	if not raw:
		raise HTTPException(status_code=400, detail="Missing interaction payload")
	try:
		return json.loads(raw)
	except json.JSONDecodeError as exc:
		raise HTTPException(status_code=400, detail="Malformed interaction payload") from exc


async def _verified_body(request: Request) -> bytes:
	body = await request.body()
	settings: Settings = request.app.state.settings
	if not settings.slack_signing_secret:
		LOGGER.warning("SLACK_SIGNING_SECRET is empty; skipping request verification")
		return body
	ok = verify_signature(
		settings.slack_signing_secret,
		request.headers.get("X-Slack-Request-Timestamp"),
		request.headers.get("X-Slack-Signature"),
		body,
	)
	if not ok:
		raise HTTPException(status_code=401, detail="Invalid Slack signature")
	return body


def _schedule(request: Request, background_tasks: BackgroundTasks, event: Optional[InboundEvent]) -> None:
	if event is None:
		return
	gate: EventGate = request.app.state.event_gate
	if gate.admit(event):
		background_tasks.add_task(gate.dispatch, event)


async def receive_event(request: Request, background_tasks: BackgroundTasks) -> Dict[str, Any]:
	"""Acknowledge an Events API delivery and queue the flow for it."""
	body = await _verified_body(request)
	try:
		envelope = EventEnvelope.model_validate_json(body or b"{}")
	except ValidationError as exc:
		raise HTTPException(status_code=400, detail="Malformed event body") from exc

	if envelope.type == "url_verification":
		return {"challenge": envelope.challenge}
	if envelope.type == "event_callback":
		_schedule(request, background_tasks, parse_message_event(envelope))
	return {"ok": True}


async def receive_interaction(request: Request, background_tasks: BackgroundTasks) -> Dict[str, Any]:
	"""Acknowledge a button click and queue the flow for it."""
	body = await _verified_body(request)
	payload = parse_interaction_body(body)
	_schedule(request, background_tasks, parse_block_actions(payload))
	return {"ok": True}
