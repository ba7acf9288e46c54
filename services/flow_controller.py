"""Conversation state machine for the image upload wizard.

One inbound event moves a thread's session at most one step. Every step
persists the session with the TTL of its bucket (short while the wizard or an
edit is active, long once completed) and emits exactly one thread message.
Data mutations go through ``AtomicCommitEngine`` and are never rolled back
because a later message could not be delivered.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from datetime import date
from typing import Awaitable, Callable, Optional, TypeVar

from models.entry import Entry
from models.inbound_event import EventKind, InboundEvent
from models.session_models import (
	EDITABLE_FIELDS,
	Collected,
	Completed,
	Editing,
	PendingImage,
	Session,
	WaitingDate,
	WaitingLink,
	WaitingTitle,
)
from services import entry_repository as repo
from services.github.commit_engine import AtomicCommitEngine
from services.image_optimizer import ImageOptimizer
from services.session_store import SessionStore
from services.slack import blocks
from services.slack.notifier import Notifier, OutboundMessage
from services.slack.slack_client import SlackClient
from utils.errors import NotifierError, RefConflictError, RemoteHostError, SessionNotFound, ValidationError
from utils.input_validation import format_today, normalize_title, to_entry_date, validate_date, validate_link
from utils.paths import (
	build_image_file_name,
	build_relative_image_path,
	to_repo_image_path,
	to_site_image_path,
	with_trailing_slash,
)
from utils.settings import Settings

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

UPLOAD_LEASE_SECONDS = 120
TEXT_COMMANDS = {"edit": blocks.ACTION_EDIT_ENTRY, "delete": blocks.ACTION_DELETE_ENTRY}
ENTRY_FIELD_KEYS = {"date": "datetime", "title": "title", "link": "link"}
# actions that may rebuild an expired session from the entry id in their value
ENTRY_ACTIONS = {
	blocks.ACTION_EDIT_ENTRY,
	blocks.ACTION_CANCEL_EDIT,
	blocks.ACTION_DELETE_ENTRY,
	blocks.ACTION_CONFIRM_DELETE,
	blocks.ACTION_CANCEL_DELETE,
	*(f"{blocks.ACTION_EDIT_PREFIX}{name}" for name in EDITABLE_FIELDS),
}


def _epoch_ms() -> int:
	return int(time.time() * 1000)


class FlowController:
	"""Drive one thread's session through date, title, link, upload, edit and delete."""

	def __init__(
		self,
		store: SessionStore,
		engine: AtomicCommitEngine,
		notifier: Notifier,
		slack: SlackClient,
		optimizer: ImageOptimizer,
		settings: Settings,
		today: Callable[[], date] = date.today,
		clock_ms: Callable[[], int] = _epoch_ms,
	) -> None:
		self.store = store
		self.engine = engine
		self.notifier = notifier
		self.slack = slack
		self.optimizer = optimizer
		self.settings = settings
		self._today = today
		self._clock_ms = clock_ms

	async def handle(self, event: InboundEvent) -> None:
		"""Apply one inbound event to its thread's session."""
		if event.kind is EventKind.ACTION:
			await self._on_action(event)
		else:
			await self._on_message(event)

	# -- inbound dispatch -------------------------------------------------

	async def _on_message(self, event: InboundEvent) -> None:
		session = await self.store.get(event.session_id)
		if session is None:
			if event.attachment is not None and not event.in_thread:
				await self._start(event)
			return
		if not event.in_thread:
			# the thread root itself (e.g. a redelivered image post) is never wizard input
			return

		text = event.text.strip()
		if isinstance(session, WaitingDate):
			await self._submit_date(session, text)
		elif isinstance(session, WaitingTitle):
			await self._accept_title(session, normalize_title(text))
		elif isinstance(session, WaitingLink):
			await self._submit_link(session, text)
		elif isinstance(session, Editing):
			await self._submit_edit(session, text)
		elif isinstance(session, Completed) and text.lower() in TEXT_COMMANDS:
			await self._dispatch_action(session, TEXT_COMMANDS[text.lower()])

	async def _on_action(self, event: InboundEvent) -> None:
		try:
			session = await self.store.require(event.session_id)
		except SessionNotFound:
			session = self._degraded_session(event)
			if session is None:
				LOGGER.info("No session for thread %s; ignoring action %s", event.session_id, event.action_id)
				return
		await self._dispatch_action(session, event.action_id or "")

	def _degraded_session(self, event: InboundEvent) -> Optional[Completed]:
		"""Rebuild a minimal completed session from an entry id carried by a button."""
		if event.action_id not in ENTRY_ACTIONS:
			return None
		value = (event.action_value or "").strip()
		if not value.isdigit() or int(value) < 1:
			return None
		LOGGER.warning("Session %s expired; rebuilding from entry id %s", event.session_id, value)
		return Completed(session_id=event.session_id, channel=event.channel, entry_id=int(value))

	async def _dispatch_action(self, session: Session, action_id: str) -> None:
		waiting = isinstance(session, (WaitingDate, WaitingTitle, WaitingLink))

		if action_id == blocks.ACTION_CANCEL and waiting:
			await self.store.delete(session.session_id)
			await self._emit(session, blocks.cancelled())
		elif action_id == blocks.ACTION_TODAY and isinstance(session, WaitingDate):
			await self._accept_date(session, format_today(self._today))
		elif action_id == blocks.ACTION_SKIP_TITLE and isinstance(session, WaitingTitle):
			await self._accept_title(session, "")
		elif action_id in (blocks.ACTION_POST_NOW, blocks.ACTION_SKIP_LINK) and isinstance(session, WaitingLink):
			await self._upload(session, "")
		elif action_id in (blocks.ACTION_CANCEL, blocks.ACTION_CANCEL_EDIT) and isinstance(session, Editing):
			await self._leave_editing(session)
		elif isinstance(session, (Completed, Editing)):
			await self._dispatch_entry_action(session, action_id)
		else:
			LOGGER.info("Action %s does not apply to %s session %s", action_id, session.state.value, session.session_id)

	async def _dispatch_entry_action(self, session: Completed | Editing, action_id: str) -> None:
		field = action_id[len(blocks.ACTION_EDIT_PREFIX):] if action_id.startswith(blocks.ACTION_EDIT_PREFIX) else None

		if action_id == blocks.ACTION_EDIT_ENTRY:
			await self._emit(session, blocks.edit_choices(session.entry_id))
		elif field in EDITABLE_FIELDS:
			editing = Editing(
				session_id=session.session_id,
				channel=session.channel,
				entry_id=session.entry_id,
				editing_field=field,
				collected=session.collected,
				created_at=session.created_at,
			)
			await self.store.put(editing, self.settings.session_active_ttl)
			await self._emit(editing, blocks.edit_prompt(field))
		elif action_id in (blocks.ACTION_CANCEL_EDIT, blocks.ACTION_CANCEL_DELETE):
			await self._emit(session, blocks.cancelled())
		elif action_id == blocks.ACTION_DELETE_ENTRY:
			await self._emit(session, blocks.delete_confirm(session.entry_id))
		elif action_id == blocks.ACTION_CONFIRM_DELETE:
			await self._delete(session)
		else:
			LOGGER.info("Unknown action %s for session %s", action_id, session.session_id)

	# -- wizard steps -----------------------------------------------------

	async def _start(self, event: InboundEvent) -> None:
		attachment = event.attachment
		session = WaitingDate(
			session_id=event.session_id,
			channel=event.channel,
			pending_image=PendingImage(
				source_ref=attachment.source_ref,
				display_name=attachment.display_name,
				media_type=attachment.media_type,
			),
		)
		await self.store.put(session, self.settings.session_active_ttl)
		LOGGER.info("Started upload session %s for %s", session.session_id, attachment.display_name)
		await self._emit(session, blocks.date_prompt())

	async def _submit_date(self, session: WaitingDate, text: str) -> None:
		try:
			normalized = validate_date(text, self._today)
		except ValidationError as exc:
			await self._emit(session, blocks.validation_failed(str(exc)))
			return
		await self._accept_date(session, normalized)

	async def _accept_date(self, session: WaitingDate, normalized: str) -> None:
		nxt = WaitingTitle(
			session_id=session.session_id,
			channel=session.channel,
			pending_image=session.pending_image,
			date=normalized,
			created_at=session.created_at,
		)
		await self.store.put(nxt, self.settings.session_active_ttl)
		await self._emit(nxt, blocks.title_prompt(normalized))

	async def _accept_title(self, session: WaitingTitle, title: str) -> None:
		nxt = WaitingLink(
			session_id=session.session_id,
			channel=session.channel,
			pending_image=session.pending_image,
			date=session.date,
			title=title,
			created_at=session.created_at,
		)
		await self.store.put(nxt, self.settings.session_active_ttl)
		await self._emit(nxt, blocks.link_prompt(session.date, title))

	async def _submit_link(self, session: WaitingLink, text: str) -> None:
		try:
			link = validate_link(text)
		except ValidationError as exc:
			await self._emit(session, blocks.validation_failed(str(exc)))
			return
		await self._upload(session, link)

	# -- upload -----------------------------------------------------------

	async def _upload(self, session: WaitingLink, link: str) -> None:
		"""Run the create path under a short lease so a duplicate delivery cannot post twice."""
		lease = f"upload:{session.session_id}"
		if not await self.store.try_lock(lease, UPLOAD_LEASE_SECONDS):
			LOGGER.warning("Upload for %s already in progress; dropping duplicate", session.session_id)
			return
		try:
			current = await self.store.get(session.session_id)
			if not isinstance(current, WaitingLink):
				LOGGER.warning("Session %s already left the link step; dropping duplicate post", session.session_id)
				return
			await self._run_upload(current, link)
		finally:
			await self.store.release(lease)

	async def _run_upload(self, session: WaitingLink, link: str) -> None:
		image = session.pending_image
		try:
			raw = await self.slack.download_file(image.source_ref)
			optimized = self.optimizer.optimize(raw)
		except ValueError as exc:
			LOGGER.error("Could not prepare image for %s: %s", session.session_id, exc)
			await self._emit(session, blocks.upload_failed(str(exc)))
			return

		file_name = build_image_file_name(image.display_name, self._clock_ms(), self.optimizer.extension)
		relative = build_relative_image_path(session.date, file_name)
		repo_path = f"{with_trailing_slash(self.settings.image_path)}{relative}"
		site_path = to_site_image_path(self.settings.image_path, relative)

		async def attempt() -> Entry:
			entries = await self.engine.read_entries()
			entry = Entry(
				id=repo.compute_next_id(entries),
				image=site_path,
				title=session.title,
				datetime=to_entry_date(session.date),
				link=link,
			)
			await self.engine.commit_with_image(
				repo_path, optimized, repo.insert_at_head(entries, entry), f"Add image: {file_name}"
			)
			return entry

		try:
			entry = await self._retry_on_conflict(attempt)
		except RemoteHostError as exc:
			await self._emit(session, blocks.upload_failed(str(exc)))
			return

		completed = Completed(
			session_id=session.session_id,
			channel=session.channel,
			entry_id=entry.id,
			collected=Collected(date=session.date, title=session.title, link=link),
			created_at=session.created_at,
		)
		try:
			await self.store.put(completed, self.settings.session_completed_ttl)
		except Exception as exc:  # pylint: disable=broad-exception-caught
			LOGGER.exception("Entry %s committed but session %s was not saved", entry.id, session.session_id)
			await self._emit(session, blocks.upload_partially_succeeded(entry.id, file_name, str(exc)))
			return

		LOGGER.info("Uploaded entry %s (%s) for session %s", entry.id, repo_path, session.session_id)
		image_url = f"{self.settings.site_base_url}{site_path}" if self.settings.site_base_url else ""
		await self._emit(
			completed,
			blocks.upload_complete(file_name, image_url, entry.id, session.date, session.title, link),
		)

	# -- edit ---------------------------------------------------------------

	async def _submit_edit(self, session: Editing, text: str) -> None:
		field = session.editing_field
		try:
			if field == "date":
				value = validate_date(text, self._today)
				stored = to_entry_date(value)
			elif field == "link":
				value = stored = validate_link(text)
			else:
				value = stored = normalize_title(text)
		except ValidationError as exc:
			await self._emit(session, blocks.validation_failed(str(exc)))
			return

		async def attempt() -> bool:
			entries = await self.engine.read_entries()
			if repo.find_by_id(entries, session.entry_id) is None:
				return False
			patched = repo.update_by_id(entries, session.entry_id, **{ENTRY_FIELD_KEYS[field]: stored})
			await self.engine.commit_index(patched, f"Update entry: {session.entry_id}")
			return True

		try:
			found = await self._retry_on_conflict(attempt)
		except RemoteHostError as exc:
			await self._emit(session, blocks.update_failed(str(exc)))
			return

		collected = replace(session.collected, **{field: value}) if found else session.collected
		completed = Completed(
			session_id=session.session_id,
			channel=session.channel,
			entry_id=session.entry_id,
			collected=collected,
			created_at=session.created_at,
		)
		await self.store.put(completed, self.settings.session_completed_ttl)
		if not found:
			LOGGER.warning("Entry %s vanished before it could be edited", session.entry_id)
			await self._emit(completed, blocks.entry_missing())
			return
		await self._emit(completed, blocks.field_updated(field, value))

	async def _leave_editing(self, session: Editing) -> None:
		completed = Completed(
			session_id=session.session_id,
			channel=session.channel,
			entry_id=session.entry_id,
			collected=session.collected,
			created_at=session.created_at,
		)
		await self.store.put(completed, self.settings.session_completed_ttl)
		await self._emit(completed, blocks.cancelled())

	# -- delete -------------------------------------------------------------

	async def _delete(self, session: Completed | Editing) -> None:
		entry_id = session.entry_id

		async def attempt() -> None:
			entries = await self.engine.read_entries()
			if repo.find_by_id(entries, entry_id) is None:
				LOGGER.info("Entry %s already absent from the index", entry_id)
				return
			remaining = repo.delete_by_id(entries, entry_id)
			image = repo.find_image_path_by_id(entries, entry_id)
			message = f"Delete entry: {entry_id}"
			if image:
				await self.engine.commit_delete(to_repo_image_path(self.settings.image_path, image), remaining, message)
			else:
				await self.engine.commit_index(remaining, message)

		try:
			await self._retry_on_conflict(attempt)
		except RemoteHostError as exc:
			await self._emit(session, blocks.delete_failed(str(exc)))
			return

		await self.store.delete(session.session_id)
		LOGGER.info("Deleted entry %s from session %s", entry_id, session.session_id)
		await self._emit(session, blocks.deleted(entry_id))

	# -- helpers ------------------------------------------------------------

	async def _retry_on_conflict(self, operation: Callable[[], Awaitable[T]]) -> T:
		"""Re-run a read-modify-commit operation when the branch moved underneath it."""
		attempts = max(1, self.settings.commit_retries)
		attempt = 1
		while True:
			try:
				return await operation()
			except RefConflictError:
				if attempt >= attempts:
					raise
				LOGGER.warning("Branch moved during commit; retrying (%d/%d)", attempt, attempts)
				attempt += 1

	async def _emit(self, session: Session, message: OutboundMessage) -> None:
		"""Send one thread message; on failure try a single plain-text fallback, then give up."""
		try:
			await self.notifier.send(session.channel, session.session_id, message)
			return
		except NotifierError as exc:
			LOGGER.error("Failed to notify thread %s: %s", session.session_id, exc)
		if not (message.blocks or message.color):
			return
		try:
			await self.notifier.send(session.channel, session.session_id, message.as_plain())
		except NotifierError as exc:
			LOGGER.error("Fallback message to thread %s failed as well: %s", session.session_id, exc)
