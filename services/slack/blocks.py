"""Message copy and Block Kit builders for the upload thread."""

from __future__ import annotations

import random
from typing import Any, Dict, List, Optional

from services.slack.notifier import OutboundMessage

ACTION_TODAY = "today"
ACTION_CANCEL = "cancel"
ACTION_SKIP_TITLE = "skip_title"
ACTION_SKIP_LINK = "skip_link"
ACTION_POST_NOW = "post_now"
ACTION_EDIT_ENTRY = "edit_entry"
ACTION_EDIT_PREFIX = "edit_"
ACTION_CANCEL_EDIT = "cancel_edit"
ACTION_DELETE_ENTRY = "delete_entry"
ACTION_CONFIRM_DELETE = "confirm_delete"
ACTION_CANCEL_DELETE = "cancel_delete"

PRAISE = (
    "Lovely shot! ✨",
    "Nice picture! 📸",
    "Great pick! 👌",
    "Beautiful! 🌈",
    "Looking good! 😊",
)

FIELD_LABELS = {"date": "Date", "title": "Title", "link": "Link"}

FIELD_PROMPTS = {
    "date": "📅 New date (YYYYMMDD, YYYY/MM/DD or MMDD)",
    "title": "📝 New title ('no' for none)",
    "link": "🔗 New link ('no' for none)",
}


def _button(label: str, action_id: str, value: Optional[str] = None, style: Optional[str] = None) -> Dict[str, Any]:
    button: Dict[str, Any] = {
        "type": "button",
        "text": {"type": "plain_text", "text": label, "emoji": True},
        "action_id": action_id,
    }
    if value is not None:
        button["value"] = value
    if style:
        button["style"] = style
    return button


def _section(text: str) -> Dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def _actions(*buttons: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "actions", "elements": list(buttons)}


def _interactive(text: str, buttons: List[Dict[str, Any]], color: Optional[str] = None) -> OutboundMessage:
    return OutboundMessage(text=text, color=color, blocks=[_section(text), _actions(*buttons)])


def date_prompt(praise: Optional[str] = None) -> OutboundMessage:
    text = f"{praise or random.choice(PRAISE)}\n\n📅 *When was this taken?*\nYYYYMMDD, YYYY/MM/DD or MMDD"
    return _interactive(
        text,
        [_button("📅 Today", ACTION_TODAY, style="primary"), _button("❌ Cancel", ACTION_CANCEL, style="danger")],
    )


def title_prompt(date: str) -> OutboundMessage:
    text = f"Date: {date} ✅\n\n📝 *Title?*\nSend 'no' or press Skip for none"
    return _interactive(text, [_button("Skip", ACTION_SKIP_TITLE), _button("❌ Cancel", ACTION_CANCEL)])


def link_prompt(date: str, title: str) -> OutboundMessage:
    text = f"Date: {date} ✅\nTitle: {title or 'none'} ✅\n\n🔗 *Link?*\nSend 'no' or press Post to skip"
    return _interactive(
        text,
        [_button("💾 Post", ACTION_POST_NOW, style="primary"), _button("❌ Cancel", ACTION_CANCEL)],
    )


def upload_complete(file_name: str, image_url: str, entry_id: int, date: str, title: str, link: str) -> OutboundMessage:
    lines = ["🎉 Upload done 🎉", "", f"📸  <{image_url}|{file_name}>" if image_url else f"📸  {file_name}"]
    lines += [f"🔢  {entry_id}", f"📅  {date}"]
    if title:
        lines.append(f"📝  {title}")
    if link:
        lines.append(f"🔗  {link}")
    value = str(entry_id)
    return _interactive(
        "\n".join(lines),
        [_button("✏️ Edit", ACTION_EDIT_ENTRY, value), _button("🗑️ Delete", ACTION_DELETE_ENTRY, value, "danger")],
        color="good",
    )


def edit_choices(entry_id: int) -> OutboundMessage:
    value = str(entry_id)
    buttons = [_button(label, f"{ACTION_EDIT_PREFIX}{name}", value) for name, label in FIELD_LABELS.items()]
    buttons.append(_button("❌ Cancel", ACTION_CANCEL_EDIT, value))
    return _interactive("✏️ *What should be fixed?*", buttons)


def edit_prompt(field: str) -> OutboundMessage:
    return _interactive(FIELD_PROMPTS[field], [_button("❌ Cancel", ACTION_CANCEL_EDIT)])


def field_updated(field: str, value: str) -> OutboundMessage:
    return OutboundMessage(text=f"Updated ✨\n{FIELD_LABELS[field]}: {value or 'none'}", color="good")


def delete_confirm(entry_id: int) -> OutboundMessage:
    value = str(entry_id)
    return _interactive(
        f"⚠️ *Delete this entry?*\nID: {entry_id}",
        [
            _button("Delete", ACTION_CONFIRM_DELETE, value, "danger"),
            _button("❌ Cancel", ACTION_CANCEL_DELETE, value),
        ],
    )


def deleted(entry_id: int) -> OutboundMessage:
    return OutboundMessage(text=f"Deleted 👋 ID: {entry_id}", color="warning")


def cancelled() -> OutboundMessage:
    return OutboundMessage(text="Cancelled 👌")


def validation_failed(message: str) -> OutboundMessage:
    return OutboundMessage(text=f"😅 {message}", color="danger")


def upload_failed(reason: str) -> OutboundMessage:
    return OutboundMessage(text=f"Upload failed, nothing was saved 😱\n{reason}\nPlease try again.", color="danger")


def upload_partially_succeeded(entry_id: int, file_name: str, reason: str) -> OutboundMessage:
    return OutboundMessage(
        text=f"⚠️ Uploaded as ID {entry_id} ({file_name}), but the thread could not be updated:\n{reason}",
        color="warning",
    )


def update_failed(reason: str) -> OutboundMessage:
    return OutboundMessage(text=f"Update failed, nothing was changed 😱\n{reason}", color="danger")


def delete_failed(reason: str) -> OutboundMessage:
    return OutboundMessage(text=f"Delete failed 😱\n{reason}\nPlease try again.", color="danger")


def entry_missing() -> OutboundMessage:
    return OutboundMessage(text="No entry found for this thread 🤔", color="danger")


def processing_failed(reason: str) -> OutboundMessage:
    return OutboundMessage(text=f"❌ Something went wrong: {reason}", color="danger")
