import itertools
import json
from dataclasses import replace

import pytest

from conftest import NOW_MS
from controllers.event_controller import EventGate
from fakes import INDEX_PATH
from models.entry import Entry, encode_entries
from models.inbound_event import Attachment, EventKind, InboundEvent
from models.session_models import Collected, Completed, Editing, WaitingDate, WaitingLink, WaitingTitle
from services.dedup_cache import DedupCache
from services.slack import blocks

ROOT = "1735100000.000100"
CHANNEL = "C42"
FILE_NAME = f"{NOW_MS}_sunset.webp"
REPO_IMAGE = f"public/images/2024/12/{FILE_NAME}"
SITE_IMAGE = f"/images/2024/12/{FILE_NAME}"

_ids = itertools.count(1)


def image_post(session=ROOT):
    return InboundEvent(
        id=f"Ev{next(_ids)}",
        kind=EventKind.MESSAGE,
        session_id=session,
        channel=CHANNEL,
        author="U1",
        attachment=Attachment(
            source_ref="https://files.slack.com/files-pri/T1-F1/download/sunset.png",
            display_name="sunset.png",
            media_type="image/png",
        ),
    )


def reply(text, session=ROOT):
    return InboundEvent(
        id=f"Ev{next(_ids)}", kind=EventKind.MESSAGE, session_id=session, channel=CHANNEL, text=text, in_thread=True
    )


def click(action_id, value=None, session=ROOT):
    return InboundEvent(
        id=f"Tr{next(_ids)}",
        kind=EventKind.ACTION,
        session_id=session,
        channel=CHANNEL,
        action_id=action_id,
        action_value=value,
    )


async def drive(flow, *events):
    for event in events:
        await flow.handle(event)


def seed(github, entries, extra_files=None):
    changes = {INDEX_PATH: encode_entries(entries).encode()}
    changes.update(extra_files or {})
    github.push(changes, "seed")


@pytest.mark.asyncio
async def test_happy_path_commits_image_and_entry_together(flow, github, slack, store):
    seed(github, [Entry(id=4, image="/images/2024/11/4_old.webp", datetime="2024-11-04")])

    await drive(flow, image_post(), reply("20241225"), reply("Launch"), reply("https://example.com"))

    entries = github.entries()
    assert entries[0] == {
        "id": 5,
        "image": SITE_IMAGE,
        "title": "Launch",
        "datetime": "2024-12-25",
        "link": "https://example.com",
    }
    assert entries[1]["id"] == 4
    image = github.files()[REPO_IMAGE]
    assert image[:4] == b"RIFF" and image[8:12] == b"WEBP"
    assert github.history()[:2] == [f"Add image: {FILE_NAME}", "seed"]

    session = await store.get(ROOT)
    assert isinstance(session, Completed)
    assert session.entry_id == 5
    assert session.collected == Collected(date="2024/12/25", title="Launch", link="https://example.com")

    assert len(slack.posts) == 4
    assert all(post["thread_ts"] == ROOT and post["channel"] == CHANNEL for post in slack.posts)
    assert f"https://example.com{SITE_IMAGE}" in slack.texts()[-1]
    assert slack.action_ids() == [blocks.ACTION_EDIT_ENTRY, blocks.ACTION_DELETE_ENTRY]


@pytest.mark.asyncio
async def test_all_skipped_uses_today_and_empty_fields(flow, github, slack):
    await drive(
        flow,
        image_post(),
        click(blocks.ACTION_TODAY),
        click(blocks.ACTION_SKIP_TITLE),
        click(blocks.ACTION_POST_NOW),
    )

    assert github.entries() == [{"id": 1, "image": SITE_IMAGE, "title": "", "datetime": "2024-12-25", "link": ""}]
    assert "Upload done" in slack.texts()[-1]


@pytest.mark.asyncio
async def test_no_answers_count_as_skips(flow, github):
    await drive(flow, image_post(), reply("1224"), reply("no"), reply("No"))

    assert github.entries()[0]["title"] == ""
    assert github.entries()[0]["link"] == ""
    assert github.entries()[0]["datetime"] == "2024-12-24"


@pytest.mark.asyncio
async def test_bad_date_keeps_waiting_then_recovers(flow, github, slack, store):
    await drive(flow, image_post(), reply("2024/13/40"))

    assert isinstance(await store.get(ROOT), WaitingDate)
    assert "not a valid date" in slack.texts()[-1]
    assert github.history() == ["Initial commit"]

    await drive(flow, reply("20241224"))
    session = await store.get(ROOT)
    assert isinstance(session, WaitingTitle)
    assert session.date == "2024/12/24"


@pytest.mark.asyncio
async def test_bad_link_keeps_waiting(flow, github, slack, store):
    await drive(flow, image_post(), reply("20241225"), reply("Title"), reply("example.com"))

    assert isinstance(await store.get(ROOT), WaitingLink)
    assert "not a valid http(s) link" in slack.texts()[-1]
    assert INDEX_PATH not in github.files()


@pytest.mark.asyncio
async def test_cancel_discards_the_session(flow, slack, store):
    await drive(flow, image_post(), reply("20241225"), click(blocks.ACTION_CANCEL))

    assert await store.get(ROOT) is None
    assert slack.texts()[-1].startswith("Cancelled")


@pytest.mark.asyncio
async def test_messages_outside_a_session_are_ignored(flow, slack, store):
    await drive(flow, reply("hello"), click(blocks.ACTION_POST_NOW))
    plain = InboundEvent(id="EvPlain", kind=EventKind.MESSAGE, session_id="9.9", channel=CHANNEL, text="hi")
    await drive(flow, plain)

    assert slack.posts == []
    assert await store.get(ROOT) is None


@pytest.mark.asyncio
async def test_image_in_a_thread_reply_does_not_start_a_session(flow, slack, store):
    threaded = replace(image_post(session="5.5"), in_thread=True)
    await drive(flow, threaded)

    assert slack.posts == []
    assert await store.get("5.5") is None


@pytest.mark.asyncio
async def test_delete_removes_blob_and_entry(flow, github, slack, store):
    seed(
        github,
        [
            Entry(id=7, image="2024/01/x.webp", datetime="2024-01-02"),
            Entry(id=6, image="/images/2024/01/y.webp", datetime="2024-01-01"),
        ],
        {"public/images/2024/01/x.webp": b"x", "public/images/2024/01/y.webp": b"y"},
    )
    await store.put(Completed(session_id=ROOT, channel=CHANNEL, entry_id=7), 600)

    await drive(flow, click(blocks.ACTION_DELETE_ENTRY, "7"))
    assert slack.action_ids() == [blocks.ACTION_CONFIRM_DELETE, blocks.ACTION_CANCEL_DELETE]

    await drive(flow, click(blocks.ACTION_CONFIRM_DELETE, "7"))

    files = github.files()
    assert "public/images/2024/01/x.webp" not in files
    assert files["public/images/2024/01/y.webp"] == b"y"
    assert [e["id"] for e in github.entries()] == [6]
    assert github.history()[0] == "Delete entry: 7"
    assert await store.get(ROOT) is None
    assert "Deleted" in slack.texts()[-1]


@pytest.mark.asyncio
async def test_delete_with_missing_blob_still_drops_the_entry(flow, github, slack):
    seed(github, [Entry(id=7, image="2024/01/x.webp", datetime="2024-01-02")])

    # no stored session: the button payload carries the entry id
    await drive(flow, click(blocks.ACTION_CONFIRM_DELETE, "7"))

    assert github.entries() == []
    assert "Deleted" in slack.texts()[-1]


@pytest.mark.asyncio
async def test_delete_of_already_deleted_entry_is_idempotent(flow, github, slack):
    seed(github, [Entry(id=2, image="", datetime="2024-01-02")])
    commits = len(github.history())

    await drive(flow, click(blocks.ACTION_CONFIRM_DELETE, "9"))

    assert len(github.history()) == commits
    assert "Deleted" in slack.texts()[-1]


@pytest.mark.asyncio
async def test_cancel_delete_keeps_the_entry(flow, github, slack, store):
    seed(github, [Entry(id=3, image="", datetime="2024-01-02")])
    await store.put(Completed(session_id=ROOT, channel=CHANNEL, entry_id=3), 600)

    await drive(flow, reply("delete"), click(blocks.ACTION_CANCEL_DELETE, "3"))

    assert [e["id"] for e in github.entries()] == [3]
    assert isinstance(await store.get(ROOT), Completed)
    assert slack.texts()[-1].startswith("Cancelled")


@pytest.mark.asyncio
async def test_edit_title_patches_the_index(flow, github, slack, store):
    await drive(flow, image_post(), click(blocks.ACTION_TODAY), reply("Old"), click(blocks.ACTION_POST_NOW))
    await drive(flow, reply("edit"))
    assert slack.action_ids() == ["edit_date", "edit_title", "edit_link", blocks.ACTION_CANCEL_EDIT]

    await drive(flow, click("edit_title", "1"))
    assert isinstance(await store.get(ROOT), Editing)

    await drive(flow, reply("New title"))

    assert github.entries()[0]["title"] == "New title"
    assert github.history()[0] == "Update entry: 1"
    session = await store.get(ROOT)
    assert isinstance(session, Completed)
    assert session.collected.title == "New title"
    assert "Title: New title" in slack.texts()[-1]


@pytest.mark.asyncio
async def test_edit_date_validates_input(flow, github, slack, store):
    await drive(flow, image_post(), click(blocks.ACTION_TODAY), click(blocks.ACTION_SKIP_TITLE))
    await drive(flow, click(blocks.ACTION_SKIP_LINK), click("edit_date", "1"), reply("99"))

    assert isinstance(await store.get(ROOT), Editing)
    assert "Could not read" in slack.texts()[-1]

    await drive(flow, reply("0101"))
    assert github.entries()[0]["datetime"] == "2024-01-01"
    assert isinstance(await store.get(ROOT), Completed)


@pytest.mark.asyncio
async def test_cancel_edit_returns_to_completed_without_changes(flow, github, slack, store):
    await drive(flow, image_post(), click(blocks.ACTION_TODAY), click(blocks.ACTION_SKIP_TITLE))
    await drive(flow, click(blocks.ACTION_POST_NOW), click("edit_link", "1"))
    commits = len(github.history())

    await drive(flow, click(blocks.ACTION_CANCEL_EDIT))

    assert isinstance(await store.get(ROOT), Completed)
    assert len(github.history()) == commits
    assert slack.texts()[-1].startswith("Cancelled")


@pytest.mark.asyncio
async def test_expired_session_is_rebuilt_from_button_value(flow, github, slack, store):
    seed(github, [Entry(id=12, image="", title="T", datetime="2024-01-02")])

    await drive(flow, click("edit_link", "12"), reply("<https://example.org/post|example.org/post>"))

    assert github.entries()[0]["link"] == "https://example.org/post"
    session = await store.get(ROOT)
    assert isinstance(session, Completed) and session.entry_id == 12


@pytest.mark.asyncio
async def test_actions_without_session_or_entry_id_are_ignored(flow, slack):
    await drive(flow, click("edit_title", "abc"), click("edit_title", "0"), click(blocks.ACTION_TODAY, "3"))
    assert slack.posts == []


@pytest.mark.asyncio
async def test_editing_a_vanished_entry_reports_it(flow, github, slack, store):
    seed(github, [Entry(id=1, image="", datetime="2024-01-02")])
    commits = len(github.history())

    await drive(flow, click("edit_title", "99"), reply("Anything"))

    assert len(github.history()) == commits
    assert isinstance(await store.get(ROOT), Completed)
    assert "No entry found" in slack.texts()[-1]


@pytest.mark.asyncio
async def test_duplicate_delivery_is_dropped_by_the_gate(flow, github, slack):
    gate = EventGate(DedupCache(), flow, flow.notifier)
    first = image_post()

    assert await gate.accept(first) is True
    assert await gate.accept(first) is False
    assert len(slack.posts) == 1

    await drive(flow, click(blocks.ACTION_TODAY), click(blocks.ACTION_SKIP_TITLE))
    post = click(blocks.ACTION_POST_NOW)
    await gate.accept(post)
    await gate.accept(post)

    assert len(github.entries()) == 1
    assert github.history().count(f"Add image: {FILE_NAME}") == 1


@pytest.mark.asyncio
async def test_redelivered_post_after_completion_is_ignored(flow, github, slack):
    await drive(flow, image_post(), click(blocks.ACTION_TODAY), click(blocks.ACTION_SKIP_TITLE))
    await drive(flow, click(blocks.ACTION_POST_NOW))
    posts = len(slack.posts)

    # a fresh event id, as after a cold start when the dedup cache is empty
    await drive(flow, click(blocks.ACTION_POST_NOW))

    assert len(github.entries()) == 1
    assert len(slack.posts) == posts


@pytest.mark.asyncio
async def test_post_is_skipped_while_another_upload_holds_the_lease(flow, github, slack, store):
    await drive(flow, image_post(), click(blocks.ACTION_TODAY), click(blocks.ACTION_SKIP_TITLE))
    posts = len(slack.posts)
    assert await store.try_lock(f"upload:{ROOT}", 60)

    await drive(flow, click(blocks.ACTION_POST_NOW))

    assert INDEX_PATH not in github.files()
    assert len(slack.posts) == posts
    assert isinstance(await store.get(ROOT), WaitingLink)


@pytest.mark.asyncio
async def test_concurrent_commit_is_retried_on_fresh_index(flow, github):
    seed(github, [Entry(id=1, image="", datetime="2024-01-01")])

    def other_writer(gh):
        entries = [Entry(id=2, image="", title="theirs", datetime="2024-01-02"), Entry(id=1, image="", datetime="2024-01-01")]
        gh.push({INDEX_PATH: encode_entries(entries).encode()}, "Concurrent update")

    github.before_ref_update.append(other_writer)
    await drive(flow, image_post(), click(blocks.ACTION_TODAY), click(blocks.ACTION_SKIP_TITLE))
    await drive(flow, click(blocks.ACTION_POST_NOW))

    assert [e["id"] for e in github.entries()] == [3, 2, 1]
    assert github.history()[:2] == [f"Add image: {FILE_NAME}", "Concurrent update"]


@pytest.mark.asyncio
async def test_persistent_conflicts_fail_the_upload(flow, github, slack, store, settings):
    for n in range(settings.commit_retries):
        github.before_ref_update.append(lambda gh, n=n: gh.push({f"other{n}.txt": b"x"}, f"other {n}"))
    await drive(flow, image_post(), click(blocks.ACTION_TODAY), click(blocks.ACTION_SKIP_TITLE))

    await drive(flow, click(blocks.ACTION_POST_NOW))

    assert INDEX_PATH not in github.files()
    assert "Upload failed" in slack.texts()[-1]
    assert slack.posts[-1]["attachments"][0]["color"] == "danger"
    assert isinstance(await store.get(ROOT), WaitingLink)


@pytest.mark.asyncio
async def test_remote_failure_reports_and_keeps_waiting(flow, github, slack, store):
    github.failures["create_tree"] = 500
    await drive(flow, image_post(), click(blocks.ACTION_TODAY), click(blocks.ACTION_SKIP_TITLE))
    await drive(flow, click(blocks.ACTION_POST_NOW))

    assert "GitHub API error (create tree): 500" in slack.texts()[-1]
    assert isinstance(await store.get(ROOT), WaitingLink)

    del github.failures["create_tree"]
    await drive(flow, click(blocks.ACTION_POST_NOW))
    assert len(github.entries()) == 1


@pytest.mark.asyncio
async def test_index_with_a_malformed_row_is_never_overwritten(flow, github, slack, store):
    rows = [
        {"id": 3, "image": "/images/2024/11/3_c.webp", "title": "C", "datetime": "2024-11-03", "link": ""},
        {"id": 2, "image": "/images/2024/11/2_b.webp", "title": "B", "datetime": "2024-11-02", "link": ""},
        {"image": "/images/legacy.webp", "title": "legacy row without id"},
    ]
    github.push({INDEX_PATH: json.dumps(rows).encode()}, "seed")
    before = github.files()[INDEX_PATH]

    await drive(flow, image_post(), reply("20241225"), reply("Launch"), reply("no"))

    assert github.files()[INDEX_PATH] == before
    assert len(github.entries()) == 3
    assert not any(message.startswith("Add image") for message in github.history())
    assert "Upload failed" in slack.texts()[-1]
    assert "read index" in slack.texts()[-1]
    assert isinstance(await store.get(ROOT), WaitingLink)


@pytest.mark.asyncio
async def test_failed_download_is_reported(flow, github, slack, store):
    slack.file_status = 404
    await drive(flow, image_post(), click(blocks.ACTION_TODAY), click(blocks.ACTION_SKIP_TITLE))
    await drive(flow, click(blocks.ACTION_POST_NOW))

    assert "Failed to fetch file: 404" in slack.texts()[-1]
    assert INDEX_PATH not in github.files()
    assert isinstance(await store.get(ROOT), WaitingLink)


@pytest.mark.asyncio
async def test_commit_without_saved_session_is_reported_as_partial(flow, github, slack, store, monkeypatch):
    await drive(flow, image_post(), click(blocks.ACTION_TODAY), click(blocks.ACTION_SKIP_TITLE))
    original_put = store.put

    async def flaky_put(session, ttl_seconds):
        if isinstance(session, Completed):
            raise RuntimeError("disk full")
        await original_put(session, ttl_seconds)

    monkeypatch.setattr(store, "put", flaky_put)
    await drive(flow, click(blocks.ACTION_POST_NOW))

    assert len(github.entries()) == 1
    assert "Uploaded as ID 1" in slack.texts()[-1]
    assert slack.posts[-1]["attachments"][0]["color"] == "warning"


@pytest.mark.asyncio
async def test_rich_message_falls_back_to_plain_text(flow, slack, store):
    slack.reject_rich = True

    await drive(flow, image_post())

    assert len(slack.failed_posts) == 1
    assert len(slack.posts) == 1
    assert "blocks" not in slack.posts[0]
    assert "When was this taken" in slack.posts[0]["text"]
    assert isinstance(await store.get(ROOT), WaitingDate)


@pytest.mark.asyncio
async def test_undeliverable_message_does_not_undo_the_transition(flow, slack, store):
    slack.fail_next_posts = 2

    await drive(flow, image_post())

    assert slack.posts == []
    assert len(slack.failed_posts) == 2
    assert isinstance(await store.get(ROOT), WaitingDate)
