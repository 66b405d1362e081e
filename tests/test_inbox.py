"""
Testes para fedinbox/activitypub/inbox.py

Cada atividade é entregue como documento JSON-LD ao `dispatch`, com um
FakeContext no lugar da rede e o banco em memória.

Cobre:
- Follow: follower gravado uma vez, Accept enviado, notificação única
- Undo: Follow remove follower; Like/Announce removem o log correspondente
- Accept/Reject: correlação pela URL do actor com alvos pendentes
- Announce: boost de conteúdo local x boost de quem seguimos
- Create: resposta, menção e timeline
- Update: post editado x perfil de follower
- Move, Block, Delete
- referências remotas indisponíveis não gravam nada
"""

from unittest.mock import patch

import pytest

from fedinbox.activitypub.fields import field, id_of, kind_of
from fedinbox.activitypub.inbox import dispatch
from fedinbox.models.following import FollowingTarget
from fedinbox.storage import activity_log, followers, following, notifications, timeline

OWN_POST = "https://bot.test/posts/1"
REMOTE_NOTE = "https://mastodon.social/users/fulano/statuses/1"
BOOSTER_URL = "https://mastodon.social/users/ciclano"


@pytest.fixture(autouse=True)
def previews():
    with patch("fedinbox.services.link_preview.schedule_preview_fetch") as mock:
        yield mock


@pytest.fixture
def ctx(fake_ctx, make_actor):
    fake_ctx.add(make_actor(), make_actor("ciclano", "Ciclano"))
    return fake_ctx


def _activity(kind: str, actor: str, obj, n: int = 1, **extra) -> dict:
    return {
        "id": f"{actor}#{kind.lower()}/{n}",
        "type": kind,
        "actor": actor,
        "object": obj,
        **extra,
    }


# ---------------------------------------------------------------------------
# Follow / Undo(Follow)
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_follow_stores_follower_and_sends_accept(db, ctx, remote_actor_url, local_actor_url):
    follow = _activity("Follow", remote_actor_url, local_actor_url)

    assert await dispatch(ctx, follow) is True

    follower = await followers.get_follower(remote_actor_url)
    assert follower.handle == "fulano"
    assert follower.inbox == f"{remote_actor_url}/inbox"
    assert follower.shared_inbox == "https://mastodon.social/inbox"

    recipient, accept = ctx.sent[0]
    assert recipient == remote_actor_url
    assert kind_of(accept) == "Accept"
    assert id_of(field(accept, "object")) == follow["id"]


@pytest.mark.asyncio
async def test_follow_redelivered_is_idempotent(db, ctx, remote_actor_url, local_actor_url):
    follow = _activity("Follow", remote_actor_url, local_actor_url)

    await dispatch(ctx, follow)
    await dispatch(ctx, follow)

    assert await followers.count_followers() == 1
    assert len(await notifications.get_notifications()) == 1


@pytest.mark.asyncio
async def test_follow_keeps_follower_when_accept_fails(db, ctx, remote_actor_url, local_actor_url):
    ctx.failing_recipients.add(remote_actor_url)

    assert await dispatch(ctx, _activity("Follow", remote_actor_url, local_actor_url))

    assert await followers.get_follower(remote_actor_url) is not None
    assert ctx.sent == []


@pytest.mark.asyncio
async def test_follow_from_unresolvable_actor_writes_nothing(db, fake_ctx, local_actor_url):
    follow = _activity("Follow", "https://secure.social/users/x", local_actor_url)

    assert await dispatch(fake_ctx, follow) is False

    assert await followers.count_followers() == 0
    assert await activity_log.recent_activities() == []


@pytest.mark.asyncio
async def test_undo_follow_removes_follower(db, ctx, remote_actor_url, local_actor_url):
    follow = _activity("Follow", remote_actor_url, local_actor_url)
    await dispatch(ctx, follow)

    await dispatch(ctx, _activity("Undo", remote_actor_url, follow))

    assert await followers.get_follower(remote_actor_url) is None
    assert "Undo(Follow)" in [entry.type for entry in await activity_log.recent_activities()]


@pytest.mark.asyncio
async def test_undo_with_unresolvable_inner_is_noop(db, fake_ctx, remote_actor_url):
    undo = _activity("Undo", remote_actor_url, f"{remote_actor_url}#follows/404")

    assert await dispatch(fake_ctx, undo) is False
    assert await activity_log.recent_activities() == []


# ---------------------------------------------------------------------------
# Like / Undo(Like)
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_like_on_own_content_logs_and_notifies(db, ctx, remote_actor_url):
    await dispatch(ctx, _activity("Like", remote_actor_url, OWN_POST))

    entries = await activity_log.recent_activities()
    assert [(e.type, e.object_url) for e in entries] == [("Like", OWN_POST)]
    notification = (await notifications.get_notifications())[0]
    assert notification.type == "like"
    assert notification.actor_handle == "@fulano@mastodon.social"


@pytest.mark.asyncio
async def test_like_on_foreign_content_is_ignored(db, ctx, remote_actor_url):
    await dispatch(ctx, _activity("Like", remote_actor_url, REMOTE_NOTE))

    assert await activity_log.recent_activities() == []
    assert await notifications.get_notifications() == []


@pytest.mark.asyncio
async def test_like_on_lookalike_domain_is_ignored(db, ctx, remote_actor_url, monkeypatch):
    from fedinbox import config

    monkeypatch.setattr(config.settings, "publication_url", "https://blog.example.org")

    await dispatch(ctx, _activity("Like", remote_actor_url, "https://blog.example.org.evil/posts/1"))
    await dispatch(ctx, _activity("Like", remote_actor_url, "https://blog.example.org/posts/1", n=2))

    entries = await activity_log.recent_activities()
    assert [e.object_url for e in entries] == ["https://blog.example.org/posts/1"]


@pytest.mark.asyncio
async def test_like_then_undo_leaves_no_log_rows(db, ctx, remote_actor_url):
    from fedinbox.storage.interactions import count_interactions

    like = _activity("Like", remote_actor_url, OWN_POST)

    await dispatch(ctx, like)
    await dispatch(ctx, _activity("Undo", remote_actor_url, like))

    assert [e.type for e in await activity_log.recent_activities()] == []
    assert await count_interactions() == 0


@pytest.mark.asyncio
async def test_undo_before_like_leaves_no_interaction_records(db, ctx, remote_actor_url):
    from fedinbox.storage.interactions import count_interactions

    like = _activity("Like", remote_actor_url, OWN_POST)

    await dispatch(ctx, _activity("Undo", remote_actor_url, like))
    await dispatch(ctx, like)

    assert await count_interactions() == 0


@pytest.mark.asyncio
async def test_undo_like_keeps_other_actors_likes(db, ctx, remote_actor_url):
    await dispatch(ctx, _activity("Like", remote_actor_url, OWN_POST))
    await dispatch(ctx, _activity("Like", BOOSTER_URL, OWN_POST))

    like = _activity("Like", remote_actor_url, OWN_POST)
    await dispatch(ctx, _activity("Undo", remote_actor_url, like))

    assert [e.actor_url for e in await activity_log.recent_activities()] == [BOOSTER_URL]


# ---------------------------------------------------------------------------
# Accept / Reject
# ---------------------------------------------------------------------------


async def _pending(db, actor_url: str):
    async with db() as session:
        async with session.begin():
            session.add(
                FollowingTarget(actor_url=actor_url, source="refollow:sent", refollow_attempts=1)
            )


@pytest.mark.asyncio
async def test_accept_marks_pending_target_federated(db, ctx, remote_actor_url, local_actor_url):
    await _pending(db, remote_actor_url)

    # O objeto interno não é inspecionado: alguns servidores mandam só o actor
    await dispatch(ctx, _activity("Accept", remote_actor_url, local_actor_url))

    target = await following.get_following(remote_actor_url)
    assert target.source == "federation"
    assert target.refollow_attempts is None
    assert [e.type for e in await activity_log.recent_activities()] == ["Accept(Follow)"]


@pytest.mark.asyncio
async def test_accept_without_pending_follow_is_ignored(db, ctx, remote_actor_url, local_actor_url):
    await following.upsert_following(remote_actor_url, source="import")

    await dispatch(ctx, _activity("Accept", remote_actor_url, local_actor_url))

    assert (await following.get_following(remote_actor_url)).source == "import"
    assert await activity_log.recent_activities() == []


@pytest.mark.asyncio
async def test_reject_marks_target_rejected(db, ctx, remote_actor_url, local_actor_url):
    await _pending(db, remote_actor_url)

    await dispatch(ctx, _activity("Reject", remote_actor_url, local_actor_url))

    target = await following.get_following(remote_actor_url)
    assert target.source == "rejected"
    assert target.refollow_attempts is None


# ---------------------------------------------------------------------------
# Announce
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_announce_of_own_content_notifies(db, ctx):
    await dispatch(ctx, _activity("Announce", BOOSTER_URL, OWN_POST))

    notification = (await notifications.get_notifications())[0]
    assert notification.type == "boost"
    assert notification.target_url == OWN_POST
    assert await timeline.count_timeline_items() == 0


@pytest.mark.asyncio
async def test_announce_from_followed_actor_adds_boost_to_timeline(db, ctx, make_note_doc, previews):
    await following.upsert_following(BOOSTER_URL)
    ctx.add(make_note_doc(content='<p>Veja <a href="https://example.com/">isto</a></p>'))
    announce = _activity("Announce", BOOSTER_URL, REMOTE_NOTE, published="2024-06-01T10:00:00Z")

    await dispatch(ctx, announce)

    item = await timeline.get_timeline_item(REMOTE_NOTE)
    assert item.type == "boost"
    assert item.boosted_by["handle"] == "@ciclano@mastodon.social"
    assert item.author["name"] == "Fulano"
    assert await notifications.get_notifications() == []
    previews.assert_called_once_with(REMOTE_NOTE, item.content["html"])


@pytest.mark.asyncio
async def test_announce_of_own_content_by_followed_actor_takes_both_paths(db, ctx, make_note_doc):
    await following.upsert_following(BOOSTER_URL)
    ctx.add(make_note_doc(note_id=OWN_POST, attributed_to="https://bot.test/users/testbot"))

    await dispatch(ctx, _activity("Announce", BOOSTER_URL, OWN_POST))

    assert (await notifications.get_notifications())[0].type == "boost"
    item = await timeline.get_timeline_item(OWN_POST)
    assert item.type == "boost"
    # Autor local indisponível no FakeContext: o autor é deduzido da URL
    assert item.author["handle"] == "@testbot@bot.test"


@pytest.mark.asyncio
async def test_announce_from_unfollowed_actor_is_ignored(db, ctx, make_note_doc):
    ctx.add(make_note_doc())

    await dispatch(ctx, _activity("Announce", BOOSTER_URL, REMOTE_NOTE))

    assert await timeline.count_timeline_items() == 0


@pytest.mark.asyncio
async def test_announce_with_unresolvable_object_writes_nothing(db, ctx, previews):
    await following.upsert_following(BOOSTER_URL)

    await dispatch(ctx, _activity("Announce", BOOSTER_URL, REMOTE_NOTE))

    assert await timeline.count_timeline_items() == 0
    previews.assert_not_called()


@pytest.mark.asyncio
async def test_announce_of_non_renderable_object_is_dropped(db, ctx, make_note_doc):
    await following.upsert_following(BOOSTER_URL)
    ctx.add(make_note_doc(content=""))

    await dispatch(ctx, _activity("Announce", BOOSTER_URL, REMOTE_NOTE))

    assert await timeline.count_timeline_items() == 0


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_reply_to_own_content(db, ctx, remote_actor_url, make_note_doc):
    note = make_note_doc(inReplyTo=OWN_POST, content="<p>Ótimo post!</p>")

    await dispatch(ctx, _activity("Create", remote_actor_url, note))

    notification = await notifications.get_notification(f"reply:{REMOTE_NOTE}")
    assert notification.type == "reply"
    assert notification.target_url == OWN_POST
    assert notification.content["html"] == "<p>Ótimo post!</p>"
    entry = (await activity_log.recent_activities())[0]
    assert entry.type == "Reply"
    assert entry.target_url == OWN_POST


@pytest.mark.asyncio
async def test_create_mentioning_local_actor(db, ctx, remote_actor_url, local_actor_url, make_note_doc):
    note = make_note_doc(tag=[{"type": "Mention", "href": local_actor_url, "name": "@testbot@bot.test"}])

    await dispatch(ctx, _activity("Create", remote_actor_url, note))

    notification = await notifications.get_notification(f"mention:{REMOTE_NOTE}")
    assert notification.type == "mention"
    assert await timeline.count_timeline_items() == 0


@pytest.mark.asyncio
async def test_reply_that_also_mentions_creates_both_notifications(
        db, ctx, remote_actor_url, local_actor_url, make_note_doc
):
    note = make_note_doc(
        inReplyTo=OWN_POST,
        tag=[{"type": "Mention", "href": local_actor_url, "name": "@testbot@bot.test"}],
    )

    await dispatch(ctx, _activity("Create", remote_actor_url, note))

    assert sorted(n.type for n in await notifications.get_notifications()) == ["mention", "reply"]


@pytest.mark.asyncio
async def test_create_from_followed_actor_goes_to_timeline(db, ctx, remote_actor_url, make_note_doc, previews):
    await following.upsert_following(remote_actor_url)

    await dispatch(ctx, _activity("Create", remote_actor_url, make_note_doc()))
    await dispatch(ctx, _activity("Create", remote_actor_url, make_note_doc()))

    assert await timeline.count_timeline_items() == 1
    item = await timeline.get_timeline_item(REMOTE_NOTE)
    assert item.type == "note"
    assert item.author["handle"] == "@fulano@mastodon.social"
    assert previews.call_count == 1


@pytest.mark.asyncio
async def test_create_from_unfollowed_actor_is_not_stored(db, ctx, remote_actor_url, make_note_doc):
    await dispatch(ctx, _activity("Create", remote_actor_url, make_note_doc()))

    assert await timeline.count_timeline_items() == 0
    assert await notifications.get_notifications() == []


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_update_of_post_edits_timeline_item(db, ctx, remote_actor_url, make_note_doc):
    await following.upsert_following(remote_actor_url)
    await dispatch(ctx, _activity("Create", remote_actor_url, make_note_doc()))

    edited = make_note_doc(content="<p>Editado</p>", summary="cw", sensitive=True)
    await dispatch(ctx, _activity("Update", remote_actor_url, edited))

    item = await timeline.get_timeline_item(REMOTE_NOTE)
    assert item.content["html"] == "<p>Editado</p>"
    assert item.summary == "cw"
    assert item.sensitive is True


@pytest.mark.asyncio
async def test_update_of_profile_refreshes_follower(db, ctx, remote_actor_url, make_actor):
    await followers.upsert_follower(remote_actor_url, name="Fulano")

    profile = make_actor(name="Fulano Renomeado")
    await dispatch(ctx, _activity("Update", remote_actor_url, profile))

    assert (await followers.get_follower(remote_actor_url)).name == "Fulano Renomeado"


@pytest.mark.asyncio
async def test_update_of_profile_ignored_without_follower(db, ctx, remote_actor_url, make_actor):
    await dispatch(ctx, _activity("Update", remote_actor_url, make_actor(name="Outro")))

    assert await followers.count_followers() == 0


# ---------------------------------------------------------------------------
# Move / Block / Delete
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_move_retargets_follower(db, ctx, remote_actor_url):
    new_url = "https://outra.social/users/fulano"
    await followers.upsert_follower(remote_actor_url, name="Fulano")

    await dispatch(ctx, _activity("Move", remote_actor_url, remote_actor_url, target=new_url))

    assert await followers.get_follower(remote_actor_url) is None
    assert (await followers.get_follower(new_url)).moved_from == remote_actor_url
    assert [e.type for e in await activity_log.recent_activities()] == ["Move"]


@pytest.mark.asyncio
async def test_move_points_follower_at_new_account_inbox(db, ctx, remote_actor_url, make_actor):
    new_account = make_actor("fulano", "Fulano Novo", "https://outra.social")
    ctx.add(new_account)
    await followers.upsert_follower(
        remote_actor_url,
        name="Fulano",
        inbox=f"{remote_actor_url}/inbox",
        shared_inbox="https://mastodon.social/inbox",
    )

    await dispatch(ctx, _activity("Move", remote_actor_url, remote_actor_url, target=new_account["id"]))

    moved = await followers.get_follower(new_account["id"])
    assert moved.moved_from == remote_actor_url
    assert moved.name == "Fulano Novo"
    assert moved.inbox == "https://outra.social/users/fulano/inbox"
    assert moved.shared_inbox == "https://outra.social/inbox"


@pytest.mark.asyncio
async def test_block_removes_follower(db, ctx, remote_actor_url, local_actor_url):
    await followers.upsert_follower(remote_actor_url)

    await dispatch(ctx, _activity("Block", remote_actor_url, local_actor_url))

    assert await followers.count_followers() == 0


@pytest.mark.asyncio
async def test_delete_removes_timeline_item_and_log(db, ctx, remote_actor_url, make_note_doc):
    await following.upsert_following(remote_actor_url)
    await dispatch(ctx, _activity("Create", remote_actor_url, make_note_doc()))
    await activity_log.log_activity(direction="inbound", type="Like", object_url=REMOTE_NOTE)

    tombstone = {"id": REMOTE_NOTE, "type": "Tombstone"}
    await dispatch(ctx, _activity("Delete", remote_actor_url, tombstone))

    assert await timeline.get_timeline_item(REMOTE_NOTE) is None
    assert await activity_log.recent_activities() == []


# ---------------------------------------------------------------------------
# Tipos não tratados
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_unknown_activity_type_is_ignored(db, ctx, remote_actor_url):
    assert await dispatch(ctx, _activity("Flag", remote_actor_url, OWN_POST)) is False


@pytest.mark.asyncio
async def test_add_and_remove_are_accepted_without_writes(db, ctx, remote_actor_url):
    assert await dispatch(ctx, _activity("Add", remote_actor_url, REMOTE_NOTE)) is True
    assert await dispatch(ctx, _activity("Remove", remote_actor_url, REMOTE_NOTE)) is True
    assert await activity_log.recent_activities() == []
