from datetime import datetime, timedelta
from types import SimpleNamespace
from marketplace_dm.conversations import (
    DELETED_REPLY_PLACEHOLDER,
    build_contact_summaries,
    conversation_between,
    resolve_reply_preview,
    total_unread,
    unread_counts,
)

T0 = datetime(2024, 5, 1, 9, 0, 0)


def msg(id, sender, receiver, content='', minutes=0, read=False, **extra):
    fields = dict(attachment_type=None, attachment_name=None)
    fields.update(extra)
    return SimpleNamespace(id=id, sender_id=sender, receiver_id=receiver, content=content,
                           created_at=T0 + timedelta(minutes=minutes), read=read, **fields)


LOG = [
    msg(1, 2, 1, 'hello from 2', minutes=0),
    msg(2, 1, 2, 'hi 2', minutes=1, read=True),
    msg(3, 3, 1, 'hey from 3', minutes=5),
    msg(4, 2, 1, '', minutes=3, attachment_type='image', attachment_name='cat.png'),
    msg(5, 3, 1, 'old and read', minutes=-10, read=True),
    msg(6, 2, 3, 'not mine', minutes=7),
]


def test_unread_counts_grouped_by_sender():
    assert unread_counts(LOG, 1) == {2: 2, 3: 1}
    assert total_unread(LOG, 1) == 3
    assert unread_counts(LOG, 2) == {}


def test_contact_summaries_latest_first():
    summaries = build_contact_summaries(LOG, 1)
    assert [s.contact_id for s in summaries] == [3, 2]

    three, two = summaries
    assert three.last_message == 'hey from 3'
    assert three.unread_count == 1
    assert two.last_message_id == 4
    assert two.last_message == ''
    assert two.last_message_attachment_type == 'image'
    assert two.last_message_attachment_name == 'cat.png'
    assert two.unread_count == 2


def test_contact_summaries_tie_broken_by_id():
    log = [msg(10, 2, 1, 'a'), msg(11, 3, 1, 'b')]
    assert [s.contact_id for s in build_contact_summaries(log, 1)] == [3, 2]


def test_conversation_between_orders_ascending():
    conv = conversation_between(reversed(LOG), 1, 2)
    assert [m.id for m in conv] == [1, 2, 4]


def test_reply_preview():
    visible = [msg(1, 1, 2, 'original'), msg(2, 2, 1, '', attachment_name='scan.pdf')]
    assert resolve_reply_preview(visible, None) is None
    assert resolve_reply_preview(visible, 1) == 'original'
    assert resolve_reply_preview(visible, 2) == 'scan.pdf'
    assert resolve_reply_preview(visible, 99) == DELETED_REPLY_PLACEHOLDER


def test_contact_summary_wire_keys_are_camel_case():
    from marketplace_dm.schemas.messages import ContactSummaryOut, MessageIn
    out = ContactSummaryOut(id=2, full_name='Bob B', last_message='hi', last_message_time=T0,
                            last_message_attachment_type='image', unread_count=1)
    assert set(out.model_dump(by_alias=True)) == {
        'id', 'fullName', 'avatar', 'lastMessage', 'lastMessageTime',
        'lastMessageAttachmentType', 'lastMessageAttachmentName', 'unreadCount',
    }
    # both spellings accepted on input
    assert MessageIn.model_validate({'receiverId': 2, 'replyToId': 7, 'content': 'x'}).reply_to_id == 7
    assert MessageIn.model_validate({'receiver_id': 2, 'content': 'x'}).receiver_id == 2
