from .models import AsyncSessionLocal
from .models.users import User
from .models.messages import Message
from .models.notifications import Notification
from .errors import ValidationFailed, PermissionDenied, NotFound
from sqlalchemy import select, update, func, or_, and_
import logging

logger = logging.getLogger(__name__)


# users (owned by the account service; the store only reads them)
async def create_user(username: str, full_name: str, email: str = None, avatar: str = None):
    async with AsyncSessionLocal() as session:
        user = User(username=username, full_name=full_name, email=email, avatar=avatar)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user

async def get_user_by_id(user_id: int):
    async with AsyncSessionLocal() as session:
        q = await session.execute(select(User).where(User.id == user_id))
        return q.scalars().first()

async def get_users_by_ids(user_ids):
    if not user_ids:
        return {}
    async with AsyncSessionLocal() as session:
        q = await session.execute(select(User).where(User.id.in_(set(user_ids))))
        return {u.id: u for u in q.scalars().all()}


# messaging
def _pair_filter(user_id: int, other_id: int):
    return or_(
        and_(Message.sender_id == user_id, Message.receiver_id == other_id),
        and_(Message.sender_id == other_id, Message.receiver_id == user_id),
    )

def _attachment_fields(payload):
    """Reconcile legacy single-attachment fields with the attachments list"""
    attachments = [a.model_dump() for a in payload.attachments or []]
    attachment = payload.attachment
    attachment_type = payload.attachment_type
    attachment_name = payload.attachment_name
    if attachments and not attachment:
        first = attachments[0]
        attachment, attachment_type, attachment_name = first['url'], first['type'], first['name']
    elif attachment and not attachments:
        attachments = [{
            'url': attachment,
            'type': attachment_type or 'file',
            'name': attachment_name or attachment.rsplit('/', 1)[-1],
        }]
    return {
        'attachment': attachment,
        'attachment_type': attachment_type,
        'attachment_name': attachment_name,
        'attachments': attachments,
    }

async def create_message(sender_id: int, payload):
    """Persist a new message from sender_id; read is always False on creation"""
    if sender_id == payload.receiver_id:
        raise ValidationFailed('Cannot send a message to yourself')

    async with AsyncSessionLocal() as session:
        receiver = await session.get(User, payload.receiver_id)
        if not receiver:
            raise NotFound('Receiver not found')

        if payload.reply_to_id is not None:
            target = await session.get(Message, payload.reply_to_id)
            if not target:
                raise NotFound('Reply target not found')
            if {target.sender_id, target.receiver_id} != {sender_id, payload.receiver_id}:
                raise PermissionDenied('Reply target belongs to another conversation')

        m = Message(
            sender_id=sender_id,
            receiver_id=payload.receiver_id,
            content=payload.content or '',
            reply_to_id=payload.reply_to_id,
            read=False,
            **_attachment_fields(payload),
        )
        session.add(m)
        await session.commit()
        await session.refresh(m)
        logger.info({'msg': 'message_created', 'message_id': m.id, 'sender_id': sender_id,
                     'receiver_id': payload.receiver_id, 'attachments': len(m.attachments or [])})
        return m

async def get_message(message_id: int):
    async with AsyncSessionLocal() as session:
        return await session.get(Message, message_id)

async def mark_message_read(message_id: int, requester_id: int):
    """unread -> read, receiver only; re-marking a read message is a no-op"""
    async with AsyncSessionLocal() as session:
        m = await session.get(Message, message_id)
        if not m:
            raise NotFound('Message not found')
        if m.receiver_id != requester_id:
            raise PermissionDenied("You don't have permission to mark this message as read")
        if not m.read:
            m.read = True
            await session.commit()
            await session.refresh(m)
        return m

async def list_messages_for_user(user_id: int):
    async with AsyncSessionLocal() as session:
        q = select(Message).where(
            (Message.sender_id == user_id) | (Message.receiver_id == user_id)
        ).order_by(Message.created_at.asc(), Message.id.asc())
        res = await session.execute(q)
        return res.scalars().all()

async def list_conversation(user_id: int, other_id: int):
    async with AsyncSessionLocal() as session:
        q = select(Message).where(_pair_filter(user_id, other_id)).order_by(
            Message.created_at.asc(), Message.id.asc()
        )
        res = await session.execute(q)
        return res.scalars().all()


# notifications (written to DB, pushed by ws_manager from the routes)
async def create_notification(user_id: int, title: str, message: str, type: str = 'message', related_id: int = None):
    async with AsyncSessionLocal() as session:
        n = Notification(user_id=user_id, type=type, title=title, message=message, related_id=related_id, read=False)
        session.add(n)
        await session.commit()
        await session.refresh(n)
        return n

async def list_notifications(user_id: int):
    async with AsyncSessionLocal() as session:
        q = select(Notification).where(Notification.user_id == user_id).order_by(
            Notification.created_at.desc(), Notification.id.desc()
        )
        res = await session.execute(q)
        return res.scalars().all()

async def count_unread_notifications(user_id: int) -> int:
    async with AsyncSessionLocal() as session:
        q = select(func.count(Notification.id)).where(
            Notification.user_id == user_id, Notification.read.is_(False)
        )
        res = await session.execute(q)
        return res.scalar_one()

async def mark_notification_read(notification_id: int, user_id: int):
    async with AsyncSessionLocal() as session:
        n = await session.get(Notification, notification_id)
        if not n:
            raise NotFound('Notification not found')
        if n.user_id != user_id:
            raise PermissionDenied("You don't have permission to update this notification")
        if not n.read:
            n.read = True
            await session.commit()
            await session.refresh(n)
        return n

async def mark_all_notifications_read(user_id: int) -> int:
    async with AsyncSessionLocal() as session:
        res = await session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
            .values(read=True)
        )
        await session.commit()
        return res.rowcount
