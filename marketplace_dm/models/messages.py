from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, JSON, CheckConstraint, func
from sqlalchemy.orm import validates
from . import Base

class Message(Base):
    __tablename__ = 'messages'
    __table_args__ = (
        CheckConstraint('sender_id <> receiver_id', name='ck_messages_distinct_participants'),
    )
    id = Column(Integer, primary_key=True)
    sender_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    receiver_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    content = Column(Text, nullable=False, default='')
    # legacy single attachment, mirrors attachments[0]
    attachment = Column(String, nullable=True)
    attachment_type = Column(String(20), nullable=True)
    attachment_name = Column(String, nullable=True)
    attachments = Column(JSON, nullable=True)
    # plain id, not a FK: stays set after the original is deleted
    reply_to_id = Column(Integer, nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    @validates('read')
    def _validate_read(self, key, value):
        # read receipts are one-way
        if self.read and not value:
            raise ValueError('a read message cannot become unread')
        return bool(value)
