"""Vote service — up/down feedback on assistant messages."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.models.conversation import Vote


async def get_votes_by_chat_id(db: AsyncSession, chat_id: str) -> list[dict]:
    result = await db.execute(select(Vote).where(Vote.chat_id == chat_id))
    return [
        {"chatId": v.chat_id, "messageId": v.message_id, "isUpvoted": v.is_upvoted}
        for v in result.scalars().all()
    ]


async def vote_message(db: AsyncSession, chat_id: str, message_id: str, upvote: bool) -> None:
    """Record a vote, replacing any earlier vote on the same message."""
    vote = await db.get(Vote, (chat_id, message_id))
    if vote is None:
        db.add(Vote(chat_id=chat_id, message_id=message_id, is_upvoted=upvote))
    else:
        vote.is_upvoted = upvote
    await db.commit()
