"""Demo conversations for a fresh install."""

from typing import List, Optional

import structlog

from ..domain.models import AIModel, Conversation, Message, Reaction, Role, now_ms
from ..repositories.base import ConversationRepository
from .history import ONE_DAY, ONE_HOUR
from .resolver import CANNED_RESPONSES

logger = structlog.get_logger()

# (title, prompt, topic, age of the prompt in ms, preview, pinned, model, reaction)
DEMO_CONVERSATIONS = [
    ("Push Day Workout Plan", "Create a push day workout for me", "workout", 2 * ONE_HOUR,
     "Here's a Push Day workout tailored for you...", True, AIModel.PRO, None),
    ("Protein & Nutrition Guide", "How much protein do I need daily?", "nutrition", ONE_DAY + 2 * ONE_HOUR,
     "Based on your profile, here's your personalized nutrition...", False, AIModel.PRO, Reaction.UP),
    ("Progress Analysis", "Analyze my progress this month", "progress", 3 * ONE_DAY,
     "Here's your progress analysis from the last 12 weeks...", False, AIModel.FAST, None),
    ("Sleep & Recovery Protocol", "I'm always tired after training, how do I fix my sleep?", "sleep",
     5 * ONE_DAY, "Sleep is your #1 performance enhancer...", False, AIModel.PRO, None),
]

REPLY_DELAY = 10 * 1000


def build_demo_conversations(now: Optional[int] = None) -> List[Conversation]:
    now = now_ms() if now is None else now
    conversations = []
    for index, (title, prompt, topic, age, preview, pinned, model, reaction) in enumerate(DEMO_CONVERSATIONS, 1):
        asked_at = now - age
        conversations.append(
            Conversation(
                id=f"demo-{index}",
                title=title,
                messages=[
                    Message(id=f"msg-{2 * index - 1}", role=Role.USER, content=prompt, timestamp=asked_at),
                    Message(
                        id=f"msg-{2 * index}",
                        role=Role.ASSISTANT,
                        content=CANNED_RESPONSES[topic],
                        timestamp=asked_at + REPLY_DELAY,
                        reaction=reaction,
                    ),
                ],
                created_at=asked_at,
                updated_at=asked_at + REPLY_DELAY,
                preview=preview,
                is_pinned=pinned,
                model=model,
                title_locked=True,
            )
        )
    return conversations


def seed_demo_conversations(store: ConversationRepository, now: Optional[int] = None) -> None:
    """Load the demo conversations, keeping the store's model selection."""
    snapshot = store.to_snapshot()
    demo = [c.model_dump(mode="json", by_alias=True) for c in build_demo_conversations(now)]
    snapshot["conversations"] = snapshot["conversations"] + demo
    store.restore_snapshot(snapshot)
    logger.info("demo_conversations_seeded", count=len(demo))
