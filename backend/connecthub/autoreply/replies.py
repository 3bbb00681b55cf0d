"""Canned replies for synthetic accounts, picked by message topic.

A message is sorted into the first matching bucket, checked in this order:
greeting, question, work, career, technology, appreciation, closing. Keywords
match whole words, case-insensitively; stems such as ``thank*`` also match
their inflections ("thankful", "thanked"). A ``?`` anywhere also counts as a
question. Anything else is ``general``.
"""
import random
import re
from enum import Enum
from typing import Dict, List, Optional, Tuple


class ReplyCategory(str, Enum):
    GREETING = "greeting"
    QUESTION = "question"
    WORK = "work"
    CAREER = "career"
    TECHNOLOGY = "technology"
    APPRECIATION = "appreciation"
    CLOSING = "closing"
    GENERAL = "general"


def _term(word: str) -> str:
    if word.endswith("*"):
        return re.escape(word[:-1]) + r"\w*"
    return re.escape(word)


def _words(*phrases: str) -> "re.Pattern[str]":
    """Whole-word pattern; a trailing ``*`` on a word also allows suffixes."""
    alternatives = "|".join(
        r"\s+".join(_term(word) for word in phrase.split()) for phrase in phrases
    )
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


# Checked in order; first match wins.
CATEGORY_PATTERNS: List[Tuple[ReplyCategory, "re.Pattern[str]"]] = [
    (ReplyCategory.GREETING, _words(
        "hi", "hello", "hey", "good morning", "good afternoon", "good evening",
        "sup", "what's up",
    )),
    (ReplyCategory.QUESTION, _words(
        "what", "why", "how", "when", "where", "who",
        "can you", "could you", "would you",
    )),
    (ReplyCategory.WORK, _words(
        "work", "working", "project*", "team*", "meeting*", "deadline*", "office",
        "colleague*",
    )),
    (ReplyCategory.CAREER, _words(
        "job*", "career*", "opportunit*", "position*", "hiring", "interview*",
        "resume*", "skill*",
    )),
    (ReplyCategory.TECHNOLOGY, _words(
        "tech", "code", "coding", "programming", "software", "developer*", "app", "apps",
        "api*", "database*", "cloud", "ai", "ml",
    )),
    (ReplyCategory.APPRECIATION, _words(
        "thank*", "appreciat*", "grateful", "awesome", "great*",
        "amazing", "wonderful",
    )),
    (ReplyCategory.CLOSING, _words(
        "bye", "goodbye", "talk later", "catch up", "see you", "ttyl", "gotta go",
    )),
]

REPLY_TEMPLATES: Dict[ReplyCategory, List[str]] = {
    ReplyCategory.GREETING: [
        "Hey! How are you doing? 😊",
        "Hi there! Great to hear from you!",
        "Hello! Hope you're having a good day!",
        "Hey! What's up?",
        "Hi! Nice to connect with you!",
    ],
    ReplyCategory.QUESTION: [
        "That's a great question! Let me think about it...",
        "Interesting point! I'd say it depends on the context.",
        "Good question! In my experience, I've found that...",
        "That's something I've been thinking about too!",
        "Great question! From what I know...",
    ],
    ReplyCategory.WORK: [
        "Yeah, I've been working on some interesting projects lately.",
        "Work has been pretty busy but exciting!",
        "I'm currently focused on expanding my skills in that area.",
        "That's exactly what I've been dealing with at work!",
        "I find that aspect of work really fascinating.",
    ],
    ReplyCategory.CAREER: [
        "I'm always looking for new opportunities to grow!",
        "Career development is definitely a priority for me.",
        "I think networking is so important for career growth.",
        "That sounds like an interesting opportunity!",
        "I'd love to learn more about that field.",
    ],
    ReplyCategory.TECHNOLOGY: [
        "Technology is evolving so fast these days!",
        "I've been learning more about that tech stack recently.",
        "That's a really powerful tool, I've used it on several projects.",
        "The tech industry is so exciting right now!",
        "I'm really interested in how that technology works.",
    ],
    ReplyCategory.APPRECIATION: [
        "Thanks so much! I really appreciate that! 🙏",
        "Thank you! That means a lot!",
        "I appreciate you saying that!",
        "Thanks! You're too kind! 😊",
        "Thank you! Happy to help!",
    ],
    ReplyCategory.CLOSING: [
        "It was great chatting with you! Let's stay in touch.",
        "Thanks for the conversation! Talk soon! 👋",
        "Really enjoyed our chat! Catch up later?",
        "Let's continue this conversation soon!",
        "Great talking to you! Have a wonderful day!",
    ],
    ReplyCategory.GENERAL: [
        "That's really interesting! Tell me more.",
        "I totally understand what you mean.",
        "That makes a lot of sense!",
        "I hadn't thought about it that way before.",
        "That's a good point!",
        "I see what you're saying.",
        "Absolutely! I agree with that.",
        "That's fascinating! How did you get into that?",
        "I'd love to hear more about your experience with that.",
        "Thanks for sharing that perspective!",
    ],
}

WELCOME_MESSAGES = [
    "Hey! Thanks for connecting! How have you been?",
    "Hi! Great to connect with you on ConnectHub!",
    "Hello! I saw your profile and thought we might have some common interests!",
    "Hey there! Thanks for the connection request!",
    "Hi! Looking forward to networking with you!",
]


def categorize(text: str) -> ReplyCategory:
    """Sort a message into its reply bucket. Deterministic."""
    for category, pattern in CATEGORY_PATTERNS:
        if pattern.search(text):
            return category
        if category is ReplyCategory.QUESTION and "?" in text:
            return category
    return ReplyCategory.GENERAL


def generate_reply(text: str, rng: Optional[random.Random] = None) -> str:
    """Pick a reply uniformly from the bucket ``text`` falls into."""
    rng = rng or random
    return rng.choice(REPLY_TEMPLATES[categorize(text)])


def welcome_message(rng: Optional[random.Random] = None) -> str:
    rng = rng or random
    return rng.choice(WELCOME_MESSAGES)
