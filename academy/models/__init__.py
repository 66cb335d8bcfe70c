"""Data models for the Academy Progress Service."""

from academy.models.content import LearningPath, Chapter, Lesson, Challenge, Difficulty, LessonType
from academy.models.progress import UserProgress
from academy.models.gamification import LearnerProfile, SolvedChallenge, XpHistory, XpReason, Tier
from academy.models.submission import Submission, SubmissionStatus, ProgrammingLanguage

__all__ = [
    "LearningPath",
    "Chapter",
    "Lesson",
    "Challenge",
    "Difficulty",
    "LessonType",
    "UserProgress",
    "LearnerProfile",
    "SolvedChallenge",
    "XpHistory",
    "XpReason",
    "Tier",
    "Submission",
    "SubmissionStatus",
    "ProgrammingLanguage",
]
