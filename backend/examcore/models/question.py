"""
Question model - a single item in the question catalog.

Questions are read-only for the engines: the attempt engine loads them at
grading time and never mutates them. Options, tags and the free-text answer
key are stored as JSON strings with parsed accessor properties.
"""

import uuid
import json
from sqlalchemy import Column, Text, Integer, DateTime, String
from examcore.database import Base
from examcore.timeutils import utcnow

MULTIPLE_CHOICE = "multiple-choice"
SINGLE_CHOICE = "single-choice"
TRUE_FALSE = "true-false"
FILL_IN_THE_BLANK = "fill-in-the-blank"
ESSAY = "essay"
CODING = "coding"

QUESTION_TYPES = (MULTIPLE_CHOICE, SINGLE_CHOICE, TRUE_FALSE,
                  FILL_IN_THE_BLANK, ESSAY, CODING)

# Types whose correctness is decided by exact comparison with the option key
AUTO_GRADABLE_TYPES = (MULTIPLE_CHOICE, SINGLE_CHOICE, TRUE_FALSE)

DIFFICULTIES = ("easy", "medium", "hard")


def _load(value, default):
    if value is None:
        return default
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return default


class Question(Base):
    """
    SQLAlchemy model for the questions table.

    options holds JSON: [{"id": "a", "text": "...", "isCorrect": true}, ...]
    and is only meaningful for the auto-gradable types.
    """
    __tablename__ = "questions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()),
                doc="Unique question identifier")
    type = Column(String(32), nullable=False,
                  doc="One of QUESTION_TYPES")
    content_text = Column(Text, nullable=True,
                          doc="Question prompt")
    content_image = Column(Text, nullable=True,
                           doc="Image reference shown with the prompt")
    content_code = Column(Text, nullable=True,
                          doc="Code snippet shown with the prompt")
    options = Column(Text, nullable=False, default="[]",
                     doc="Ordered options as JSON list of {id, text, isCorrect}")
    correct_answer = Column(Text, nullable=True,
                            doc="Free-text answer key as JSON; used by manual graders only")
    difficulty = Column(String(16), nullable=False, default="medium",
                        doc="easy | medium | hard")
    points = Column(Integer, nullable=False, default=1,
                    doc="Default scoring weight")
    tags = Column(Text, nullable=False, default="[]",
                  doc="Tags as JSON list of strings")
    time_estimate = Column(Integer, nullable=True,
                           doc="Expected answering time in seconds")
    created_by = Column(String(64), nullable=True,
                        doc="User ID of the author")
    created_at = Column(DateTime, default=utcnow,
                        doc="Timestamp when the question was created")

    @property
    def options_list(self):
        return _load(self.options, [])

    @property
    def tags_list(self):
        return _load(self.tags, [])

    @property
    def correct_answer_value(self):
        return _load(self.correct_answer, None)

    @property
    def correct_option_ids(self):
        """IDs of every option flagged isCorrect, in option order."""
        return [o.get("id") for o in self.options_list if o.get("isCorrect")]

    @property
    def is_auto_gradable(self):
        return self.type in AUTO_GRADABLE_TYPES

    def __repr__(self):
        return f"<Question(id={self.id}, type='{self.type}', points={self.points})>"
