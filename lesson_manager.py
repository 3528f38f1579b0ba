from dataclasses import dataclass
from typing import NamedTuple, Optional


class LaunchIds(NamedTuple):
    """The two opaque identifiers carried by a lesson's launch directive."""
    content_id: str
    batch_id: str


@dataclass
class LessonRecord:
    title: str
    progress_label: str
    completed: bool
    content_id: Optional[str] = None
    batch_id: Optional[str] = None

    @classmethod
    def from_row(cls, title, progress_label, completed, launch_ids=None):
        """Builds a record; identifiers are set together or not at all."""
        if launch_ids is None:
            return cls(title, progress_label, completed)
        return cls(title, progress_label, completed, launch_ids.content_id, launch_ids.batch_id)

    @property
    def launchable(self):
        return bool(self.content_id) and bool(self.batch_id)


@dataclass
class SelectedLesson:
    lesson: LessonRecord
    index: int  # 1-based position in the parsed roster


@dataclass
class ReplayOutcome:
    attempted: int = 0
    succeeded: int = 0


def count_completed(lessons):
    return sum(1 for lesson in lessons if lesson.completed)


def select_next_lesson(lessons, force_first_when_all_complete=False):
    """
    Returns the first incomplete lesson (document order) as a SelectedLesson.
    When every lesson is complete the result is None, unless the force flag is
    set, in which case lesson #1 is selected as-is (its completed flag is kept).
    """
    for i, lesson in enumerate(lessons, 1):
        if not lesson.completed:
            return SelectedLesson(lesson, i)

    if force_first_when_all_complete and lessons:
        return SelectedLesson(lessons[0], 1)
    return None
