import typing

from pydantic import BaseModel, Field

from course_progress_backend.utils.base_types import (
    CourseId,
    IsoTimestamp,
    LessonId,
    UserId,
)

ProgressStatus = typing.Literal["not_started", "in_progress", "completed"]

MAX_NOTES_LENGTH = 1000


class LessonProgressEntryModel(BaseModel):
    """Progress of one lesson inside a user's course progress record."""

    lessonId: LessonId
    status: ProgressStatus = "not_started"
    progress: int = Field(default=0, ge=0, le=100)
    timeSpentSeconds: int = Field(default=0, ge=0)
    lastAccessed: IsoTimestamp
    completedAt: typing.Optional[IsoTimestamp] = None
    notes: typing.Optional[str] = Field(default=None, max_length=MAX_NOTES_LENGTH)


class CourseProgressModel(BaseModel):
    """
    Pydantic model representing a user's progress through one course, stored in DynamoDB.
    Exactly one item exists per (userId, courseId).
    """

    userId: UserId = Field(description="Partition Key")
    courseId: CourseId = Field(description="Sort Key; Partition Key of CourseProgressByCourseIndex")
    # insertion ordered, unique by lessonId
    lessonEntries: list[LessonProgressEntryModel] = Field(default_factory=list)
    progress: int = Field(default=0, ge=0, le=100)
    status: ProgressStatus = "not_started"
    totalLessons: int = Field(default=0, ge=0, description="Cached lesson count of the course")
    completedLessonsCount: int = Field(default=0, ge=0)
    startedAt: IsoTimestamp
    lastAccessed: IsoTimestamp
    completedAt: typing.Optional[IsoTimestamp] = None
    version: int = Field(default=0, ge=0, description="Optimistic concurrency counter")

    def find_lesson_entry(self, lesson_id: LessonId) -> typing.Optional[LessonProgressEntryModel]:
        for entry in self.lessonEntries:
            if entry.lessonId == lesson_id:
                return entry
        return None

    def is_lesson_completed(self, lesson_id: LessonId) -> bool:
        entry = self.find_lesson_entry(lesson_id)
        return entry is not None and entry.status == "completed"

    def get_lesson_progress(self, lesson_id: LessonId) -> int:
        entry = self.find_lesson_entry(lesson_id)
        return entry.progress if entry else 0

    def completed_lesson_ids(self) -> set[LessonId]:
        return {entry.lessonId for entry in self.lessonEntries if entry.status == "completed"}

    @property
    def time_spent_seconds(self) -> int:
        return sum(entry.timeSpentSeconds for entry in self.lessonEntries)

    @property
    def completion_rate(self) -> float:
        if self.totalLessons == 0:
            return 0.0
        # Completions of lessons since removed from the catalog can outnumber its lessons
        return min(1.0, self.completedLessonsCount / self.totalLessons)


class CourseProgressSummaryModel(BaseModel):
    """Read-only view of a user's course progress returned to the API layer."""

    userId: UserId
    courseId: CourseId
    progress: int
    completedLessons: int
    totalLessons: int
    status: ProgressStatus
    lastAccessed: IsoTimestamp
    timeSpent: int
    completionRate: float
    nextLessonId: typing.Optional[LessonId] = None

    @classmethod
    def from_record(
        cls,
        record: CourseProgressModel,
        next_lesson_id: typing.Optional[LessonId] = None,
    ) -> "CourseProgressSummaryModel":
        return cls(
            userId=record.userId,
            courseId=record.courseId,
            progress=record.progress,
            completedLessons=record.completedLessonsCount,
            totalLessons=record.totalLessons,
            status=record.status,
            lastAccessed=record.lastAccessed,
            timeSpent=record.time_spent_seconds,
            completionRate=record.completion_rate,
            nextLessonId=next_lesson_id,
        )


class ProgressDistributionBucketModel(BaseModel):
    range: str
    count: int = Field(ge=0)
    percentage: float = Field(ge=0)


class CourseStatsModel(BaseModel):
    courseId: CourseId
    totalStudents: int = 0
    averageProgress: float = 0
    completionRate: float = 0
    averageTimeSpent: float = 0
    progressDistribution: list[ProgressDistributionBucketModel] = Field(default_factory=list)


class TrackLessonProgressInputModel(BaseModel):
    lessonId: LessonId
    # Range and type are checked by the updater so that every rejection raises InvalidProgressValueError
    progress: typing.Any = Field(..., description="Percent watched, 0-100")
    timeSpent: int = Field(default=0, ge=0, description="Additional seconds spent in this session")
    notes: typing.Optional[str] = Field(default=None, max_length=MAX_NOTES_LENGTH)


class CompleteLessonInputModel(BaseModel):
    lessonId: LessonId
    timeSpent: int = Field(default=0, ge=0, description="Additional seconds spent in this session")
    notes: typing.Optional[str] = Field(default=None, max_length=MAX_NOTES_LENGTH)


class CourseStudentsProgressResponseModel(BaseModel):
    courseId: CourseId
    students: list[CourseProgressSummaryModel]
    lastEvaluatedKey: typing.Optional[dict[str, typing.Any]] = None


class UserCoursesProgressResponseModel(BaseModel):
    userId: UserId
    courses: list[CourseProgressSummaryModel]
