import typing

UserId = typing.NewType("UserId", str)
CourseId = typing.NewType("CourseId", str)
LessonId = typing.NewType("LessonId", str)
IsoTimestamp = typing.NewType("IsoTimestamp", str)
