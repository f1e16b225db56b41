from __future__ import annotations


class CurriculumError(Exception):
    """Base class for every failure the service reports to a caller."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BackendUnavailable(CurriculumError):
    status_code = 503


class AuthorizationRequired(CurriculumError):
    status_code = 401

    def __init__(self, message: str = "login required"):
        super().__init__(message)


class ValidationFailed(CurriculumError):
    status_code = 400


class ImportFormatError(ValidationFailed):
    pass


class CourseNotFound(CurriculumError):
    status_code = 404

    def __init__(self, course_id: str):
        super().__init__("course not found")
        self.course_id = course_id


class PrerequisiteNotFound(CurriculumError):
    status_code = 404

    def __init__(self, from_id: str, to_id: str):
        super().__init__(f"prerequisite {from_id} -> {to_id} not found")
        self.from_id = from_id
        self.to_id = to_id


class EdgeNotFound(CurriculumError):
    status_code = 404


class ScheduleConflict(CurriculumError):
    status_code = 409

    def __init__(self, day: str, time: str, occupant_id: str, occupant_name: str):
        super().__init__(f"{day} {time} is already taken by {occupant_name} ({occupant_id})")
        self.day = day
        self.time = time
        self.occupant_id = occupant_id
        self.occupant_name = occupant_name


class PartialWriteError(CurriculumError):
    """The course row was written but its weekly slots were not."""

    status_code = 500


class SubscriptionError(CurriculumError):
    status_code = 409
