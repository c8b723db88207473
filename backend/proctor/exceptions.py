from fastapi import status


class ExamError(Exception):
    """Base for errors raised by the exam services. Routers map status_code onto the HTTP response."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Exam operation failed"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class AlreadySubmitted(ExamError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "You have already completed this exam"


class SessionNotFound(ExamError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Session not found"


class NotActive(ExamError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Exam session is already closed"


class NotYetExpired(ExamError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Exam time has not expired yet"


class InvalidExtension(ExamError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Extension minutes must be a positive integer"


class InvalidAnswer(ExamError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Answer does not match the question"


class NotAuthorized(ExamError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Operation not permitted"


class NotEligible(ExamError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You are not registered for the exam"


class ExamWindowClosed(ExamError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Exam is not open"


class ConcurrentModification(ExamError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Session is being modified concurrently, retry"


class QuestionValidationError(ExamError):
    status_code = 422
    default_detail = "Invalid question"


class AmbiguousAnswerKey(QuestionValidationError):
    default_detail = "Answer key matches more than one choice"
