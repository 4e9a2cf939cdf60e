"""
Error types shared by the task engine and its clinic collaborators.

Everything a handler raises is caught by the outcome recorder and stored as
the task's error message, so these classes exist to make the message and the
logs explicit rather than to change control flow.
"""


class TaskError(Exception):
    """Base class for task engine errors"""


class ValidationError(TaskError):
    """Malformed or missing task payload fields"""


class NotFoundError(TaskError):
    """A referenced appointment, report, patient or user no longer exists"""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} with ID {entity_id} not found")


class UnknownTaskType(TaskError):
    """No handler is registered for the task type"""

    def __init__(self, task_type: str):
        self.task_type = task_type
        super().__init__(f"Unknown task type: {task_type}")


class TransientIOError(TaskError):
    """Store or notification sink failure that may succeed on a later attempt"""


class HandlerTimeout(TaskError):
    """A handler did not finish within the configured timeout"""

    def __init__(self, task_id: str, timeout_seconds: float):
        self.task_id = task_id
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Handler for task {task_id} timed out after {timeout_seconds}s")
