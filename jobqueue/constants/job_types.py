from enum import Enum


class JobTypes(Enum):
    """
    Job types the queue itself knows about.
    The queue treats job_type as an opaque tag; any string can be enqueued
    as long as a handler is registered for it.
    """
    generation = "generation"
    cleanup = "cleanup"
    analytics = "analytics"
