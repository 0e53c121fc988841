from .transitions import MAX_RETRIES, TRANSITIONS, Event, Stage, transition

__all__ = ["MAX_RETRIES", "TRANSITIONS", "Event", "Stage", "transition"]
