from goldenpipe.schemas import ImageStatus


ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    ImageStatus.PENDING.value: {
        ImageStatus.CREATING.value,
        ImageStatus.READY.value,
        ImageStatus.FAILED.value,
        ImageStatus.DELETING.value,
    },
    ImageStatus.CREATING.value: {
        ImageStatus.READY.value,
        ImageStatus.FAILED.value,
        ImageStatus.DELETING.value,
    },
    ImageStatus.READY.value: {ImageStatus.DELETING.value},
    ImageStatus.FAILED.value: {ImageStatus.DELETING.value},
    ImageStatus.DELETING.value: set(),
}

TERMINAL_STATES = {ImageStatus.READY.value, ImageStatus.FAILED.value}
IN_FLIGHT_STATES = {ImageStatus.PENDING.value, ImageStatus.CREATING.value}


def can_transition(current: str, target: str) -> bool:
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS.get(current, set())


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATES
