def is_client(user) -> bool:
    return getattr(user, "role", None) == "client"


def is_dispatcher(user) -> bool:
    return getattr(user, "role", None) == "dispatcher"


def is_driver(user) -> bool:
    return getattr(user, "role", None) == "driver"
