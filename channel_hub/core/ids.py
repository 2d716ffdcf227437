import uuid


def gen_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def short_id(prefix: str, length: int = 12) -> str:
    # log correlation only, never a primary key
    return f"{prefix}_{uuid.uuid4().hex[:length]}"
