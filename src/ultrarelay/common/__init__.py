import os
from datetime import datetime


def expand_user(file):
    if not isinstance(file, str) or not file.startswith('~'):
        return file

    return os.path.expanduser(file)


def local_now() -> datetime:
    return datetime.now().astimezone()


def iso_timestamp(dt: datetime) -> str:
    return dt.isoformat(timespec='milliseconds')
