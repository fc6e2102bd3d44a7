from .feed_db import FeedDatabase
from .job_db import JobDatabase
from .sqlalchemy_core import SqlalchemyCore

__all__ = [
    "FeedDatabase",
    "JobDatabase",
    "SqlalchemyCore",
]
