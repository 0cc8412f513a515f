"""
Studieo – SQLAlchemy ORM models package.

Imports all model classes so the metadata and the app can discover them
through a single ``from studieo.models import *`` import.
"""

from studieo.models.company import Company                 # noqa: F401
from studieo.models.user import User                       # noqa: F401
from studieo.models.project import Project                 # noqa: F401
from studieo.models.application import Application         # noqa: F401
from studieo.models.team_member import TeamMember          # noqa: F401
