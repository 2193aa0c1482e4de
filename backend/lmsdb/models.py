# backend/lmsdb/models.py
"""
Import ORM models from each app so that Base.metadata.create_all() sees
every table of the tenant schema.

The actual model classes are kept in lmsdb/apps/*/models.py.
"""

from .apps.sites import models as sites_models                # branch catalog
from .apps.accounts import models as accounts_models          # users + app settings
from .apps.courses import models as courses_models            # courses, progress, signatories
from .apps.certificates import models as certificates_models  # certificates + serial counters
from .apps.assessments import models as assessments_models    # attempt logs
from .apps.payments import models as payments_models          # transactions

__all__ = [
    "sites_models",
    "accounts_models",
    "courses_models",
    "certificates_models",
    "assessments_models",
    "payments_models",
]
