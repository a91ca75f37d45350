# Import all models here so Alembic can discover them.

from givsociety.models.user import User  # noqa: F401
from givsociety.models.donor_profile import DonorProfile  # noqa: F401
from givsociety.models.campaign import Campaign  # noqa: F401
from givsociety.models.donation import Donation  # noqa: F401
