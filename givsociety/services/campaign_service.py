"""Campaign lookup — read-only access to live (non-deleted) campaigns."""

from givsociety.extensions import db
from givsociety.models.campaign import Campaign


def get_campaign(campaign_id, session=None):
    """Return the non-deleted Campaign with this id, or None.

    Accepts ints or numeric strings (metadata and JSON bodies both carry
    ids); anything else resolves to None.
    """
    session = session or db.session
    try:
        campaign_id = int(campaign_id)
    except (TypeError, ValueError):
        return None

    return (
        session.query(Campaign)
        .filter(Campaign.id == campaign_id, Campaign.deleted_at.is_(None))
        .first()
    )
