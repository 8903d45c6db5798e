from localbiz.models.users import UserAuth
from localbiz.models.businesses import Business, BusinessImage
from localbiz.models.reviews import Review, ReviewVote
from localbiz.models.analytics import BusinessView

__all__ = ["UserAuth", "Business", "BusinessImage", "Review", "ReviewVote", "BusinessView"]
