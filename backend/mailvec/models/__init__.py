from mailvec.models.email import Email
from mailvec.models.category import Category
from mailvec.models.classification import Classification

__all__ = [
    "Email",
    "Category",
    "Classification",
]
