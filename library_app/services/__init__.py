"""Library Circulation API - Services Package

This package contains the service modules behind the HTTP handlers:
- User directory (accounts, roles, soft delete)
- Catalog (books and categories)
- Loan engine (borrow, return, overdue detection)
- Notification center
- Review ledger
- Reports (admin summary counters)
"""

from library_app.services.catalog_service import CatalogService
from library_app.services.loan_service import LoanService
from library_app.services.notification_service import NotificationService
from library_app.services.report_service import ReportService
from library_app.services.review_service import ReviewService
from library_app.services.user_service import UserService

__all__ = [
    "CatalogService",
    "LoanService",
    "NotificationService",
    "ReportService",
    "ReviewService",
    "UserService",
]
