"""
Services package - Business Logic Layer

Contains all business logic separated from HTTP/API concerns.
"""
from service_catalog.services.image_reconciler import ImageSetReconciler
from service_catalog.services.service_category_service import ServiceCategoryService

__all__ = ["ImageSetReconciler", "ServiceCategoryService"]
